# foodday/services/matching.py
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from foodday.core.clock import as_utc
from foodday.core.errors import DuplicateClaim, InvalidTransition, NoEligibleOrganization, NotFound, StaleWrite
from foodday.core.events import emit_event, DONATION_NOTIFIED, DONATION_UNMATCHED
from foodday.core.states import DonationStatus, ListingStatus
from foodday.models.schemas import Donation, Listing, Organization, RematchReport
from foodday.services.geo import distance_meters

logger = logging.getLogger(__name__)


class MatchingEngine:
    """
    Binds a food-day listing to the nearest active organization within
    max_radius_m. Ties go to the lowest organization id.
    """

    def __init__(self, repo, max_radius_m: float, registry_timeout_s: float, tz: str = "UTC"):
        self.repo = repo
        self.max_radius_m = max_radius_m
        self.registry_timeout_s = registry_timeout_s
        self.tz = ZoneInfo(tz)
        # set by the engine wiring; used to finish lost listing writes
        self.listings = None

    async def _load_organizations(self) -> list[Organization]:
        try:
            docs = await asyncio.wait_for(self.repo.list_organizations(active_only=True),
                                          timeout=self.registry_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("organization registry timed out", extra={"timeout_s": self.registry_timeout_s})
            raise NoEligibleOrganization("organization registry timed out")
        return [Organization.model_validate(d) for d in docs]

    async def candidates(self, listing: Listing, exclude: Iterable[str] = ()) -> list[tuple[float, Organization]]:
        """(distance_m, organization) pairs in range, nearest first."""
        if listing.location is None:
            raise NoEligibleOrganization(f"merchant location unknown for listing {listing.id}")
        excluded = set(exclude)
        found = []
        for org in await self._load_organizations():
            if not org.active or org.location is None or org.id in excluded:
                continue
            d = distance_meters(listing.location, org.location)
            if d <= self.max_radius_m:
                found.append((d, org))
        if not found:
            raise NoEligibleOrganization(f"no organization within {self.max_radius_m:.0f} m of listing {listing.id}")
        found.sort(key=lambda p: (p[0], p[1].id))
        return found

    async def select_organization(self, listing: Listing,
                                  exclude: Iterable[str] = ()) -> tuple[Organization, float]:
        distance, org = (await self.candidates(listing, exclude))[0]
        return org, distance

    async def _lapsed_organizations(self, listing_id: str) -> set[str]:
        """Organizations that already let a claim on this listing expire."""
        docs = await self.repo.find_donations(listing_id=listing_id, status=[DonationStatus.EXPIRED.value])
        return {d["organization_id"] for d in docs if d.get("organization_id")}

    async def match_listing(self, listing: Listing, now: Optional[datetime] = None) -> Donation:
        """
        Open the single active donation for a food-day listing. With nobody in
        range the donation is still created, unbound, for the rematch sweep.
        """
        now = as_utc(now, self.tz)
        if listing.status != ListingStatus.FOOD_DAY:
            raise InvalidTransition("listing", listing.id, listing.status, "matched",
                                    "only food-day listings are matched")

        existing = await self.repo.active_donation_for_listing(listing.id)
        if existing:
            logger.error("duplicate claim attempted", extra={"listing_id": listing.id,
                                                             "donation_id": existing["_id"]})
            raise DuplicateClaim(f"listing {listing.id} already has active donation {existing['_id']}")

        org, distance = None, None
        try:
            org, distance = await self.select_organization(listing, await self._lapsed_organizations(listing.id))
        except NoEligibleOrganization as exc:
            logger.warning("no eligible organization", extra={"listing_id": listing.id, "reason": str(exc)})

        donation = Donation(
            id=uuid.uuid4().hex,
            listing_id=listing.id,
            merchant_id=listing.merchant_id,
            organization_id=org.id if org else None,
            quantity=listing.quantity,
            status=DonationStatus.NOTIFIED,
            created_at=now,
            distance_m=distance,
            active_listing_id=listing.id,
        )
        try:
            saved = await self.repo.insert_donation(donation.to_doc())
        except DuplicateClaim:
            logger.error("duplicate claim rejected by store", extra={"listing_id": listing.id})
            raise
        donation = Donation.model_validate(saved)

        payload = {"donation_id": donation.id, "listing_id": listing.id, "merchant_id": listing.merchant_id,
                   "organization_id": donation.organization_id, "quantity": donation.quantity}
        if org:
            logger.info("donation matched", extra={**payload, "distance_m": round(distance, 1)})
            await emit_event(self.repo, DONATION_NOTIFIED, payload)
        else:
            await emit_event(self.repo, DONATION_UNMATCHED, payload)
        return donation

    async def assign_organization(self, donation_id: str) -> Donation:
        """Bind an unmatched notified donation. Raises NoEligibleOrganization if still nobody."""
        doc = await self.repo.get_donation(donation_id)
        if not doc:
            raise NotFound(f"donation {donation_id} not found")
        donation = Donation.model_validate(doc)
        if donation.status != DonationStatus.NOTIFIED or donation.organization_id is not None:
            return donation

        listing_doc = await self.repo.get_listing(donation.listing_id)
        if not listing_doc:
            raise NotFound(f"listing {donation.listing_id} not found")
        listing = Listing.model_validate(listing_doc)

        org, distance = await self.select_organization(listing, await self._lapsed_organizations(listing.id))
        saved = await self.repo.cas_donation(donation_id, donation.version,
                                             {"organization_id": org.id, "distance_m": distance})
        donation = Donation.model_validate(saved)
        logger.info("donation rematched", extra={"donation_id": donation_id, "organization_id": org.id})
        await emit_event(self.repo, DONATION_NOTIFIED, {
            "donation_id": donation_id, "listing_id": listing.id, "merchant_id": listing.merchant_id,
            "organization_id": org.id, "quantity": donation.quantity,
        })
        return donation

    async def rematch_sweep(self, now: Optional[datetime] = None) -> RematchReport:
        """
        Bind unmatched donations, and reopen a claim for food-day listings
        whose previous claim expired. A food-day listing whose donation
        already completed is moved to donated instead.
        """
        now = as_utc(now, self.tz)
        report = RematchReport()

        for doc in await self.repo.find_donations(status=[DonationStatus.NOTIFIED.value]):
            if doc.get("organization_id") is not None:
                continue
            try:
                await self.assign_organization(doc["_id"])
                report.assigned += 1
            except NoEligibleOrganization:
                report.unmatched += 1
            except StaleWrite:
                # confirmed by a partner in the meantime
                continue
            except Exception as exc:
                report.failed += 1
                logger.exception("rematch failed", extra={"donation_id": doc["_id"]})
                report.failures.append({"donation_id": doc["_id"], "error": str(exc)})

        for doc in await self.repo.find_listings(status=[ListingStatus.FOOD_DAY.value]):
            if await self.repo.active_donation_for_listing(doc["_id"]):
                continue
            try:
                if await self.repo.find_donations(listing_id=doc["_id"], status=[DonationStatus.COMPLETED.value]):
                    # handed over already; only the listing write was lost
                    await self.listings.mark_donated(doc["_id"])
                    report.repaired += 1
                    logger.warning("listing write repaired", extra={"listing_id": doc["_id"]})
                    continue
                donation = await self.match_listing(Listing.model_validate(doc), now=now)
            except DuplicateClaim:
                continue
            except Exception as exc:
                report.failed += 1
                logger.exception("reopening claim failed", extra={"listing_id": doc["_id"]})
                report.failures.append({"listing_id": doc["_id"], "error": str(exc)})
                continue
            report.reopened += 1
            if donation.organization_id is None:
                report.unmatched += 1

        return report
