# foodday/services/donations.py
import logging
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from foodday.core.clock import as_utc
from foodday.core.errors import InvalidTransition, NotFound, StaleWrite
from foodday.core.events import emit_event, DONATION_CONFIRMED, DONATION_COMPLETED, DONATION_EXPIRED
from foodday.core.states import DonationStatus, can_transition_donation
from foodday.models.schemas import Donation, Listing, Organization
from foodday.services.geo import distance_or_none

logger = logging.getLogger(__name__)

CONFIRMED_STATES = (DonationStatus.CONFIRMED, DonationStatus.COMPLETED)


def attestation_text(donation: Donation, listing: Listing, organization_id: str, at: datetime) -> str:
    """Legal confirmation shown on the donation receipt; frozen at confirmation."""
    what = listing.name
    if listing.food_type:
        what = f"{what} ({listing.food_type})"
    return (
        f"Donation of {donation.quantity} unit(s) of {what} from merchant {donation.merchant_id} "
        f"to organization {organization_id}, confirmed at {at.isoformat()}. "
        "The food was donated free of charge, in good faith, and was fit for consumption "
        "at the time of transfer."
    )


class DonationService:
    """Donation lifecycle: notified -> confirmed -> completed, notified -> expired."""

    def __init__(self, repo, listings, grace: Optional[timedelta] = None, tz: str = "UTC"):
        self.repo = repo
        self.listings = listings
        self.grace = grace
        self.tz = ZoneInfo(tz)

    async def get(self, donation_id: str) -> Donation:
        doc = await self.repo.get_donation(donation_id)
        if not doc:
            raise NotFound(f"donation {donation_id} not found")
        return Donation.model_validate(doc)

    async def list_for_organization(self, organization_id: str) -> list[Donation]:
        """Donations bound to the organization plus open, unmatched ones."""
        docs = await self.repo.find_donations(organization_id=organization_id, include_unbound=True)
        out = []
        for d in map(Donation.model_validate, docs):
            if d.organization_id == organization_id or d.status == DonationStatus.NOTIFIED:
                out.append(d)
        return out

    async def confirm(self, donation_id: str, organization_id: Optional[str] = None,
                      now: Optional[datetime] = None, role: str = "ong") -> Donation:
        """
        Idempotent: confirming a confirmed (or completed) donation returns it
        untouched, so the timestamp and attestation never change. An unmatched
        donation is claimed by the confirming organization.
        """
        now = as_utc(now, self.tz)
        donation = await self.get(donation_id)
        self._check_role(donation, DonationStatus.NOTIFIED, DonationStatus.CONFIRMED, role)

        if donation.status in CONFIRMED_STATES:
            self._check_owner(donation, organization_id)
            return donation
        if not can_transition_donation(donation.status, DonationStatus.CONFIRMED, [role]):
            raise InvalidTransition("donation", donation_id, donation.status, DonationStatus.CONFIRMED.value)
        self._check_owner(donation, organization_id)

        owner = donation.organization_id or organization_id
        if owner is None:
            raise InvalidTransition("donation", donation_id, donation.status, DonationStatus.CONFIRMED.value,
                                    "no organization to confirm for")

        listing = await self.listings.get(donation.listing_id)
        updates = {
            "status": DonationStatus.CONFIRMED.value,
            "confirmed_at": now,
            "organization_id": owner,
            "legal_confirmation_text": attestation_text(donation, listing, owner, now),
        }
        if donation.organization_id is None:
            org_doc = await self.repo.get_organization(owner)
            org = Organization.model_validate(org_doc) if org_doc else None
            updates["distance_m"] = distance_or_none(listing.location, org.location if org else None)

        try:
            saved = await self.repo.cas_donation(donation_id, donation.version, updates)
        except StaleWrite:
            # double click or two organizations racing for an unmatched claim
            fresh = await self.get(donation_id)
            if fresh.status in CONFIRMED_STATES:
                self._check_owner(fresh, organization_id)
                return fresh
            raise

        confirmed = Donation.model_validate(saved)
        logger.info("donation confirmed", extra={"donation_id": donation_id, "organization_id": owner})
        await emit_event(self.repo, DONATION_CONFIRMED, {
            "donation_id": donation_id, "listing_id": confirmed.listing_id,
            "merchant_id": confirmed.merchant_id, "organization_id": owner,
        })
        return confirmed

    async def complete(self, donation_id: str, now: Optional[datetime] = None,
                       role: str = "merchant") -> Donation:
        """
        confirmed -> completed, then the listing goes food_day -> donated.
        The listing write comes last; a repeat call finishes it if it was lost.
        """
        now = as_utc(now, self.tz)
        donation = await self.get(donation_id)
        self._check_role(donation, DonationStatus.CONFIRMED, DonationStatus.COMPLETED, role)

        if donation.status == DonationStatus.COMPLETED:
            await self.listings.mark_donated(donation.listing_id)
            return donation
        if not can_transition_donation(donation.status, DonationStatus.COMPLETED, [role]):
            raise InvalidTransition("donation", donation_id, donation.status, DonationStatus.COMPLETED.value)

        try:
            saved = await self.repo.cas_donation(
                donation_id, donation.version,
                {"status": DonationStatus.COMPLETED.value, "completed_at": now},
                unset=["active_listing_id"],
            )
        except StaleWrite:
            fresh = await self.get(donation_id)
            if fresh.status != DonationStatus.COMPLETED:
                raise
            saved = fresh.to_doc()

        completed = Donation.model_validate(saved)
        await self.listings.mark_donated(completed.listing_id)
        logger.info("donation completed", extra={"donation_id": donation_id, "listing_id": completed.listing_id})
        await emit_event(self.repo, DONATION_COMPLETED, {
            "donation_id": donation_id, "listing_id": completed.listing_id,
            "organization_id": completed.organization_id,
        })
        return completed

    async def expire_stale(self, now: Optional[datetime] = None) -> list[Donation]:
        """Expire notified claims older than the grace window."""
        if self.grace is None:
            return []
        now = as_utc(now, self.tz)
        deadline = now - self.grace
        expired = []
        for doc in await self.repo.find_donations(status=[DonationStatus.NOTIFIED.value]):
            donation = Donation.model_validate(doc)
            if donation.created_at > deadline:
                continue
            if not can_transition_donation(donation.status, DonationStatus.EXPIRED, ["system"]):
                continue
            try:
                saved = await self.repo.cas_donation(
                    donation.id, donation.version,
                    {"status": DonationStatus.EXPIRED.value, "expired_at": now},
                    unset=["active_listing_id"],
                )
            except StaleWrite:
                # confirmed in the meantime
                continue
            donation = Donation.model_validate(saved)
            expired.append(donation)
            logger.info("donation expired", extra={"donation_id": donation.id, "listing_id": donation.listing_id})
            await emit_event(self.repo, DONATION_EXPIRED, {
                "donation_id": donation.id, "listing_id": donation.listing_id,
                "organization_id": donation.organization_id,
            })
        return expired

    @staticmethod
    def _check_role(donation: Donation, src: DonationStatus, dst: DonationStatus, role: str):
        if not can_transition_donation(src, dst, [role]):
            raise InvalidTransition("donation", donation.id, donation.status, dst.value,
                                    f"role {role!r} cannot move a donation to {dst.value}")

    @staticmethod
    def _check_owner(donation: Donation, organization_id: Optional[str]):
        if organization_id is None or donation.organization_id is None:
            return
        if donation.organization_id != organization_id:
            raise InvalidTransition("donation", donation.id, donation.status, DonationStatus.CONFIRMED.value,
                                    "donation is assigned to another organization")
