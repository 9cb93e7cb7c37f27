# foodday/services/listings.py
import logging
import uuid
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from foodday.core.clock import as_utc, utcnow
from foodday.core.errors import InsufficientQuantity, InvalidTransition, NotFound, StaleWrite
from foodday.core.events import emit_event, LISTING_FOOD_DAY
from foodday.core.states import ListingStatus, can_transition_listing
from foodday.models.schemas import Donation, Listing, ListingCreate, MerchantStats

logger = logging.getLogger(__name__)

RESERVE_RETRIES = 3


class ListingService:
    """
    Listing status machine: available -> food_day -> donated, or
    available -> exhausted. Every write is a version check-and-set.
    """

    def __init__(self, repo, matcher, tz: str = "UTC"):
        self.repo = repo
        self.matcher = matcher
        self.tz = ZoneInfo(tz)

    async def get(self, listing_id: str) -> Listing:
        doc = await self.repo.get_listing(listing_id)
        if not doc:
            raise NotFound(f"listing {listing_id} not found")
        return Listing.model_validate(doc)

    async def create_listing(self, merchant_id: str, data: ListingCreate) -> Listing:
        now = utcnow()
        listing = Listing(
            id=uuid.uuid4().hex,
            merchant_id=merchant_id,
            status=ListingStatus.AVAILABLE,
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        saved = await self.repo.insert_listing(listing.to_doc())
        logger.info("listing created", extra={"listing_id": listing.id, "merchant_id": merchant_id,
                                              "quantity": listing.quantity})
        return Listing.model_validate(saved)

    async def list_for_merchant(self, merchant_id: str) -> list[Listing]:
        return [Listing.model_validate(d) for d in await self.repo.find_listings(merchant_id=merchant_id)]

    async def reserve(self, listing_id: str, quantity: int) -> Listing:
        """
        Take units off a listing for a consumer reservation. Loses to a
        concurrent food-day activation by being rejected, never silently.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        for _ in range(RESERVE_RETRIES):
            listing = await self.get(listing_id)
            if listing.status != ListingStatus.AVAILABLE:
                raise InvalidTransition("listing", listing_id, listing.status, "reserved",
                                        "listing is no longer for sale")
            if not listing.active:
                raise InvalidTransition("listing", listing_id, listing.status, "reserved",
                                        "listing is hidden by the merchant")
            if quantity > listing.quantity:
                raise InsufficientQuantity("listing", listing_id, listing.status, "reserved",
                                           f"only {listing.quantity} left")

            remaining = listing.quantity - quantity
            updates = {"quantity": remaining}
            if remaining == 0:
                updates["status"] = ListingStatus.EXHAUSTED.value
            try:
                saved = await self.repo.cas_listing(listing_id, listing.version, updates)
            except StaleWrite:
                logger.debug("reservation raced, re-reading", extra={"listing_id": listing_id})
                continue
            if remaining == 0:
                logger.info("listing exhausted", extra={"listing_id": listing_id})
            return Listing.model_validate(saved)

        raise StaleWrite(f"listing {listing_id} kept changing during reservation")

    async def set_active(self, listing_id: str, active: bool) -> Listing:
        listing = await self.get(listing_id)
        if listing.active == active:
            return listing
        saved = await self.repo.cas_listing(listing_id, listing.version, {"active": active})
        return Listing.model_validate(saved)

    async def activate_food_day(self, listing_id: str, now: Optional[datetime] = None,
                                trigger: str = "merchant") -> tuple[Listing, Donation]:
        """
        available -> food_day, then open a donation for the whole remaining
        quantity. Same guard for scheduler and merchant callers.
        """
        now = as_utc(now, self.tz)
        listing = await self.get(listing_id)

        if listing.status != ListingStatus.AVAILABLE:
            raise InvalidTransition("listing", listing_id, listing.status, ListingStatus.FOOD_DAY.value)
        if not listing.donation_eligible:
            raise InvalidTransition("listing", listing_id, listing.status, ListingStatus.FOOD_DAY.value,
                                    "listing is not donation eligible")
        if listing.quantity <= 0:
            raise InvalidTransition("listing", listing_id, listing.status, ListingStatus.FOOD_DAY.value,
                                    "nothing left to donate")
        if not can_transition_listing(listing.status, ListingStatus.FOOD_DAY, trigger):
            raise InvalidTransition("listing", listing_id, listing.status, ListingStatus.FOOD_DAY.value,
                                    f"trigger {trigger!r} cannot activate food day")

        saved = await self.repo.cas_listing(listing_id, listing.version, {
            "status": ListingStatus.FOOD_DAY.value,
            "food_day_at": now,
        })
        listing = Listing.model_validate(saved)
        logger.info("listing entered food day", extra={"listing_id": listing_id, "trigger": trigger,
                                                       "quantity": listing.quantity})
        await emit_event(self.repo, LISTING_FOOD_DAY, {
            "listing_id": listing_id, "merchant_id": listing.merchant_id, "trigger": trigger,
        })

        donation = await self.matcher.match_listing(listing, now=now)
        return listing, donation

    async def mark_donated(self, listing_id: str) -> Listing:
        """food_day -> donated; only called once the bound donation is completed."""
        for _ in range(RESERVE_RETRIES):
            listing = await self.get(listing_id)
            if listing.status == ListingStatus.DONATED:
                return listing
            if not can_transition_listing(listing.status, ListingStatus.DONATED, "donation"):
                raise InvalidTransition("listing", listing_id, listing.status, ListingStatus.DONATED.value)
            try:
                saved = await self.repo.cas_listing(listing_id, listing.version,
                                                    {"status": ListingStatus.DONATED.value})
            except StaleWrite:
                continue
            logger.info("listing donated", extra={"listing_id": listing_id})
            return Listing.model_validate(saved)
        raise StaleWrite(f"listing {listing_id} kept changing while finishing donation")

    async def merchant_stats(self, merchant_id: str) -> MerchantStats:
        listings = await self.list_for_merchant(merchant_id)
        by_status = {s.value: 0 for s in ListingStatus}
        for l in listings:
            by_status[l.status] += 1
        waste_prevented = sum(l.original_price * l.quantity for l in listings
                              if l.status == ListingStatus.DONATED)
        return MerchantStats(
            listings=len(listings),
            available=by_status[ListingStatus.AVAILABLE.value],
            food_day=by_status[ListingStatus.FOOD_DAY.value],
            donated=by_status[ListingStatus.DONATED.value],
            exhausted=by_status[ListingStatus.EXHAUSTED.value],
            waste_prevented_value=round(waste_prevented, 2),
        )
