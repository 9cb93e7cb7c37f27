# foodday/services/scheduler.py
import asyncio
import logging
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from foodday.core.clock import as_utc
from foodday.core.errors import InvalidTransition, StaleWrite
from foodday.core.states import ListingStatus
from foodday.models.schemas import Listing, SweepReport

logger = logging.getLogger(__name__)


class CutoffScheduler:
    """
    Periodic sweep that moves unsold, donation-eligible listings to food day
    once their cutoff time-of-day has passed, then expires stale claims and
    rematches open ones. Each listing transition is atomic on its own, so the
    loop can stop between passes at any time.
    """

    def __init__(self, listings, donations, matcher, interval_s: float = 60.0, tz: str = "UTC"):
        self.listings = listings
        self.donations = donations
        self.matcher = matcher
        self.interval_s = interval_s
        self.tz = ZoneInfo(tz)
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def _local(self, now: datetime) -> datetime:
        return as_utc(now, self.tz).astimezone(self.tz)

    def is_due(self, listing: Listing, now: datetime) -> bool:
        cutoff = listing.cutoff()
        return (
            listing.status == ListingStatus.AVAILABLE
            and listing.donation_eligible
            and listing.quantity > 0
            and cutoff is not None
            and self._local(now).time() >= cutoff
        )

    async def run_cutoff_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        now = as_utc(now, self.tz)
        report = SweepReport()
        docs = await self.listings.repo.find_listings(status=[ListingStatus.AVAILABLE.value])

        for doc in docs:
            listing = Listing.model_validate(doc)
            if not self.is_due(listing, now):
                continue
            report.evaluated += 1
            try:
                await self.listings.activate_food_day(listing.id, now=now, trigger="cutoff")
                report.activated += 1
            except (StaleWrite, InvalidTransition) as exc:
                # a reservation or the merchant got there first
                report.skipped += 1
                logger.info("cutoff skipped", extra={"listing_id": listing.id, "reason": str(exc)})
            except Exception as exc:
                report.failed += 1
                report.failures.append({"listing_id": listing.id, "error": str(exc)})
                logger.exception("cutoff activation failed", extra={"listing_id": listing.id})

        logger.info("cutoff sweep finished", extra=report.model_dump(exclude={"failures"}))
        return report

    async def run_pass(self, now: Optional[datetime] = None) -> dict:
        now = as_utc(now, self.tz)
        cutoff = await self.run_cutoff_sweep(now)
        expired = await self.donations.expire_stale(now)
        rematch = await self.matcher.rematch_sweep(now)
        return {"cutoff": cutoff, "expired": len(expired), "rematch": rematch}

    async def run_forever(self):
        logger.info("cutoff scheduler started", extra={"interval_s": self.interval_s})
        while not self._stop.is_set():
            try:
                await self.run_pass()
            except Exception:
                logger.exception("scheduler pass failed")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                pass
        logger.info("cutoff scheduler stopped")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def stop(self):
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
