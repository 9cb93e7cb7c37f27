import asyncio
from datetime import datetime, timezone

import pytest

from foodday.core.states import DonationStatus, ListingStatus

from conftest import MERCHANT_LOC, local, north_of

pytestmark = pytest.mark.anyio


async def test_cutoff_passed_moves_listing_to_food_day(engine, repo, add_org, make_listing):
    await add_org("ong-1", location=north_of(MERCHANT_LOC, 2_000))
    listing = await make_listing(quantity=5, cutoff_time="20:00")

    report = await engine.scheduler.run_cutoff_sweep(local(20, 1))

    assert report.activated == 1
    assert (await engine.listings.get(listing.id)).status == ListingStatus.FOOD_DAY
    donations = await repo.find_donations(listing_id=listing.id)
    assert len(donations) == 1
    assert donations[0]["status"] == DonationStatus.NOTIFIED
    assert donations[0]["quantity"] == 5


async def test_before_cutoff_nothing_happens(engine, repo, make_listing):
    listing = await make_listing(cutoff_time="20:00")

    report = await engine.scheduler.run_cutoff_sweep(local(19, 59))

    assert report.evaluated == 0
    assert (await engine.listings.get(listing.id)).status == ListingStatus.AVAILABLE


async def test_utc_now_is_compared_in_local_time(engine, make_listing):
    listing = await make_listing(cutoff_time="20:00")
    # 23:01 UTC is 20:01 in Sao Paulo
    await engine.scheduler.run_cutoff_sweep(datetime(2026, 10, 19, 23, 1, tzinfo=timezone.utc))
    assert (await engine.listings.get(listing.id)).status == ListingStatus.FOOD_DAY


async def test_sold_out_listing_is_skipped_entirely(engine, repo, make_listing):
    listing = await make_listing(quantity=2, cutoff_time="20:00")
    await engine.listings.reserve(listing.id, 2)

    report = await engine.scheduler.run_cutoff_sweep(local(20, 1))

    assert report.evaluated == 0
    assert (await engine.listings.get(listing.id)).status == ListingStatus.EXHAUSTED
    assert await repo.find_donations(listing_id=listing.id) == []


async def test_listings_without_cutoff_or_eligibility_are_left_alone(engine, make_listing):
    no_cutoff = await make_listing(cutoff_time=None)
    not_eligible = await make_listing(donation_eligible=False)

    report = await engine.scheduler.run_cutoff_sweep(local(23, 0))

    assert report.evaluated == 0
    assert (await engine.listings.get(no_cutoff.id)).status == ListingStatus.AVAILABLE
    assert (await engine.listings.get(not_eligible.id)).status == ListingStatus.AVAILABLE


async def test_sweep_is_idempotent(engine, repo, make_listing):
    listing = await make_listing()
    await engine.scheduler.run_cutoff_sweep(local(20, 1))
    report = await engine.scheduler.run_cutoff_sweep(local(20, 2))

    assert report.evaluated == 0 and report.failed == 0
    assert len(await repo.find_donations(listing_id=listing.id)) == 1


async def test_manual_activation_racing_the_sweep(engine, repo, make_listing):
    listing = await make_listing()
    results = await asyncio.gather(
        engine.scheduler.run_cutoff_sweep(local(20, 1)),
        engine.listings.activate_food_day(listing.id),
        return_exceptions=True,
    )
    assert (await engine.listings.get(listing.id)).status == ListingStatus.FOOD_DAY
    assert len(await repo.find_donations(listing_id=listing.id)) == 1
    report = results[0]
    assert report.activated + report.skipped == 1


async def test_one_failing_listing_does_not_abort_the_sweep(engine, make_listing, monkeypatch):
    bad = await make_listing(name="bad")
    good = await make_listing(name="good")
    original = engine.listings.activate_food_day

    async def flaky(listing_id, **kw):
        if listing_id == bad.id:
            raise RuntimeError("matching backend down")
        return await original(listing_id, **kw)

    monkeypatch.setattr(engine.listings, "activate_food_day", flaky)

    report = await engine.scheduler.run_cutoff_sweep(local(20, 1))

    assert report.failed == 1
    assert report.activated == 1
    assert report.failures[0]["listing_id"] == bad.id
    assert (await engine.listings.get(good.id)).status == ListingStatus.FOOD_DAY


async def test_background_loop_runs_and_stops_between_passes(engine, make_listing):
    listing = await make_listing(cutoff_time="00:00")

    engine.scheduler.start()
    for _ in range(100):
        if (await engine.listings.get(listing.id)).status == ListingStatus.FOOD_DAY:
            break
        await asyncio.sleep(0.01)
    await engine.scheduler.stop()

    assert (await engine.listings.get(listing.id)).status == ListingStatus.FOOD_DAY
    assert engine.scheduler._task is None


async def test_naive_now_is_local_time_and_later_passes_keep_working(engine, repo, add_org, make_listing):
    await add_org("ong-1", location=north_of(MERCHANT_LOC, 2_000))
    listing = await make_listing(cutoff_time="20:00")

    report = await engine.scheduler.run_cutoff_sweep(datetime(2026, 10, 19, 20, 1))
    assert report.activated == 1
    stored = await engine.listings.get(listing.id)
    assert stored.food_day_at.tzinfo is not None
    assert stored.food_day_at == local(20, 1)
    donation = (await repo.find_donations(listing_id=listing.id))[0]
    assert donation["created_at"].tzinfo is not None

    # 03:00 UTC is four hours after activation, past the grace window
    result = await engine.scheduler.run_pass(datetime(2026, 10, 20, 3, 0, tzinfo=timezone.utc))

    assert result["expired"] == 1
    assert result["rematch"].reopened == 1
    assert result["rematch"].failed == 0
