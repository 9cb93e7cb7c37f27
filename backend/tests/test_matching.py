import asyncio
from datetime import timedelta

import pytest

from foodday.core.errors import DuplicateClaim, NoEligibleOrganization
from foodday.core.events import DONATION_NOTIFIED, DONATION_UNMATCHED
from foodday.core.states import DonationStatus, ListingStatus

from conftest import MERCHANT_LOC, local, north_of

pytestmark = pytest.mark.anyio


async def test_nearest_organization_wins(engine, add_org, make_listing):
    await add_org("ong-far", location=north_of(MERCHANT_LOC, 5_000))
    await add_org("ong-near", location=north_of(MERCHANT_LOC, 2_000))
    listing = await make_listing()

    _, donation = await engine.listings.activate_food_day(listing.id)

    assert donation.organization_id == "ong-near"
    assert donation.distance_m == pytest.approx(2_000, rel=0.01)


async def test_ties_go_to_lowest_organization_id(engine, add_org, make_listing):
    spot = north_of(MERCHANT_LOC, 1_000)
    await add_org("ong-b", location=spot)
    await add_org("ong-a", location=spot)
    listing = await make_listing()

    _, donation = await engine.listings.activate_food_day(listing.id)
    assert donation.organization_id == "ong-a"


async def test_inactive_unlocated_and_distant_organizations_are_ignored(engine, repo, add_org, make_listing):
    await add_org("ong-inactive", location=north_of(MERCHANT_LOC, 500), active=False)
    await add_org("ong-nowhere", location=None)
    await add_org("ong-distant", location=north_of(MERCHANT_LOC, 15_000))
    listing = await make_listing()

    _, donation = await engine.listings.activate_food_day(listing.id)

    assert donation.organization_id is None
    assert donation.status == DonationStatus.NOTIFIED
    assert len(await repo.list_events(DONATION_UNMATCHED)) == 1
    assert await repo.list_events(DONATION_NOTIFIED) == []


async def test_unknown_merchant_location_leaves_donation_unbound(engine, add_org, make_listing):
    await add_org("ong-1", location=north_of(MERCHANT_LOC, 500))
    listing = await make_listing(location=None)

    _, donation = await engine.listings.activate_food_day(listing.id)
    assert donation.organization_id is None


async def test_registry_timeout_is_treated_as_no_eligible_organization(engine, repo, add_org, make_listing, monkeypatch):
    await add_org("ong-1", location=north_of(MERCHANT_LOC, 500))
    listing = await make_listing()

    async def slow_registry(active_only=True):
        await asyncio.sleep(5)
        return []

    monkeypatch.setattr(repo, "list_organizations", slow_registry)
    engine.matcher.registry_timeout_s = 0.01

    _, donation = await engine.listings.activate_food_day(listing.id)
    assert donation.organization_id is None
    assert donation.status == DonationStatus.NOTIFIED


async def test_matching_never_changes_listing_quantity(engine, add_org, make_listing):
    await add_org("ong-1", location=north_of(MERCHANT_LOC, 500))
    listing = await make_listing(quantity=7)
    after, donation = await engine.listings.activate_food_day(listing.id)
    assert after.quantity == 7
    assert donation.quantity == 7
    assert (await engine.listings.get(listing.id)).quantity == 7


async def test_second_match_for_same_listing_is_a_duplicate_claim(engine, make_listing):
    listing = await make_listing()
    after, _ = await engine.listings.activate_food_day(listing.id)
    with pytest.raises(DuplicateClaim):
        await engine.matcher.match_listing(after)


async def test_assign_organization_raises_when_still_nobody(engine, make_listing):
    listing = await make_listing()
    _, donation = await engine.listings.activate_food_day(listing.id)
    with pytest.raises(NoEligibleOrganization):
        await engine.matcher.assign_organization(donation.id)


async def test_rematch_binds_unmatched_donation(engine, add_org, make_listing):
    listing = await make_listing()
    _, donation = await engine.listings.activate_food_day(listing.id)

    report = await engine.matcher.rematch_sweep()
    assert report.unmatched == 1 and report.assigned == 0

    await add_org("ong-new", location=north_of(MERCHANT_LOC, 4_000))
    report = await engine.matcher.rematch_sweep()

    assert report.assigned == 1
    assert (await engine.donations.get(donation.id)).organization_id == "ong-new"


async def test_rematch_reopens_claim_after_expiry_skipping_lapsed_organization(engine, repo, add_org, make_listing):
    await add_org("ong-slow", location=north_of(MERCHANT_LOC, 1_000))
    await add_org("ong-next", location=north_of(MERCHANT_LOC, 6_000))
    listing = await make_listing()
    _, first = await engine.listings.activate_food_day(listing.id, now=local(20, 1))
    assert first.organization_id == "ong-slow"

    await engine.donations.expire_stale(local(20, 1) + timedelta(hours=3))
    report = await engine.matcher.rematch_sweep(now=local(23, 5))

    assert report.reopened == 1
    active = await repo.active_donation_for_listing(listing.id)
    assert active["organization_id"] == "ong-next"
    assert active["_id"] != first.id
    assert len(await repo.find_donations(listing_id=listing.id)) == 2


async def test_rematch_leaves_active_claims_alone(engine, repo, add_org, make_listing):
    await add_org("ong-1", location=north_of(MERCHANT_LOC, 1_000))
    listing = await make_listing()
    await engine.listings.activate_food_day(listing.id)

    report = await engine.matcher.rematch_sweep()
    assert report.reopened == 0 and report.assigned == 0
    assert len(await repo.find_donations(listing_id=listing.id)) == 1


async def test_rematch_finishes_listing_instead_of_reopening_completed_donation(engine, repo, add_org,
                                                                                make_listing, monkeypatch):
    await add_org("ong-1", location=north_of(MERCHANT_LOC, 1_000))
    listing = await make_listing()
    _, donation = await engine.listings.activate_food_day(listing.id)
    await engine.donations.confirm(donation.id, "ong-1")

    async def lost_write(listing_id):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(engine.listings, "mark_donated", lost_write)
    with pytest.raises(RuntimeError):
        await engine.donations.complete(donation.id)
    monkeypatch.undo()
    assert (await engine.listings.get(listing.id)).status == ListingStatus.FOOD_DAY

    report = await engine.matcher.rematch_sweep()

    assert report.repaired == 1
    assert report.reopened == 0
    assert (await engine.listings.get(listing.id)).status == ListingStatus.DONATED
    donations = await repo.find_donations(listing_id=listing.id)
    assert [d["status"] for d in donations] == [DonationStatus.COMPLETED.value]
