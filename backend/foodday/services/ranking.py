# foodday/services/ranking.py
from typing import Callable, Iterable, Optional, Sequence, TypeVar

from foodday.core.states import ListingStatus
from foodday.models.schemas import FeedFilters, LatLng, Listing, RankedListing
from foodday.services.geo import distance_meters, format_distance

T = TypeVar("T")


def _location(item) -> Optional[LatLng]:
    return getattr(item, "location", None)


def rank(listings: Iterable[T], consumer_location: Optional[LatLng],
         location_of: Callable[[T], Optional[LatLng]] = _location) -> list[T]:
    """
    Nearest first. Items without a known location go last in input order;
    ties keep input order. Unknown consumer location leaves the order alone.
    """
    items = list(listings)
    if consumer_location is None:
        return items
    located, unknown = [], []
    for item in items:
        loc = location_of(item)
        if loc is None:
            unknown.append(item)
        else:
            located.append((distance_meters(consumer_location, loc), item))
    located.sort(key=lambda p: p[0])
    return [item for _, item in located] + unknown


def with_distances(listings: Sequence[Listing], origin: Optional[LatLng]) -> list[RankedListing]:
    out = []
    for l in rank(listings, origin):
        d = distance_meters(origin, l.location) if origin is not None and l.location is not None else None
        out.append(RankedListing(listing=l, distance_m=d, distance_label=format_distance(d)))
    return out


def matches_filters(listing: Listing, filters: FeedFilters) -> bool:
    if filters.category and listing.category != filters.category:
        return False
    if filters.surprise_bag is not None and listing.is_surprise_bag != filters.surprise_bag:
        return False
    if filters.search:
        q = filters.search.lower()
        haystack = [listing.name.lower(), (listing.store_name or "").lower()]
        if not any(q in h for h in haystack):
            return False
    return True


async def query_feed(repo, consumer_location: Optional[LatLng],
                     filters: Optional[FeedFilters] = None) -> list[RankedListing]:
    """Consumer feed: visible, for-sale listings, nearest first."""
    filters = filters or FeedFilters()
    docs = await repo.find_listings(status=[ListingStatus.AVAILABLE.value])
    listings = [
        l for l in map(Listing.model_validate, docs)
        if l.active and l.quantity > 0 and matches_filters(l, filters)
    ]
    return with_distances(listings, consumer_location)


async def partner_feed(repo, organization_location: Optional[LatLng]) -> list[RankedListing]:
    """Food-day listings for a receiving organization, nearest first."""
    docs = await repo.find_listings(status=[ListingStatus.FOOD_DAY.value])
    listings = [l for l in map(Listing.model_validate, docs) if l.quantity > 0]
    return with_distances(listings, organization_location)
