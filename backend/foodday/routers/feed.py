from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from foodday.core.security import require_roles
from foodday.deps import Engine, get_engine
from foodday.models.schemas import FeedFilters, LatLng, Organization, RankedListing
from foodday.services.ranking import partner_feed, query_feed

router = APIRouter(prefix="/api/feed", tags=["feed"])


def _point(lat: Optional[float], lng: Optional[float]) -> Optional[LatLng]:
    if lat is None or lng is None:
        return None
    return LatLng(lat=lat, lng=lng)


@router.get("", response_model=list[RankedListing])
async def get_feed(
    lat: Optional[float] = Query(None),
    lng: Optional[float] = Query(None),
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    surprise_bag: Optional[bool] = Query(None),
    engine: Engine = Depends(get_engine),
):
    filters = FeedFilters(category=category, search=search, surprise_bag=surprise_bag)
    return await query_feed(engine.repo, _point(lat, lng), filters)

@router.get("/food-day", response_model=list[RankedListing])
async def get_food_day_feed(
    lat: Optional[float] = Query(None),
    lng: Optional[float] = Query(None),
    actor=Depends(require_roles(["ong"])),
    engine: Engine = Depends(get_engine),
):
    origin = _point(lat, lng)
    if origin is None and actor["role"] == "ong":
        doc = await engine.repo.get_organization(actor["id"])
        if doc is None:
            raise HTTPException(404, "Organization not registered")
        origin = Organization.model_validate(doc).location
    return await partner_feed(engine.repo, origin)
