from fastapi import APIRouter, Depends

from foodday.core.security import ensure_owner, get_current_actor, require_roles
from foodday.deps import Engine, get_engine
from foodday.models.schemas import ActiveIn, Listing, ListingCreate, MatchOut, MerchantStats, ReserveIn

router = APIRouter(prefix="/api/listings", tags=["listings"])


@router.post("", response_model=Listing, status_code=201)
async def create_listing(data: ListingCreate, actor=Depends(require_roles(["merchant"])),
                         engine: Engine = Depends(get_engine)):
    return await engine.listings.create_listing(actor["id"], data)

@router.get("/mine", response_model=list[Listing])
async def my_listings(actor=Depends(require_roles(["merchant"])), engine: Engine = Depends(get_engine)):
    return await engine.listings.list_for_merchant(actor["id"])

@router.get("/stats", response_model=MerchantStats)
async def my_stats(actor=Depends(require_roles(["merchant"])), engine: Engine = Depends(get_engine)):
    return await engine.listings.merchant_stats(actor["id"])

@router.get("/{listing_id}", response_model=Listing)
async def get_listing(listing_id: str, actor=Depends(get_current_actor), engine: Engine = Depends(get_engine)):
    return await engine.listings.get(listing_id)

@router.post("/{listing_id}/reserve", response_model=Listing)
async def reserve(listing_id: str, data: ReserveIn, actor=Depends(require_roles(["consumer"])),
                  engine: Engine = Depends(get_engine)):
    return await engine.listings.reserve(listing_id, data.quantity)

@router.patch("/{listing_id}/active", response_model=Listing)
async def set_active(listing_id: str, data: ActiveIn, actor=Depends(require_roles(["merchant"])),
                     engine: Engine = Depends(get_engine)):
    listing = await engine.listings.get(listing_id)
    ensure_owner(listing.merchant_id, actor)
    return await engine.listings.set_active(listing_id, data.active)

@router.post("/{listing_id}/food-day", response_model=MatchOut)
async def activate_food_day(listing_id: str, actor=Depends(require_roles(["merchant"])),
                            engine: Engine = Depends(get_engine)):
    listing = await engine.listings.get(listing_id)
    ensure_owner(listing.merchant_id, actor)
    _, donation = await engine.listings.activate_food_day(listing_id, trigger="merchant")
    return MatchOut(donation=donation, matched=donation.organization_id is not None)
