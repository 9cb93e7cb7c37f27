from datetime import datetime, time
from typing import Annotated, Optional, List, Literal

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from foodday.core.states import ListingStatus, DonationStatus

Category = Literal["Bakery", "Produce", "Meat", "Dairy", "Surprise Bag", "Other"]
Role = Literal["merchant", "ong", "consumer", "admin"]

SURPRISE_BAG_NAME = "Surprise Bag"

# --------------------------
# Shared Submodels
# --------------------------
class LatLng(BaseModel):
    lat: float
    lng: float


def _parse_cutoff(v):
    if v is None or v == "":
        return None
    if isinstance(v, time):
        return v.strftime("%H:%M")
    try:
        t = datetime.strptime(str(v)[:5], "%H:%M").time()
    except ValueError:
        raise ValueError("cutoff_time must be HH:MM")
    return t.strftime("%H:%M")


CutoffTime = Annotated[Optional[str], BeforeValidator(_parse_cutoff)]


def _to_doc(model: BaseModel) -> dict:
    doc = model.model_dump()
    doc["_id"] = doc.pop("id")
    return doc


# --------------------------
# Listings
# --------------------------
class ListingCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Category = "Other"
    is_surprise_bag: bool = False
    original_price: float = Field(0, ge=0)
    promo_price: float = Field(0, ge=0)
    quantity: int = Field(1, gt=0)
    food_type: Optional[str] = None
    donation_eligible: bool = True
    cutoff_time: CutoffTime = Field(None, description="HH:MM, merchant local time")
    pickup_time: Optional[str] = None
    location: Optional[LatLng] = None
    store_name: Optional[str] = None

    @model_validator(mode="after")
    def _surprise_bag_defaults(self):
        if self.is_surprise_bag:
            self.name = self.name or SURPRISE_BAG_NAME
            self.category = "Surprise Bag"
        if not self.name:
            raise ValueError("name is required")
        return self


class Listing(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    merchant_id: str
    name: str
    description: Optional[str] = None
    category: str = "Other"
    is_surprise_bag: bool = False
    original_price: float = 0
    promo_price: float = 0
    quantity: int = Field(ge=0)
    food_type: Optional[str] = None
    status: ListingStatus = ListingStatus.AVAILABLE
    donation_eligible: bool = True
    cutoff_time: CutoffTime = None
    pickup_time: Optional[str] = None
    location: Optional[LatLng] = None
    store_name: Optional[str] = None
    active: bool = True
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    food_day_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _zero_quantity_is_terminal(self):
        if self.quantity == 0 and self.status not in (ListingStatus.EXHAUSTED, ListingStatus.DONATED):
            raise ValueError("listing with no quantity must be exhausted or donated")
        return self

    def cutoff(self) -> Optional[time]:
        if not self.cutoff_time:
            return None
        return datetime.strptime(self.cutoff_time, "%H:%M").time()

    def to_doc(self) -> dict:
        return _to_doc(self)


# --------------------------
# Organizations
# --------------------------
class Organization(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    name: str
    location: Optional[LatLng] = None
    active: bool = True

    def to_doc(self) -> dict:
        return _to_doc(self)


# --------------------------
# Donations
# --------------------------
class Donation(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    listing_id: str
    merchant_id: str
    organization_id: Optional[str] = None
    quantity: int = Field(gt=0)
    status: DonationStatus = DonationStatus.NOTIFIED
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    legal_confirmation_text: Optional[str] = None
    distance_m: Optional[float] = None
    version: int = 1
    # present only while the claim is active; backs the uniqueness index
    active_listing_id: Optional[str] = None

    @model_validator(mode="after")
    def _confirmed_at_matches_status(self):
        confirmed = self.status in (DonationStatus.CONFIRMED, DonationStatus.COMPLETED)
        if confirmed != (self.confirmed_at is not None):
            raise ValueError("confirmed_at is set only for confirmed or completed donations")
        return self

    def to_doc(self) -> dict:
        return _to_doc(self)


# --------------------------
# Requests / responses
# --------------------------
class ReserveIn(BaseModel):
    quantity: int = Field(1, gt=0)

class ActiveIn(BaseModel):
    active: bool

class FeedFilters(BaseModel):
    category: Optional[str] = None
    search: Optional[str] = None
    surprise_bag: Optional[bool] = None

class RankedListing(BaseModel):
    listing: Listing
    distance_m: Optional[float] = None
    distance_label: str = ""

class SweepReport(BaseModel):
    evaluated: int = 0
    activated: int = 0
    skipped: int = 0
    failed: int = 0
    failures: List[dict] = []

class RematchReport(BaseModel):
    assigned: int = 0
    reopened: int = 0
    repaired: int = 0
    unmatched: int = 0
    failed: int = 0
    failures: List[dict] = []

class MatchOut(BaseModel):
    donation: Donation
    matched: bool

class MerchantStats(BaseModel):
    listings: int
    available: int
    food_day: int
    donated: int
    exhausted: int
    waste_prevented_value: float
