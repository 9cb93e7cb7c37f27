# foodday/repos/inmemory.py
import copy
import uuid
from datetime import datetime, timezone
from typing import Optional, List, Dict, Iterable

from foodday.core.errors import DuplicateClaim, NotFound, StaleWrite

def _id() -> str:
    return uuid.uuid4().hex

def _utcnow():
    return datetime.now(timezone.utc)

class InMemoryRepo:
    """
    Arena of records keyed by id. Every check-and-set below runs without an
    await between the check and the write, so it is atomic on the event loop.
    """

    def __init__(self):
        self.listings: Dict[str, dict] = {}
        self.donations: Dict[str, dict] = {}
        self.organizations: Dict[str, dict] = {}
        self.events: List[dict] = []
        # listing_id -> donation_id for notified/confirmed claims
        self.active_claims: Dict[str, str] = {}

    async def ensure_indexes(self):
        return None

    # Listings
    async def insert_listing(self, doc: dict) -> dict:
        doc = dict(doc)
        doc.setdefault("_id", _id())
        doc.setdefault("version", 1)
        doc.setdefault("created_at", _utcnow())
        self.listings[doc["_id"]] = doc
        return copy.deepcopy(doc)

    async def get_listing(self, listing_id: str) -> Optional[dict]:
        doc = self.listings.get(listing_id)
        return copy.deepcopy(doc) if doc else None

    async def find_listings(self, status: Optional[Iterable[str]] = None,
                            merchant_id: Optional[str] = None) -> List[dict]:
        statuses = set(status) if status is not None else None
        out = [
            d for d in self.listings.values()
            if (statuses is None or d["status"] in statuses)
            and (merchant_id is None or d["merchant_id"] == merchant_id)
        ]
        out.sort(key=lambda d: d["created_at"], reverse=True)
        return copy.deepcopy(out)

    async def cas_listing(self, listing_id: str, expected_version: int, updates: dict) -> dict:
        doc = self.listings.get(listing_id)
        if doc is None:
            raise NotFound(f"listing {listing_id} not found")
        if doc["version"] != expected_version:
            raise StaleWrite(f"listing {listing_id} changed (version {doc['version']} != {expected_version})")
        doc.update(updates)
        doc["version"] = expected_version + 1
        doc["updated_at"] = _utcnow()
        return copy.deepcopy(doc)

    # Donations
    async def insert_donation(self, doc: dict) -> dict:
        doc = dict(doc)
        doc.setdefault("_id", _id())
        doc.setdefault("version", 1)
        listing_id = doc.get("active_listing_id")
        if listing_id is not None:
            if listing_id in self.active_claims:
                raise DuplicateClaim(
                    f"listing {listing_id} already has active donation {self.active_claims[listing_id]}"
                )
            self.active_claims[listing_id] = doc["_id"]
        self.donations[doc["_id"]] = doc
        return copy.deepcopy(doc)

    async def get_donation(self, donation_id: str) -> Optional[dict]:
        doc = self.donations.get(donation_id)
        return copy.deepcopy(doc) if doc else None

    async def find_donations(self, listing_id: Optional[str] = None,
                             status: Optional[Iterable[str]] = None,
                             organization_id: Optional[str] = None,
                             include_unbound: bool = False) -> List[dict]:
        statuses = set(status) if status is not None else None
        out = []
        for d in self.donations.values():
            if listing_id is not None and d["listing_id"] != listing_id:
                continue
            if statuses is not None and d["status"] not in statuses:
                continue
            if organization_id is not None:
                owner = d.get("organization_id")
                if owner != organization_id and not (include_unbound and owner is None):
                    continue
            out.append(d)
        out.sort(key=lambda d: d["created_at"], reverse=True)
        return copy.deepcopy(out)

    async def active_donation_for_listing(self, listing_id: str) -> Optional[dict]:
        did = self.active_claims.get(listing_id)
        return await self.get_donation(did) if did else None

    async def cas_donation(self, donation_id: str, expected_version: int, updates: dict,
                           unset: Iterable[str] = ()) -> dict:
        doc = self.donations.get(donation_id)
        if doc is None:
            raise NotFound(f"donation {donation_id} not found")
        if doc["version"] != expected_version:
            raise StaleWrite(f"donation {donation_id} changed (version {doc['version']} != {expected_version})")
        doc.update(updates)
        for key in unset:
            if key == "active_listing_id" and doc.get(key) is not None:
                self.active_claims.pop(doc[key], None)
            doc.pop(key, None)
        doc["version"] = expected_version + 1
        return copy.deepcopy(doc)

    # Organizations
    async def insert_organization(self, doc: dict) -> dict:
        doc = dict(doc)
        doc.setdefault("_id", _id())
        self.organizations[doc["_id"]] = doc
        return copy.deepcopy(doc)

    async def get_organization(self, organization_id: str) -> Optional[dict]:
        doc = self.organizations.get(organization_id)
        return copy.deepcopy(doc) if doc else None

    async def list_organizations(self, active_only: bool = True) -> List[dict]:
        vals = self.organizations.values()
        return copy.deepcopy([o for o in vals if (not active_only or o.get("active", True))])

    # Events
    async def insert_event(self, evt: dict) -> dict:
        evt = dict(evt)
        evt.setdefault("_id", _id())
        self.events.append(evt)
        return evt

    async def list_events(self, type_: Optional[str] = None) -> List[dict]:
        return [e for e in self.events if (type_ is None or e["type"] == type_)]
