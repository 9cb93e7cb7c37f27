# foodday/repos/mongo.py
import uuid
from datetime import datetime, timezone
from typing import Optional, List, Iterable

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from foodday.core.errors import DuplicateClaim, NotFound, StaleWrite

def _id() -> str:
    return uuid.uuid4().hex

def _utcnow():
    return datetime.now(timezone.utc)

class MongoRepo:
    """
    Same surface as InMemoryRepo. Check-and-set goes through
    find_one_and_update filtered on {_id, version}; the single active claim
    per listing is a unique sparse index on donations.active_listing_id.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def ensure_indexes(self):
        async def ensure_index(col, keys, name: str, **kwargs):
            existing = [ix["name"] async for ix in col.list_indexes()]
            if name in existing:
                return
            await col.create_index(keys, name=name, **kwargs)

        await ensure_index(self.db.listings, [("status", ASCENDING)], "status_1")
        await ensure_index(self.db.listings, [("merchant_id", ASCENDING)], "merchant_id_1")
        await ensure_index(self.db.donations, [("listing_id", ASCENDING)], "listing_id_1")
        await ensure_index(self.db.donations, [("organization_id", ASCENDING)], "organization_id_1")
        await ensure_index(self.db.donations, [("active_listing_id", ASCENDING)],
                           "active_listing_id_unique", unique=True, sparse=True)

    async def _cas(self, col, entity: str, doc_id: str, expected_version: int,
                   updates: dict, unset: Iterable[str] = ()) -> dict:
        change = {"$set": dict(updates), "$inc": {"version": 1}}
        unset = list(unset)
        if unset:
            change["$unset"] = {k: "" for k in unset}
        res = await col.find_one_and_update(
            {"_id": doc_id, "version": expected_version},
            change,
            return_document=ReturnDocument.AFTER,
        )
        if res is None:
            if await col.count_documents({"_id": doc_id}, limit=1) == 0:
                raise NotFound(f"{entity} {doc_id} not found")
            raise StaleWrite(f"{entity} {doc_id} changed since version {expected_version}")
        return res

    # Listings
    async def insert_listing(self, doc: dict) -> dict:
        doc = dict(doc)
        doc.setdefault("_id", _id())
        doc.setdefault("version", 1)
        doc.setdefault("created_at", _utcnow())
        await self.db.listings.insert_one(doc)
        return doc

    async def get_listing(self, listing_id: str) -> Optional[dict]:
        return await self.db.listings.find_one({"_id": listing_id})

    async def find_listings(self, status: Optional[Iterable[str]] = None,
                            merchant_id: Optional[str] = None) -> List[dict]:
        q = {}
        if status is not None:
            q["status"] = {"$in": list(status)}
        if merchant_id is not None:
            q["merchant_id"] = merchant_id
        return [d async for d in self.db.listings.find(q).sort("created_at", DESCENDING)]

    async def cas_listing(self, listing_id: str, expected_version: int, updates: dict) -> dict:
        updates = {**updates, "updated_at": _utcnow()}
        return await self._cas(self.db.listings, "listing", listing_id, expected_version, updates)

    # Donations
    async def insert_donation(self, doc: dict) -> dict:
        doc = dict(doc)
        doc.setdefault("_id", _id())
        doc.setdefault("version", 1)
        # a stored null would still collide in the sparse index
        if doc.get("active_listing_id") is None:
            doc.pop("active_listing_id", None)
        try:
            await self.db.donations.insert_one(doc)
        except DuplicateKeyError:
            raise DuplicateClaim(f"listing {doc.get('listing_id')} already has an active donation")
        return doc

    async def get_donation(self, donation_id: str) -> Optional[dict]:
        return await self.db.donations.find_one({"_id": donation_id})

    async def find_donations(self, listing_id: Optional[str] = None,
                             status: Optional[Iterable[str]] = None,
                             organization_id: Optional[str] = None,
                             include_unbound: bool = False) -> List[dict]:
        q = {}
        if listing_id is not None:
            q["listing_id"] = listing_id
        if status is not None:
            q["status"] = {"$in": list(status)}
        if organization_id is not None:
            if include_unbound:
                q["organization_id"] = {"$in": [organization_id, None]}
            else:
                q["organization_id"] = organization_id
        return [d async for d in self.db.donations.find(q).sort("created_at", DESCENDING)]

    async def active_donation_for_listing(self, listing_id: str) -> Optional[dict]:
        return await self.db.donations.find_one({"active_listing_id": listing_id})

    async def cas_donation(self, donation_id: str, expected_version: int, updates: dict,
                           unset: Iterable[str] = ()) -> dict:
        return await self._cas(self.db.donations, "donation", donation_id, expected_version, updates, unset)

    # Organizations
    async def insert_organization(self, doc: dict) -> dict:
        doc = dict(doc)
        doc.setdefault("_id", _id())
        await self.db.organizations.insert_one(doc)
        return doc

    async def get_organization(self, organization_id: str) -> Optional[dict]:
        return await self.db.organizations.find_one({"_id": organization_id})

    async def list_organizations(self, active_only: bool = True) -> List[dict]:
        q = {"active": {"$ne": False}} if active_only else {}
        return [o async for o in self.db.organizations.find(q)]

    # Events
    async def insert_event(self, evt: dict) -> dict:
        evt = dict(evt)
        evt.setdefault("_id", _id())
        await self.db.events.insert_one(evt)
        return evt

    async def list_events(self, type_: Optional[str] = None) -> List[dict]:
        q = {"type": type_} if type_ else {}
        return [e async for e in self.db.events.find(q).sort("created_at", ASCENDING)]
