from fastapi import APIRouter, Depends, HTTPException

from foodday.core.security import get_current_actor, require_roles
from foodday.deps import Engine, get_engine
from foodday.models.schemas import Donation

router = APIRouter(prefix="/api/donations", tags=["donations"])


def _can_see(donation: Donation, actor: dict) -> bool:
    if actor["role"] == "admin":
        return True
    if actor["role"] == "merchant":
        return donation.merchant_id == actor["id"]
    if actor["role"] == "ong":
        # unmatched claims are open to every partner
        return donation.organization_id in (None, actor["id"])
    return False


@router.get("/mine", response_model=list[Donation])
async def my_donations(actor=Depends(require_roles(["ong"])), engine: Engine = Depends(get_engine)):
    return await engine.donations.list_for_organization(actor["id"])

@router.get("/{donation_id}", response_model=Donation)
async def get_donation(donation_id: str, actor=Depends(get_current_actor), engine: Engine = Depends(get_engine)):
    donation = await engine.donations.get(donation_id)
    if not _can_see(donation, actor):
        raise HTTPException(403, "Not allowed to view this donation")
    return donation

@router.post("/{donation_id}/confirm", response_model=Donation)
async def confirm_donation(donation_id: str, actor=Depends(require_roles(["ong"])),
                           engine: Engine = Depends(get_engine)):
    organization_id = None if actor["role"] == "admin" else actor["id"]
    return await engine.donations.confirm(donation_id, organization_id, role=actor["role"])

@router.post("/{donation_id}/complete", response_model=Donation)
async def complete_donation(donation_id: str, actor=Depends(require_roles(["merchant", "ong"])),
                            engine: Engine = Depends(get_engine)):
    donation = await engine.donations.get(donation_id)
    if actor["role"] == "merchant" and donation.merchant_id != actor["id"]:
        raise HTTPException(403, "Not the merchant of this donation")
    if actor["role"] == "ong" and donation.organization_id != actor["id"]:
        raise HTTPException(403, "Donation is assigned to another organization")
    return await engine.donations.complete(donation_id, role=actor["role"])
