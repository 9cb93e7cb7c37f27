from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends

from foodday.core.security import require_roles
from foodday.deps import Engine, get_engine
from foodday.models.schemas import Donation, RematchReport, SweepReport

router = APIRouter(prefix="/api/sweeps", tags=["sweeps"], dependencies=[Depends(require_roles(["admin"]))])


@router.post("/cutoff", response_model=SweepReport)
async def run_cutoff_sweep(now: Optional[datetime] = Body(None, embed=True), engine: Engine = Depends(get_engine)):
    return await engine.scheduler.run_cutoff_sweep(now)

@router.post("/expire", response_model=list[Donation])
async def run_expiry_sweep(now: Optional[datetime] = Body(None, embed=True), engine: Engine = Depends(get_engine)):
    return await engine.donations.expire_stale(now)

@router.post("/rematch", response_model=RematchReport)
async def run_rematch_sweep(engine: Engine = Depends(get_engine)):
    return await engine.matcher.rematch_sweep()
