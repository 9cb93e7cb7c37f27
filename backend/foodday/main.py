# foodday/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from foodday.core.config import settings
from foodday.core.errors import (
    DuplicateClaim,
    InsufficientQuantity,
    InvalidTransition,
    NoEligibleOrganization,
    NotFound,
    StaleWrite,
)
from foodday.core.logging import setup_logging
from foodday.deps import get_engine
from foodday.routers import donations as donations_router
from foodday.routers import feed as feed_router
from foodday.routers import listings as listings_router
from foodday.routers import sweeps as sweeps_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    engine = get_engine()
    await engine.repo.ensure_indexes()
    if settings.scheduler_enabled:
        engine.scheduler.start()

    yield

    await engine.scheduler.stop()
    if settings.use_mongo:
        from foodday.core.db import get_client
        get_client().close()


app = FastAPI(lifespan=lifespan, title="Food Day API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------- Domain errors ----------------
@app.exception_handler(NotFound)
async def _not_found(request: Request, exc: NotFound):
    return JSONResponse({"error": "not_found", "detail": str(exc)}, status_code=404)

@app.exception_handler(InvalidTransition)
async def _invalid_transition(request: Request, exc: InvalidTransition):
    kind = "insufficient_quantity" if isinstance(exc, InsufficientQuantity) else "invalid_transition"
    return JSONResponse({"error": kind, "detail": str(exc), "from": exc.src, "to": exc.dst}, status_code=409)

@app.exception_handler(StaleWrite)
async def _stale_write(request: Request, exc: StaleWrite):
    return JSONResponse({"error": "stale_write", "detail": "Version conflict. Refresh and retry."}, status_code=409)

@app.exception_handler(NoEligibleOrganization)
async def _no_eligible(request: Request, exc: NoEligibleOrganization):
    return JSONResponse({"error": "no_eligible_organization", "detail": str(exc)}, status_code=409)

@app.exception_handler(DuplicateClaim)
async def _duplicate_claim(request: Request, exc: DuplicateClaim):
    logger.error("duplicate claim reached the API", extra={"path": request.url.path, "detail": str(exc)})
    return JSONResponse({"error": "duplicate_claim", "detail": str(exc)}, status_code=500)

# ---------------- Include routers ----------------
app.include_router(listings_router.router)       # /api/listings
app.include_router(donations_router.router)      # /api/donations
app.include_router(feed_router.router)           # /api/feed
app.include_router(sweeps_router.router)         # /api/sweeps

# Health
@app.get("/health")
def health():
    return {"ok": True}
