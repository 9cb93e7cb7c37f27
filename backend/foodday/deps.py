from dataclasses import dataclass
from datetime import timedelta

from foodday.core.config import settings, Settings
from foodday.services.donations import DonationService
from foodday.services.listings import ListingService
from foodday.services.matching import MatchingEngine
from foodday.services.scheduler import CutoffScheduler


@dataclass
class Engine:
    repo: object
    matcher: MatchingEngine
    listings: ListingService
    donations: DonationService
    scheduler: CutoffScheduler


def build_engine(repo, cfg: Settings = settings) -> Engine:
    matcher = MatchingEngine(repo, cfg.max_match_radius_m, cfg.registry_timeout_s, tz=cfg.timezone)
    listings = ListingService(repo, matcher, tz=cfg.timezone)
    matcher.listings = listings
    grace = timedelta(minutes=cfg.donation_grace_minutes) if cfg.donation_grace_minutes > 0 else None
    donations = DonationService(repo, listings, grace=grace, tz=cfg.timezone)
    scheduler = CutoffScheduler(listings, donations, matcher, interval_s=cfg.sweep_interval_s, tz=cfg.timezone)
    return Engine(repo=repo, matcher=matcher, listings=listings, donations=donations, scheduler=scheduler)


def _make_repo():
    if settings.use_mongo:
        from foodday.core.db import get_db
        from foodday.repos.mongo import MongoRepo
        return MongoRepo(get_db())
    from foodday.repos.inmemory import InMemoryRepo
    return InMemoryRepo()


_engine_singleton: Engine | None = None

def get_engine() -> Engine:
    global _engine_singleton
    if _engine_singleton is None:
        _engine_singleton = build_engine(_make_repo())
    return _engine_singleton
