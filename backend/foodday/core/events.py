from datetime import datetime, timezone
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)

DONATION_NOTIFIED = "donation.notified"
DONATION_UNMATCHED = "donation.unmatched"
DONATION_CONFIRMED = "donation.confirmed"
DONATION_COMPLETED = "donation.completed"
DONATION_EXPIRED = "donation.expired"
LISTING_FOOD_DAY = "listing.food_day"


async def emit_event(repo, type_: str, data: Dict[str, Any]) -> dict:
    """Record an event for the outbound notification dispatcher."""
    evt = {
        "type": type_,
        "data": data,
        "created_at": datetime.now(timezone.utc),
    }
    await repo.insert_event(evt)
    logger.info("event emitted", extra={"event_type": type_, **data})
    return evt
