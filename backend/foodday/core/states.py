from enum import Enum


class ListingStatus(str, Enum):
    AVAILABLE = "available"
    FOOD_DAY = "food_day"
    DONATED = "donated"
    EXHAUSTED = "exhausted"


class DonationStatus(str, Enum):
    NOTIFIED = "notified"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    EXPIRED = "expired"


LISTING_TRANSITIONS = {
    (ListingStatus.AVAILABLE, ListingStatus.FOOD_DAY):  {"triggers": ["cutoff", "merchant"]},
    (ListingStatus.AVAILABLE, ListingStatus.EXHAUSTED): {"triggers": ["reservation"]},
    (ListingStatus.FOOD_DAY,  ListingStatus.DONATED):   {"triggers": ["donation"]},
}

DONATION_TRANSITIONS = {
    (DonationStatus.NOTIFIED,  DonationStatus.CONFIRMED): {"roles": ["ong", "admin"]},
    (DonationStatus.NOTIFIED,  DonationStatus.EXPIRED):   {"roles": ["system"]},
    (DonationStatus.CONFIRMED, DonationStatus.COMPLETED): {"roles": ["merchant", "ong", "admin"]},
}

ACTIVE_DONATION_STATUSES = {DonationStatus.NOTIFIED, DonationStatus.CONFIRMED}
TERMINAL_DONATION_STATUSES = {DonationStatus.COMPLETED, DonationStatus.EXPIRED}


def can_transition_listing(src: ListingStatus, dst: ListingStatus, trigger: str) -> bool:
    rule = LISTING_TRANSITIONS.get((ListingStatus(src), ListingStatus(dst)))
    if not rule:
        return False
    return trigger in rule["triggers"]


def can_transition_donation(src: DonationStatus, dst: DonationStatus, roles: list[str]) -> bool:
    rule = DONATION_TRANSITIONS.get((DonationStatus(src), DonationStatus(dst)))
    if not rule:
        return False
    return bool(set(rule["roles"]) & set(roles))
