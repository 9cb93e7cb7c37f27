"""Domain errors raised by the lifecycle and matching services."""


class FoodDayError(Exception):
    """Base exception for the surplus engine."""
    pass


class NotFound(FoodDayError):
    """Listing, donation or organization does not exist."""
    pass


class InvalidTransition(FoodDayError):
    """Requested state change is not an edge of the lifecycle graph."""

    def __init__(self, entity: str, entity_id: str, src: str, dst: str, reason: str = ""):
        self.entity = entity
        self.entity_id = entity_id
        self.src = src
        self.dst = dst
        self.reason = reason
        msg = f"{entity} {entity_id}: {src} -> {dst} not allowed"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class InsufficientQuantity(InvalidTransition):
    """Reservation asks for more units than remain."""
    pass


class NoEligibleOrganization(FoodDayError):
    """No active receiving organization in range. Retryable."""
    pass


class DuplicateClaim(FoodDayError):
    """An active donation already exists for the listing."""
    pass


class StaleWrite(FoodDayError):
    """Compare-and-swap lost a race; re-read and decide."""
    pass
