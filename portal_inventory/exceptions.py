class PortalError(Exception):
    """Base class for every error raised by portal_inventory."""


class TransportError(PortalError):
    """The backend could not be reached, timed out, or answered with a server error."""


class NotFoundError(PortalError):
    pass


class AlreadyClaimedError(PortalError):
    """The conditional claim write found the order already claimed."""

    def __init__(self, message: str, claimed_date=None):
        super().__init__(message)
        self.claimed_date = claimed_date


class AdjustmentRejectedError(PortalError):
    """The backend refused a stock adjustment (4xx or an unsuccessful envelope)."""


class InvalidPayloadError(PortalError):
    """A scanned QR string is not an order receipt."""


class InvalidTransitionError(PortalError):
    """An OrderScanner operation was called from a state that does not allow it."""


class LedgerParseError(PortalError):
    """An item note does not hold a usable variant ledger."""


class OrderNotClaimableError(PortalError):
    """The order is in a status (e.g. cancelled) that can never move to claimed."""

    def __init__(self, message: str, status=None):
        super().__init__(message)
        self.status = status
