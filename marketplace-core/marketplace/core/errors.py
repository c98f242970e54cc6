class MarketplaceError(Exception):
    """Base class for errors raised by the marketplace domain."""


class NotFoundError(MarketplaceError):
    pass


class BusinessError(MarketplaceError):
    """A business rule rejected the operation."""


class InvalidTransitionError(BusinessError):
    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entity} from {current} to {target}")


class InsufficientBalanceError(BusinessError):
    pass


class GatewayError(MarketplaceError):
    """The payment gateway could not be reached or refused the request."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
