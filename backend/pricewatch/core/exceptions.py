"""Custom exception classes for the application."""


class PriceWatchException(Exception):
    """Base exception for all PriceWatch errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class NotFoundError(PriceWatchException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} with identifier '{identifier}' not found")


class UnsupportedSourceError(PriceWatchException):
    """Raised when a target cannot be tracked by the requested source.

    Unsupported targets are a configuration problem: no tracking job is
    created for them and they are never retried.
    """

    def __init__(self, source_id: str, reason: str):
        self.source_id = source_id
        self.reason = reason
        super().__init__(f"Source '{source_id}' is not supported: {reason}")


class PlanLimitError(PriceWatchException):
    """Raised when an organization's plan tier does not allow an operation."""

    def __init__(self, organization_id: str, message: str):
        self.organization_id = organization_id
        super().__init__(f"Plan limit for organization '{organization_id}': {message}")


class DeliveryError(PriceWatchException):
    """Raised by notifiers when an alert could not be delivered."""

    def __init__(self, rule_id: str, message: str):
        self.rule_id = rule_id
        super().__init__(f"Delivery failed for rule {rule_id}: {message}")
