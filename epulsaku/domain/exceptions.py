"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class NotFoundError(DomainException):
    """Update or delete target does not exist"""

    pass


class PersistenceError(DomainException):
    """Record store read or write failed"""

    pass


class UpstreamApiError(DomainException):
    """Provider call failed at transport or protocol level (not a business Gagal)"""

    pass


class ValidationError(DomainException):
    """Input or configuration is malformed"""

    pass


class NotificationDeliveryError(DomainException):
    """Messaging bot rejected or could not receive a message"""

    pass
