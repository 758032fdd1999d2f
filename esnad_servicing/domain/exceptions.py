"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Input to schedule generation or payment recording was rejected"""

    pass


class ConfigurationError(DomainException):
    """Configuration is missing or malformed"""

    pass


class NotFoundError(DomainException):
    """Unknown finance, deal, goal or notice id"""

    pass


class ConcurrencyConflict(DomainException):
    """Optimistic update lost the race against another writer"""

    def __init__(self, entity: str, entity_id: str, expected_version: int):
        super().__init__(f"{entity} {entity_id} changed since version {expected_version}")
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version


class MalformedRecordError(DomainException):
    """Persisted payload failed schema validation"""

    pass


class NoticeDeliveryError(DomainException):
    """Channel sender rejected or could not receive a notice"""

    pass
