class LimitCheckError(Exception):
    """Base class for everything the limit evaluator can raise."""


class TriggerValidationError(LimitCheckError):
    """The trigger input is missing or malformed. Never retried."""


class DependencyReadError(LimitCheckError):
    """The limit registry or the expense ledger could not be read."""


class RecordLookupError(LimitCheckError, LookupError):
    """A user or category needed for a notification could not be resolved."""


class NotificationDeliveryError(LimitCheckError):
    """The notifier failed to hand off a message."""


class DataIntegrityError(LimitCheckError):
    """A stored record violates an invariant, e.g. a limit amount <= 0."""
