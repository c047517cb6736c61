class EventStoreError(RuntimeError):
    """Storage read or write failed; the sweep retries on its next pass."""


class NotifyError(RuntimeError):
    """A reminder message could not be delivered."""


class EventValidationError(ValueError):
    pass


class EventNotFoundError(ValueError):
    pass


class EventAccessDeniedError(ValueError):
    pass


class EventInactiveError(ValueError):
    pass


class PastDateError(ValueError):
    pass


class EventLimitError(ValueError):
    pass
