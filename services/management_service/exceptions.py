class InvalidStateError(ValueError):
    """A lifecycle transition was requested from a state that does not allow it."""


class NotFoundError(LookupError):
    pass


class AuditAlreadyRunningError(InvalidStateError):
    pass
