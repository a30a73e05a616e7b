class AuditCancelledError(Exception):
    pass


class CancellationToken:
    """Cooperative cancel flag checked before every network round-trip."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise AuditCancelledError("audit cancelled")
