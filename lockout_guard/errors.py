from lockout_guard.models import LockoutStatus


class LockoutError(Exception):
    """Base class for lockout guard errors."""


class InvalidCredential(LockoutError, ValueError):
    pass


class StoreUnavailable(LockoutError):
    """The backing store could not be read or written."""


class PolicyDenied(LockoutError):
    """The credential is locked; not a system fault."""

    def __init__(self, credential: str, status: LockoutStatus):
        self.credential = credential
        self.status = status
        self.locked_until = status.locked_until
        super().__init__(status.message())
