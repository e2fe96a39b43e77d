"""Account lockout guard.

Throttles repeated failed logins against a credential (a normalized email).
State per credential is one ``LockoutRecord``:

* ``Unlocked(n)``: fewer than ``max_failed_attempts`` recent failures.
* ``Locked(until)``: ``locked_until`` lies in the future. Every failure while
  locked pushes ``locked_until`` to ``now + lockout_duration``.

Expiry is evaluated lazily on the next access; there is no background timer.
Store faults fail open (``Outcome.INDETERMINATE`` with a full budget) on the
attempt and status paths, and propagate on the administrative reset path.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable, Protocol

from lockout_guard.errors import InvalidCredential, PolicyDenied, StoreUnavailable
from lockout_guard.models import LockoutRecord, LockoutStatus, Outcome
from lockout_guard.store import LockoutStore

logger = logging.getLogger(__name__)

MAX_FAILED_ATTEMPTS = 5
LOCKOUT_DURATION_S = 15 * 60
ATTEMPT_RESET_WINDOW_S = 30 * 60

MAX_CREDENTIAL_LENGTH = 320


@dataclass(frozen=True)
class LockoutPolicy:
    max_failed_attempts: int = MAX_FAILED_ATTEMPTS
    lockout_duration_s: int = LOCKOUT_DURATION_S
    attempt_reset_window_s: int = ATTEMPT_RESET_WINDOW_S

    def __post_init__(self):
        if self.max_failed_attempts < 1:
            raise ValueError("max_failed_attempts must be at least 1")
        if self.lockout_duration_s <= 0:
            raise ValueError("lockout_duration_s must be positive")
        if self.attempt_reset_window_s <= 0:
            raise ValueError("attempt_reset_window_s must be positive")

    @property
    def lockout_duration(self) -> timedelta:
        return timedelta(seconds=self.lockout_duration_s)

    @property
    def attempt_reset_window(self) -> timedelta:
        return timedelta(seconds=self.attempt_reset_window_s)


def normalize_credential(credential: str) -> str:
    """Lower-case and trim ``credential``; reject empty or malformed keys."""
    if not isinstance(credential, str):
        raise InvalidCredential("credential must be a string")
    normalized = credential.strip().lower()
    if not normalized:
        raise InvalidCredential("credential must not be empty")
    if len(normalized) > MAX_CREDENTIAL_LENGTH:
        raise InvalidCredential("credential is too long")
    if any(ch.isspace() or not ch.isprintable() for ch in normalized):
        raise InvalidCredential("credential must not contain whitespace or control characters")
    return normalized


class Reporter(Protocol):
    def report(self, event: str, credential: str, **extra) -> None: ...

    def report_fault(self, operation: str, credential: str, error: BaseException) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LockoutGuard:
    def __init__(
        self,
        store: LockoutStore,
        policy: LockoutPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
        reporter: Reporter | None = None,
    ):
        self.store = store
        self.policy = policy or LockoutPolicy()
        self.clock = clock or _utcnow
        self.reporter = reporter

    # statuses

    def _unlocked(self, attempts_remaining: int) -> LockoutStatus:
        return LockoutStatus(locked=False, attempts_remaining=attempts_remaining, outcome=Outcome.ALLOWED)

    def _locked(self, until: datetime) -> LockoutStatus:
        return LockoutStatus(locked=True, attempts_remaining=0, locked_until=until, outcome=Outcome.DENIED)

    def _indeterminate(self) -> LockoutStatus:
        return LockoutStatus(
            locked=False,
            attempts_remaining=self.policy.max_failed_attempts,
            outcome=Outcome.INDETERMINATE,
        )

    def _window_elapsed(self, record: LockoutRecord, now: datetime) -> bool:
        if record.last_failed_attempt is None:
            return False
        return now - record.last_failed_attempt > self.policy.attempt_reset_window

    # reporter failures are logged and never change a policy result

    def _report(self, event: str, credential: str, **extra) -> None:
        if self.reporter is None:
            return
        try:
            self.reporter.report(event, credential, **extra)
        except Exception:
            logger.exception("could not report %s event for %s", event, credential)

    def _fault(self, operation: str, credential: str, exc: StoreUnavailable) -> None:
        logger.error("lockout store fault during %s for %s: %s", operation, credential, exc)
        if self.reporter is None:
            return
        try:
            self.reporter.report_fault(operation, credential, exc)
        except Exception:
            logger.exception("could not report %s fault for %s", operation, credential)

    # failed attempts

    def _apply_failure(self, credential: str, record: LockoutRecord | None, now: datetime):
        max_attempts = self.policy.max_failed_attempts

        if record is None:
            record = LockoutRecord(credential=credential)
            if max_attempts > 1:
                new = record.model_copy(update={"failed_attempts": 1, "last_failed_attempt": now})
                return new, (self._unlocked(max_attempts - 1), "first_failure")
            # a single-attempt policy locks on the very first failure
            record = record.model_copy(update={"failed_attempts": 0})

        if record.is_locked(now):
            until = now + self.policy.lockout_duration
            # never shorten an existing lock
            if record.locked_until > until:
                until = record.locked_until
            new = record.model_copy(update={"locked_until": until})
            return new, (self._locked(until), "lockout_extended")

        if self._window_elapsed(record, now):
            new = record.model_copy(
                update={"failed_attempts": 1, "last_failed_attempt": now, "locked_until": None}
            )
            if max_attempts > 1:
                return new, (self._unlocked(max_attempts - 1), "window_reset")
            record = new.model_copy(update={"failed_attempts": 0})

        new_count = record.failed_attempts + 1
        if new_count >= max_attempts:
            until = now + self.policy.lockout_duration
            new = record.model_copy(
                update={
                    "failed_attempts": 0,
                    "last_failed_attempt": now,
                    "locked_until": until,
                    "lockout_count": record.lockout_count + 1,
                }
            )
            return new, (self._locked(until), "locked")

        new = record.model_copy(update={"failed_attempts": new_count, "last_failed_attempt": now})
        return new, (self._unlocked(max_attempts - new_count), "failure")

    def record_failed_attempt(self, credential: str) -> LockoutStatus:
        """Count a failed login and lock the credential once the threshold is hit.

        Returns the resulting status. If the store is unreachable the failure is
        reported and an ``INDETERMINATE`` unlocked status with a full budget is
        returned instead of raising.
        """
        key = normalize_credential(credential)
        now = self.clock()
        try:
            status, event = self.store.update(key, lambda record: self._apply_failure(key, record, now))
        except StoreUnavailable as exc:
            self._fault("record_failed_attempt", key, exc)
            return self._indeterminate()

        if event == "locked":
            logger.warning("credential %s locked until %s", key, status.locked_until.isoformat())
        elif event == "lockout_extended":
            logger.info("credential %s still locked, extended to %s", key, status.locked_until.isoformat())
        self._report(
            event,
            key,
            attempts_remaining=status.attempts_remaining,
            locked_until=status.locked_until.isoformat() if status.locked_until else None,
        )
        return status

    # status

    def _project(self, record: LockoutRecord | None, now: datetime) -> LockoutStatus:
        max_attempts = self.policy.max_failed_attempts
        if record is None:
            return self._unlocked(max_attempts)
        if record.is_locked(now):
            return self._locked(record.locked_until)
        if self._window_elapsed(record, now):
            return self._unlocked(max_attempts)
        return self._unlocked(max(0, max_attempts - record.failed_attempts))

    def check_lockout_status(self, credential: str) -> LockoutStatus:
        """Read-only status; never creates or mutates the record."""
        key = normalize_credential(credential)
        now = self.clock()
        try:
            record = self.store.get(key)
        except StoreUnavailable as exc:
            self._fault("check_lockout_status", key, exc)
            return self._indeterminate()
        return self._project(record, now)

    def ensure_not_locked(self, credential: str) -> LockoutStatus:
        status = self.check_lockout_status(credential)
        if status.locked:
            raise PolicyDenied(normalize_credential(credential), status)
        return status

    # clearing

    def _clear(self, credential: str, operation: str, updates: dict) -> bool:
        def mutate(record):
            if record is None:
                return None, False
            if all(getattr(record, field) == value for field, value in updates.items()):
                return None, True
            return record.model_copy(update=updates), True

        existed = self.store.update(credential, mutate)
        if existed:
            self._report(operation, credential)
        return existed

    def record_successful_login(self, credential: str, strict: bool = False) -> bool:
        """Forget failures after a verified login; ``lockout_count`` is kept.

        Store faults are reported and swallowed unless ``strict`` is set, since
        the login itself already succeeded upstream.
        """
        key = normalize_credential(credential)
        try:
            return self._clear(
                key,
                "cleared",
                {"failed_attempts": 0, "last_failed_attempt": None, "locked_until": None},
            )
        except StoreUnavailable as exc:
            self._fault("record_successful_login", key, exc)
            if strict:
                raise
            return False

    def reset_lockout(self, credential: str) -> bool:
        """Administrative unlock. Idempotent; store faults propagate."""
        key = normalize_credential(credential)
        try:
            existed = self._clear(key, "reset", {"failed_attempts": 0, "locked_until": None})
        except StoreUnavailable as exc:
            self._fault("reset_lockout", key, exc)
            raise
        if existed:
            logger.info("lockout for %s reset by administrator", key)
        return existed
