import logging
import time

from fastapi import FastAPI, HTTPException

from lockout_guard import db
from lockout_guard.attempt_logger import AttemptLogger
from lockout_guard.config import get_config_path, get_policy, load_config
from lockout_guard.errors import InvalidCredential, PolicyDenied, StoreUnavailable
from lockout_guard.guard import LockoutGuard, normalize_credential
from lockout_guard.models import (
    AccountStatusResponse,
    LockoutStatus,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    RegisterResponse,
    UnlockRequest,
    UnlockResponse,
)
from lockout_guard.security import HASH_MODES, get_pepper, verify_password
from lockout_guard.store import InMemoryLockoutStore, LockoutStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Account Lockout Guard")

config = load_config(get_config_path())


def build_store(cfg) -> LockoutStore:
    if cfg.store_backend == "memory":
        return InMemoryLockoutStore()
    if cfg.store_backend == "sql":
        return db.SqlLockoutStore(max_retries=cfg.max_update_retries)
    raise ValueError(f"Unsupported store backend: {cfg.store_backend}")


events = AttemptLogger(config.events_log_file)
guard = LockoutGuard(build_store(config), get_policy(config), reporter=events)


@app.on_event("startup")
def startup():
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    db.init_db(config.db_url)


@app.get("/health")
def health():
    return {"status": "ok"}


def _normalized_or_422(email: str) -> str:
    try:
        return normalize_credential(email)
    except InvalidCredential as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@app.post("/register", response_model=RegisterResponse)
def register(req: RegisterRequest):
    email = _normalized_or_422(req.email)
    hash_mode = req.hash_mode if req.hash_mode is not None else config.default_hash_mode
    if hash_mode not in HASH_MODES:
        raise HTTPException(status_code=400, detail=f"Unsupported hash mode: {hash_mode}")
    if db.get_user(email):
        raise HTTPException(status_code=400, detail="Email already registered")
    db.create_user(email, req.password, hash_mode)
    return RegisterResponse(result="created")


def _log_and_response(email: str, result: str, start_time, status: LockoutStatus | None = None):
    latency_ms = (time.perf_counter() - start_time) * 1000
    extra = None
    if status is not None:
        extra = {
            "locked": status.locked,
            "attempts_remaining": status.attempts_remaining,
            "outcome": status.outcome.value,
        }
    events.log_attempt(credential=email, result=result, latency_ms=latency_ms, extra=extra)

    if status is None:
        return LoginResponse(result=result, latency_ms=latency_ms)
    return LoginResponse(
        result=result,
        locked=status.locked,
        attempts_remaining=status.attempts_remaining,
        locked_until=status.locked_until,
        message=status.message(),
        latency_ms=latency_ms,
    )


@app.post("/login", response_model=LoginResponse)
def login(req: LoginRequest):
    start_time = time.perf_counter()
    email = _normalized_or_422(req.email)

    if config.enable_lockout:
        try:
            guard.ensure_not_locked(email)
        except PolicyDenied:
            # attempts made while locked push the lock further out
            status = guard.record_failed_attempt(email)
            result = "locked_out" if status.locked else "invalid_credentials"
            return _log_and_response(email, result, start_time, status)

    user = db.get_user(email)
    password_valid = user is not None and verify_password(
        req.password, user.salt, get_pepper(), user.password, user.hash_mode or config.default_hash_mode
    )

    if not password_valid:
        if not config.enable_lockout:
            return _log_and_response(email, "invalid_credentials", start_time)
        status = guard.record_failed_attempt(email)
        result = "locked_out" if status.locked else "invalid_credentials"
        return _log_and_response(email, result, start_time, status)

    if config.enable_lockout:
        guard.record_successful_login(email)
    return _log_and_response(email, "success", start_time)


def _check_admin_key(admin_key: str) -> None:
    if admin_key != config.admin_key:
        raise HTTPException(status_code=403, detail="invalid admin key")


@app.get("/admin/account_status", response_model=AccountStatusResponse)
def admin_account_status(email: str, admin_key: str):
    _check_admin_key(admin_key)
    normalized = _normalized_or_422(email)
    status = guard.check_lockout_status(normalized)
    return AccountStatusResponse(
        email=normalized,
        exists=db.get_user(normalized) is not None,
        locked=status.locked,
        attempts_remaining=status.attempts_remaining,
        locked_until=status.locked_until,
        outcome=status.outcome,
    )


@app.post("/admin/unlock", response_model=UnlockResponse)
def admin_unlock(req: UnlockRequest):
    _check_admin_key(req.admin_key)
    normalized = _normalized_or_422(req.email)
    try:
        existed = guard.reset_lockout(normalized)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"lockout store unavailable: {exc}")
    return UnlockResponse(result="unlocked" if existed else "no_record", email=normalized)
