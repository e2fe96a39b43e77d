from contextlib import contextmanager
import logging
import os

from sqlalchemy import create_engine, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from lockout_guard.errors import StoreUnavailable
from lockout_guard.models import Base, LockoutRecord, LockoutRecordModel, User, UserModel
from lockout_guard.security import get_pepper, hash_password
from lockout_guard.store import LockoutStore, Mutator, T

logger = logging.getLogger(__name__)

db_url = "sqlite:///./lockouts.db"
engine = None
SessionLocal = None


def init_db(url: str):
    global db_url, engine, SessionLocal
    db_url = url
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}

    engine = create_engine(url, connect_args=connect_args)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)


@contextmanager
def get_session(factory=None):
    factory = factory or SessionLocal
    if factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_user(email: str, password: str, hash_mode: str = "argon2id") -> User:
    salt = os.urandom(16).hex()
    hashed_password = hash_password(password, salt, get_pepper(), hash_mode)

    with get_session() as session:
        user_model = UserModel(
            email=email,
            password=hashed_password,
            salt=salt,
            hash_mode=hash_mode,
        )
        session.add(user_model)
        session.flush()
        return User.from_orm_model(user_model)


def get_user(email: str) -> User | None:
    with get_session() as session:
        stmt = select(UserModel).where(UserModel.email == email)
        user_model = session.execute(stmt).scalar_one_or_none()
        if user_model:
            return User.from_orm_model(user_model)
        return None


class _VersionConflict(Exception):
    pass


def _record_values(record: LockoutRecord) -> dict:
    return {
        "failed_attempts": record.failed_attempts,
        "last_failed_attempt": record.last_failed_attempt,
        "locked_until": record.locked_until,
        "lockout_count": record.lockout_count,
    }


class SqlLockoutStore(LockoutStore):
    """Lockout rows in ``account_lockouts`` with optimistic concurrency.

    Each update reads the row, applies the mutator and writes back with
    ``WHERE version = <seen version>``. A lost race (no row updated, or a
    duplicate insert) is retried with a fresh read.
    """

    def __init__(self, session_factory=None, max_retries: int = 20):
        self.session_factory = session_factory
        self.max_retries = max_retries

    def get(self, credential: str) -> LockoutRecord | None:
        try:
            with get_session(self.session_factory) as session:
                model = session.get(LockoutRecordModel, credential)
                return LockoutRecord.from_orm_model(model) if model else None
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"could not read lockout record: {exc}") from exc

    def update(self, credential: str, mutate: Mutator) -> T:
        for attempt in range(1, self.max_retries + 1):
            try:
                return self._try_update(credential, mutate)
            except (_VersionConflict, IntegrityError):
                logger.debug("lockout record for %s changed concurrently, retry %d", credential, attempt)
            except SQLAlchemyError as exc:
                raise StoreUnavailable(f"could not update lockout record: {exc}") from exc
        raise StoreUnavailable(
            f"lockout record for {credential} still contended after {self.max_retries} attempts"
        )

    def _try_update(self, credential: str, mutate: Mutator) -> T:
        with get_session(self.session_factory) as session:
            model = session.get(LockoutRecordModel, credential)
            current = LockoutRecord.from_orm_model(model) if model else None
            new_record, result = mutate(current)
            if new_record is None:
                return result

            if current is None:
                session.add(LockoutRecordModel(credential=credential, version=1, **_record_values(new_record)))
                session.flush()
                return result

            stmt = (
                update(LockoutRecordModel)
                .where(LockoutRecordModel.credential == credential)
                .where(LockoutRecordModel.version == current.version)
                .values(version=current.version + 1, **_record_values(new_record))
                .execution_options(synchronize_session=False)
            )
            if session.execute(stmt).rowcount == 0:
                raise _VersionConflict(credential)
            return result
