import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from lockout_guard.config import get_config_path, load_config

HASH_MODES = ("argon2id", "bcrypt")

argon2_hasher = PasswordHasher(time_cost=1, memory_cost=65536, parallelism=1, hash_len=32)


def _apply_pepper(password: str, salt: str, pepper: str) -> bytes:
    return (salt + password + pepper).encode()


def hash_password(password: str, salt: str, pepper: str, mode: str) -> str:
    if mode == "bcrypt":
        # bcrypt only looks at the first 72 bytes
        return bcrypt.hashpw(_apply_pepper(password, salt, pepper)[:72], bcrypt.gensalt(rounds=12)).decode()
    if mode == "argon2id":
        return argon2_hasher.hash(salt + password + pepper)
    raise ValueError(f"Unsupported hash mode: {mode}")


def verify_password(password: str, salt: str, pepper: str, stored_hash: str, mode: str) -> bool:
    if mode == "bcrypt":
        return bcrypt.checkpw(_apply_pepper(password, salt, pepper)[:72], stored_hash.encode())
    if mode == "argon2id":
        try:
            return argon2_hasher.verify(stored_hash, salt + password + pepper)
        except (VerificationError, InvalidHashError):
            return False
    raise ValueError(f"Unsupported hash mode: {mode}")


def get_pepper() -> str:
    return load_config(get_config_path()).pepper
