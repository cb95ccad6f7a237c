from functools import lru_cache

import bcrypt

BCRYPT_ROUNDS = 12
# bcrypt only ever looked at the first 72 bytes; newer releases reject longer input
BCRYPT_MAX_BYTES = 72


@lru_cache(maxsize=None)
def dummy_hash(rounds: int = BCRYPT_ROUNDS) -> bytes:
    """
    Compared against when the account does not exist. Built at the same
    cost as real hashes so unknown emails and wrong passwords take as long.
    """
    return bcrypt.hashpw(b"no-such-account", bcrypt.gensalt(rounds=rounds))


def _encode(plain_password: str) -> bytes:
    return plain_password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(plain_password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    if not isinstance(plain_password, str) or len(plain_password) == 0:
        raise ValueError("Password must be a non-empty string")

    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(_encode(plain_password), salt)
    return hashed.decode("utf-8")


def verify_password(plain_password, password_hash, rounds: int = BCRYPT_ROUNDS) -> bool:
    """
    Constant-time bcrypt comparison. A missing ``password_hash`` still burns
    one comparison against a ``rounds``-cost dummy hash before returning False.
    """
    candidate = _encode(plain_password) if isinstance(plain_password, str) else b""
    if not password_hash:
        bcrypt.checkpw(candidate, dummy_hash(rounds))
        return False
    try:
        return bcrypt.checkpw(candidate, password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False
