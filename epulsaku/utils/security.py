"""bcrypt hashing for passwords and PINs, plus provider signature helpers"""

import hashlib
import hmac
from typing import Optional

import bcrypt

from epulsaku.config import settings

# bcrypt only looks at the first 72 bytes of a secret
_BCRYPT_MAX_BYTES = 72


def hash_secret(secret: str, rounds: Optional[int] = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(secret.encode("utf-8")[:_BCRYPT_MAX_BYTES], salt).decode("utf-8")


def verify_secret(secret: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(secret.encode("utf-8")[:_BCRYPT_MAX_BYTES], hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def md5_hex(payload: str) -> str:
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def hmac_sha1_hex(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha1).hexdigest()
