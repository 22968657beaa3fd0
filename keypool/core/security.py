import base64
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from jose import JWTError, jwt

from keypool.config import settings

# Fixed application salt: the passphrase is application-wide, so is the salt.
_KDF_SALT = b"keypool-credential-secrets"


@lru_cache(maxsize=4)
def derive_fernet_key(passphrase: str) -> bytes:
    """Derive a urlsafe-base64 Fernet key from a passphrase with scrypt."""
    kdf = Scrypt(salt=_KDF_SALT, length=32, n=2**14, r=8, p=1)
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode()))


def create_access_token(subject: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {"sub": subject, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> str | None:
    """Returns the subject (calling service) or None if invalid."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return payload.get("sub")
    except JWTError:
        return None
