import logging
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from jose import JWTError, jwt

from . import config
from .errors import PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(address: str) -> str:
    """Validate a 0x-prefixed 20-byte hex address and return it lower-cased."""
    if not isinstance(address, str) or not _ADDRESS_RE.match(address.strip()):
        raise ValidationError(f"Invalid address: {address!r}")
    return address.strip().lower()


# Create JWT access token; the subject is the caller's address
def create_access_token(address: str, expires_minutes: int = config.ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    to_encode = {"sub": normalize_address(address)}
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def identity_from_token(token: str) -> str:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise PermissionDeniedError("Invalid or expired access token.")
    subject = payload.get("sub")
    if not subject:
        raise PermissionDeniedError("Access token has no subject.")
    return normalize_address(subject)


# --- Encryption key for verification data ---
# In production: use secure key management (Vault/KMS) and never hardcode keys.
def load_fernet(key_file: str = config.FERNET_KEY_FILE) -> Fernet:
    directory = os.path.dirname(key_file)
    if directory:
        os.makedirs(directory, exist_ok=True)
    if not os.path.exists(key_file):
        key = Fernet.generate_key()
        with open(key_file, "wb") as kf:
            kf.write(key)
        logger.info(f"Generated new verification-data key at {key_file}")
    else:
        with open(key_file, "rb") as kf:
            key = kf.read()
    return Fernet(key)


class VerificationCipher:
    """Encrypts opaque voter verification data before it leaves the process."""

    def __init__(self, fernet: Fernet):
        self.fernet = fernet

    def seal(self, data: Optional[str]) -> Optional[str]:
        if data is None:
            return None
        return self.fernet.encrypt(data.encode("utf-8")).decode("utf-8")

    def open(self, token: Optional[str]) -> Optional[str]:
        if token is None:
            return None
        try:
            return self.fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            raise ValidationError("Verification data cannot be decrypted with the configured key.")
