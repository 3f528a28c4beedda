# barbershop/auth.py

import re

from passlib.context import CryptContext

PIN_RE = re.compile(r"^\d{4,6}$")

# pbkdf2 keeps the hasher free of native backends
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def is_valid_pin(pin: str) -> bool:
    return bool(pin) and bool(PIN_RE.match(pin.strip()))


class PasslibPinHasher:
    """Hash/verify capability for staff PINs."""

    def __init__(self, context: CryptContext = pwd_context):
        self._context = context

    def hash(self, secret: str) -> str:
        if not is_valid_pin(secret):
            raise ValueError("PIN must be 4-6 digits")
        return self._context.hash(secret.strip())

    def verify(self, secret: str, hashed: str) -> bool:
        if not hashed or not is_valid_pin(secret):
            return False
        try:
            return self._context.verify(secret.strip(), hashed)
        except (ValueError, TypeError):
            # unrecognized or corrupted hash
            return False
