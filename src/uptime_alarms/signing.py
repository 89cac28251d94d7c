from __future__ import annotations

import hashlib
import hmac
from typing import Protocol


class SignatureVerifier(Protocol):
    def verify(self, body: bytes, signature: str | None) -> bool: ...


def sign_body(key: str, body: bytes) -> str:
    return hmac.new(key.encode("utf-8"), body, hashlib.sha256).hexdigest()


class HmacSignatureVerifier:
    """Accepts a hex HMAC-SHA256 of the request body under the current or the next key.

    Two keys allow rotation without dropping in-flight requests. With no key
    configured every request is rejected.
    """

    def __init__(self, current_key: str | None, next_key: str | None = None) -> None:
        self.keys = [key for key in (current_key, next_key) if key]

    def verify(self, body: bytes, signature: str | None) -> bool:
        if not signature:
            return False
        candidate = signature.strip().lower()
        return any(hmac.compare_digest(sign_body(key, body), candidate) for key in self.keys)
