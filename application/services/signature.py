"""HMAC-SHA256 verification of inbound BNA webhooks."""
from __future__ import annotations

import hashlib
import hmac
from typing import Mapping, Optional

from core.logging_config import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-BNA-Signature"


def get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup that works for plain dicts too."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


class SignatureVerifier:
    """
    Verifies ``X-BNA-Signature`` (hex HMAC-SHA256 of the raw body).

    Without a configured secret every webhook is accepted and a warning is
    logged for each one.
    """

    def __init__(self, secret: Optional[str]):
        self._secret = secret or None
        if self._secret is None:
            logger.warning(
                "webhook_secret_not_configured",
                message="Unsigned BNA webhooks will be accepted",
            )

    @property
    def enabled(self) -> bool:
        return self._secret is not None

    def sign(self, body: bytes) -> str:
        if self._secret is None:
            raise RuntimeError("no webhook secret configured")
        return hmac.new(self._secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    def verify(self, body: bytes, signature: Optional[str]) -> bool:
        if self._secret is None:
            logger.warning("webhook_signature_not_verified", reason="no webhook secret configured")
            return True
        if not signature:
            return False
        provided = signature.strip()
        if provided.lower().startswith("sha256="):
            provided = provided[len("sha256="):]
        # header values are latin-1 decoded and may carry non-ASCII characters
        return hmac.compare_digest(
            self.sign(body).encode("ascii"), provided.lower().encode("utf-8", "replace")
        )
