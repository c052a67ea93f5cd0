"""
BNA credential / environment resolver.

A resolver is immutable. Swapping credentials (for example a "test
connection" with temporary keys) builds a new resolver with its own cache
scope, so tokens cached under the old keys are never served under new ones.
"""
from __future__ import annotations

import base64
import dataclasses
import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from core.config import BnaSettings
from core.logging_config import get_logger

logger = get_logger(__name__)


class BnaEnvironment(str, Enum):
    STAGING = "staging"
    PRODUCTION = "production"


BASE_URLS = {
    BnaEnvironment.STAGING: "https://stage-api-service.bnasmartpayment.com/v1",
    BnaEnvironment.PRODUCTION: "https://api.bnasmartpayment.com/v1",
}


def parse_environment(value: Optional[str]) -> BnaEnvironment:
    """Unknown or empty values resolve to staging, never to production."""
    normalized = (value or "").strip().lower()
    try:
        return BnaEnvironment(normalized)
    except ValueError:
        logger.warning("bna_environment_unknown", value=value, fallback=BnaEnvironment.STAGING.value)
        return BnaEnvironment.STAGING


@dataclass(frozen=True)
class CredentialResolver:
    access_key: str
    secret_key: str = field(repr=False)
    environment: BnaEnvironment = BnaEnvironment.STAGING
    test_mode: bool = False

    def __post_init__(self):
        if not isinstance(self.environment, BnaEnvironment):
            object.__setattr__(self, "environment", parse_environment(self.environment))

    @classmethod
    def from_settings(cls, bna: BnaSettings) -> "CredentialResolver":
        return cls(
            access_key=bna.access_key,
            secret_key=bna.secret_key,
            environment=parse_environment(bna.environment),
            test_mode=bna.test_mode,
        )

    def with_credentials(
        self,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        environment: Optional[str] = None,
    ) -> "CredentialResolver":
        """New resolver (and cache scope) with some values replaced."""
        return dataclasses.replace(
            self,
            access_key=self.access_key if access_key is None else access_key,
            secret_key=self.secret_key if secret_key is None else secret_key,
            environment=self.environment if environment is None else parse_environment(environment),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.access_key and self.secret_key)

    @property
    def verify_tls(self) -> bool:
        return not self.test_mode

    @property
    def scope(self) -> str:
        """Stable fingerprint of the environment and both keys, used to namespace caches."""
        secret_digest = hashlib.sha256(self.secret_key.encode("utf-8")).hexdigest()
        raw = f"{self.environment.value}:{self.access_key}:{secret_digest}".encode("utf-8")
        return hashlib.sha256(raw).hexdigest()[:16]

    def base_url(self) -> str:
        return BASE_URLS[self.environment]

    def auth_header(self) -> str:
        raw = f"{self.access_key}:{self.secret_key}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")

    def iframe_url(self, token: str) -> str:
        return f"{self.base_url()}/checkout/{token}"
