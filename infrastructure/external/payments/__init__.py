"""
BNA Smart Payment client and credential handling.
"""
from .bna_client import BnaApiClient, check_credentials
from .credentials import BnaEnvironment, CredentialResolver

__all__ = [
    "BnaApiClient",
    "BnaEnvironment",
    "CredentialResolver",
    "check_credentials",
]
