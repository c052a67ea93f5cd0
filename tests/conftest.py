"""Pytest bootstrap configuration.

Environment variables must be in place before ``core.config`` is imported
by the first test module.
"""
import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BNA__ACCESS_KEY", "test-access-key")
os.environ.setdefault("BNA__SECRET_KEY", "test-secret-key")
os.environ.setdefault("BNA__IFRAME_ID", "iframe-test")
os.environ.setdefault("BNA__RETRY_DELAY", "0")
