"""
structlog configuration shared by the API, the workers and the tests.
"""
import json
import logging
import re
from typing import Any, List, Optional

import structlog
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter

from core.config import settings

# Keys whose values are masked before rendering.
REDACTED_KEYS = frozenset(
    {"secret_key", "access_key", "webhook_secret", "signature", "authorization", "token", "transaction_token"}
)


def redact_secrets(_logger: Any, _method: str, event_dict: dict) -> dict:
    for key in list(event_dict):
        if key.lower() in REDACTED_KEYS and event_dict[key]:
            value = str(event_dict[key])
            # keep a short prefix so tokens stay correlatable
            event_dict[key] = value[:6] + "..." if key.endswith("token") else "***"
    return event_dict


_TOKEN_SEGMENT = re.compile(r"(/transactions/)([^/]{6})[^/]*")


def mask_token_path(path: str) -> str:
    """Shorten transaction tokens embedded in a URL path."""
    return _TOKEN_SEGMENT.sub(r"\1\2...", path)


def get_renderer(debug: bool) -> Any:
    """Console output while debugging, JSON lines otherwise."""
    if debug:
        return ConsoleRenderer(colors=True)

    def _dumps(obj, default=None, **kwargs):
        return json.dumps(obj, ensure_ascii=False, default=default, **kwargs)

    return JSONRenderer(serializer=_dumps)


def configure_logging(debug: Optional[bool] = None) -> None:
    """Configure structlog and route stdlib logging through the same chain."""
    debug = settings.DEBUG if debug is None else debug

    shared_pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*shared_pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = ProcessorFormatter(
        foreign_pre_chain=shared_pre_chain,
        processors=[ProcessorFormatter.remove_processors_meta, get_renderer(debug)],
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
