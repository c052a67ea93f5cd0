"""Common base task for the payment jobs"""
from __future__ import annotations

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)


def _task_context(args, kwargs) -> dict:
    # logged under its own key so the redaction processor masks it
    context = {"arg_count": len(args or ())}
    token = (kwargs or {}).get("transaction_token") or (args[0] if args else None)
    if token:
        context["transaction_token"] = token
    return context


class BaseTask(Task):
    """Structured lifecycle logging for every payment job."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            error=str(exc),
            error_type=getattr(exc, "error_type", type(exc).__name__),
            **_task_context(args, kwargs),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            error=str(exc),
            **_task_context(args, kwargs),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info("celery_task_success", task_id=task_id, task_name=self.name)
        super().on_success(retval, task_id, args, kwargs)
