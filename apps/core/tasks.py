"""
Base Celery task class with logging, Sentry breadcrumbs and bounded retries.
"""
import logging
from celery import Task
from apps.core.sentry_utils import add_breadcrumb, capture_exception, start_transaction

logger = logging.getLogger(__name__)


class LoggedTask(Task):
    """
    Base task class with enhanced logging and Sentry integration.

    Logs start, completion, failure and retries with the task id, and wraps
    each run in a Sentry transaction when Sentry is configured.
    """

    SENSITIVE_KEYS = {'password', 'token', 'api_key', 'secret', 'email', 'recipients'}

    def __call__(self, *args, **kwargs):
        task_id = self.request.id
        task_name = self.name

        transaction = start_transaction(name=f"task.{task_name}", op="celery.task")

        logger.info(
            f"Task started: {task_name}",
            extra={
                'task_id': task_id,
                'task_name': task_name,
                'task_kwargs': self._sanitize_kwargs(kwargs),
            }
        )
        add_breadcrumb(
            category="task",
            message=f"Task started: {task_name}",
            data={'task_id': task_id},
        )

        try:
            result = super().__call__(*args, **kwargs)
        except Exception as exc:
            logger.error(
                f"Task failed: {task_name}",
                extra={
                    'task_id': task_id,
                    'task_name': task_name,
                    'exception': str(exc),
                },
                exc_info=True
            )
            capture_exception(exc, task={'task_id': task_id, 'task_name': task_name})
            if transaction:
                transaction.set_status("internal_error")
                transaction.finish()
            raise

        logger.info(
            f"Task completed: {task_name}",
            extra={
                'task_id': task_id,
                'task_name': task_name,
                'result': self._sanitize_result(result),
            }
        )
        if transaction:
            transaction.set_status("ok")
            transaction.finish()
        return result

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        """
        Log task retry attempts.
        """
        logger.warning(
            f"Task retry: {self.name} (attempt {self.request.retries}/{self.max_retries})",
            extra={
                'task_id': task_id,
                'task_name': self.name,
                'retry_count': self.request.retries,
                'max_retries': self.max_retries,
                'exception': str(exc),
            }
        )
        add_breadcrumb(
            category="task",
            message=f"Task retry: {self.name}",
            level="warning",
            data={'task_id': task_id, 'retry_count': self.request.retries},
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def retry_countdown(self):
        """Exponential backoff in seconds for the next retry: 30, 60, 120..."""
        return 30 * (2 ** self.request.retries)

    def _sanitize_kwargs(self, kwargs):
        if not kwargs:
            return {}
        return {
            key: '********' if any(sensitive in key.lower() for sensitive in self.SENSITIVE_KEYS) else value
            for key, value in kwargs.items()
        }

    def _sanitize_result(self, result):
        if result is None:
            return None
        result_str = str(result)
        if len(result_str) > 200:
            return result_str[:200] + '... (truncated)'
        return result_str
