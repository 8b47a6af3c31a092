# core/logger.py
import logging
from inference_worker.core.config import settings

"""
Job context passed through `extra=` at call sites; rendered as key=value
after the message so one console line identifies the job it belongs to.
"""
CONTEXT_FIELDS = ("user_id", "message_id", "failure_kind", "reason")


class JobContextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = [
            f"{name}={getattr(record, name)}"
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        ]
        return f"{line} | {' '.join(context)}" if context else line


logger = logging.getLogger("inference-worker")
logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
logger.propagate = False

# Workers run under a process supervisor that collects stderr
_console = logging.StreamHandler()
_console.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
_console.setFormatter(JobContextFormatter(
    fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S%z",
))
logger.addHandler(_console)
