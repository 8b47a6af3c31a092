# core/errors.py
"""
Typed failures raised by the worker's collaborators.

Per-job failures (MalformedJob, InferenceFailure, ContextStoreFailure) are
contained by the task pipeline. ConfigurationError is process-fatal.
"""

from enum import Enum
from typing import List, Optional


class InferenceFailureKind(str, Enum):
    """Distinguishable reasons an inference result was unusable"""
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    MALFORMED_RESPONSE = "malformed_response"
    INVALID_TYPE = "invalid_type"
    EMPTY_RESPONSE = "empty_response"
    TIMEOUT = "timeout"


class WorkerError(Exception):
    """Base class for all worker failures."""

    code = "worker_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class MalformedJob(WorkerError):
    """Inbound payload is not JSON or lacks a usable userId/query."""

    code = "malformed_job"

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason


class InferenceFailure(WorkerError):
    """Remote completion failed or returned something we cannot forward."""

    code = "inference_failure"

    def __init__(self, message: str, kind: InferenceFailureKind, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class ContextStoreFailure(WorkerError):
    """Conversation context could not be read or written."""

    code = "context_store_failure"

    def __init__(self, message: str, operation: str, user_id: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.user_id = user_id


class ConfigurationError(WorkerError):
    """Required configuration is missing; the worker must not start."""

    code = "configuration_error"

    def __init__(self, missing: List[str]):
        super().__init__(f"Missing required configuration: {', '.join(missing)}")
        self.missing = list(missing)


class PublishFailure(WorkerError):
    """Result could not be handed to the outbound queue."""

    code = "publish_failure"
