"""Shared test fixtures and in-memory fakes for the worker's collaborators."""

from __future__ import annotations

import io
import json
import logging
import threading
import time

import pytest
import redis

from inference_worker.core.config import Settings
from inference_worker.core.errors import ContextStoreFailure
from inference_worker.core.logger import logger
from inference_worker.integrations.sqs_client import QueueMessage
from inference_worker.schemas.job_models import ConversationContext


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        SQS_JOB_QUEUE_URL="https://sqs.us-east-1.amazonaws.com/123456789012/jobs",
        SQS_RESULT_QUEUE_URL="https://sqs.us-east-1.amazonaws.com/123456789012/results",
        BEDROCK_MODEL_ID="mistral.mistral-7b-instruct-v0:2",
        REDIS_HOST="localhost",
        MAX_CONTEXT_TURNS=3,
        MAX_CONTEXT_CHARS=1000,
        JOB_TIMEOUT_SECS=2.0,
        WORKER_MAX_CONCURRENCY=4,
        SQS_WAIT_TIME_SECS=0,
        SYSTEM_PROMPT="",
    )


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record):
        self.records.append(record)

    def messages(self, level: int | None = None) -> list[str]:
        return [r.getMessage() for r in self.records if level is None or r.levelno == level]


@pytest.fixture()
def worker_logs():
    """The worker logger does not propagate, so caplog cannot see it."""
    handler = _ListHandler()
    previous = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield handler
    logger.removeHandler(handler)
    logger.setLevel(previous)


class FakeRedis:
    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail_get = False
        self.fail_set = False

    def get(self, name):
        if self.fail_get:
            raise redis.ConnectionError("redis down")
        return self.data.get(name)

    def set(self, name, value):
        if self.fail_set:
            raise redis.ConnectionError("redis down")
        self.data[name] = value
        return True

    def setex(self, name, time, value):
        self.set(name, value)
        self.ttls[name] = time
        return True

    def ping(self):
        return True


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


class FakeStore:
    """Context store double recording every call in order."""

    def __init__(self):
        self.contexts: dict[str, ConversationContext] = {}
        self.calls: list[tuple] = []
        self.fail_get = False
        self.fail_append = False
        self._lock = threading.Lock()

    def get(self, user_id):
        with self._lock:
            self.calls.append(("get", user_id))
        if self.fail_get:
            raise ContextStoreFailure("read failed", operation="get", user_id=user_id)
        return self.contexts.get(user_id, ConversationContext.empty(user_id))

    def append(self, user_id, turn):
        with self._lock:
            self.calls.append(("append", user_id, turn.query, turn.response))
        if self.fail_append:
            raise ContextStoreFailure("write failed", operation="append", user_id=user_id)
        context = self.contexts.setdefault(user_id, ConversationContext.empty(user_id))
        context.turns.append(turn)

    def appends(self, user_id=None):
        return [c for c in self.calls if c[0] == "append" and (user_id is None or c[1] == user_id)]


class FakeInference:
    """
    Returns `replies[query]` (a value or an exception) after `delays[query]`
    seconds; defaults to echoing the query.
    """

    def __init__(self, replies=None, delays=None):
        self.replies = replies or {}
        self.delays = delays or {}
        self.calls: list[tuple] = []
        self.started = threading.Event()
        self.release: threading.Event | None = None

    def complete(self, user_id, new_input, context):
        self.calls.append((user_id, new_input, len(context.turns)))
        self.started.set()
        if self.release is not None:
            self.release.wait(timeout=5)
        time.sleep(self.delays.get(new_input, 0))
        reply = self.replies.get(new_input, f"reply to {new_input}")
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeGateway:
    def __init__(self, batches=None):
        self.batches = list(batches or [])
        self.published = []
        self.dedup_ids: list = []
        self.acked: list[str] = []
        self.rejected: list[str] = []
        self.closed = False
        self.publish_error: Exception | None = None
        self.receive_calls = 0

    def receive(self, max_messages=10, wait_seconds=20):
        self.receive_calls += 1
        if self.batches:
            batch = self.batches.pop(0)
            return batch() if callable(batch) else batch
        time.sleep(0.01)
        return []

    def publish_result(self, result, dedup_id=None):
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append(result.to_message())
        self.dedup_ids.append(dedup_id)
        return "msg-out"

    def ack(self, message):
        self.acked.append(message.message_id)

    def reject(self, message):
        self.rejected.append(message.message_id)

    def close(self):
        self.closed = True


def make_message(payload, message_id: str = "m-1") -> QueueMessage:
    body = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)
    return QueueMessage(message_id=message_id, receipt_handle=f"rh-{message_id}", body=body)


class FakeStreamingBody:
    def __init__(self, payload):
        raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        self._buf = io.BytesIO(raw)

    def read(self):
        return self._buf.read()
