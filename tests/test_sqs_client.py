from __future__ import annotations

import hashlib
import json

from inference_worker.integrations.sqs_client import QueueMessage, SqsQueueGateway
from inference_worker.schemas.job_models import JobResult


class FakeSqs:
    def __init__(self, messages=None):
        self.messages = messages or []
        self.calls = []

    def receive_message(self, **kwargs):
        self.calls.append(("receive_message", kwargs))
        return {"Messages": self.messages} if self.messages else {}

    def delete_message(self, **kwargs):
        self.calls.append(("delete_message", kwargs))

    def change_message_visibility(self, **kwargs):
        self.calls.append(("change_message_visibility", kwargs))

    def send_message(self, **kwargs):
        self.calls.append(("send_message", kwargs))
        return {"MessageId": "out-1"}

    def close(self):
        self.calls.append(("close", {}))


def test_receive_wraps_deliveries(settings) -> None:
    sqs = FakeSqs(messages=[{
        "MessageId": "m-1",
        "ReceiptHandle": "rh-1",
        "Body": '{"userId": "u1", "query": "hi"}',
        "Attributes": {"ApproximateReceiveCount": "3"},
    }])
    gateway = SqsQueueGateway(sqs, settings)

    messages = gateway.receive(max_messages=25, wait_seconds=5)

    assert messages == [QueueMessage("m-1", "rh-1", '{"userId": "u1", "query": "hi"}', 3)]
    _, kwargs = sqs.calls[0]
    assert kwargs["QueueUrl"] == settings.SQS_JOB_QUEUE_URL
    assert kwargs["MaxNumberOfMessages"] == 10
    assert kwargs["WaitTimeSeconds"] == 5


def test_empty_receive_returns_no_messages(settings) -> None:
    assert SqsQueueGateway(FakeSqs(), settings).receive() == []


def test_ack_deletes_and_reject_resets_visibility(settings) -> None:
    sqs = FakeSqs()
    gateway = SqsQueueGateway(sqs, settings)
    message = QueueMessage("m-1", "rh-1", "{}")

    gateway.ack(message)
    gateway.reject(message)

    assert sqs.calls == [
        ("delete_message", {"QueueUrl": settings.SQS_JOB_QUEUE_URL, "ReceiptHandle": "rh-1"}),
        ("change_message_visibility", {
            "QueueUrl": settings.SQS_JOB_QUEUE_URL,
            "ReceiptHandle": "rh-1",
            "VisibilityTimeout": 0,
        }),
    ]


def test_publish_result_sends_camel_case_json(settings) -> None:
    sqs = FakeSqs()
    gateway = SqsQueueGateway(sqs, settings)

    msg_id = gateway.publish_result(JobResult(user_id="u1", response="hi there"))

    assert msg_id == "out-1"
    _, kwargs = sqs.calls[0]
    assert kwargs["QueueUrl"] == settings.SQS_RESULT_QUEUE_URL
    assert json.loads(kwargs["MessageBody"]) == {"userId": "u1", "response": "hi there"}
    assert kwargs["MessageAttributes"]["user_id"]["StringValue"] == "u1"
    assert "MessageGroupId" not in kwargs


def test_fifo_result_queue_groups_by_user(settings) -> None:
    settings.SQS_RESULT_QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/results.fifo"
    sqs = FakeSqs()
    gateway = SqsQueueGateway(sqs, settings)

    gateway.publish_result(JobResult(user_id="u1", response="hi"))

    _, kwargs = sqs.calls[0]
    assert kwargs["MessageGroupId"] == "u1"
    assert kwargs["MessageDeduplicationId"] == hashlib.sha256(
        kwargs["MessageBody"].encode("utf-8")
    ).hexdigest()


def test_fifo_identical_results_keep_distinct_dedup_ids(settings) -> None:
    settings.SQS_RESULT_QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/results.fifo"
    sqs = FakeSqs()
    gateway = SqsQueueGateway(sqs, settings)

    gateway.publish_result(JobResult(user_id="u1", response="Hello!"), dedup_id="job-1")
    gateway.publish_result(JobResult(user_id="u1", response="Hello!"), dedup_id="job-2")

    sent = [kwargs for name, kwargs in sqs.calls if name == "send_message"]
    assert sent[0]["MessageBody"] == sent[1]["MessageBody"]
    assert [kwargs["MessageDeduplicationId"] for kwargs in sent] == ["job-1", "job-2"]


def test_close_closes_client(settings) -> None:
    sqs = FakeSqs()
    SqsQueueGateway(sqs, settings).close()
    assert sqs.calls == [("close", {})]
