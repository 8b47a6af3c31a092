# integrations/sqs_client.py
import json
import hashlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from inference_worker.core.config import Settings, settings as default_settings
from inference_worker.core.logger import logger
from inference_worker.schemas.job_models import JobResult


@dataclass
class QueueMessage:
    """One delivery from the job queue; `receipt_handle` settles it."""
    message_id: str
    receipt_handle: str
    body: str
    receive_count: int = 1


class SqsQueueGateway:
    """
    Job queue gateway over SQS.

    Deliveries are at-least-once: a message that is neither acked nor
    rejected reappears after its visibility timeout.
    """

    def __init__(self, sqs_client, settings: Settings = default_settings):
        self._sqs = sqs_client
        self.job_queue_url = settings.SQS_JOB_QUEUE_URL
        self.result_queue_url = settings.SQS_RESULT_QUEUE_URL
        self.fifo = settings.is_fifo_result_queue

    def receive(self, max_messages: int = 10, wait_seconds: int = 20) -> List[QueueMessage]:
        """Long-poll the job queue for up to `max_messages` deliveries."""
        resp = self._sqs.receive_message(
            QueueUrl=self.job_queue_url,
            MaxNumberOfMessages=max(1, min(max_messages, 10)),
            WaitTimeSeconds=wait_seconds,
            AttributeNames=["ApproximateReceiveCount"],
        )
        messages = []
        for raw in resp.get("Messages", []):
            messages.append(QueueMessage(
                message_id=raw.get("MessageId", ""),
                receipt_handle=raw["ReceiptHandle"],
                body=raw.get("Body", ""),
                receive_count=int(raw.get("Attributes", {}).get("ApproximateReceiveCount", 1)),
            ))
        if messages:
            logger.debug(f"Received {len(messages)} message(s) from job queue")
        return messages

    def ack(self, message: QueueMessage) -> None:
        """Remove a settled message from the queue."""
        self._sqs.delete_message(QueueUrl=self.job_queue_url, ReceiptHandle=message.receipt_handle)
        logger.debug(f"SQS ack msg_id={message.message_id}")

    def reject(self, message: QueueMessage) -> None:
        """
        Negative acknowledgement: make the message visible again right away.
        Redelivery limits and dead-lettering belong to the queue's redrive policy.
        """
        self._sqs.change_message_visibility(
            QueueUrl=self.job_queue_url,
            ReceiptHandle=message.receipt_handle,
            VisibilityTimeout=0,
        )
        logger.info(f"SQS reject msg_id={message.message_id} receive_count={message.receive_count}")

    def publish_json(
        self,
        envelope: Dict[str, Any],
        *,
        group_id: Optional[str] = None,
        dedup_id: Optional[str] = None
    ) -> str:
        """
        Publish a JSON message to the result queue.
        Assumes body <= 256KB.

        On a FIFO queue `dedup_id` should name the job the message answers;
        without one the body hash is used, which collapses identical bodies
        sent within the deduplication window.
        """
        body = json.dumps(envelope, separators=(",", ":"), ensure_ascii=False)
        params = {
            "QueueUrl": self.result_queue_url,
            "MessageBody": body,
            "MessageAttributes": {
                "user_id": {"DataType": "String", "StringValue": envelope.get("userId", "") or "unknown"},
                "content_type": {"DataType": "String", "StringValue": "application/json"},
            },
        }
        if self.fifo:
            params["MessageGroupId"] = group_id or envelope.get("userId", "default")
            params["MessageDeduplicationId"] = dedup_id or hashlib.sha256(body.encode("utf-8")).hexdigest()

        logger.debug(f"Message body size: {len(body)} bytes")

        resp = self._sqs.send_message(**params)
        msg_id = resp.get("MessageId", "")
        logger.info("SQS publish ok user_id=%s msg_id=%s", envelope.get("userId"), msg_id)
        return msg_id

    def publish_result(self, result: JobResult, dedup_id: Optional[str] = None) -> str:
        """Publish a JobResult; `dedup_id` is the inbound job's message id."""
        return self.publish_json(result.to_message(), group_id=result.user_id, dedup_id=dedup_id)

    def close(self) -> None:
        close = getattr(self._sqs, "close", None)
        if callable(close):
            close()
        logger.info("SQS client closed")
