# services/task_pipeline.py
"""
Task pipeline: one queue message in, at most one result message out.

RECEIVED → VALIDATED → CONTEXT_LOADED → INFERRED → RESPONSE_VALIDATED
→ PERSISTED → PUBLISHED, with an early exit to DISCARDED from any stage.

Jobs for the same user run strictly one after another in acceptance order;
jobs for different users interleave on the event loop while their blocking
client calls run in worker threads.
"""

import asyncio
import json
from typing import Optional, Union

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from inference_worker.core.config import Settings, settings as default_settings
from inference_worker.core.errors import (
    ContextStoreFailure,
    InferenceFailure,
    InferenceFailureKind,
    MalformedJob,
    PublishFailure,
)
from inference_worker.core.logger import logger
from inference_worker.integrations.sqs_client import QueueMessage
from inference_worker.schemas.job_models import (
    ConversationContext,
    Job,
    JobOutcome,
    JobResult,
    JobStage,
    Turn,
)
from inference_worker.services.user_sequencer import UserSequencer
from inference_worker.utils.log_response import log_job_result


def _preview(text: str, limit: int = 100) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class TaskPipeline:
    """
    Orchestrates the context store, inference client and queue gateway
    for each job.

    Args:
        store: object with get(user_id) and append(user_id, turn)
        inference: object with complete(user_id, new_input, context)
        gateway: object with publish_result(result, dedup_id), ack(message), reject(message)
    """

    def __init__(self, store, inference, gateway, settings: Settings = default_settings):
        self.store = store
        self.inference = inference
        self.gateway = gateway
        self.job_timeout = settings.JOB_TIMEOUT_SECS
        self.sequencer = UserSequencer()

    # ========================================================================
    # INGEST
    # ========================================================================

    def ingest(self, raw_message: Union[bytes, str]) -> Job:
        """
        Parse a raw message body into a Job.

        Raises:
            MalformedJob: body is not UTF-8, not JSON, not an object, or
                lacks a non-empty string userId/query
        """
        if isinstance(raw_message, (bytes, bytearray)):
            try:
                raw_message = raw_message.decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedJob(f"Message body is not UTF-8: {e}", reason="not_utf8") from e

        if not isinstance(raw_message, str) or not raw_message.strip():
            raise MalformedJob("Message body is empty", reason="empty_body")

        try:
            payload = json.loads(raw_message)
        except (ValueError, RecursionError) as e:
            # RecursionError: nesting deeper than the decoder can follow
            raise MalformedJob(f"Message body is not valid JSON: {e}", reason="not_json") from e

        if not isinstance(payload, dict):
            raise MalformedJob(
                f"Message body must be a JSON object, got {type(payload).__name__}",
                reason="not_object",
            )

        try:
            return Job.model_validate(payload)
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise MalformedJob(
                f"Job data missing or invalid field(s): {', '.join(fields)}",
                reason="invalid_fields",
            ) from e

    # ========================================================================
    # RUN
    # ========================================================================

    async def _load_context(self, job: Job) -> ConversationContext:
        try:
            return await asyncio.to_thread(self.store.get, job.user_id)
        except ContextStoreFailure as e:
            logger.warning(
                f"Context read failed, continuing with empty context: {e}",
                extra={"user_id": job.user_id}
            )
            return ConversationContext.empty(job.user_id)

    async def _infer(self, job: Job, context: ConversationContext):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.inference.complete, job.user_id, job.query, context),
                timeout=self.job_timeout,
            )
        except asyncio.TimeoutError as e:
            raise InferenceFailure(
                f"Inference did not finish within {self.job_timeout}s",
                kind=InferenceFailureKind.TIMEOUT,
            ) from e

    @staticmethod
    def validate_response(raw) -> str:
        """
        Raises:
            InferenceFailure: INVALID_TYPE for non-strings, EMPTY_RESPONSE
                for strings that are blank after trimming
        """
        if not isinstance(raw, str):
            raise InferenceFailure(
                f"API response is of type {type(raw).__name__}, expected a string",
                kind=InferenceFailureKind.INVALID_TYPE,
            )
        text = raw.strip()
        if not text:
            raise InferenceFailure(
                "Received an empty string as response from the model",
                kind=InferenceFailureKind.EMPTY_RESPONSE,
            )
        return text

    def _discard_inference(self, job: Job, stage: JobStage, failure: InferenceFailure) -> JobOutcome:
        extra = {
            "user_id": job.user_id,
            "query_preview": _preview(job.query),
            "failure_kind": failure.kind.value,
        }
        if failure.kind == InferenceFailureKind.INVALID_TYPE:
            logger.error(f"InferenceFailure[invalid_type] userId={job.user_id}: {failure}", extra=extra)
        elif failure.kind == InferenceFailureKind.EMPTY_RESPONSE:
            logger.error(
                f"InferenceFailure[empty_response] userId={job.user_id}, query={_preview(job.query)}",
                extra=extra,
            )
        else:
            logger.error(
                f"InferenceFailure[{failure.kind.value}] userId={job.user_id}, query={_preview(job.query)}: {failure}",
                extra=extra,
            )
        return JobOutcome(
            stage=JobStage.DISCARDED,
            last_stage=stage,
            user_id=job.user_id,
            failure=failure,
        )

    async def run(self, job: Job, message_id: Optional[str] = None) -> JobOutcome:
        """
        Take a validated job through context load, inference, response
        validation, persistence and publication.

        `message_id` identifies the inbound delivery; on a FIFO result queue
        it becomes the deduplication id, so two identical replies to
        different jobs are both delivered.

        The stored context is only written after a validated response. A
        failed write is logged and the result is still published.

        Returns:
            JobOutcome with stage PUBLISHED or DISCARDED
        """
        context = await self._load_context(job)
        stage = JobStage.CONTEXT_LOADED

        try:
            raw = await self._infer(job, context)
            stage = JobStage.INFERRED
            response = self.validate_response(raw)
        except InferenceFailure as failure:
            return self._discard_inference(job, stage, failure)
        stage = JobStage.RESPONSE_VALIDATED

        persisted = True
        try:
            await asyncio.to_thread(self.store.append, job.user_id, Turn(query=job.query, response=response))
            stage = JobStage.PERSISTED
        except ContextStoreFailure as e:
            persisted = False
            logger.warning(
                f"Context append failed; next call for this user will lack this turn: {e}",
                extra={"user_id": job.user_id}
            )

        result = JobResult(user_id=job.user_id, response=response)
        try:
            await asyncio.to_thread(self.gateway.publish_result, result, message_id)
        except (BotoCoreError, ClientError) as e:
            failure = PublishFailure(f"Failed to publish result for {job.user_id}: {e}")
            logger.error(str(failure), extra={"user_id": job.user_id})
            return JobOutcome(
                stage=JobStage.DISCARDED,
                last_stage=stage,
                user_id=job.user_id,
                failure=failure,
                persisted=persisted,
            )

        log_job_result(
            user_id=job.user_id,
            query=job.query,
            response=response,
            context_turns=len(context.turns),
            persisted=persisted,
        )
        return JobOutcome(
            stage=JobStage.PUBLISHED,
            last_stage=JobStage.PUBLISHED,
            user_id=job.user_id,
            result=result,
            persisted=persisted,
        )

    # ========================================================================
    # QUEUE ENVELOPE
    # ========================================================================

    async def handle(self, message: QueueMessage) -> JobOutcome:
        """
        Process one delivery end to end and settle it on the queue.

        Malformed and failed jobs are acknowledged so they are never
        redelivered; an inference timeout is rejected back to the queue.
        """
        try:
            job = self.ingest(message.body)
        except MalformedJob as e:
            logger.error(
                f"MalformedJob[{e.reason}] dropping msg_id={message.message_id}: {e}",
                extra={"message_id": message.message_id, "reason": e.reason}
            )
            outcome = JobOutcome(stage=JobStage.DISCARDED, last_stage=JobStage.RECEIVED, failure=e)
            outcome.acknowledged = await self._settle(message, ack=True)
            return outcome

        logger.info(
            f"Accepted job msg_id={message.message_id} userId={job.user_id}",
            extra={"user_id": job.user_id, "query_preview": _preview(job.query)}
        )

        async with self.sequencer.hold(job.user_id):
            outcome = await self.run(job, message_id=message.message_id)

        timed_out = (
            isinstance(outcome.failure, InferenceFailure)
            and outcome.failure.kind == InferenceFailureKind.TIMEOUT
        )
        outcome.acknowledged = await self._settle(message, ack=not timed_out)
        return outcome

    async def _settle(self, message: QueueMessage, ack: bool) -> Optional[bool]:
        """
        Returns True when acked, False when rejected, None when settling failed
        (the message then reappears after its visibility timeout).
        """
        try:
            if ack:
                await asyncio.to_thread(self.gateway.ack, message)
                return True
            await asyncio.to_thread(self.gateway.reject, message)
            return False
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to settle msg_id={message.message_id}: {e}")
            return None
