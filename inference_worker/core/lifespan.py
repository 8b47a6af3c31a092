# core/lifespan.py
"""
Worker lifecycle: STARTING → RUNNING → DRAINING → STOPPED.

The controller is the only place connections are opened or closed. It
feeds deliveries into the task pipeline, refuses new work once a shutdown
is requested, and waits for in-flight jobs before closing the queue.
"""

import asyncio
from enum import Enum
from typing import Callable, Optional, Set

from botocore.exceptions import BotoCoreError, ClientError

from inference_worker.core.config import Settings, settings as default_settings
from inference_worker.core.errors import ConfigurationError
from inference_worker.core.logger import logger


class WorkerState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


_ORDER = [WorkerState.STARTING, WorkerState.RUNNING, WorkerState.DRAINING, WorkerState.STOPPED]

EXIT_OK = 0
EXIT_FAILURE = 1


def build_components(settings: Settings):
    """
    Open the Redis pool and AWS clients and wire the pipeline.

    Returns:
        (pipeline, gateway, redis_client)
    """
    from inference_worker.core.aws_client import (
        get_bedrock_runtime_client,
        get_sqs_client,
        validate_aws_credentials,
    )
    from inference_worker.core.redis_client import RedisClient
    from inference_worker.integrations.sqs_client import SqsQueueGateway
    from inference_worker.models.bedrock_models import BedrockModels
    from inference_worker.services.conversation_service import ConversationService
    from inference_worker.services.task_pipeline import TaskPipeline

    validate_aws_credentials(settings)

    redis_client = RedisClient(settings)
    store = ConversationService(redis_client.connect(), settings)
    try:
        inference = BedrockModels(get_bedrock_runtime_client(settings), settings)
        gateway = SqsQueueGateway(get_sqs_client(settings), settings)
    except Exception:
        # The caller never receives the pool, so release it here
        redis_client.close()
        raise

    return TaskPipeline(store, inference, gateway, settings), gateway, redis_client


class WorkerLifecycle:
    """
    Owns the pipeline, the queue gateway and the Redis pool for one process.

    Args:
        settings: validated before anything is opened
        factory: builds (pipeline, gateway, redis_client); swapped in tests
    """

    def __init__(self, settings: Settings = default_settings, factory: Callable = build_components):
        self.settings = settings
        self.factory = factory
        self.state = WorkerState.STARTING
        self.exit_code = EXIT_OK
        self.pipeline = None
        self.gateway = None
        self.redis_client = None
        self._in_flight: Set[asyncio.Task] = set()
        self._stop_event: Optional[asyncio.Event] = None
        self._semaphore: Optional[asyncio.Semaphore] = None

    # ========================================================================
    # STATE
    # ========================================================================

    def _transition(self, new_state: WorkerState) -> None:
        if _ORDER.index(new_state) < _ORDER.index(self.state):
            raise RuntimeError(f"Illegal worker transition {self.state.value} -> {new_state.value}")
        if new_state != self.state:
            logger.info(f"Worker state {self.state.value} -> {new_state.value}")
            self.state = new_state

    @property
    def accepting(self) -> bool:
        return self.state == WorkerState.RUNNING

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # ========================================================================
    # STARTUP
    # ========================================================================

    def start(self) -> None:
        """
        Validate configuration and open connections.

        Raises:
            ConfigurationError: a required setting is missing
        """
        missing = self.settings.missing_required()
        if missing:
            raise ConfigurationError(missing)

        self.pipeline, self.gateway, self.redis_client = self.factory(self.settings)
        self._stop_event = asyncio.Event()
        self._semaphore = asyncio.Semaphore(max(1, self.settings.WORKER_MAX_CONCURRENCY))
        self._transition(WorkerState.RUNNING)
        logger.info(
            "Worker started",
            extra={
                "job_queue": self.settings.SQS_JOB_QUEUE_URL,
                "max_concurrency": self.settings.WORKER_MAX_CONCURRENCY
            }
        )

    # ========================================================================
    # SHUTDOWN
    # ========================================================================

    def request_shutdown(self, reason: str = "requested") -> None:
        """Stop accepting deliveries; in-flight jobs keep running."""
        if self.state in (WorkerState.DRAINING, WorkerState.STOPPED):
            return
        logger.info(f"Initiating graceful shutdown ({reason})...")
        if self.state == WorkerState.RUNNING:
            self._transition(WorkerState.DRAINING)
        if self._stop_event is not None:
            self._stop_event.set()

    def fatal(self, reason: str, exc: Optional[BaseException] = None) -> None:
        """Record a non-zero exit and drain."""
        if exc is not None:
            logger.error(f"Fatal fault: {reason}", exc_info=exc)
        else:
            logger.error(f"Fatal fault: {reason}")
        self.exit_code = EXIT_FAILURE
        self.request_shutdown(reason="fatal")

    async def drain(self) -> None:
        """Wait for in-flight jobs, then close connections and stop."""
        if self._in_flight:
            logger.info(f"Waiting for {len(self._in_flight)} in-flight job(s) to finish")
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

        self._close_connections()
        self._transition(WorkerState.STOPPED)
        logger.info(f"Worker stopped with exit code {self.exit_code}")

    def _close_connections(self) -> None:
        if self.gateway is not None:
            try:
                self.gateway.close()
            except Exception as e:
                logger.error(f"Error during graceful shutdown: {e}")
                self.exit_code = EXIT_FAILURE
        if self.redis_client is not None:
            try:
                self.redis_client.close()
            except Exception as e:
                logger.error(f"Error during graceful shutdown: {e}")
                self.exit_code = EXIT_FAILURE

    # ========================================================================
    # CONSUME LOOP
    # ========================================================================

    def _on_job_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        self._semaphore.release()
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.fatal("unhandled error in job pipeline", exc)

    def dispatch(self, message) -> asyncio.Task:
        task = asyncio.create_task(self.pipeline.handle(message))
        self._in_flight.add(task)
        task.add_done_callback(self._on_job_done)
        return task

    async def _poll(self):
        return await asyncio.to_thread(
            self.gateway.receive,
            self.settings.SQS_MAX_MESSAGES,
            self.settings.SQS_WAIT_TIME_SECS,
        )

    async def _return_to_queue(self, message) -> None:
        try:
            await asyncio.to_thread(self.gateway.reject, message)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to return msg_id={message.message_id} to queue: {e}")

    async def consume(self) -> None:
        """Receive and dispatch until a shutdown is requested."""
        while self.accepting:
            poll = asyncio.ensure_future(self._poll())
            stop = asyncio.ensure_future(self._stop_event.wait())
            await asyncio.wait({poll, stop}, return_when=asyncio.FIRST_COMPLETED)
            stop.cancel()

            if not poll.done():
                # Shutdown won the race; anything this poll returns goes back
                try:
                    messages = await poll
                except (BotoCoreError, ClientError) as e:
                    logger.error(f"Failed to receive from job queue: {e}")
                    break
                for message in messages:
                    await self._return_to_queue(message)
                break

            try:
                messages = poll.result()
            except (BotoCoreError, ClientError) as e:
                logger.error(f"Failed to receive from job queue: {e}")
                await asyncio.sleep(1)
                continue

            for index, message in enumerate(messages):
                if not self.accepting:
                    for leftover in messages[index:]:
                        await self._return_to_queue(leftover)
                    break
                await self._semaphore.acquire()
                if not self.accepting:
                    self._semaphore.release()
                    for leftover in messages[index:]:
                        await self._return_to_queue(leftover)
                    break
                self.dispatch(message)

    async def run(self) -> int:
        """
        Full lifecycle. Returns the process exit code.
        """
        try:
            self.start()
        except ConfigurationError as e:
            logger.error(f"Failed to initialize worker: {e}")
            self.exit_code = EXIT_FAILURE
            self._transition(WorkerState.STOPPED)
            return self.exit_code
        except Exception as e:
            logger.error(f"Failed to initialize worker: {e}")
            self.exit_code = EXIT_FAILURE
            self._close_connections()
            self._transition(WorkerState.STOPPED)
            return self.exit_code

        try:
            await self.consume()
        except Exception as e:
            self.fatal("consume loop crashed", e)
        finally:
            self.request_shutdown(reason="consume loop exited")
            await self.drain()
        return self.exit_code
