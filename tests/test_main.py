from __future__ import annotations

import asyncio
import os
import signal

from inference_worker.core.lifespan import EXIT_FAILURE, WorkerLifecycle, WorkerState
from inference_worker.main import install_exception_handler, install_signal_handlers


def test_sigterm_starts_draining_the_given_worker(settings) -> None:
    worker = WorkerLifecycle(settings)

    async def _scenario():
        loop = asyncio.get_running_loop()
        install_signal_handlers(loop, worker)
        worker._transition(WorkerState.RUNNING)
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.sleep(0.05)

    asyncio.run(_scenario())

    assert worker.state == WorkerState.DRAINING
    assert worker.exit_code == 0


def test_unhandled_async_failure_is_fatal(settings) -> None:
    worker = WorkerLifecycle(settings)

    async def _scenario():
        loop = asyncio.get_running_loop()
        install_exception_handler(loop, worker)
        worker._transition(WorkerState.RUNNING)
        loop.call_exception_handler({"message": "Task exception was never retrieved", "exception": RuntimeError("x")})

    asyncio.run(_scenario())

    assert worker.exit_code == EXIT_FAILURE
    assert worker.state == WorkerState.DRAINING
