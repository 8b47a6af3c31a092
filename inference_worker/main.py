import asyncio
import signal
import sys

from inference_worker.core.config import settings
from inference_worker.core.lifespan import WorkerLifecycle
from inference_worker.core.logger import logger


def install_signal_handlers(loop: asyncio.AbstractEventLoop, worker: WorkerLifecycle) -> None:
    """Route SIGTERM/SIGINT to the given worker's graceful shutdown."""
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, worker.request_shutdown, f"received {sig.name}")
        except (NotImplementedError, RuntimeError):
            # add_signal_handler is unavailable on Windows event loops
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(
                worker.request_shutdown, f"received {signal.Signals(signum).name}"
            ))


def install_exception_handler(loop: asyncio.AbstractEventLoop, worker: WorkerLifecycle) -> None:
    """Any async failure nobody awaited is fatal."""

    def _handler(loop, context):
        exc = context.get("exception")
        worker.fatal(f"Unhandled async failure: {context.get('message', 'unknown')}", exc)

    loop.set_exception_handler(_handler)


async def serve(worker: WorkerLifecycle) -> int:
    loop = asyncio.get_running_loop()
    install_signal_handlers(loop, worker)
    install_exception_handler(loop, worker)
    return await worker.run()


def main() -> None:
    worker = WorkerLifecycle(settings)
    logger.info(f"{settings.PROJECT_NAME} starting")
    try:
        exit_code = asyncio.run(serve(worker))
    except Exception as e:
        logger.error(f"Worker crashed: {e}", exc_info=e)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
