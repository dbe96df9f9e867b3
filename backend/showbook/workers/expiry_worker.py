"""
Expiry worker: polls the durable expiry_tasks table and releases unpaid holds.

Runs inside the API process (started from the FastAPI lifespan) or on its
own:

    python -m showbook.workers.expiry_worker

Several workers may run at once; the per-task lease in claim_task keeps
them from evaluating the same task concurrently. Waiting between passes is
an asyncio sleep, so no thread is held while nothing is due.
"""

import asyncio
import signal
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from showbook.core.config import get_settings
from showbook.core.logging import get_logger, setup_logging
from showbook.services.expiry_service import run_due_tasks

logger = get_logger(__name__)


class ExpiryWorker:

    def __init__(
        self,
        session_factory: async_sessionmaker,
        poll_interval: Optional[float] = None,
        batch_size: Optional[int] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.poll_interval = poll_interval if poll_interval is not None else settings.EXPIRY_POLL_INTERVAL_SECONDS
        self.batch_size = batch_size or settings.EXPIRY_BATCH_SIZE
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> dict[str, int]:
        return await run_due_tasks(self.session_factory, limit=self.batch_size)

    async def run(self) -> None:
        logger.info("expiry_worker_started", poll_interval=self.poll_interval, batch_size=self.batch_size)
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                # Tasks stay in the table; the next pass picks them up
                logger.error("expiry_pass_failed", error=str(e), exc_info=True)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                continue
        logger.info("expiry_worker_stopped")

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run(), name="expiry-worker")
        return self._task

    def request_stop(self) -> None:
        self._stopping.set()

    async def stop(self) -> None:
        self.request_stop()
        if self._task is not None:
            await self._task
            self._task = None


async def _serve() -> None:
    from showbook.db.session import AsyncSessionLocal, engine

    worker = ExpiryWorker(AsyncSessionLocal)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.request_stop)

    try:
        await worker.run()
    finally:
        await engine.dispose()


def main() -> None:
    setup_logging(service="expiry-worker")
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
