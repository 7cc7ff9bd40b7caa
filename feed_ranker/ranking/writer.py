"""
Background write path for impressions, analytics scores and interactions.

Batches go into a bounded queue that a small pool of worker tasks drains
after the response has been returned. When the queue is full the oldest
batch is dropped. Failed writes are logged and counted, never raised.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from feed_ranker.errors import WriteFailure
from feed_ranker.telemetry import IMPRESSION_QUEUE_DROPPED, WRITE_FAILURES

logger = logging.getLogger(__name__)

Sink = Callable[[Any], Awaitable[bool]]


class BackgroundWriter:
    def __init__(self, queue_size: int = 1000, workers: int = 4) -> None:
        self._queue: asyncio.Queue[tuple[str, Sink, Any]] = asyncio.Queue(maxsize=queue_size)
        self._worker_count = max(1, workers)
        self._tasks: list[asyncio.Task] = []

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._run(), name=f"feed-writer-{i}")
            for i in range(self._worker_count)
        ]
        logger.info("Background writer started with %d workers", self._worker_count)

    async def stop(self, drain_timeout: Optional[float] = 5.0) -> None:
        """Give queued batches a chance to land, then stop the workers."""
        if self._tasks:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("Writer stopped with %d batches still queued", self.pending)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def drain(self) -> None:
        await self._queue.join()

    def submit(self, sink_name: str, sink: Sink, payload: Any) -> None:
        if not payload:
            return
        try:
            self._queue.put_nowait((sink_name, sink, payload))
        except asyncio.QueueFull:
            dropped_sink, _, _ = self._queue.get_nowait()
            self._queue.task_done()
            IMPRESSION_QUEUE_DROPPED.inc()
            logger.warning(
                "Write queue full — dropped oldest %s batch to enqueue %s",
                dropped_sink,
                sink_name,
            )
            self._queue.put_nowait((sink_name, sink, payload))

    async def _run(self) -> None:
        while True:
            sink_name, sink, payload = await self._queue.get()
            try:
                if await sink(payload) is False:
                    raise WriteFailure(sink_name, "sink reported failure")
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                WRITE_FAILURES.labels(sink=sink_name).inc()
                logger.warning("Best-effort write failed (%s): %s", sink_name, exc)
            finally:
                self._queue.task_done()
