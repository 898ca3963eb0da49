# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Stream Tee
#
# Splits one async byte stream into independent branches. A single pump
# task reads the source and fans every chunk out to one asyncio.Queue per
# branch, so a slow or abandoned reader on one branch never stalls the
# other. End of stream and source errors are delivered to every branch.
#
# cancel() is final: chunks not yet read are dropped, every branch raises
# TransportError on its next read, and the pump never starts again.

import asyncio
import logging
from typing import AsyncIterator, List, Optional

from inferproof.errors import TransportError

logger = logging.getLogger(__name__)

_END = object()


class _Failure:
    def __init__(self, error: BaseException):
        self.error = error


class StreamTee:
    """Fan one async byte iterator out to `branches` readers."""

    def __init__(self, source: AsyncIterator[bytes], branches: int = 2):
        self._source = source
        self._queues: List[asyncio.Queue] = [asyncio.Queue() for _ in range(branches)]
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    def start(self) -> None:
        if self._task is None and not self._cancelled:
            self._task = asyncio.ensure_future(self._pump())

    def _broadcast(self, item) -> None:
        for queue in self._queues:
            queue.put_nowait(item)

    async def _pump(self) -> None:
        try:
            async for chunk in self._source:
                self._broadcast(chunk)
        except asyncio.CancelledError:
            if not self._cancelled:
                self._broadcast(_Failure(TransportError("stream cancelled")))
            raise
        except Exception as e:
            logger.warning(f"Source stream failed: {e}")
            self._broadcast(_Failure(e))
        else:
            self._broadcast(_END)

    async def branch(self, index: int) -> AsyncIterator[bytes]:
        """Iterate the chunks delivered to one branch."""
        self.start()
        queue = self._queues[index]
        while True:
            item = await queue.get()
            if item is _END:
                return
            if isinstance(item, _Failure):
                raise item.error
            yield item

    def cancel(self) -> None:
        """Stop the pump and fail every branch, whether or not it has started."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        for queue in self._queues:
            while not queue.empty():
                queue.get_nowait()
        self._broadcast(_Failure(TransportError("stream cancelled")))

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._cancelled or (self._task is not None and self._task.done())
