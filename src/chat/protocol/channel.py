"""Frame channel between a turn's orchestrator task and the transport."""

import asyncio
from typing import AsyncIterator, Dict, Set

from .frames import DoneFrame, Frame, StageFrame


class ProtocolViolation(RuntimeError):
    """Raised when a frame sequence breaks the turn framing contract."""


_CLOSED = object()


class FrameChannel:
    """Single-turn frame queue that enforces stage and terminal framing.

    The producer calls ``emit`` synchronously; the consumer iterates with
    ``async for``. ``close`` marks the consumer as gone: later emits are
    dropped and iteration ends.
    """

    def __init__(self, anchor_id: str):
        self.anchor_id = anchor_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._done = False
        self._closed = False
        self._started: Set[str] = set()
        self._finished: Dict[str, str] = {}
        self.emitted = 0

    @property
    def done(self) -> bool:
        return self._done

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, frame: Frame) -> bool:
        if self._closed:
            return False
        if self._done:
            raise ProtocolViolation(f"frame {type(frame).__name__} emitted after done")
        if isinstance(frame, StageFrame):
            self._check_stage(frame)
        if isinstance(frame, DoneFrame):
            self._done = True
        self._queue.put_nowait(frame)
        self.emitted += 1
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def _check_stage(self, frame: StageFrame) -> None:
        if frame.status == "start":
            if frame.stage in self._started:
                raise ProtocolViolation(f"stage {frame.stage!r} started twice")
            self._started.add(frame.stage)
            return
        if frame.stage not in self._started:
            raise ProtocolViolation(f"stage {frame.stage!r} {frame.status} without start")
        if frame.stage in self._finished:
            raise ProtocolViolation(
                f"stage {frame.stage!r} already finished with {self._finished[frame.stage]!r}"
            )
        self._finished[frame.stage] = frame.status

    async def __aiter__(self) -> AsyncIterator[Frame]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
            if isinstance(item, DoneFrame):
                return
