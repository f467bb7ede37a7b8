"""
Single-producer/single-consumer handoff for slow page assets.

A producer task computes an image (or any payload) off the request path and
writes it into an ArtifactSlot exactly once. The page renderer shows interim
content while the slot is pending and swaps in the payload, or a fallback,
once it resolves. A slot whose producer exits without writing resolves as
UNAVAILABLE so nobody waits forever.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional


class ArtifactState(Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class ArtifactResult:
    state: ArtifactState
    data: Any = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is ArtifactState.READY


PENDING = ArtifactResult(ArtifactState.PENDING)


class ArtifactSlot:
    """Write-once slot shared by one producer task and one consumer."""

    def __init__(self, name: str = "artifact"):
        self.name = name
        self._result = PENDING
        self._resolved = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def __repr__(self):
        return f"ArtifactSlot({self.name!r}, {self._result.state.value})"

    @property
    def done(self) -> bool:
        return self._result.state is not ArtifactState.PENDING

    @property
    def result(self) -> ArtifactResult:
        return self._result

    def _write(self, result: ArtifactResult) -> None:
        if self.done:
            raise RuntimeError(f"{self.name} was already written")
        self._result = result
        self._resolved.set()

    def resolve(self, data) -> None:
        self._write(ArtifactResult(ArtifactState.READY, data=data))

    def fail(self, reason: str) -> None:
        self._write(ArtifactResult(ArtifactState.FAILED, reason=reason))

    def abandon(self, reason: str = "abandoned") -> None:
        """Give up on the slot. Idempotent; cancels a still running producer."""
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        if not self.done:
            self._write(ArtifactResult(ArtifactState.UNAVAILABLE, reason=reason))

    async def wait(self, timeout: Optional[float] = None) -> ArtifactResult:
        """Wait for the slot to resolve. Returns PENDING if `timeout` passes first."""
        if not self.done:
            try:
                await asyncio.wait_for(self._resolved.wait(), timeout)
            except asyncio.TimeoutError:
                return self._result
        return self._result


async def _produce(slot: ArtifactSlot, producer: Callable[[], Awaitable[Any]]) -> None:
    try:
        data = await producer()
    except asyncio.CancelledError:
        if not slot.done:
            slot.abandon("producer cancelled")
        raise
    except Exception as e:
        print(f"[ARTIFACT] Producer for {slot.name} failed: {e}")
        if not slot.done:
            slot.fail(str(e) or type(e).__name__)
        return

    if slot.done:
        return
    if data is None:
        slot.fail("producer returned nothing")
    else:
        slot.resolve(data)


def _release_on_exit(slot: ArtifactSlot):
    def callback(task: asyncio.Task) -> None:
        if not slot.done:
            slot.abandon("producer exited without a result")
    return callback


def spawn_artifact(producer: Callable[[], Awaitable[Any]], name: str = "artifact") -> ArtifactSlot:
    """Start `producer` in the background and return the slot it writes to.

    Must be called from a running event loop.
    """
    slot = ArtifactSlot(name)
    task = asyncio.create_task(_produce(slot, producer), name=f"artifact:{name}")
    task.add_done_callback(_release_on_exit(slot))
    slot._task = task
    return slot


async def wait_bounded(awaitable: Awaitable[Any], timeout: float, default=None, label: str = "call"):
    """Wait at most `timeout` seconds for `awaitable`.

    Past the deadline the waiting stops (the call itself keeps running, it is
    shielded) and `default` is returned. Errors from the call also yield
    `default` since the caller treats the result as optional.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout)
    except asyncio.TimeoutError:
        print(f"[WARNING] {label} did not answer within {timeout}s, continuing without it")
        task.add_done_callback(_drain)
        return default
    except asyncio.CancelledError:
        raise
    except Exception as e:
        print(f"[WARNING] {label} failed: {e}")
        return default


def _drain(task: asyncio.Future) -> None:
    if not task.cancelled():
        exc = task.exception()
        if exc is not None:
            print(f"[WARNING] Late failure after timeout: {exc}")
