import asyncio
import traceback
from typing import Optional

from active_registry import ActiveMessageEntry, ActiveMessageRegistry


class Sweeper:
    """Periodically expires active messages nobody interacted with for too long.

    Expiry takes the same per-message lock as the router. Whoever gets the lock
    first wins: a click that lands first refreshes the entry and the sweep
    skips it, a sweep that lands first removes it and the click sees a stale
    message.
    """

    def __init__(self, registry: ActiveMessageRegistry, platform, interval: float = 10.0):
        self.registry = registry
        self.platform = platform
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def sweep_once(self) -> int:
        expired = 0
        for entry in self.registry.expired():
            if await self._expire(entry):
                expired += 1
        return expired

    async def _expire(self, entry: ActiveMessageEntry) -> bool:
        async with self.registry.lock_for(entry.message):
            current = self.registry.get(entry.message)
            if current is not entry or not entry.is_expired(self.registry.clock()):
                return False

            controls = entry.instance.render_controls()
            await self.registry.close(entry.message)

        # best effort, never retried
        try:
            await self.platform.disable_controls(entry.message, controls.disabled())
        except Exception as e:
            print(f"[SWEEPER] Failed to disable controls of message {entry.message.message_id}: {e}")
        return True

    async def run(self) -> None:
        while True:
            try:
                count = await self.sweep_once()
                if count:
                    print(f"[SWEEPER] Expired {count} active message(s), {len(self.registry)} remaining")
            except Exception as e:
                print(f"[SWEEPER] Sweep error: {e}")
                traceback.print_exc()
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="active-message-sweeper")
        return self._task

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
