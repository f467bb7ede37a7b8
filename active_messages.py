"""
Entry point command handlers use to hand an interactive listing to the core.

ActiveMessages owns the registry, the router and the sweeper of one bot and is
passed explicitly to whoever needs it (the bot keeps it as
`bot.active_messages`).
"""

import asyncio
import time
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set, Tuple

from active_message import ActiveMessage, CommandOrigin, MessageIdentity, PageContent, TerminalError
from active_registry import DEFAULT_TIMEOUT, ActiveMessageRegistry
from interaction_router import InteractionRouter
from sweeper import Sweeper


@dataclass
class _Watch:
    """A follow-up waiting on one pending slot of one message."""
    instance: ActiveMessage
    slot: Any
    token: Any


class ActiveMessages:
    def __init__(
        self,
        platform,
        default_timeout: float = DEFAULT_TIMEOUT,
        sweep_interval: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.platform = platform
        self.registry = ActiveMessageRegistry(clock=clock, default_timeout=default_timeout)
        self.router = InteractionRouter(self.registry, platform, on_rendered=self.watch_artifact)
        self.sweeper = Sweeper(self.registry, platform, interval=sweep_interval)
        self._followups: Set[asyncio.Task] = set()
        self._watching: Dict[Tuple[MessageIdentity, Any], _Watch] = {}
        platform.bind(self.router)

    async def begin_pagination(
        self,
        instance: ActiveMessage,
        origin: CommandOrigin,
        ttl: Optional[float] = None,
    ) -> MessageIdentity:
        """Render the first page, post it, and track it if it has controls."""
        page = await instance.render_page()
        controls = instance.render_controls()
        message = await self.platform.send_page(origin, page, controls)

        if controls.is_empty() and page.pending is None:
            # nothing to interact with and nothing left to show, release right away
            await instance.on_close()
            return message

        owner_id = origin.owner_id if instance.owner_only else None
        ttl = ttl if ttl is not None else instance.expires_after
        await self.registry.begin(instance, message, owner_id, ttl)
        self.watch_artifact(message, instance, page)
        return message

    def watch_artifact(self, message: MessageIdentity, instance: ActiveMessage, page: PageContent) -> None:
        """Edit the message once the page's background artifact resolves.

        A slot has one consumer per message: rendering the same pending slot
        again (navigating away and back) only updates the state it belongs to.
        """
        if page.pending is None:
            return
        token = instance.state_token()
        key = (message, page.pending)
        watching = self._watching.get(key)
        if watching is not None and watching.instance is instance:
            watching.token = token
            return

        watching = _Watch(instance, page.pending, token)
        self._watching[key] = watching
        task = asyncio.create_task(self._finish_artifact(message, watching))
        self._followups.add(task)
        task.add_done_callback(self._followups.discard)

    async def _finish_artifact(self, message: MessageIdentity, watching: "_Watch") -> None:
        instance, slot = watching.instance, watching.slot
        try:
            await slot.wait()

            async with self.registry.lock_for(message):
                entry = self.registry.get(message)
                if entry is None or entry.closed or entry.instance is not instance:
                    return
                if instance.state_token() != watching.token:
                    # the user navigated away, this artifact is stale
                    return

                try:
                    page = await instance.render_page()
                    controls = instance.render_controls()
                    await self.platform.edit_page(message, page, controls)
                except TerminalError as e:
                    print(f"[ARTIFACT] Message {message.message_id} is gone: {e}")
                    await self.registry.close(message)
                    return
                except Exception as e:
                    print(f"[ARTIFACT] Failed to show artifact on message {message.message_id}: {e}")
                    traceback.print_exc()
                    return
        finally:
            if self._watching.get((message, slot)) is watching:
                del self._watching[(message, slot)]

        if page.pending is not None and page.pending is not slot:
            self.watch_artifact(message, instance, page)

    async def close(self, message: MessageIdentity) -> bool:
        async with self.registry.lock_for(message):
            entry = await self.registry.close(message)
        if entry is None:
            return False
        try:
            await self.platform.disable_controls(message, entry.instance.render_controls().disabled())
        except Exception as e:
            print(f"[WARNING] Failed to disable controls of message {message.message_id}: {e}")
        return True

    def start(self) -> asyncio.Task:
        return self.sweeper.start()

    async def shutdown(self) -> None:
        """Stop sweeping and close every live message."""
        self.sweeper.stop()
        for entry in self.registry.entries():
            await self.close(entry.message)
        for task in list(self._followups):
            task.cancel()
