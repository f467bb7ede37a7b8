"""
Dispatches component and modal events to the active message that owns them.
"""

import traceback
from enum import Enum
from typing import Callable, Optional

from active_message import (
    GENERAL_ISSUE,
    NOT_OWNER_NOTICE,
    STALE_NOTICE,
    ComponentEvent,
    ModalEvent,
    OutcomeKind,
    TerminalError,
    ValidationError,
)
from active_registry import ActiveMessageEntry, ActiveMessageRegistry


class RouteResult(Enum):
    STALE = "stale"
    UNAUTHORIZED = "unauthorized"
    IGNORED = "ignored"
    UPDATED = "updated"
    CLOSED = "closed"
    MODAL = "modal"
    INVALID = "invalid"
    FAILED = "failed"


class InteractionRouter:
    """Routes interaction events through the registry.

    `on_rendered(message, instance, page)` is called after every successful
    edit so pending background artifacts of the new page get watched.
    """

    def __init__(self, registry: ActiveMessageRegistry, platform, on_rendered: Optional[Callable] = None):
        self.registry = registry
        self.platform = platform
        self.on_rendered = on_rendered

    async def route_component(self, event: ComponentEvent) -> RouteResult:
        return await self._route(event, is_modal=False)

    async def route_modal(self, event: ModalEvent) -> RouteResult:
        return await self._route(event, is_modal=True)

    async def route(self, event) -> RouteResult:
        return await self._route(event, is_modal=isinstance(event, ModalEvent))

    async def _route(self, event, is_modal: bool) -> RouteResult:
        try:
            entry = self.registry.lookup(event.message)
            if entry is None:
                await self._reply(event, STALE_NOTICE)
                return RouteResult.STALE

            if not entry.is_owner(event.actor_id):
                await self._reply(event, NOT_OWNER_NOTICE)
                return RouteResult.UNAUTHORIZED

            async with self.registry.lock_for(event.message):
                # the entry may have expired or been replaced while we waited
                entry = self.registry.lookup(event.message)
                if entry is None:
                    await self._reply(event, STALE_NOTICE)
                    return RouteResult.STALE
                if not entry.is_owner(event.actor_id):
                    await self._reply(event, NOT_OWNER_NOTICE)
                    return RouteResult.UNAUTHORIZED

                if is_modal:
                    return await self._handle_modal(entry, event)
                return await self._handle_component(entry, event)
        except Exception as e:
            print(f"[ROUTER] Unhandled error for message {event.message.message_id}: {e}")
            traceback.print_exc()
            await self._reply(event, GENERAL_ISSUE)
            return RouteResult.FAILED

    async def _handle_component(self, entry: ActiveMessageEntry, event: ComponentEvent) -> RouteResult:
        instance = entry.instance
        saved = instance.save_state()

        try:
            outcome = await instance.on_component(event)
        except ValidationError as e:
            await self._reply(event, str(e))
            return RouteResult.INVALID
        except TerminalError as e:
            return await self._close(entry, event, e)

        if outcome.kind is OutcomeKind.IGNORE:
            await self.platform.acknowledge(event)
            return RouteResult.IGNORED

        self.registry.touch(entry.message)

        if outcome.kind is OutcomeKind.MODAL:
            await self.platform.open_modal(event, outcome.modal)
            return RouteResult.MODAL

        if outcome.kind is OutcomeKind.CLOSE:
            return await self._close(entry, event)

        return await self._render(entry, event, saved)

    async def _handle_modal(self, entry: ActiveMessageEntry, event: ModalEvent) -> RouteResult:
        saved = entry.instance.save_state()
        try:
            await entry.instance.on_modal(event)
        except ValidationError as e:
            await self._reply(event, str(e))
            return RouteResult.INVALID
        except TerminalError as e:
            return await self._close(entry, event, e)

        self.registry.touch(entry.message)
        return await self._render(entry, event, saved)

    async def _render(self, entry: ActiveMessageEntry, event, saved=None) -> RouteResult:
        """Draw and show the new state; on failure go back to the state still on screen."""
        instance = entry.instance

        if instance.defer:
            await self.platform.acknowledge(event)

        try:
            page = await instance.render_page()
            controls = instance.render_controls()
            await self.platform.edit_page(entry.message, page, controls, event)
        except TerminalError as e:
            return await self._close(entry, event, e)
        except Exception as e:
            # one bad render must not strand the user on a dead message
            print(f"[ROUTER] Failed to render page for message {entry.message.message_id}: {e}")
            traceback.print_exc()
            if saved is not None:
                instance.restore_state(saved)
            await self._reply(event, GENERAL_ISSUE)
            return RouteResult.FAILED

        if self.on_rendered is not None:
            self.on_rendered(entry.message, instance, page)
        return RouteResult.UPDATED

    async def _close(self, entry: ActiveMessageEntry, event, error: Optional[Exception] = None) -> RouteResult:
        if error is not None:
            print(f"[ROUTER] Closing message {entry.message.message_id}: {error}")

        controls = entry.instance.render_controls()
        await self.registry.close(entry.message)

        try:
            await self.platform.disable_controls(entry.message, controls.disabled(), event)
        except TerminalError:
            pass
        except Exception as e:
            print(f"[ROUTER] Failed to disable controls of message {entry.message.message_id}: {e}")
        return RouteResult.CLOSED

    async def _reply(self, event, content: str) -> None:
        try:
            await self.platform.reply_ephemeral(event, content)
        except Exception as e:
            print(f"[ROUTER] Failed to send notice: {e}")
