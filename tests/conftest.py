"""Shared fixtures: a recording chat platform, a manual clock and a small paginated list."""

import sys
from pathlib import Path

import pytest

# modules live at the repository root
sys.path.insert(0, str(Path(__file__).parent.parent))

from active_message import (  # noqa: E402
    ChatPlatform,
    CommandOrigin,
    MessageGoneError,
    MessageIdentity,
    PageContent,
)
from pagination import PaginatedMessage  # noqa: E402


class ManualClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePlatform(ChatPlatform):
    """Records every call the core makes to the chat platform."""

    def __init__(self):
        self.sent = []
        self.edits = []
        self.disabled = []
        self.replies = []
        self.modals = []
        self.acks = []
        self.calls = []
        self.gone = set()
        self.edit_error = None
        self.disable_error = None
        self._next_id = 500

    async def send_page(self, origin, page, controls):
        self._next_id += 1
        message = MessageIdentity(origin.channel_id, self._next_id)
        self.sent.append((message, page, controls))
        self.calls.append("send")
        return message

    async def edit_page(self, message, page, controls, event=None):
        self.calls.append("edit")
        if message in self.gone:
            raise MessageGoneError(f"{message.message_id} deleted")
        if self.edit_error is not None:
            raise self.edit_error
        self.edits.append((message, page, controls, event))

    async def disable_controls(self, message, controls, event=None):
        self.calls.append("disable")
        if self.disable_error is not None:
            raise self.disable_error
        self.disabled.append((message, controls, event))

    async def reply_ephemeral(self, event, content):
        self.calls.append("reply")
        self.replies.append((event.actor_id, content))

    async def open_modal(self, event, modal):
        self.calls.append("modal")
        self.modals.append((event, modal))

    async def acknowledge(self, event):
        self.calls.append("ack")
        self.acks.append(event)


class NumberList(PaginatedMessage):
    """Paginated list of the numbers 1..total used throughout the tests."""

    per_page = 15

    def __init__(self, owner_id: int, total: int = 37):
        super().__init__(owner_id, total)
        self.items = list(range(1, total + 1))
        self.closed = 0

    async def render_page(self) -> PageContent:
        start, end = self.pages.page_window()
        content = ", ".join(str(n) for n in self.items[start:end])
        return PageContent(content=f"{content}\n{self.pages.page_label()}")

    async def on_close(self) -> None:
        self.closed += 1


OWNER = 111
OTHER = 222


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def origin():
    return CommandOrigin(owner_id=OWNER, channel_id=42)
