"""
Contract shared by every interactive ("active") message.

An active message is a posted chat message whose buttons, menus and modals are
backed by a live server-side object. The object renders the current page,
renders the controls for that page, and reacts to component and modal events.
The registry, router and sweeper only ever talk to this contract, so adding a
new command variant never touches them.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, List, NamedTuple, Optional, Tuple


STALE_NOTICE = "This interaction is no longer active, run the command again."
NOT_OWNER_NOTICE = "This is not your message, run the command yourself to interact with it."
GENERAL_ISSUE = "Something went wrong, please try again later."


# -------- Error taxonomy --------

class ActiveMessageError(Exception):
    """Base class for errors raised while handling an active message."""


class ValidationError(ActiveMessageError):
    """Bad user input such as an out of range jump target.

    The message is shown to the acting user as is, the entry stays active.
    """


class TerminalError(ActiveMessageError):
    """The data backing the message is permanently gone, the entry must close."""


class MessageGoneError(TerminalError):
    """The platform message no longer exists (e.g. deleted by a moderator)."""


# -------- Identities & events --------

class MessageIdentity(NamedTuple):
    channel_id: int
    message_id: int


@dataclass
class CommandOrigin:
    """Where a command was invoked and by whom.

    `handle` is the platform object used to answer (a discord.Interaction for the
    discord adapter), opaque to the core.
    """
    owner_id: int
    channel_id: int
    handle: Any = None


@dataclass
class ComponentEvent:
    message: MessageIdentity
    actor_id: int
    custom_id: str
    values: Tuple[str, ...] = ()
    handle: Any = None


@dataclass
class ModalEvent:
    message: MessageIdentity
    actor_id: int
    custom_id: str
    value: str = ""
    handle: Any = None


# -------- Page content --------

@dataclass
class Attachment:
    filename: str
    data: bytes


@dataclass
class PageContent:
    """Everything needed to draw one page of an active message.

    `embed` is a discord.Embed. `pending` is set when part of the page is still
    being computed in the background; the page is edited again once it resolves.
    """
    content: Optional[str] = None
    embed: Any = None
    attachment: Optional[Attachment] = None
    pending: Any = None

    def snapshot(self) -> tuple:
        embed = self.embed.to_dict() if self.embed is not None else None
        attachment = (self.attachment.filename, self.attachment.data) if self.attachment else None
        return self.content, embed, attachment


# -------- Control surface --------

class ButtonStyle(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    SUCCESS = "success"
    DANGER = "danger"


@dataclass(frozen=True)
class Button:
    custom_id: str
    label: Optional[str] = None
    emoji: Optional[str] = None
    style: ButtonStyle = ButtonStyle.SECONDARY
    disabled: bool = False


@dataclass(frozen=True)
class SelectOption:
    label: str
    value: str
    description: Optional[str] = None
    default: bool = False


@dataclass(frozen=True)
class SelectMenu:
    custom_id: str
    options: Tuple[SelectOption, ...]
    placeholder: Optional[str] = None
    disabled: bool = False


@dataclass
class ControlSurface:
    """Rows of buttons and select menus attached below a message."""
    rows: List[list] = field(default_factory=list)

    def add_row(self, *items) -> "ControlSurface":
        if items:
            self.rows.append(list(items))
        return self

    def extend(self, other: "ControlSurface") -> "ControlSurface":
        self.rows.extend(list(row) for row in other.rows)
        return self

    def is_empty(self) -> bool:
        return not any(self.rows)

    def items(self) -> list:
        return [item for row in self.rows for item in row]

    def find(self, custom_id: str):
        for item in self.items():
            if item.custom_id == custom_id:
                return item
        return None

    def disabled(self) -> "ControlSurface":
        return ControlSurface([[replace(item, disabled=True) for item in row] for row in self.rows])


@dataclass(frozen=True)
class ModalSpec:
    custom_id: str
    title: str
    label: str
    placeholder: Optional[str] = None
    min_length: int = 1
    max_length: int = 10


# -------- Component outcomes --------

class OutcomeKind(Enum):
    IGNORE = "ignore"
    UPDATE = "update"
    CLOSE = "close"
    MODAL = "modal"


@dataclass(frozen=True)
class ComponentOutcome:
    kind: OutcomeKind
    modal: Optional[ModalSpec] = None

    @classmethod
    def ignore(cls) -> "ComponentOutcome":
        return cls(OutcomeKind.IGNORE)

    @classmethod
    def update(cls) -> "ComponentOutcome":
        return cls(OutcomeKind.UPDATE)

    @classmethod
    def close(cls) -> "ComponentOutcome":
        return cls(OutcomeKind.CLOSE)

    @classmethod
    def open_modal(cls, modal: ModalSpec) -> "ComponentOutcome":
        return cls(OutcomeKind.MODAL, modal)


# -------- The contract --------

class ActiveMessage:
    """Base class of every interactive message variant.

    Subclasses implement `render_page` and usually `render_controls` and
    `on_component`. Class attributes tune how the core treats the variant:

    - `owner_only`: only the invoking user may operate the controls
    - `expires_after`: inactivity timeout in seconds, None for the bot default
    - `defer`: acknowledge events before rendering because rendering is slow
    """

    owner_only = True
    expires_after: Optional[float] = None
    defer = False

    def __init__(self, owner_id: int):
        self.owner_id = owner_id

    async def render_page(self) -> PageContent:
        raise NotImplementedError

    def render_controls(self) -> ControlSurface:
        return ControlSurface()

    async def on_component(self, event: ComponentEvent) -> ComponentOutcome:
        return ComponentOutcome.ignore()

    async def on_modal(self, event: ModalEvent) -> None:
        raise ValidationError("This message does not accept any input")

    async def on_close(self) -> None:
        pass

    def state_token(self):
        """Identity of the currently displayed state; pending artifacts check it."""
        return None

    def save_state(self):
        """What `restore_state` needs to undo an event whose page failed to render."""
        return None

    def restore_state(self, state) -> None:
        pass


# -------- Platform interface --------

class ChatPlatform:
    """What the core needs from the chat platform.

    The discord implementation lives in discord_platform.py; tests use a
    recording fake.
    """

    router = None

    def bind(self, router) -> None:
        self.router = router

    async def send_page(self, origin: CommandOrigin, page: PageContent, controls: ControlSurface) -> MessageIdentity:
        raise NotImplementedError

    async def edit_page(self, message: MessageIdentity, page: PageContent, controls: ControlSurface, event=None) -> None:
        raise NotImplementedError

    async def disable_controls(self, message: MessageIdentity, controls: ControlSurface, event=None) -> None:
        raise NotImplementedError

    async def reply_ephemeral(self, event, content: str) -> None:
        raise NotImplementedError

    async def open_modal(self, event: ComponentEvent, modal: ModalSpec) -> None:
        raise NotImplementedError

    async def acknowledge(self, event) -> None:
        raise NotImplementedError
