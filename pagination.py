"""
Pagination cursor and the controls shared by every paginated message.
"""

import math
from enum import Enum

from active_message import (
    ActiveMessage,
    Button,
    ButtonStyle,
    ComponentEvent,
    ComponentOutcome,
    ControlSurface,
    ModalEvent,
    ModalSpec,
    ValidationError,
)


PAGINATION_START = "pagination_start"
PAGINATION_BACK = "pagination_back"
PAGINATION_CUSTOM = "pagination_custom"
PAGINATION_STEP = "pagination_step"
PAGINATION_END = "pagination_end"

MODAL_PAGE = "pagination_page"
MODAL_INDEX = "pagination_index"


class Direction(Enum):
    FIRST = "first"
    PREVIOUS = "previous"
    NEXT = "next"
    LAST = "last"
    JUMP = "jump"


class PageCursor:
    """Offset, page size and item count of a fixed collection.

    `index` is the 0-based offset of the first item on the current page and is
    always a multiple of `per_page`.
    """

    def __init__(self, per_page: int, total_items: int):
        if per_page <= 0:
            raise ValueError("per_page must be positive")
        if total_items < 0:
            raise ValueError("total_items must not be negative")
        self.per_page = per_page
        self.total_items = total_items
        self.index = 0

    def __repr__(self):
        return f"PageCursor(index={self.index}, per_page={self.per_page}, total_items={self.total_items})"

    @property
    def current_page(self) -> int:
        return self.index // self.per_page + 1

    @property
    def last_page(self) -> int:
        return math.ceil(self.total_items / self.per_page)

    def page_label(self) -> str:
        return f"Page {self.current_page}/{max(self.last_page, 1)}"

    def is_first_page(self) -> bool:
        return self.index == 0

    def is_last_page(self) -> bool:
        return self.index + self.per_page >= self.total_items

    def page_window(self) -> tuple[int, int]:
        start = min(self.index, self.total_items)
        end = min(start + self.per_page, self.total_items)
        return start, end

    def _last_index(self) -> int:
        if self.total_items == 0:
            return 0
        return (self.last_page - 1) * self.per_page

    def advance(self, direction: Direction, amount: int = 1) -> bool:
        """Move the cursor. Returns whether the index changed.

        For `Direction.JUMP`, `amount` is the 1-based page number; an invalid
        page raises ValidationError and leaves the cursor untouched.
        """
        before = self.index

        if direction is Direction.FIRST:
            self.index = 0
        elif direction is Direction.PREVIOUS:
            self.index = max(0, self.index - amount * self.per_page)
        elif direction is Direction.NEXT:
            self.index = min(self._last_index(), self.index + amount * self.per_page)
        elif direction is Direction.LAST:
            self.index = self._last_index()
        elif direction is Direction.JUMP:
            self.jump_page(amount)

        return self.index != before

    def jump_page(self, page: int) -> None:
        if self.total_items == 0:
            raise ValidationError("There are no pages to jump to")
        if not 1 <= page <= self.last_page:
            raise ValidationError(f"The page number must be between 1 and {self.last_page}")
        self.index = (page - 1) * self.per_page

    def jump_item(self, position: int) -> None:
        """Show the page containing the item at 1-based `position`."""
        if self.total_items == 0:
            raise ValidationError("There are no entries to jump to")
        if not 1 <= position <= self.total_items:
            raise ValidationError(f"The position must be between 1 and {self.total_items}")
        self.index = (position - 1) // self.per_page * self.per_page


# -------- Shared controls --------

def pagination_controls(cursor: PageCursor) -> ControlSurface:
    """The standard navigation row; empty when everything fits on one page."""
    if cursor.last_page <= 1:
        return ControlSurface()

    at_start = cursor.is_first_page()
    at_end = cursor.is_last_page()

    return ControlSurface().add_row(
        Button(PAGINATION_START, emoji="⏮️", disabled=at_start),
        Button(PAGINATION_BACK, emoji="◀️", style=ButtonStyle.PRIMARY, disabled=at_start),
        Button(PAGINATION_CUSTOM, emoji="*️⃣"),
        Button(PAGINATION_STEP, emoji="▶️", style=ButtonStyle.PRIMARY, disabled=at_end),
        Button(PAGINATION_END, emoji="⏭️", disabled=at_end),
    )


def jump_modal(cursor: PageCursor, kind: str = MODAL_PAGE) -> ModalSpec:
    if kind == MODAL_INDEX:
        return ModalSpec(
            custom_id=MODAL_INDEX,
            title="Jump to a position",
            label="Position",
            placeholder=f"Number between 1 and {max(cursor.total_items, 1)}",
            max_length=len(str(max(cursor.total_items, 1))) + 2,
        )
    return ModalSpec(
        custom_id=MODAL_PAGE,
        title="Jump to a page",
        label="Page number",
        placeholder=f"Number between 1 and {max(cursor.last_page, 1)}",
        max_length=len(str(max(cursor.last_page, 1))) + 2,
    )


_BUTTON_MOVES = {
    PAGINATION_START: Direction.FIRST,
    PAGINATION_BACK: Direction.PREVIOUS,
    PAGINATION_STEP: Direction.NEXT,
    PAGINATION_END: Direction.LAST,
}


def handle_pagination_component(event: ComponentEvent, cursor: PageCursor, jump_kind: str = MODAL_PAGE) -> ComponentOutcome:
    if event.custom_id == PAGINATION_CUSTOM:
        return ComponentOutcome.open_modal(jump_modal(cursor, jump_kind))

    direction = _BUTTON_MOVES.get(event.custom_id)
    if direction is None:
        return ComponentOutcome.ignore()

    cursor.advance(direction)
    return ComponentOutcome.update()


def parse_number(raw: str) -> int:
    text = (raw or "").strip().lstrip("#")
    try:
        return int(text)
    except ValueError:
        raise ValidationError(f"`{text}` is not a valid number") from None


def handle_pagination_modal(event: ModalEvent, cursor: PageCursor) -> None:
    number = parse_number(event.value)
    if event.custom_id == MODAL_INDEX:
        cursor.jump_item(number)
    elif event.custom_id == MODAL_PAGE:
        cursor.jump_page(number)
    else:
        raise ValidationError("Unknown input")


class PaginatedMessage(ActiveMessage):
    """Active message over a fixed collection navigated by the shared controls.

    Subclasses set `per_page` and implement `render_page` from
    `self.pages.page_window()`.
    """

    per_page = 10
    jump_kind = MODAL_PAGE

    def __init__(self, owner_id: int, total_items: int):
        super().__init__(owner_id)
        self.pages = PageCursor(self.per_page, total_items)
        # bumped whenever the content changes without the cursor moving (e.g. re-sorting)
        self.generation = 0

    def render_controls(self) -> ControlSurface:
        return pagination_controls(self.pages)

    async def on_component(self, event: ComponentEvent) -> ComponentOutcome:
        return handle_pagination_component(event, self.pages, self.jump_kind)

    async def on_modal(self, event: ModalEvent) -> None:
        handle_pagination_modal(event, self.pages)

    def state_token(self):
        return self.pages.index, self.generation

    def save_state(self):
        return self.pages.index, self.generation

    def restore_state(self, state) -> None:
        self.pages.index, self.generation = state
