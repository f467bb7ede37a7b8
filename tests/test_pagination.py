"""Tests for the page cursor and the shared pagination controls."""

import pytest

from active_message import ComponentEvent, MessageIdentity, ModalEvent, OutcomeKind, ValidationError
from pagination import (
    MODAL_INDEX,
    MODAL_PAGE,
    PAGINATION_BACK,
    PAGINATION_CUSTOM,
    PAGINATION_END,
    PAGINATION_START,
    PAGINATION_STEP,
    Direction,
    PageCursor,
    handle_pagination_component,
    handle_pagination_modal,
    pagination_controls,
    parse_number,
)


MESSAGE = MessageIdentity(1, 2)


def click(custom_id: str) -> ComponentEvent:
    return ComponentEvent(MESSAGE, 1, custom_id)


class TestPageCursor:
    """Cursor arithmetic over 37 items with 15 per page."""

    @pytest.fixture()
    def cursor(self):
        return PageCursor(15, 37)

    def test_initial_state(self, cursor):
        assert cursor.index == 0
        assert cursor.current_page == 1
        assert cursor.last_page == 3
        assert cursor.page_label() == "Page 1/3"

    def test_next_walks_to_last_page_and_stops(self, cursor):
        assert cursor.advance(Direction.NEXT) is True
        assert cursor.index == 15
        assert cursor.advance(Direction.NEXT) is True
        assert cursor.index == 30
        assert cursor.advance(Direction.NEXT) is False
        assert cursor.index == 30
        assert cursor.page_window() == (30, 37)

    def test_previous_stops_at_zero(self, cursor):
        assert cursor.advance(Direction.PREVIOUS) is False
        assert cursor.index == 0

    def test_last_and_first(self, cursor):
        cursor.advance(Direction.LAST)
        assert cursor.index == 30
        assert cursor.is_last_page()
        cursor.advance(Direction.FIRST)
        assert cursor.index == 0
        assert cursor.is_first_page()

    def test_jump_page(self, cursor):
        cursor.advance(Direction.JUMP, 2)
        assert cursor.index == 15
        assert cursor.current_page == 2

    def test_jump_page_out_of_range_keeps_index(self, cursor):
        cursor.jump_page(2)
        with pytest.raises(ValidationError, match="between 1 and 3"):
            cursor.jump_page(4)
        with pytest.raises(ValidationError):
            cursor.jump_page(0)
        assert cursor.index == 15

    def test_jump_item_aligns_to_page_start(self, cursor):
        cursor.jump_item(31)
        assert cursor.index == 30
        cursor.jump_item(15)
        assert cursor.index == 0
        cursor.jump_item(16)
        assert cursor.index == 15

    def test_jump_item_out_of_range(self, cursor):
        with pytest.raises(ValidationError, match="between 1 and 37"):
            cursor.jump_item(38)

    def test_index_stays_multiple_of_page_size(self, cursor):
        for direction in (Direction.NEXT, Direction.NEXT, Direction.NEXT, Direction.PREVIOUS, Direction.LAST):
            cursor.advance(direction)
            assert cursor.index % cursor.per_page == 0
            assert 0 <= cursor.index < cursor.total_items

    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            PageCursor(0, 10)
        with pytest.raises(ValueError):
            PageCursor(10, -1)

    def test_empty_collection(self):
        cursor = PageCursor(10, 0)
        assert cursor.last_page == 0
        assert cursor.page_label() == "Page 1/1"
        assert cursor.page_window() == (0, 0)
        assert cursor.advance(Direction.LAST) is False

    def test_jump_in_empty_collection(self):
        cursor = PageCursor(10, 0)
        with pytest.raises(ValidationError, match="There are no pages"):
            cursor.jump_page(1)
        with pytest.raises(ValidationError, match="There are no entries"):
            cursor.jump_item(1)
        assert cursor.index == 0

    def test_exact_multiple(self):
        cursor = PageCursor(10, 30)
        cursor.advance(Direction.LAST)
        assert cursor.index == 20
        assert cursor.page_window() == (20, 30)


class TestPaginationControls:
    """Shared five-button row."""

    def test_single_page_has_no_controls(self):
        assert pagination_controls(PageCursor(10, 10)).is_empty()
        assert pagination_controls(PageCursor(10, 0)).is_empty()

    def test_first_page_disables_backwards(self):
        controls = pagination_controls(PageCursor(15, 37))
        ids = [item.custom_id for item in controls.items()]
        assert ids == [PAGINATION_START, PAGINATION_BACK, PAGINATION_CUSTOM, PAGINATION_STEP, PAGINATION_END]
        assert controls.find(PAGINATION_START).disabled
        assert controls.find(PAGINATION_BACK).disabled
        assert not controls.find(PAGINATION_STEP).disabled
        assert not controls.find(PAGINATION_END).disabled

    def test_last_page_disables_forwards(self):
        cursor = PageCursor(15, 37)
        cursor.advance(Direction.LAST)
        controls = pagination_controls(cursor)
        assert not controls.find(PAGINATION_BACK).disabled
        assert controls.find(PAGINATION_STEP).disabled
        assert controls.find(PAGINATION_END).disabled

    def test_disabled_copy_disables_everything(self):
        controls = pagination_controls(PageCursor(15, 37)).disabled()
        assert all(item.disabled for item in controls.items())


class TestPaginationHandlers:
    """Button and modal handling."""

    def test_step_updates(self):
        cursor = PageCursor(15, 37)
        outcome = handle_pagination_component(click(PAGINATION_STEP), cursor)
        assert outcome.kind is OutcomeKind.UPDATE
        assert cursor.index == 15

    def test_custom_opens_modal(self):
        cursor = PageCursor(15, 37)
        outcome = handle_pagination_component(click(PAGINATION_CUSTOM), cursor, MODAL_INDEX)
        assert outcome.kind is OutcomeKind.MODAL
        assert outcome.modal.custom_id == MODAL_INDEX

    def test_unknown_is_ignored(self):
        cursor = PageCursor(15, 37)
        outcome = handle_pagination_component(click("something_else"), cursor)
        assert outcome.kind is OutcomeKind.IGNORE
        assert cursor.index == 0

    def test_modal_page_jump(self):
        cursor = PageCursor(15, 37)
        handle_pagination_modal(ModalEvent(MESSAGE, 1, MODAL_PAGE, " 3 "), cursor)
        assert cursor.index == 30

    def test_modal_index_jump(self):
        cursor = PageCursor(15, 37)
        handle_pagination_modal(ModalEvent(MESSAGE, 1, MODAL_INDEX, "#20"), cursor)
        assert cursor.index == 15

    def test_modal_rejects_garbage(self):
        cursor = PageCursor(15, 37)
        with pytest.raises(ValidationError, match="not a valid number"):
            handle_pagination_modal(ModalEvent(MESSAGE, 1, MODAL_PAGE, "abc"), cursor)

    def test_parse_number(self):
        assert parse_number("#12") == 12
        assert parse_number(" 7") == 7
        with pytest.raises(ValidationError):
            parse_number("")
