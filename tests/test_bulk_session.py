"""
Bulk-edit session tests: the wizard state machine and the guarantee that the
template entry never outlives its session.
"""

import os

import pytest

from conftest import read_book, ST_USER
from wi_suite.bulk.constants import (
    STATE_IDLE, STATE_TEMPLATE_CREATED, STATE_AWAITING_ACTION, STATE_CONFIRMING, STATE_DONE,
    RESULT_AFFIRMATIVE, RESULT_NEGATIVE, RESULT_CUSTOM1, RESULT_CUSTOM2,
)
from wi_suite.bulk.engine import (
    InvalidTransitionError, NoSelectionError, NoChangesError, NoDestinationError,
    NoTargetSelectedError, NoWorldSelectedError, TemplateMissingError, FormTimeoutError,
)
from wi_suite.bulk.session import BulkEditSession
from wi_suite.event_bus import event_bus, SHOW_TOASTR
from wi_suite.services.st_client import PersistenceError

WORLD = "Main Lore"
FORM = ["key", "content", "entryStateSelector", "entryKillSwitch", "characterFilter"]


class FlakyClient:
    """Delegates to a real client; the next save fails when armed"""

    def __init__(self, client):
        self.client = client
        self.fail_next_save = False

    def __getattr__(self, name):
        return getattr(self.client, name)

    def save_world_info(self, name, data):
        if self.fail_next_save:
            self.fail_next_save = False
            raise PersistenceError(f"rejected: {name}")
        return self.client.save_world_info(name, data)


def edit_template(client, session, **fields):
    """模拟宿主表单把模板的新值写回世界书"""
    book = client.load_world_info(session.world_name)
    book['entries'][str(session.template_uid)].update(fields)
    client.save_world_info(session.world_name, book)


def entry_keys(st_root, name=WORLD):
    return sorted(read_book(st_root, name)['entries'])


@pytest.fixture
def notices():
    received = []
    event_bus.subscribe(SHOW_TOASTR, received.append)
    return received


@pytest.fixture
def session(st_client):
    s = BulkEditSession(st_client, WORLD)
    s.start()
    return s


@pytest.fixture
def ready(session):
    session.form_ready(FORM)
    return session


class TestStart:
    """Tests for opening a session."""

    def test_creates_template(self, st_root, st_client):
        s = BulkEditSession(st_client, WORLD)
        result = s.start()
        assert s.state == STATE_TEMPLATE_CREATED
        assert result['template_uid'] == 4
        assert entry_keys(st_root) == ["0", "1", "2", "3", "4"]
        assert [e['uid'] for e in result['entries']] == [0, 1, 2, 3]
        assert result['entries'][0]['label'] == "[0] Entry 0"

    def test_label_falls_back_to_keys(self, st_client):
        book = st_client.load_world_info(WORLD)
        book['entries']["2"]['comment'] = ""
        st_client.save_world_info(WORLD, book)
        s = BulkEditSession(st_client, WORLD)
        labels = {e['uid']: e['label'] for e in s.start()['entries']}
        assert labels[2] == "[2] key2"

    def test_no_world(self, st_client):
        with pytest.raises(NoWorldSelectedError):
            BulkEditSession(st_client, "")

    def test_cannot_start_twice(self, session):
        with pytest.raises(InvalidTransitionError):
            session.start()

    def test_form_ready(self, session):
        hooked = session.form_ready(FORM + ["unknown"])
        assert session.state == STATE_AWAITING_ACTION
        assert "content" in hooked and "entryKillSwitch" in hooked
        assert session.wait_for_form(timeout=0) is True

    def test_input_before_form_ready(self, session):
        with pytest.raises(InvalidTransitionError):
            session.record_input("content")

    def test_form_timeout_cleans_up(self, st_root, session, notices):
        with pytest.raises(FormTimeoutError):
            session.wait_for_form(timeout=0.01)
        assert session.state == STATE_IDLE
        assert session.finished
        assert entry_keys(st_root) == ["0", "1", "2", "3"]
        assert notices[-1]['level'] == "error"


class TestApply:
    """Tests for the apply operation."""

    def test_full_apply(self, st_root, st_client, ready, notices):
        edit_template(st_client, ready, content="X", constant=True, comment="template")
        ready.record_input("content")
        ready.record_click("entryStateSelector", modifier=True)

        confirm = ready.request_apply([0, "1"])['confirm']
        assert ready.state == STATE_CONFIRMING
        assert confirm['changes'] == [
            {"key": "content", "value": "X"},
            {"key": "entryStateSelector", "value": "Constant"},
        ]

        outcome = ready.resolve(RESULT_AFFIRMATIVE)
        assert outcome['modified'] == 2
        assert ready.state == STATE_DONE
        assert ready.finished

        book = read_book(st_root, WORLD)['entries']
        assert sorted(book) == ["0", "1", "2", "3"]
        assert book["0"]['content'] == "X" and book["0"]['constant'] is True
        assert book["1"]['comment'] == "Entry 1"
        assert book["2"]['content'] == "content 2"
        assert [n['level'] for n in notices] == ["success"]
        assert notices[0]['message'] == "Modified 2 entr(y/ies)."

    def test_no_selection_keeps_state(self, ready):
        ready.record_input("content")
        with pytest.raises(NoSelectionError):
            ready.request_apply([])
        assert ready.state == STATE_AWAITING_ACTION

    def test_template_only_selection(self, st_root, ready, notices):
        """Selecting just the template counts as selecting nothing."""
        ready.record_input("content")
        with pytest.raises(NoSelectionError):
            ready.request_apply([ready.template_uid, str(ready.template_uid)])
        assert ready.state == STATE_AWAITING_ACTION
        assert notices == []

    def test_no_changes_keeps_state(self, st_root, ready):
        with pytest.raises(NoChangesError):
            ready.request_apply([0])
        assert ready.state == STATE_AWAITING_ACTION
        assert "4" in entry_keys(st_root)

    def test_decline_returns_to_awaiting(self, st_root, ready):
        ready.record_input("content")
        ready.request_apply([0])
        result = ready.resolve(RESULT_NEGATIVE)
        assert result == {"declined": True, "state": STATE_AWAITING_ACTION}
        assert not ready.finished

        ready.cancel()
        assert ready.state == STATE_IDLE
        assert entry_keys(st_root) == ["0", "1", "2", "3"]

    def test_template_vanished_while_confirming(self, st_root, st_client, ready):
        ready.record_input("content")
        book = st_client.load_world_info(WORLD)
        del book['entries'][str(ready.template_uid)]
        st_client.save_world_info(WORLD, book)

        with pytest.raises(TemplateMissingError):
            ready.request_apply([0])
        assert ready.state == STATE_IDLE
        assert ready.finished

    def test_failure_while_applying(self, st_root, st_client, notices):
        client = FlakyClient(st_client)
        s = BulkEditSession(client, WORLD)
        s.start()
        s.form_ready(FORM)
        s.record_input("content")
        s.request_apply([0])

        client.fail_next_save = True
        with pytest.raises(PersistenceError):
            s.resolve(RESULT_AFFIRMATIVE)

        assert s.state == STATE_DONE
        assert s.outcome['success'] is False
        # 模板在清理时被删除，目标条目没有被修改
        assert entry_keys(st_root) == ["0", "1", "2", "3"]
        assert read_book(st_root, WORLD)['entries']["0"]['content'] == "content 0"
        assert [n['level'] for n in notices] == ["error"]

    def test_no_actions_after_done(self, ready):
        ready.record_input("content")
        ready.request_apply([0])
        ready.resolve(RESULT_AFFIRMATIVE)
        with pytest.raises(InvalidTransitionError):
            ready.request_delete([1])
        with pytest.raises(InvalidTransitionError):
            ready.resolve(RESULT_AFFIRMATIVE)
        assert ready.cancel() == STATE_DONE


class TestDelete:
    """Tests for the delete operation."""

    def test_delete(self, st_root, ready, notices):
        confirm = ready.request_delete([1, 3])['confirm']
        assert confirm['message'] == "Delete 2 selected entr(y/ies)? This cannot be undone."
        outcome = ready.resolve(RESULT_AFFIRMATIVE)
        assert outcome['deleted'] == 2
        assert entry_keys(st_root) == ["0", "2"]
        assert notices[-1]['message'] == "Deleted 2 entr(y/ies)."

    def test_duplicate_uids_counted_once(self, ready):
        confirm = ready.request_delete([1, "1", 1])['confirm']
        assert confirm['message'].startswith("Delete 1 ")

    def test_template_only_selection(self, st_root, ready):
        with pytest.raises(NoSelectionError):
            ready.request_delete([ready.template_uid])
        assert ready.state == STATE_AWAITING_ACTION
        assert "4" in entry_keys(st_root)


class TestMoveCopy:
    """Tests for the move/copy operation."""

    def test_move(self, st_root, ready):
        confirm = ready.request_move_copy([0, 1])['confirm']
        assert confirm['destinations'] == ["Chat Lore", "Other Lore", "Side Lore"]

        outcome = ready.resolve(RESULT_CUSTOM2, "Other Lore")
        assert outcome['succeeded'] == 2 and outcome['delete_original'] is True
        assert entry_keys(st_root) == ["2", "3"]
        assert entry_keys(st_root, "Other Lore") == ["0", "1", "2", "3"]

    def test_copy(self, st_root, ready):
        ready.request_move_copy([0])
        outcome = ready.resolve(RESULT_CUSTOM1, "Chat Lore")
        assert outcome['delete_original'] is False
        assert entry_keys(st_root) == ["0", "1", "2", "3"]
        assert entry_keys(st_root, "Chat Lore") == ["0"]

    def test_template_is_not_copied(self, st_root, ready):
        """The template stays out of the destination book."""
        ready.request_move_copy([ready.template_uid, 0])
        assert ready.selection == [0]

        outcome = ready.resolve(RESULT_CUSTOM1, "Chat Lore")
        assert (outcome['succeeded'], outcome['failed']) == (1, 0)
        chat_lore = read_book(st_root, "Chat Lore")['entries']
        assert [e['comment'] for e in chat_lore.values()] == ["Entry 0"]
        assert entry_keys(st_root) == ["0", "1", "2", "3"]

    def test_template_only_selection(self, ready):
        with pytest.raises(NoSelectionError):
            ready.request_move_copy([ready.template_uid])
        assert ready.state == STATE_AWAITING_ACTION

    def test_partial_failure_notice(self, st_root, ready, notices):
        ready.request_move_copy([0, 77])
        outcome = ready.resolve(RESULT_CUSTOM2, "Side Lore")
        assert (outcome['succeeded'], outcome['failed']) == (1, 1)
        assert notices[-1]['level'] == "warning"
        assert notices[-1]['message'] == 'Moved 1 entr(y/ies) to "Side Lore". 1 entr(y/ies) failed.'

    def test_destination_must_be_offered(self, ready):
        ready.request_move_copy([0])
        with pytest.raises(NoTargetSelectedError):
            ready.resolve(RESULT_CUSTOM2, WORLD)
        assert ready.state == STATE_CONFIRMING

    def test_no_destination(self, st_root, ready):
        worlds_dir = os.path.join(st_root, "data", ST_USER, "worlds")
        for name in ("Side Lore", "Other Lore", "Chat Lore"):
            os.remove(os.path.join(worlds_dir, f"{name}.json"))
        with pytest.raises(NoDestinationError):
            ready.request_move_copy([0])
        assert ready.state == STATE_AWAITING_ACTION


class TestCancel:
    """Tests for cancelling a session."""

    def test_cancel_before_form(self, st_root, session, notices):
        assert session.cancel() == STATE_IDLE
        assert entry_keys(st_root) == ["0", "1", "2", "3"]
        assert notices[-1]['message'] == "Bulk edit cancelled."

    def test_cancel_while_confirming(self, st_root, ready):
        ready.request_delete([0])
        ready.cancel()
        assert ready.state == STATE_IDLE
        assert entry_keys(st_root) == ["0", "1", "2", "3"]

    def test_cancel_twice(self, session):
        session.cancel()
        assert session.cancel() == STATE_IDLE

    def test_snapshot(self, ready):
        ready.record_click("entryKillSwitch")
        snap = ready.snapshot()
        assert snap['state'] == STATE_AWAITING_ACTION
        assert snap['dirty_keys'] == ["entryKillSwitch"]
        assert snap['highlighted'] == ["entryKillSwitch"]
