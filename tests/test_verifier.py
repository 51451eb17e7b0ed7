"""Tests for boardsync.workflow.verifier module."""

import logging
from unittest.mock import MagicMock

import pytest

from boardsync.lib.cache import RunCaches
from boardsync.lib.errors import AuthenticationError, StateMismatchError, TransientAPIError
from boardsync.lib.stats import RETRY_EXHAUSTED, RunCounters
from boardsync.lib.types import ItemKind, WorkItem
from boardsync.workflow.verifier import MAX_DELAY_SECONDS, StateVerifier, backoff_delay


@pytest.fixture
def item():
    return WorkItem(kind=ItemKind.ISSUE, id="I_1", number=3, repository="acme/api", project_item_id="PVTI_3")


@pytest.fixture
def board():
    board = MagicMock()
    board.caches = RunCaches()
    return board


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def verifier(board, sleeps):
    return StateVerifier(board, counters=RunCounters(), sleep=sleeps.append)


class TestBackoff:
    def test_exponential_and_capped(self):
        assert backoff_delay(0) == 0.5
        assert backoff_delay(1) == 1.0
        assert backoff_delay(10) == MAX_DELAY_SECONDS

    def test_max_attempts_must_be_positive(self, board):
        with pytest.raises(ValueError):
            StateVerifier(board, max_attempts=0)


class TestRetryWithTracking:
    """Bounded retry on transient failures."""

    def test_success_first_try(self, verifier, item, sleeps):
        assert verifier.retry_with_tracking(item, "op", lambda: 42) == 42
        record = verifier.record_for(item, "op")
        assert record.attempts == 1
        assert record.succeeded
        assert sleeps == []

    def test_transient_then_success(self, verifier, item, sleeps):
        operation = MagicMock(side_effect=[TransientAPIError("HTTP 502"), "ok"])
        assert verifier.retry_with_tracking(item, "op", operation) == "ok"
        assert verifier.record_for(item, "op").attempts == 2
        assert len(sleeps) == 1
        assert 0.5 <= sleeps[0] <= 0.55

    def test_non_transient_fails_immediately(self, verifier, item, sleeps):
        operation = MagicMock(side_effect=AuthenticationError("Bad credentials"))
        with pytest.raises(AuthenticationError):
            verifier.retry_with_tracking(item, "op", operation)
        assert operation.call_count == 1
        assert verifier.record_for(item, "op").attempts == 1
        assert sleeps == []

    def test_exhaustion_counts_and_raises(self, verifier, item, sleeps, caplog):
        operation = MagicMock(side_effect=StateMismatchError("column", item.label, "Done", "Active"))
        with caplog.at_level(logging.ERROR), pytest.raises(StateMismatchError):
            verifier.retry_with_tracking(item, "verify column", operation)
        assert operation.call_count == 3
        assert len(sleeps) == 2
        assert verifier.counters.get(RETRY_EXHAUSTED) == 1
        assert "after 3 attempts" in caplog.text
        assert len(verifier.record_for(item, "verify column").errors) == 3
        assert not verifier.record_for(item, "verify column").succeeded

    def test_records_are_per_operation(self, verifier, item):
        verifier.retry_with_tracking(item, "verify column", lambda: "Done")
        failing = MagicMock(side_effect=StateMismatchError("sprint", item.label, "s6", None))
        with pytest.raises(StateMismatchError):
            verifier.retry_with_tracking(item, "verify sprint", failing)

        column = verifier.record_for(item, "verify column")
        sprint = verifier.record_for(item, "verify sprint")
        assert (column.attempts, column.succeeded) == (1, True)
        assert (sprint.attempts, sprint.succeeded) == (3, False)

    def test_second_operation_counts_its_own_attempts(self, verifier, item):
        verifier.retry_with_tracking(item, "verify column", lambda: "Done")
        flaky = MagicMock(side_effect=[TransientAPIError("HTTP 502"), "s6"])
        verifier.retry_with_tracking(item, "verify sprint", flaky)
        assert verifier.record_for(item, "verify sprint").attempts == 2


class TestStepTracking:
    def test_mark_step_complete_once(self, verifier, item):
        assert verifier.mark_step_complete(item, "column") is True
        assert verifier.mark_step_complete(item, "column") is False
        assert verifier.is_step_complete(item, "column")

    def test_reset(self, verifier, item):
        verifier.mark_step_complete(item, "column")
        verifier.retry_with_tracking(item, "op", lambda: None)
        verifier.reset()
        assert not verifier.is_step_complete(item, "column")
        assert verifier.records == {}


class TestVerifyHelpers:
    """Post-write reads."""

    def test_verify_column_retries_until_consistent(self, verifier, board, item):
        board.get_item_column.side_effect = ["Active", "done"]
        assert verifier.verify_column(item, "PVTI_3", "Done") == "done"
        assert board.get_item_column.call_count == 2

    def test_verified_result_cached(self, verifier, board, item):
        board.get_item_column.return_value = "Done"
        verifier.verify_column(item, "PVTI_3", "Done")
        assert verifier.verify_column(item, "PVTI_3", "Done") == "Done"
        assert board.get_item_column.call_count == 1

    def test_verify_sprint_cleared(self, verifier, board, item):
        board.get_item_sprint.return_value = None
        assert verifier.verify_sprint(item, "PVTI_3", None) is None

    def test_verify_assignees_ignores_order(self, verifier, board, item):
        board.content_assignees.return_value = ("b", "a")
        assert verifier.verify_assignees(item, ["a", "b"]) == ("b", "a")
        board.content_assignees.assert_called_with("I_1")

    def test_verify_in_project_rereads(self, verifier, board, item):
        board.caches.project_items["I_1"] = "stale"
        board.find_project_item.side_effect = [None, "PVTI_9"]
        assert verifier.verify_in_project(item) == "PVTI_9"
        assert "I_1" not in board.caches.project_items
