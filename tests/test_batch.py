"""Tests for boardsync.workflow.batch module."""

import logging
from unittest.mock import MagicMock

import pytest

from boardsync.lib.cache import RunCaches
from boardsync.lib.errors import ConfigurationError
from boardsync.lib.github import GraphQLResponse
from boardsync.workflow.batch import (
    AssigneeUpdate,
    BatchedMutationCoordinator,
    ColumnUpdate,
    FieldKind,
    IterationUpdate,
    assignee_delta,
)


@pytest.fixture
def board():
    board = MagicMock()
    board.project_id = "PVT_1"
    board.caches = RunCaches()
    board.status_field.return_value = ("FIELD_STATUS", {"Active": "OPT_A", "Done": "OPT_D"})
    board.column_option_id.side_effect = lambda c: {"active": "OPT_A", "done": "OPT_D"}[c.lower()]
    board.sprint_field_id.return_value = "FIELD_SPRINT"
    return board


def ok_response(count, key="projectV2Item"):
    return GraphQLResponse(data={f"m{i}": {key: {"id": f"X{i}"}} for i in range(count)})


class TestAssigneeDelta:
    def test_unchanged(self):
        assert assignee_delta(["a", "b"], ["b", "a"]) == ([], [])

    def test_add_and_remove(self):
        assert assignee_delta(["a", "b"], ["a", "c"]) == (["c"], ["b"])


class TestApplyBatch:
    """Batch construction and per-alias accounting."""

    def test_empty_updates(self, board):
        assert BatchedMutationCoordinator(board).apply_batch(FieldKind.COLUMN, []) == 0
        board.client.execute.assert_not_called()

    def test_rejects_bad_batch_size(self, board):
        with pytest.raises(ValueError):
            BatchedMutationCoordinator(board).apply_batch(FieldKind.COLUMN, [ColumnUpdate("I1", "Active")], 0)

    def test_dry_run_logs_and_sends_nothing(self, board, caplog):
        coordinator = BatchedMutationCoordinator(board, dry_run=True)
        with caplog.at_level(logging.INFO):
            applied = coordinator.apply_batch(FieldKind.COLUMN, [ColumnUpdate("I1", "Active")])
        assert applied == 0
        board.client.execute.assert_not_called()
        assert "DRY RUN" in caplog.text

    def test_column_updates_single_request(self, board):
        board.client.execute.return_value = ok_response(2)
        coordinator = BatchedMutationCoordinator(board)

        applied = coordinator.apply_batch(
            FieldKind.COLUMN, [ColumnUpdate("I1", "Active"), ColumnUpdate("I2", "done")],
        )

        assert applied == 2
        assert board.client.execute.call_count == 1
        mutation, variables = board.client.execute.call_args[0]
        assert "m0: updateProjectV2ItemFieldValue" in mutation
        assert "m1: updateProjectV2ItemFieldValue" in mutation
        assert variables["input0"]["value"] == {"singleSelectOptionId": "OPT_A"}
        assert variables["input1"]["itemId"] == "I2"
        assert variables["input1"]["fieldId"] == "FIELD_STATUS"

    def test_chunks_by_batch_size(self, board):
        board.client.execute.side_effect = [ok_response(2), ok_response(1)]
        updates = [ColumnUpdate(f"I{i}", "Active") for i in range(3)]

        applied = BatchedMutationCoordinator(board).apply_batch(FieldKind.COLUMN, updates, batch_size=2)

        assert applied == 3
        assert board.client.execute.call_count == 2

    def test_counts_per_alias(self, board, caplog):
        board.client.execute.return_value = GraphQLResponse(
            data={"m0": {"projectV2Item": {"id": "I1"}}, "m1": None},
            errors=[{"message": "Could not resolve to a node", "path": ["m1"]}],
        )
        with caplog.at_level(logging.WARNING):
            applied = BatchedMutationCoordinator(board).apply_batch(
                FieldKind.COLUMN, [ColumnUpdate("I1", "Active"), ColumnUpdate("I2", "Active")],
            )
        assert applied == 1
        assert "sub-operation error" in caplog.text

    def test_iteration_set_and_clear(self, board):
        board.client.execute.return_value = ok_response(2)
        applied = BatchedMutationCoordinator(board).apply_batch(
            FieldKind.ITERATION, [IterationUpdate("I1", "iter-6"), IterationUpdate("I2", None)],
        )
        mutation, variables = board.client.execute.call_args[0]
        assert applied == 2
        assert "m0: updateProjectV2ItemFieldValue" in mutation
        assert "m1: clearProjectV2ItemFieldValue" in mutation
        assert variables["input0"]["value"] == {"iterationId": "iter-6"}
        assert "value" not in variables["input1"]

    def test_iteration_without_sprint_field(self, board):
        board.sprint_field_id.return_value = None
        with pytest.raises(ConfigurationError):
            BatchedMutationCoordinator(board).apply_batch(FieldKind.ITERATION, [IterationUpdate("I1", "x")])


class TestAssigneeBatches:
    """Assignee updates are computed as add/remove deltas."""

    def test_unchanged_set_makes_no_calls(self, board):
        applied = BatchedMutationCoordinator(board).apply_batch(
            FieldKind.ASSIGNEES, [AssigneeUpdate("PR_1", ("a", "b"), current=("a", "b"))],
        )
        assert applied == 0
        board.client.execute.assert_not_called()

    def test_one_add_and_one_remove(self, board):
        board.client.execute.side_effect = [
            GraphQLResponse(data={"u0": {"id": "U_C", "login": "c"}, "u1": {"id": "U_B", "login": "b"}}),
            GraphQLResponse(data={
                "m0": {"assignable": {"__typename": "PullRequest"}},
                "m1": {"assignable": {"__typename": "PullRequest"}},
            }),
        ]

        applied = BatchedMutationCoordinator(board).apply_batch(
            FieldKind.ASSIGNEES, [AssigneeUpdate("PR_1", ("a", "c"), current=("a", "b"))],
        )

        assert applied == 1
        assert board.client.execute.call_count == 2
        mutation, variables = board.client.execute.call_args_list[1][0]
        assert "m0: addAssigneesToAssignable" in mutation
        assert "m1: removeAssigneesFromAssignable" in mutation
        assert variables["input0"] == {"assignableId": "PR_1", "assigneeIds": ["U_C"]}
        assert variables["input1"] == {"assignableId": "PR_1", "assigneeIds": ["U_B"]}

    def test_partial_success_is_not_confirmed(self, board):
        board.client.execute.side_effect = [
            GraphQLResponse(data={"u0": {"id": "U_C"}, "u1": {"id": "U_B"}}),
            GraphQLResponse(
                data={"m0": {"assignable": {"__typename": "PullRequest"}}, "m1": None},
                errors=[{"message": "denied", "path": ["m1"]}],
            ),
        ]
        applied = BatchedMutationCoordinator(board).apply_batch(
            FieldKind.ASSIGNEES, [AssigneeUpdate("PR_1", ("a", "c"), current=("a", "b"))],
        )
        assert applied == 0

    def test_reads_current_when_not_given(self, board):
        board.content_assignees.return_value = ("a",)
        applied = BatchedMutationCoordinator(board).apply_batch(
            FieldKind.ASSIGNEES, [AssigneeUpdate("PR_1", ("a",))],
        )
        assert applied == 0
        board.content_assignees.assert_called_once_with("PR_1")

    def test_user_ids_cached(self, board):
        board.caches.user_ids["c"] = "U_C"
        coordinator = BatchedMutationCoordinator(board)
        assert coordinator.resolve_user_ids(["c"]) == {"c": "U_C"}
        board.client.execute.assert_not_called()

    def test_unknown_login_logged(self, board, caplog):
        board.client.execute.return_value = GraphQLResponse(data={"u0": None})
        with caplog.at_level(logging.WARNING):
            ids = BatchedMutationCoordinator(board).resolve_user_ids(["ghost"])
        assert ids == {}
        assert "ghost" in caplog.text
