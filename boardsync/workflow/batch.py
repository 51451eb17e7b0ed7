"""
Batched board mutations.

Groups field writes into GraphQL requests of at most ``batch_size`` aliased
sub-operations (m0, m1, ...). Success is counted per alias, so one failing
item does not hide the others.

Usage:
    coordinator = BatchedMutationCoordinator(board, dry_run=False)
    applied = coordinator.apply_batch(
        FieldKind.ITERATION,
        [IterationUpdate("PVTI_1", "iter-6"), IterationUpdate("PVTI_2", None)],
        batch_size=20,
    )
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from boardsync.lib.board import BoardClient
from boardsync.lib.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 20


class FieldKind(Enum):
    COLUMN = "column"
    ITERATION = "iteration"
    ASSIGNEES = "assignees"


@dataclass(frozen=True)
class ColumnUpdate:
    project_item_id: str
    column: str


@dataclass(frozen=True)
class IterationUpdate:
    """iteration_id None clears the Sprint field."""
    project_item_id: str
    iteration_id: str | None


@dataclass(frozen=True)
class AssigneeUpdate:
    """Desired assignees for an issue/PR (content node id).

    ``current`` is the caller's fresh read; None means read it here.
    """
    target_id: str
    desired: tuple[str, ...]
    current: tuple[str, ...] | None = None


@dataclass(frozen=True)
class _SubOp:
    update_index: int
    mutation: str  # GraphQL field name
    input_type: str
    input: dict[str, Any]
    result_key: str  # field in the alias result that proves success


def assignee_delta(current, desired) -> tuple[list[str], list[str]]:
    """(to_add, to_remove) between the actual and desired assignee sets."""
    current_set, desired_set = set(current), set(desired)
    return sorted(desired_set - current_set), sorted(current_set - desired_set)


def _chunks(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class BatchedMutationCoordinator:
    """Applies field updates to the board in aliased batches."""

    def __init__(self, board: BoardClient, dry_run: bool = False):
        self.board = board
        self.dry_run = dry_run

    def apply_batch(self, field_kind: FieldKind, updates: list, batch_size: int = DEFAULT_BATCH_SIZE) -> int:
        """Apply updates of one field kind. Returns the number confirmed."""
        if not updates:
            return 0
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        if self.dry_run:
            logger.info(f"[BATCH] DRY RUN: would apply {len(updates)} {field_kind.value} update(s)")
            for update in updates:
                logger.info(f"[BATCH]   {update}")
            return 0

        if field_kind == FieldKind.COLUMN:
            ops = self._column_ops(updates)
        elif field_kind == FieldKind.ITERATION:
            ops = self._iteration_ops(updates)
        else:
            ops = self._assignee_ops(updates)

        if not ops:
            logger.debug(f"[BATCH] No {field_kind.value} changes to send")
            return 0

        succeeded = self._execute(ops, batch_size)
        needed: dict[int, int] = {}
        for op in ops:
            needed[op.update_index] = needed.get(op.update_index, 0) + 1
        confirmed = sum(1 for idx, count in needed.items() if succeeded.get(idx, 0) == count)
        logger.info(f"[BATCH] {field_kind.value}: {confirmed}/{len(needed)} update(s) confirmed")
        return confirmed

    # --- Sub-operation builders -----------------------------------------

    def _column_ops(self, updates: list[ColumnUpdate]) -> list[_SubOp]:
        field_id, _ = self.board.status_field()
        ops = []
        for idx, u in enumerate(updates):
            ops.append(_SubOp(
                update_index=idx,
                mutation="updateProjectV2ItemFieldValue",
                input_type="UpdateProjectV2ItemFieldValueInput!",
                input={
                    "projectId": self.board.project_id,
                    "itemId": u.project_item_id,
                    "fieldId": field_id,
                    "value": {"singleSelectOptionId": self.board.column_option_id(u.column)},
                },
                result_key="projectV2Item",
            ))
        return ops

    def _iteration_ops(self, updates: list[IterationUpdate]) -> list[_SubOp]:
        field_id = self.board.sprint_field_id()
        if not field_id:
            raise ConfigurationError(
                f"Project {self.board.project_id} has no 'Sprint' iteration field; "
                f"cannot apply {len(updates)} sprint update(s)"
            )
        ops = []
        for idx, u in enumerate(updates):
            base = {"projectId": self.board.project_id, "itemId": u.project_item_id, "fieldId": field_id}
            if u.iteration_id is None:
                ops.append(_SubOp(idx, "clearProjectV2ItemFieldValue",
                                  "ClearProjectV2ItemFieldValueInput!", base, "projectV2Item"))
            else:
                ops.append(_SubOp(idx, "updateProjectV2ItemFieldValue",
                                  "UpdateProjectV2ItemFieldValueInput!",
                                  {**base, "value": {"iterationId": u.iteration_id}}, "projectV2Item"))
        return ops

    def _assignee_ops(self, updates: list[AssigneeUpdate]) -> list[_SubOp]:
        deltas = []
        for idx, u in enumerate(updates):
            current = u.current if u.current is not None else self.board.content_assignees(u.target_id)
            to_add, to_remove = assignee_delta(current, u.desired)
            if not to_add and not to_remove:
                logger.debug(f"[BATCH] Assignees already up to date for {u.target_id}")
                continue
            deltas.append((idx, u, to_add, to_remove))

        if not deltas:
            return []

        ids = self.resolve_user_ids([login for _, _, a, r in deltas for login in a + r])
        ops = []
        for idx, u, to_add, to_remove in deltas:
            add_ids = [ids[login] for login in to_add if login in ids]
            remove_ids = [ids[login] for login in to_remove if login in ids]
            if add_ids:
                ops.append(_SubOp(idx, "addAssigneesToAssignable", "AddAssigneesToAssignableInput!",
                                  {"assignableId": u.target_id, "assigneeIds": add_ids}, "assignable"))
            if remove_ids:
                ops.append(_SubOp(idx, "removeAssigneesFromAssignable", "RemoveAssigneesFromAssignableInput!",
                                  {"assignableId": u.target_id, "assigneeIds": remove_ids}, "assignable"))
        return ops

    def resolve_user_ids(self, logins: list[str]) -> dict[str, str]:
        """login -> node id, one aliased query for the uncached logins."""
        cache = self.board.caches.user_ids
        unique = list(dict.fromkeys(login for login in logins if login))
        uncached = [login for login in unique if login not in cache]
        if uncached:
            decls = ", ".join(f"$l{i}: String!" for i in range(len(uncached)))
            fields = " ".join(f"u{i}: user(login: $l{i}) {{ id login }}" for i in range(len(uncached)))
            response = self.board.client.execute(
                f"query({decls}) {{ {fields} }}",
                {f"l{i}": login for i, login in enumerate(uncached)},
            )
            for i, login in enumerate(uncached):
                node = response.data.get(f"u{i}") or {}
                if node.get("id"):
                    cache[login] = node["id"]
        missing = [login for login in unique if login not in cache]
        if missing:
            logger.warning(f"[BATCH] Assignee logins not found: {', '.join(missing)}")
        return {login: cache[login] for login in unique if login in cache}

    # --- Transport ------------------------------------------------------

    def _execute(self, ops: list[_SubOp], batch_size: int) -> dict[int, int]:
        """Send ops in chunks. Returns update index -> succeeded sub-op count."""
        succeeded: dict[int, int] = {}
        for chunk in _chunks(ops, batch_size):
            decls, parts, variables = [], [], {}
            for i, op in enumerate(chunk):
                decls.append(f"$input{i}: {op.input_type}")
                parts.append(f"m{i}: {op.mutation}(input: $input{i}) {{ {op.result_key} {{ {self._selection(op)} }} }}")
                variables[f"input{i}"] = op.input
            mutation = f"mutation({', '.join(decls)}) {{ {' '.join(parts)} }}"

            response = self.board.client.execute(mutation, variables)
            if response.errors:
                logger.warning(f"[BATCH] {len(response.errors)} sub-operation error(s): {response.error_message()}")

            for i, op in enumerate(chunk):
                result = response.data.get(f"m{i}") or {}
                if result.get(op.result_key):
                    succeeded[op.update_index] = succeeded.get(op.update_index, 0) + 1
        return succeeded

    @staticmethod
    def _selection(op: _SubOp) -> str:
        return "id" if op.result_key == "projectV2Item" else "__typename"
