"""
Post-write verification with bounded retry.

GitHub's project fields are eventually consistent: a write can succeed and
the next read still return the old value. After every mutation the
processors re-read the field through one of the verify_* helpers, each
wrapped in retry_with_tracking.

Transient failures (StateMismatchError, TransientAPIError, timeouts) retry
with exponential backoff. Everything else propagates on the first attempt.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from boardsync.lib.board import BoardClient
from boardsync.lib.errors import StateMismatchError, is_retryable
from boardsync.lib.stats import RETRY_EXHAUSTED, RunCounters
from boardsync.lib.types import WorkItem

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 3
BASE_DELAY_SECONDS = 0.5
MAX_DELAY_SECONDS = 8.0
JITTER_RATIO = 0.1


@dataclass
class RetryRecord:
    """Attempt history for one operation on one item. The latest call wins."""
    label: str
    operation: str
    attempts: int = 0
    succeeded: bool = False
    errors: list[str] = field(default_factory=list)


def backoff_delay(attempt: int, base: float = BASE_DELAY_SECONDS, cap: float = MAX_DELAY_SECONDS) -> float:
    """Delay before retry number ``attempt`` (0-based), without jitter."""
    return min(cap, base * (2 ** attempt))


class StateVerifier:
    """Retries operations and tracks per-item outcomes for a run."""

    def __init__(
        self,
        board: BoardClient,
        counters: RunCounters | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], None] | None = None,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.board = board
        self.counters = counters if counters is not None else RunCounters()
        self.max_attempts = max_attempts
        self.sleep = sleep or time.sleep
        self.records: dict[tuple[str, str], RetryRecord] = {}
        self.completed_steps: dict[str, set[str]] = {}
        self._verified_values: dict[tuple[str, str], object] = {}

    def reset(self) -> None:
        self.records.clear()
        self.completed_steps.clear()
        self._verified_values.clear()

    def record_for(self, item: WorkItem, operation: str) -> RetryRecord | None:
        return self.records.get((item.key, operation))

    def mark_step_complete(self, item: WorkItem, step: str) -> bool:
        """True the first time ``step`` completes for ``item`` in this run."""
        steps = self.completed_steps.setdefault(item.key, set())
        if step in steps:
            return False
        steps.add(step)
        return True

    def is_step_complete(self, item: WorkItem, step: str) -> bool:
        return step in self.completed_steps.get(item.key, set())

    def retry_with_tracking(self, item: WorkItem, label: str, operation: Callable[[], T], context: str = "") -> T:
        """Run ``operation`` with retry on transient errors.

        Args:
            item: Item the operation concerns
            label: Short operation name, e.g. "verify column". Keys the
                RetryRecord together with the item
            operation: Zero-argument callable
            context: Extra detail appended to log lines

        Returns:
            The operation's return value.

        Raises:
            The last error once attempts are exhausted, or the first
            non-transient error.
        """
        record = RetryRecord(label=item.label, operation=label)
        self.records[(item.key, label)] = record
        suffix = f" ({context})" if context else ""

        for attempt in range(self.max_attempts):
            record.attempts += 1
            try:
                result = operation()
            except Exception as e:
                record.errors.append(str(e))
                if not is_retryable(e):
                    logger.error(f"[VERIFY] {label} failed for {item.label}{suffix}: {e}")
                    raise
                if attempt == self.max_attempts - 1:
                    self.counters.increment(RETRY_EXHAUSTED)
                    logger.error(
                        f"[VERIFY] {label} failed for {item.label} after {attempt + 1} attempts{suffix}: {e}"
                    )
                    raise
                delay = backoff_delay(attempt)
                delay += random.uniform(0, delay * JITTER_RATIO)
                logger.warning(
                    f"[VERIFY] {label} attempt {attempt + 1}/{self.max_attempts} failed for "
                    f"{item.label}{suffix}: {e}. Retrying in {delay:.2f}s"
                )
                self.sleep(delay)
                continue
            record.succeeded = True
            return result

    # --- Verification helpers -------------------------------------------

    def verify_column(self, item: WorkItem, project_item_id: str, expected: str | None) -> str | None:
        def check():
            actual = self.board.get_item_column(project_item_id)
            if (actual or "").lower() != (expected or "").lower():
                raise StateMismatchError("column", item.label, expected, actual)
            return actual

        return self._verified(item, "column", check, expected)

    def verify_sprint(self, item: WorkItem, project_item_id: str, expected: str | None) -> str | None:
        def check():
            actual = self.board.get_item_sprint(project_item_id)
            if actual != expected:
                raise StateMismatchError("sprint", item.label, expected, actual)
            return actual

        return self._verified(item, "sprint", check, expected)

    def verify_assignees(self, item: WorkItem, expected: tuple[str, ...] | list[str]) -> tuple[str, ...]:
        def check():
            actual = self.board.content_assignees(item.id)
            if set(actual) != set(expected):
                raise StateMismatchError("assignees", item.label, sorted(expected), sorted(actual))
            return actual

        return self._verified(item, "assignees", check, tuple(expected))

    def verify_in_project(self, item: WorkItem) -> str:
        def check():
            self.board.caches.forget_item(item.id)
            project_item_id = self.board.find_project_item(item.id)
            if not project_item_id:
                raise StateMismatchError("board membership", item.label, "in project", "not in project")
            return project_item_id

        return self._verified(item, "in_project", check, "in project")

    def _verified(self, item: WorkItem, step: str, check: Callable[[], T], expected) -> T:
        step_key = f"verify:{step}:{expected}"
        if self.is_step_complete(item, step_key):
            logger.debug(f"[VERIFY] {step} already verified for {item.label}")
            return self._verified_values[(item.key, step_key)]
        result = self.retry_with_tracking(item, f"verify {step}", check, context=f"expected {expected!r}")
        self.mark_step_complete(item, step_key)
        self._verified_values[(item.key, step_key)] = result
        return result
