"""
Run context for one board reconciliation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from boardsync.lib.board import BoardClient
from boardsync.lib.cache import RunCaches
from boardsync.lib.config import BoardConfig, Settings
from boardsync.lib.stats import RunCounters
from boardsync.lib.types import Action, BoardPlacement, ProcessorResult, WorkItem
from boardsync.rules.conditions import ConditionContext
from boardsync.rules.evaluator import evaluate_rules
from boardsync.workflow.batch import BatchedMutationCoordinator
from boardsync.workflow.fsm import ColumnTransitionValidator
from boardsync.workflow.verifier import StateVerifier


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunContext:
    """Everything processors share during a run."""
    config: BoardConfig
    settings: Settings
    board: BoardClient
    coordinator: BatchedMutationCoordinator
    verifier: StateVerifier
    validator: ColumnTransitionValidator
    counters: RunCounters = field(default_factory=RunCounters)
    clock: Callable[[], datetime] = utc_now
    results: dict[str, ProcessorResult] = field(default_factory=dict)
    # Columns written by the columns step, by content id
    resolved_columns: dict[str, str | None] = field(default_factory=dict)

    @classmethod
    def create(cls, config: BoardConfig, settings: Settings, board: BoardClient,
               clock: Callable[[], datetime] | None = None,
               sleep: Callable[[float], None] | None = None) -> "RunContext":
        counters = RunCounters()
        verifier = StateVerifier(board, counters=counters, sleep=sleep)
        return cls(
            config=config,
            settings=settings,
            board=board,
            coordinator=BatchedMutationCoordinator(board, dry_run=settings.dry_run),
            verifier=verifier,
            validator=ColumnTransitionValidator(config.rules("columns")),
            counters=counters,
            clock=clock or utc_now,
        )

    @property
    def caches(self) -> RunCaches:
        return self.board.caches

    @property
    def dry_run(self) -> bool:
        return self.coordinator.dry_run

    def condition_context(self, item: WorkItem, placement: BoardPlacement | None = None,
                          parent: ConditionContext | None = None) -> ConditionContext:
        return ConditionContext(
            item=item,
            placement=placement,
            monitored_users=frozenset(self.config.monitored_users),
            monitored_repos=frozenset(self.config.monitored_repos),
            parent=parent,
        )

    def project_item_id(self, item: WorkItem) -> str | None:
        """Project item id for the item, reading board membership once per run when unknown."""
        if item.project_item_id:
            return item.project_item_id
        return self.board.find_project_item(item.id)

    def evaluate(self, item: WorkItem, rule_type: str, ctx: ConditionContext,
                 skip_context: ConditionContext | None = None) -> list[Action]:
        return evaluate_rules(item, self.config.rules(rule_type), ctx,
                              monitored_user=self.config.monitored_user, skip_context=skip_context)

    def reset(self) -> None:
        """Drop every per-run cache and record."""
        self.caches.clear()
        self.counters.reset()
        self.verifier.reset()
        self.results.clear()
        self.resolved_columns.clear()
