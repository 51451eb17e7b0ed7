"""Per-run lookup caches. Nothing here survives past one run."""

from dataclasses import dataclass, field

from boardsync.lib.types import Iteration


@dataclass
class RunCaches:
    status_field_id: str | None = None
    column_options: dict[str, str] | None = None  # column name -> option id
    sprint_field_id: str | None = None
    sprint_field_loaded: bool = False
    iterations: list[Iteration] | None = None
    user_ids: dict[str, str] = field(default_factory=dict)  # login -> node id
    project_items: dict[str, str] = field(default_factory=dict)  # content id -> project item id
    # Content ids whose board membership has been read, on the board or not
    membership_known: set[str] = field(default_factory=set)

    def clear(self) -> None:
        self.status_field_id = None
        self.column_options = None
        self.sprint_field_id = None
        self.sprint_field_loaded = False
        self.iterations = None
        self.user_ids.clear()
        self.project_items.clear()
        self.membership_known.clear()

    def forget_item(self, content_id: str) -> None:
        self.project_items.pop(content_id, None)
        self.membership_known.discard(content_id)
