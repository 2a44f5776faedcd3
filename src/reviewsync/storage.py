"""JSON-file storage for local tasks and synchronized reviews.

Layout under the storage root (default ``.pr-review``)::

    PR-<n>/tasks.json    {"generated_at": ..., "tasks": [...]}
    PR-<n>/reviews.json  {"reviews": [...]}
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, Field, ValidationError

from reviewsync.models import TIMESTAMP_FORMAT, Comment, Review, Task, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_DIR = ".pr-review"

_PR_DIR_RE = re.compile(r"^PR-(\d+)$")

_M = TypeVar("_M", bound=BaseModel)


class StorageError(Exception):
    """Raised when a storage file cannot be read or written."""


class TasksFile(BaseModel):
    generated_at: str = Field(default="", description="When the task list was last written")
    tasks: list[Task] = Field(default_factory=list)


class ReviewsFile(BaseModel):
    reviews: list[Review] = Field(default_factory=list)


class TaskStore:
    """Reads and writes per-PR task and review files under *root*."""

    def __init__(self, root: str | Path = DEFAULT_STORAGE_DIR) -> None:
        self.root = Path(root)

    def _pr_dir(self, pr_number: int) -> Path:
        return self.root / f"PR-{pr_number}"

    def _pr_numbers(self) -> list[int]:
        if not self.root.is_dir():
            return []
        numbers = []
        for entry in self.root.iterdir():
            match = _PR_DIR_RE.match(entry.name)
            if match and entry.is_dir():
                numbers.append(int(match.group(1)))
        return sorted(numbers)

    def _load(self, path: Path, model: type[_M]) -> _M:
        if not path.exists():
            return model()
        try:
            return model.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            msg = f"Cannot read {path}: {exc}"
            raise StorageError(msg) from exc

    def _save(self, path: Path, data: BaseModel) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(data.model_dump_json(indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            msg = f"Cannot write {path}: {exc}"
            raise StorageError(msg) from exc

    # -- tasks ----------------------------------------------------------------

    def get_tasks_by_pr(self, pr_number: int) -> list[Task]:
        """Tasks stored for a PR; tasks without a PR number inherit the directory's."""
        tasks = self._load(self._pr_dir(pr_number) / "tasks.json", TasksFile).tasks
        return [t if t.pr_number else t.model_copy(update={"pr_number": pr_number}) for t in tasks]

    def save_tasks(self, pr_number: int, tasks: list[Task]) -> None:
        now = datetime.now(UTC).strftime(TIMESTAMP_FORMAT)
        self._save(self._pr_dir(pr_number) / "tasks.json", TasksFile(generated_at=now, tasks=tasks))

    def get_all_tasks(self) -> list[Task]:
        tasks: list[Task] = []
        for pr_number in self._pr_numbers():
            tasks.extend(self.get_tasks_by_pr(pr_number))
        return tasks

    def get_tasks_by_source_comment_id(self, comment_id: int) -> list[Task]:
        return [t for t in self.get_all_tasks() if t.source_comment_id == comment_id]

    def update_task_status(self, task_id: str, status: TaskStatus | str) -> Task:
        """Set a task's status and return the updated task.

        Raises:
            StorageError: If no stored task has *task_id*.
        """
        new_status = TaskStatus(status)
        for pr_number in self._pr_numbers():
            tasks = self.get_tasks_by_pr(pr_number)
            for i, task in enumerate(tasks):
                if task.id != task_id:
                    continue
                updated = task.model_copy(
                    update={"status": new_status, "updated_at": datetime.now(UTC).strftime(TIMESTAMP_FORMAT)}
                )
                tasks[i] = updated
                self.save_tasks(pr_number, tasks)
                logger.debug("Task %s -> %s", task_id, new_status)
                return updated
        msg = f"Task {task_id} not found"
        raise StorageError(msg)

    # -- reviews --------------------------------------------------------------

    def load_reviews(self, pr_number: int) -> list[Review]:
        return self._load(self._pr_dir(pr_number) / "reviews.json", ReviewsFile).reviews

    def save_reviews(self, pr_number: int, reviews: list[Review]) -> None:
        self._save(self._pr_dir(pr_number) / "reviews.json", ReviewsFile(reviews=reviews))

    def load_comments(self, pr_number: int) -> list[Comment]:
        """All locally persisted comments of a PR, flattened across reviews."""
        return [c for review in self.load_reviews(pr_number) for c in review.comments]
