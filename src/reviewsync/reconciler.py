"""Reconcile local task state with GitHub thread state for a whole PR.

Covers the cases the per-task resolution policy misses, e.g. tasks finished
while offline: any comment whose tasks are all complete locally but whose
thread is still open on GitHub gets its thread resolved.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from reviewsync.github_api import GitHubError
from reviewsync.models import TIMESTAMP_FORMAT, ReconciliationResult, TaskStatus

if TYPE_CHECKING:
    from reviewsync.models import Review, Task

logger = logging.getLogger(__name__)


class ThreadGateway(Protocol):
    async def get_all_thread_states(self, owner: str, repo: str, pr_number: int) -> dict[int, bool]: ...

    async def resolve_comment_thread(self, owner: str, repo: str, pr_number: int, comment_id: int) -> str: ...


class AllTasksStorage(Protocol):
    def get_all_tasks(self) -> list[Task]: ...


def _task_is_complete(task: Task) -> bool:
    """Done tasks, and cancelled tasks whose cancellation was explained on GitHub."""
    if task.status == TaskStatus.DONE:
        return True
    return task.status == TaskStatus.CANCEL and task.cancel_comment_posted


class Reconciler:
    """Brings GitHub thread resolution in line with local task completion."""

    def __init__(self, github: ThreadGateway, storage: AllTasksStorage) -> None:
        self.github = github
        self.storage = storage

    async def reconcile_with_github(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        reviews: list[Review],
    ) -> ReconciliationResult:
        """Resolve threads whose tasks are all complete locally.

        Per-thread resolve failures are collected as warnings so one bad
        thread does not stop the pass. Fetching thread state or loading tasks
        failing is fatal.
        """
        result = ReconciliationResult()
        thread_states = await self.github.get_all_thread_states(owner, repo, pr_number)

        for review in reviews:
            for comment in review.comments:
                if comment.is_synthetic:
                    continue
                result.total_comments += 1
                if thread_states.get(comment.id, False):
                    result.resolved_on_github += 1

        tasks_by_comment: dict[int, list[Task]] = defaultdict(list)
        for task in self.storage.get_all_tasks():
            if task.source_comment_id != 0 and task.pr_number in {0, pr_number}:
                tasks_by_comment[task.source_comment_id].append(task)

        for comment_id, tasks in tasks_by_comment.items():
            if comment_id not in thread_states:
                continue
            resolved_on_github = thread_states[comment_id]

            unexplained = [t for t in tasks if t.status == TaskStatus.CANCEL and not t.cancel_comment_posted]
            for task in unexplained:
                result.cancel_tasks_without_reply += 1
                result.warnings.append(f"Task {task.id} (comment {comment_id}) is cancelled but no reply comment posted")

            if unexplained:
                if not resolved_on_github:
                    result.warnings.append(
                        f"⚠️  Comment {comment_id} has cancelled tasks without explanation - please post reply before resolving"
                    )
                continue

            if resolved_on_github or not all(_task_is_complete(t) for t in tasks):
                continue

            result.local_tasks_needing_resolve += 1
            try:
                await self.github.resolve_comment_thread(owner, repo, pr_number, comment_id)
            except GitHubError as exc:
                logger.warning("Failed to resolve thread for comment %d: %s", comment_id, exc)
                result.warnings.append(f"Failed to resolve thread for comment {comment_id}: {exc}")
            else:
                result.resolved_threads.append(comment_id)

        logger.info(
            "Reconciled PR #%d: %d/%d comments resolved on GitHub, %d thread(s) resolved now",
            pr_number,
            result.resolved_on_github,
            result.total_comments,
            len(result.resolved_threads),
        )
        return result

    async def update_comment_resolution_states(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        reviews: list[Review],
    ) -> list[Review]:
        """Return copies of *reviews* with each known comment's thread state refreshed."""
        thread_states = await self.github.get_all_thread_states(owner, repo, pr_number)
        now = datetime.now(UTC).strftime(TIMESTAMP_FORMAT)

        updated: list[Review] = []
        for review in reviews:
            comments = []
            for comment in review.comments:
                if not comment.is_synthetic and comment.id in thread_states:
                    comment = comment.model_copy(
                        update={"github_thread_resolved": thread_states[comment.id], "last_checked_at": now}
                    )
                comments.append(comment)
            updated.append(review.model_copy(update={"comments": comments}))
        return updated
