"""Decide when a GitHub review thread should be resolved after local task progress.

The decision is a pure function of the configured :class:`ResolveMode` and the
current task counts for the task's source comment. Nothing is persisted, so
calling it repeatedly for the same state always yields the same answer.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from reviewsync.config import ResolveMode
from reviewsync.models import ResolutionResult, TaskStatus

if TYPE_CHECKING:
    from reviewsync.models import Task

logger = logging.getLogger(__name__)


class TaskStorage(Protocol):
    def get_tasks_by_source_comment_id(self, comment_id: int) -> list[Task]: ...


class ThreadGateway(Protocol):
    async def get_review_thread_id(self, owner: str, repo: str, pr_number: int, comment_id: int) -> str: ...

    async def resolve_review_thread(self, thread_id: str) -> None: ...


class ThreadResolver:
    """Applies the auto-resolve policy to task-completion events.

    Args:
        mode: Policy mode; strings are parsed case-insensitively.
        storage: Source of the locally stored tasks.
        github: Thread lookup and resolve operations.
    """

    def __init__(self, mode: ResolveMode | str, storage: TaskStorage, github: ThreadGateway) -> None:
        self.mode = ResolveMode.parse(mode)
        self.storage = storage
        self.github = github

    def should_resolve_thread(self, task: Task) -> ResolutionResult:
        """Evaluate the policy for *task*'s source comment."""
        if self.mode is ResolveMode.DISABLED:
            return ResolutionResult(
                thread_resolved=False,
                comment_id=task.source_comment_id,
                mode=self.mode,
                message="auto-resolve disabled",
                should_notify=False,
            )

        tasks = self.storage.get_tasks_by_source_comment_id(task.source_comment_id)
        total = len(tasks)
        completed = sum(1 for t in tasks if t.status == TaskStatus.DONE)

        result = ResolutionResult(
            comment_id=task.source_comment_id,
            total_tasks=total,
            completed_tasks=completed,
            remaining_tasks=total - completed,
            mode=self.mode,
            should_notify=True,
        )

        if self.mode is ResolveMode.IMMEDIATE:
            result.thread_resolved = True
            result.message = "resolving thread (immediate mode)"
        elif completed == total:
            result.thread_resolved = True
            result.message = "all tasks complete, resolving thread"
        else:
            result.message = f"{completed} of {total} tasks complete"
        return result

    async def resolve_thread_for_task(self, task: Task, owner: str, repo: str) -> ResolutionResult:
        """Resolve the task's thread on GitHub if the policy says so.

        A "not yet" decision is returned as-is and is not an error.

        Raises:
            GitHubError: If the thread lookup or the resolve mutation fails.
        """
        result = self.should_resolve_thread(task)
        if not result.thread_resolved:
            logger.debug("Not resolving thread for comment %d: %s", task.source_comment_id, result.message)
            return result

        thread_id = await self.github.get_review_thread_id(owner, repo, task.pr_number, task.source_comment_id)
        await self.github.resolve_review_thread(thread_id)
        logger.info("Resolved thread %s for comment %d (%s)", thread_id, task.source_comment_id, result.message)
        return result
