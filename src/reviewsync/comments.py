"""Diff locally persisted review comments against the current GitHub state."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from reviewsync.dedup import deduplicate_reviews
from reviewsync.models import TIMESTAMP_FORMAT, Comment, CommentComparisonResult

if TYPE_CHECKING:
    from reviewsync.models import Review, ReviewThreadStatus, UnresolvedCommentsReport
    from reviewsync.threads import ThreadResolutionTracker

logger = logging.getLogger(__name__)


class ReviewSource(Protocol):
    async def get_pr_reviews(self, pr_number: int) -> list[Review]: ...


def _is_modified(local: Comment, remote: Comment) -> bool:
    return local.body != remote.body or local.github_thread_resolved != remote.github_thread_resolved


def _with_local_tracking(remote: Comment, local: Comment | None) -> Comment:
    """Copy of *remote* carrying *local*'s task-tracking flags (or fresh ones)."""
    return remote.model_copy(
        update={
            "tasks_generated": local.tasks_generated if local else False,
            "all_tasks_completed": local.all_tasks_completed if local else False,
        }
    )


class CommentManager:
    """Fetches, compares and merges review comments for one repository.

    Args:
        client: Source of the PR's reviews (usually a cached
            :class:`~reviewsync.client.GitHubClient`).
        tracker: Thread resolution tracker bound to the same repository.
    """

    def __init__(self, client: ReviewSource, tracker: ThreadResolutionTracker) -> None:
        self.client = client
        self.tracker = tracker

    async def _fetch_remote(self, pr_number: int) -> tuple[list[Comment], list[ReviewThreadStatus]]:
        """Current GitHub comments, stamped with a fresh thread-state snapshot."""
        reviews = deduplicate_reviews(await self.client.get_pr_reviews(pr_number))
        comments: list[Comment] = []
        seen: set[int] = set()
        for review in reviews:
            for comment in review.comments:
                if not comment.is_synthetic and comment.id in seen:
                    continue
                seen.add(comment.id)
                comments.append(comment)

        statuses = await self.tracker.update_thread_resolution_status(pr_number, comments)
        stamped = [
            comment.model_copy(
                update={
                    "github_thread_resolved": status.github_thread_resolved,
                    "last_checked_at": status.last_checked_at.strftime(TIMESTAMP_FORMAT),
                }
            )
            for comment, status in zip(comments, statuses, strict=True)
        ]
        return stamped, statuses

    async def fetch_and_compare_comments(self, pr_number: int, local_comments: list[Comment]) -> CommentComparisonResult:
        """Classify GitHub comments as new, modified or deleted relative to *local_comments*.

        Synthetic (``id == 0``) local comments have no GitHub identity and
        take no part in the diff.
        """
        github_comments, statuses = await self._fetch_remote(pr_number)

        local_by_id = {c.id: c for c in local_comments if not c.is_synthetic}
        github_ids = {c.id for c in github_comments}
        result = CommentComparisonResult(
            local_comments=local_comments,
            github_comments=github_comments,
            thread_statuses=statuses,
        )

        for remote in github_comments:
            local = local_by_id.get(remote.id)
            if local is None:
                result.new_comments.append(remote)
            elif _is_modified(local, remote):
                result.modified_comments.append(remote)

        result.deleted_comments = [c for c in local_by_id.values() if c.id not in github_ids]

        tracked = [_with_local_tracking(c, local_by_id.get(c.id)) for c in github_comments]
        result.unresolved_report = self.tracker.detect_unresolved_comments(tracked, statuses)

        logger.info(
            "PR #%d: %d new, %d modified, %d deleted comment(s)",
            pr_number,
            len(result.new_comments),
            len(result.modified_comments),
            len(result.deleted_comments),
        )
        return result

    async def update_comment_states(self, pr_number: int, local_comments: list[Comment]) -> list[Comment]:
        """Fold the current GitHub state into *local_comments*.

        Remote body and resolution state win; local ``tasks_generated`` and
        ``all_tasks_completed`` are never overwritten. Comments deleted on
        GitHub are kept (with a refreshed ``last_checked_at``) so their tasks
        stay traceable, and new GitHub comments are appended.
        """
        comparison = await self.fetch_and_compare_comments(pr_number, local_comments)
        return self.merge_comment_states(local_comments, comparison)

    @staticmethod
    def merge_comment_states(local_comments: list[Comment], comparison: CommentComparisonResult) -> list[Comment]:
        """Apply an already computed *comparison* to *local_comments*."""
        github_by_id = {c.id: c for c in comparison.github_comments}
        now = datetime.now(UTC).strftime(TIMESTAMP_FORMAT)

        updated: list[Comment] = []
        for local in local_comments:
            remote = None if local.is_synthetic else github_by_id.get(local.id)
            if remote is not None:
                updated.append(_with_local_tracking(remote, local))
            elif local.is_synthetic:
                updated.append(local)
            else:
                updated.append(local.model_copy(update={"last_checked_at": now}))

        updated.extend(_with_local_tracking(c, None) for c in comparison.new_comments)
        return updated

    async def get_unresolved_comments_report(
        self,
        pr_number: int,
        local_comments: list[Comment] | None = None,
    ) -> UnresolvedCommentsReport:
        """Resolution progress of the PR's GitHub comments.

        When *local_comments* is given their task-tracking flags are used for
        the classification.
        """
        github_comments, statuses = await self._fetch_remote(pr_number)
        local_by_id = {c.id: c for c in local_comments or [] if not c.is_synthetic}
        tracked = [_with_local_tracking(c, local_by_id.get(c.id)) for c in github_comments]
        return self.tracker.detect_unresolved_comments(tracked, statuses)
