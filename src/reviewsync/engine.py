"""Wiring of the synchronization components for one repository."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from reviewsync import github_api
from reviewsync.cache import ResponseCache
from reviewsync.client import GitHubClient
from reviewsync.comments import CommentManager
from reviewsync.config import Config, get_config
from reviewsync.dedup import deduplicate_reviews
from reviewsync.models import TaskStatus
from reviewsync.reconciler import Reconciler
from reviewsync.resolver import ThreadResolver
from reviewsync.storage import TaskStore
from reviewsync.threads import ThreadResolutionTracker, ThreadStateFetcher

if TYPE_CHECKING:
    from reviewsync.models import (
        Comment,
        CommentComparisonResult,
        ReconciliationResult,
        ResolutionResult,
        Review,
        UnresolvedCommentsReport,
    )

logger = logging.getLogger(__name__)


def build_cache(config: Config) -> ResponseCache | None:
    """Create the response cache described by *config*, or None when disabled."""
    if not config.cache.enabled:
        return None
    return ResponseCache(config.cache.directory, ttl=timedelta(seconds=config.cache.ttl_seconds))


class SyncEngine:
    """Synchronizes review state between GitHub and local storage for ``owner/repo``.

    Every collaborator can be injected; defaults are built from *config*
    (or the active configuration).
    """

    def __init__(  # noqa: PLR0913
        self,
        owner: str,
        repo: str,
        config: Config | None = None,
        *,
        client: GitHubClient | None = None,
        graphql: Any | None = None,
        store: TaskStore | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.config = config or get_config()
        self.client = client or GitHubClient(owner, repo, cache=build_cache(self.config), graphql=graphql)
        self.store = store or TaskStore(self.config.storage.directory)
        self.fetcher = ThreadStateFetcher(self.client)
        self.tracker = ThreadResolutionTracker(self.fetcher, owner, repo)
        self.comments = CommentManager(self.client, self.tracker)
        self.resolver = ThreadResolver(self.config.done_workflow.enable_auto_resolve, self.store, self.fetcher)
        self.reconciler = Reconciler(self.fetcher, self.store)

    @classmethod
    def from_repo(cls, repo: str, config: Config | None = None) -> SyncEngine:
        owner, repo_name = github_api.parse_repo(repo)
        return cls(owner, repo_name, config)

    async def sync_comments(self, pr_number: int) -> CommentComparisonResult:
        """Refresh the stored reviews of a PR from GitHub and return the diff."""
        local_reviews = self.store.load_reviews(pr_number)
        local_comments = [c for review in local_reviews for c in review.comments]

        comparison = await self.comments.fetch_and_compare_comments(pr_number, local_comments)
        merged = self.comments.merge_comment_states(local_comments, comparison)
        # Served from the response cache populated by the comparison above
        remote_reviews = deduplicate_reviews(await self.client.get_pr_reviews(pr_number))

        reviews = _regroup(local_reviews, remote_reviews, merged)
        self.store.save_reviews(pr_number, reviews)
        logger.info("Stored %d review(s) for %s/%s#%d", len(reviews), self.owner, self.repo, pr_number)
        return comparison

    async def report(self, pr_number: int) -> UnresolvedCommentsReport:
        """Resolution progress of a PR, using stored task flags."""
        return await self.comments.get_unresolved_comments_report(pr_number, self.store.load_comments(pr_number))

    async def complete_task(self, task_id: str) -> ResolutionResult:
        """Mark a task done and apply the auto-resolve policy to its thread."""
        task = self.store.update_task_status(task_id, TaskStatus.DONE)
        return await self.resolver.resolve_thread_for_task(task, self.owner, self.repo)

    async def reconcile(self, pr_number: int) -> ReconciliationResult:
        """Resolve every thread whose local tasks are already complete."""
        return await self.reconciler.reconcile_with_github(
            self.owner, self.repo, pr_number, self.store.load_reviews(pr_number)
        )


def _regroup(local_reviews: list[Review], remote_reviews: list[Review], merged: list[Comment]) -> list[Review]:
    """Lay merged comments back out under the reviews they belong to."""
    merged_by_id = {c.id: c for c in merged if not c.is_synthetic}
    placed: set[int] = set()

    reviews: list[Review] = []
    for review in local_reviews:
        comments = []
        for comment in review.comments:
            if not comment.is_synthetic:
                comment = merged_by_id.get(comment.id, comment)
                placed.add(comment.id)
            comments.append(comment)
        reviews.append(review.model_copy(update={"comments": comments}))

    index = {review.id: i for i, review in enumerate(reviews)}
    for remote in remote_reviews:
        new = [merged_by_id[c.id] for c in remote.comments if c.id in merged_by_id and c.id not in placed]
        placed.update(c.id for c in new)
        if remote.id in index:
            existing = reviews[index[remote.id]]
            reviews[index[remote.id]] = existing.model_copy(update={"comments": existing.comments + new})
        else:
            index[remote.id] = len(reviews)
            reviews.append(remote.model_copy(update={"comments": new}))
    return reviews
