"""Review thread state: batch fetching and per-comment resolution tracking.

GitHub only exposes thread resolution through GraphQL, and only per thread.
``ThreadStateFetcher`` walks every thread of a PR once and builds a
``comment_id -> resolved`` table, so asking about N comments costs
``pages(threads) + extra comment pages`` round trips instead of N.

Threads with more than one page of comments are followed up with a
thread-scoped ``node(id:)`` query. Each follow-up carries its own immutable
cursor record; the thread-list cursor is never used for comment pagination.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from reviewsync.github_api import GitHubError, ThreadNotFoundError, ThreadResolutionError
from reviewsync.models import ReviewThreadStatus, UnresolvedCommentsReport

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from reviewsync.models import Comment

logger = logging.getLogger(__name__)

# Thread list for a PR, with the first page of each thread's comments
_THREAD_STATES_QUERY = """
query($owner: String!, $repo: String!, $pr: Int!, $threadCursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $pr) {
      reviewThreads(first: 100, after: $threadCursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          isResolved
          comments(first: 100) {
            pageInfo { hasNextPage endCursor }
            nodes { databaseId }
          }
        }
      }
    }
  }
}
"""

# Further comment pages of a single thread
_THREAD_COMMENTS_QUERY = """
query($threadId: ID!, $commentCursor: String!) {
  node(id: $threadId) {
    ... on PullRequestReviewThread {
      id
      comments(first: 100, after: $commentCursor) {
        pageInfo { hasNextPage endCursor }
        nodes { databaseId }
      }
    }
  }
}
"""

_RESOLVE_THREAD_MUTATION = """
mutation($threadId: ID!) {
  resolveReviewThread(input: {threadId: $threadId}) {
    thread { id isResolved }
  }
}
"""


class GraphQLClient(Protocol):
    """Anything that can run a GraphQL document and return its ``data``."""

    async def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class _CommentCursor:
    """Where to resume one thread's comment list."""

    thread_id: str
    after: str


@dataclass(frozen=True, slots=True)
class _ThreadPage:
    """One page of comment IDs belonging to one thread."""

    thread_id: str
    is_resolved: bool
    comment_ids: tuple[int, ...]


def _comment_ids(comments: dict[str, Any]) -> tuple[int, ...]:
    return tuple(
        node["databaseId"] for node in comments.get("nodes") or [] if node and node.get("databaseId") is not None
    )


def _next_cursor(page_info: dict[str, Any], what: str) -> str | None:
    """Return the cursor for the next page, or None when the list is exhausted."""
    if not page_info.get("hasNextPage"):
        return None
    cursor = page_info.get("endCursor")
    if not cursor:
        msg = f"GitHub reported more {what} but returned no cursor"
        raise GitHubError(msg)
    return cursor


class ThreadStateFetcher:
    """Fetches review thread state for whole PRs through a GraphQL client."""

    def __init__(self, client: GraphQLClient) -> None:
        self._client = client

    async def _fetch_thread_comments(self, cursor: _CommentCursor) -> dict[str, Any]:
        data = await self._client.execute(
            _THREAD_COMMENTS_QUERY,
            {"threadId": cursor.thread_id, "commentCursor": cursor.after},
        )
        node = data.get("node")
        if not node or node.get("id", cursor.thread_id) != cursor.thread_id:
            msg = f"Thread {cursor.thread_id} not found in paginated results"
            raise GitHubError(msg)
        return node.get("comments") or {}

    async def _iter_thread_pages(self, owner: str, repo: str, pr_number: int) -> AsyncIterator[_ThreadPage]:
        """Yield every comment page of every thread, strictly in order."""
        thread_cursor: str | None = None
        page = 0

        while True:
            page += 1
            variables: dict[str, Any] = {"owner": owner, "repo": repo, "pr": pr_number}
            if thread_cursor:
                variables["threadCursor"] = thread_cursor

            logger.debug("Fetching review threads for %s/%s#%d (page %d)", owner, repo, pr_number, page)
            data = await self._client.execute(_THREAD_STATES_QUERY, variables)
            pr_data = (data.get("repository") or {}).get("pullRequest")
            if pr_data is None:
                msg = f"Pull request #{pr_number} not found in {owner}/{repo}"
                raise GitHubError(msg, status_code=404)
            threads = pr_data.get("reviewThreads") or {}

            for node in threads.get("nodes") or []:
                thread_id = node["id"]
                is_resolved = bool(node.get("isResolved"))
                comments = node.get("comments") or {}
                yield _ThreadPage(thread_id, is_resolved, _comment_ids(comments))

                after = _next_cursor(comments.get("pageInfo") or {}, f"comments in thread {thread_id}")
                while after is not None:
                    comments = await self._fetch_thread_comments(_CommentCursor(thread_id, after))
                    yield _ThreadPage(thread_id, is_resolved, _comment_ids(comments))
                    after = _next_cursor(comments.get("pageInfo") or {}, f"comments in thread {thread_id}")

            thread_cursor = _next_cursor(threads.get("pageInfo") or {}, "review threads")
            if thread_cursor is None:
                break

    async def get_all_thread_states(self, owner: str, repo: str, pr_number: int) -> dict[int, bool]:
        """Map every comment ID on the PR to its thread's resolved flag.

        Raises:
            GitHubError: On any transport or GraphQL failure. No partial map
                is ever returned.
        """
        states: dict[int, bool] = {}
        thread_ids: set[str] = set()
        async for page in self._iter_thread_pages(owner, repo, pr_number):
            thread_ids.add(page.thread_id)
            for comment_id in page.comment_ids:
                states[comment_id] = page.is_resolved

        logger.debug(
            "Fetched state of %d thread(s) covering %d comment(s) on %s/%s#%d",
            len(thread_ids),
            len(states),
            owner,
            repo,
            pr_number,
        )
        return states

    async def get_review_thread_id(self, owner: str, repo: str, pr_number: int, comment_id: int) -> str:
        """Return the ID of the thread containing *comment_id*.

        Stops paginating as soon as the comment is seen.

        Raises:
            ThreadNotFoundError: If no thread contains the comment.
            GitHubError: On any transport or GraphQL failure.
        """
        async with contextlib.aclosing(self._iter_thread_pages(owner, repo, pr_number)) as pages:
            async for page in pages:
                if comment_id in page.comment_ids:
                    return page.thread_id
        raise ThreadNotFoundError(comment_id)

    async def resolve_review_thread(self, thread_id: str) -> None:
        """Resolve a thread and confirm GitHub reports it resolved.

        Raises:
            ThreadResolutionError: If the mutation returns an unresolved thread.
        """
        data = await self._client.execute(_RESOLVE_THREAD_MUTATION, {"threadId": thread_id})
        thread = (data.get("resolveReviewThread") or {}).get("thread") or {}
        if not thread.get("isResolved"):
            raise ThreadResolutionError(thread_id)
        logger.info("Resolved review thread %s", thread_id)

    async def resolve_comment_thread(self, owner: str, repo: str, pr_number: int, comment_id: int) -> str:
        """Resolve the thread containing *comment_id* and return its ID."""
        thread_id = await self.get_review_thread_id(owner, repo, pr_number, comment_id)
        await self.resolve_review_thread(thread_id)
        return thread_id


class ThreadResolutionTracker:
    """Classifies comments of one repository by their GitHub thread state."""

    def __init__(self, fetcher: ThreadStateFetcher, owner: str, repo: str) -> None:
        self.fetcher = fetcher
        self.owner = owner
        self.repo = repo

    async def update_thread_resolution_status(self, pr_number: int, comments: list[Comment]) -> list[ReviewThreadStatus]:
        """Snapshot the thread state of each comment with a single batch fetch.

        Comments missing from GitHub's thread table (including synthetic
        ``id == 0`` comments) are reported unresolved.
        """
        states = await self.fetcher.get_all_thread_states(self.owner, self.repo, pr_number)
        checked_at = datetime.now(UTC)
        return [
            ReviewThreadStatus(
                comment_id=comment.id,
                github_thread_resolved=False if comment.is_synthetic else states.get(comment.id, False),
                last_checked_at=checked_at,
            )
            for comment in comments
        ]

    @staticmethod
    def detect_unresolved_comments(
        local_comments: list[Comment],
        statuses: list[ReviewThreadStatus],
    ) -> UnresolvedCommentsReport:
        """Partition *local_comments* into unanalyzed, in-progress and resolved."""
        by_id = {status.comment_id: status for status in statuses}
        report = UnresolvedCommentsReport()

        for comment in local_comments:
            status = by_id.get(comment.id)
            if status is None:
                report.unanalyzed.append(comment)
            elif status.github_thread_resolved:
                report.resolved.append(comment)
            elif not comment.tasks_generated:
                report.unanalyzed.append(comment)
            else:
                # Tasks exist (finished or not) but the thread is still open
                report.in_progress.append(comment)

        return report
