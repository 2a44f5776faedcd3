"""Repository-bound GitHub client that builds review models through the cache.

REST reads are cached in a :class:`~reviewsync.cache.ResponseCache` keyed by
(operation, owner, repo, PR number). GraphQL is never cached here: thread
state must be fresh on every pass and mutations must always reach GitHub.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import TypeAdapter

from reviewsync import github_api
from reviewsync.models import TIMESTAMP_FORMAT, Comment, Review

if TYPE_CHECKING:
    from reviewsync.cache import ResponseCache

logger = logging.getLogger(__name__)

_REVIEWS_ADAPTER: TypeAdapter[list[Review]] = TypeAdapter(list[Review])
_RAW_LIST_ADAPTER: TypeAdapter[list[dict[str, Any]]] = TypeAdapter(list[dict[str, Any]])

SELF_REVIEW_ID = -1

# HTML comment blocks injected by reviewer bots (fingerprints, badges, metadata)
_HTML_COMMENT_BLOCK_RE = re.compile(r"<!--.*?-->", re.DOTALL)
# Collapse 3+ consecutive blank lines into 2
_BLANK_LINES_RE = re.compile(r"\n{3,}")

# CodeRabbit posts a summary wrapper whose content lives in the inline comments
_CODERABBIT_LOGIN = "coderabbitai[bot]"
_CODERABBIT_SUMMARY_PREFIX = "**Actionable comments posted:"


def clean_body(body: str) -> str:
    """Drop bot metadata comments and excess blank lines from a comment body."""
    body = _HTML_COMMENT_BLOCK_RE.sub("", body or "")
    body = _BLANK_LINES_RE.sub("\n\n", body)
    return body.strip()


def _login(raw: dict[str, Any]) -> str:
    return (raw.get("user") or {}).get("login", "unknown")


def _comment_from_rest(raw: dict[str, Any]) -> Comment:
    return Comment(
        id=raw.get("id") or 0,
        file=raw.get("path") or "",
        line=raw.get("line") or raw.get("original_line") or 0,
        body=clean_body(raw.get("body", "")),
        author=_login(raw),
        created_at=raw.get("created_at") or "",
        url=raw.get("html_url") or "",
    )


class GitHubClient:
    """GitHub access for a single ``owner/repo``.

    Args:
        owner: Repository owner.
        repo: Repository name.
        cache: Optional response cache. ``None`` disables caching.
        graphql: GraphQL executor, defaults to :class:`github_api.GraphQLExecutor`.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        cache: ResponseCache | None = None,
        graphql: Any | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.cache = cache
        self._graphql = graphql or github_api.GraphQLExecutor()

    @classmethod
    def from_repo(cls, repo: str, cache: ResponseCache | None = None) -> GitHubClient:
        """Build a client from an ``owner/repo`` string."""
        owner, repo_name = github_api.parse_repo(repo)
        return cls(owner, repo_name, cache=cache)

    async def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a GraphQL document (uncached)."""
        return await self._graphql.execute(query, variables)

    # -- cache helpers --------------------------------------------------------

    def _cache_get(self, operation: str, adapter: TypeAdapter[Any], *params: Any) -> tuple[Any, bool]:
        if self.cache is None:
            return None, False
        return self.cache.get(operation, self.owner, self.repo, *params, adapter=adapter)

    def _cache_set(self, operation: str, value: Any, *params: Any) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(operation, self.owner, self.repo, value, *params)
        except OSError as exc:
            # The cache only accelerates; a failed write must not fail the sync
            logger.warning("Failed to cache %s for %s/%s: %s", operation, self.owner, self.repo, exc)

    async def _cached_list(self, operation: str, endpoint: str, pr_number: int) -> list[dict[str, Any]]:
        cached, found = self._cache_get(operation, _RAW_LIST_ADAPTER, pr_number)
        if found:
            return cached
        result = await github_api.rest(endpoint, paginate=True) or []
        self._cache_set(operation, result, pr_number)
        return result

    # -- REST collaborators ---------------------------------------------------

    async def list_reviews(self, pr_number: int) -> list[dict[str, Any]]:
        """Raw PR reviews, oldest first."""
        return await self._cached_list(
            "ListReviews", f"/repos/{self.owner}/{self.repo}/pulls/{pr_number}/reviews?per_page=100", pr_number
        )

    async def list_review_comments(self, pr_number: int) -> list[dict[str, Any]]:
        """Raw inline review comments on the PR."""
        return await self._cached_list(
            "ListComments", f"/repos/{self.owner}/{self.repo}/pulls/{pr_number}/comments?per_page=100", pr_number
        )

    async def list_issue_comments(self, pr_number: int) -> list[dict[str, Any]]:
        """Raw conversation-tab comments on the PR."""
        return await self._cached_list(
            "ListIssueComments", f"/repos/{self.owner}/{self.repo}/issues/{pr_number}/comments?per_page=100", pr_number
        )

    # -- model builders -------------------------------------------------------

    async def get_pr_reviews(self, pr_number: int) -> list[Review]:
        """Fetch all reviews on a PR with their inline comments attached."""
        cached, found = self._cache_get("GetPRReviews", _REVIEWS_ADAPTER, pr_number)
        if found:
            return cached

        raw_reviews = await self.list_reviews(pr_number)
        raw_comments = await self.list_review_comments(pr_number)

        reviews: list[Review] = []
        for raw in raw_reviews:
            review_id = raw.get("id") or 0
            login = _login(raw)
            body = raw.get("body") or ""
            # Keep the review for its inline comments, but drop the summary wrapper
            if login == _CODERABBIT_LOGIN and body.startswith(_CODERABBIT_SUMMARY_PREFIX):
                body = ""

            comments = [
                _comment_from_rest(c)
                for c in raw_comments
                if (c.get("pull_request_review_id") or 0) in {0, review_id}
            ]
            reviews.append(
                Review(
                    id=review_id,
                    reviewer=login,
                    state=raw.get("state") or "",
                    body=clean_body(body),
                    submitted_at=raw.get("submitted_at") or "",
                    comments=comments,
                )
            )

        self._cache_set("GetPRReviews", _REVIEWS_ADAPTER.dump_python(reviews, mode="json"), pr_number)
        logger.debug("Fetched %d review(s) for %s/%s#%d", len(reviews), self.owner, self.repo, pr_number)
        return reviews

    async def get_self_reviews(self, pr_number: int, pr_author: str) -> list[Review]:
        """Collect the PR author's own comments into one synthetic review.

        Returns an empty list when the author has not commented.
        """
        comments: list[Comment] = []
        for raw in await self.list_issue_comments(pr_number):
            if _login(raw) == pr_author:
                comments.append(_comment_from_rest(raw))
        for raw in await self.list_review_comments(pr_number):
            if _login(raw) == pr_author:
                comments.append(_comment_from_rest(raw))

        if not comments:
            return []
        return [
            Review(
                id=SELF_REVIEW_ID,
                reviewer=pr_author,
                state="COMMENTED",
                submitted_at=datetime.now(UTC).strftime(TIMESTAMP_FORMAT),
                comments=comments,
            )
        ]
