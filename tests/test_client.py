"""Tests for the repository-bound GitHub client and its REST caching."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import respx
from httpx import Response

from reviewsync.cache import ResponseCache
from reviewsync.client import SELF_REVIEW_ID, GitHubClient, clean_body
from reviewsync.github_api import GitHubError

if TYPE_CHECKING:
    from pytest_mock import MockerFixture

_REVIEWS_URL = r"https://api\.github\.com/repos/o/r/pulls/5/reviews"
_COMMENTS_URL = r"https://api\.github\.com/repos/o/r/pulls/5/comments"
_ISSUE_COMMENTS_URL = r"https://api\.github\.com/repos/o/r/issues/5/comments"

_RAW_REVIEWS = [
    {
        "id": 100,
        "user": {"login": "alice"},
        "state": "CHANGES_REQUESTED",
        "body": "Please fix <!-- meta -->",
        "submitted_at": "2025-01-01T10:00:00Z",
    },
    {
        "id": 101,
        "user": {"login": "coderabbitai[bot]"},
        "state": "COMMENTED",
        "body": "**Actionable comments posted: 1**\n\nlots of summary",
        "submitted_at": "2025-01-01T11:00:00Z",
    },
]

_RAW_COMMENTS = [
    {
        "id": 1,
        "pull_request_review_id": 100,
        "user": {"login": "alice"},
        "path": "main.py",
        "line": 12,
        "body": "Rename this",
        "created_at": "2025-01-01T10:00:00Z",
        "html_url": "https://github.com/o/r/pull/5#discussion_r1",
    },
    {
        "id": 2,
        "pull_request_review_id": 101,
        "user": {"login": "coderabbitai[bot]"},
        "path": "util.py",
        "line": None,
        "original_line": 7,
        "body": "Handle None",
    },
]


class TestCleanBody:
    def test_strips_html_comments(self):
        assert clean_body("Fix this <!-- fingerprint: abc -->") == "Fix this"

    def test_collapses_blank_lines(self):
        assert clean_body("a\n\n\n\n\nb") == "a\n\nb"

    def test_handles_none(self):
        assert clean_body(None) == ""


class TestGetPRReviews:
    async def test_builds_reviews_with_comments(self, gh_token, tmp_path):
        client = GitHubClient("o", "r", cache=ResponseCache(tmp_path))
        with respx.mock:
            respx.get(url__regex=_REVIEWS_URL).mock(return_value=Response(200, json=_RAW_REVIEWS))
            respx.get(url__regex=_COMMENTS_URL).mock(return_value=Response(200, json=_RAW_COMMENTS))
            reviews = await client.get_pr_reviews(5)

        assert [r.id for r in reviews] == [100, 101]
        assert reviews[0].reviewer == "alice"
        assert reviews[0].body == "Please fix"
        assert [c.id for c in reviews[0].comments] == [1]
        assert reviews[0].comments[0].file == "main.py"
        assert reviews[0].comments[0].line == 12
        assert reviews[1].body == ""
        assert reviews[1].comments[0].line == 7

    async def test_second_call_served_from_cache(self, gh_token, tmp_path):
        client = GitHubClient("o", "r", cache=ResponseCache(tmp_path))
        with respx.mock:
            reviews_route = respx.get(url__regex=_REVIEWS_URL).mock(return_value=Response(200, json=_RAW_REVIEWS))
            comments_route = respx.get(url__regex=_COMMENTS_URL).mock(return_value=Response(200, json=_RAW_COMMENTS))
            first = await client.get_pr_reviews(5)
            second = await client.get_pr_reviews(5)

        assert first == second
        assert reviews_route.call_count == 1
        assert comments_route.call_count == 1

    async def test_raw_lists_cached_separately(self, gh_token, tmp_path):
        cache = ResponseCache(tmp_path)
        client = GitHubClient("o", "r", cache=cache)
        with respx.mock:
            respx.get(url__regex=_REVIEWS_URL).mock(return_value=Response(200, json=_RAW_REVIEWS))
            respx.get(url__regex=_COMMENTS_URL).mock(return_value=Response(200, json=_RAW_COMMENTS))
            await client.get_pr_reviews(5)

        assert cache.get("ListReviews", "o", "r", 5) == (_RAW_REVIEWS, True)
        assert cache.get("ListComments", "o", "r", 5) == (_RAW_COMMENTS, True)
        assert cache.get("GetPRReviews", "o", "r", 5)[1]

    async def test_without_cache_always_fetches(self, gh_token):
        client = GitHubClient("o", "r")
        with respx.mock:
            route = respx.get(url__regex=_REVIEWS_URL).mock(return_value=Response(200, json=[]))
            respx.get(url__regex=_COMMENTS_URL).mock(return_value=Response(200, json=[]))
            await client.get_pr_reviews(5)
            await client.get_pr_reviews(5)
        assert route.call_count == 2

    async def test_cache_write_failure_does_not_fail(self, gh_token, tmp_path, mocker: MockerFixture):
        cache = ResponseCache(tmp_path)
        mocker.patch.object(cache, "set", side_effect=OSError("disk full"))
        client = GitHubClient("o", "r", cache=cache)
        with respx.mock:
            respx.get(url__regex=_REVIEWS_URL).mock(return_value=Response(200, json=_RAW_REVIEWS))
            respx.get(url__regex=_COMMENTS_URL).mock(return_value=Response(200, json=_RAW_COMMENTS))
            reviews = await client.get_pr_reviews(5)
        assert len(reviews) == 2

    async def test_http_error_propagates(self, gh_token, tmp_path):
        client = GitHubClient("o", "r", cache=ResponseCache(tmp_path))
        with respx.mock:
            respx.get(url__regex=_REVIEWS_URL).mock(return_value=Response(500, json={"message": "oops"}))
            with pytest.raises(GitHubError, match="500"):
                await client.get_pr_reviews(5)
        assert ResponseCache(tmp_path).size() == 0


class TestGetSelfReviews:
    async def test_collects_author_comments(self, gh_token, tmp_path):
        issue_comments = [
            {"id": 50, "user": {"login": "author"}, "body": "Addressed in abc123"},
            {"id": 51, "user": {"login": "someone"}, "body": "+1"},
        ]
        review_comments = [{"id": 60, "user": {"login": "author"}, "path": "a.py", "line": 3, "body": "Done"}]
        client = GitHubClient("o", "r", cache=ResponseCache(tmp_path))
        with respx.mock:
            respx.get(url__regex=_ISSUE_COMMENTS_URL).mock(return_value=Response(200, json=issue_comments))
            respx.get(url__regex=_COMMENTS_URL).mock(return_value=Response(200, json=review_comments))
            reviews = await client.get_self_reviews(5, "author")

        assert len(reviews) == 1
        assert reviews[0].id == SELF_REVIEW_ID
        assert reviews[0].reviewer == "author"
        assert [c.id for c in reviews[0].comments] == [50, 60]

    async def test_no_author_comments(self, gh_token, tmp_path):
        client = GitHubClient("o", "r", cache=ResponseCache(tmp_path))
        with respx.mock:
            respx.get(url__regex=_ISSUE_COMMENTS_URL).mock(return_value=Response(200, json=[]))
            respx.get(url__regex=_COMMENTS_URL).mock(return_value=Response(200, json=[]))
            assert await client.get_self_reviews(5, "author") == []


class TestExecute:
    async def test_graphql_is_never_cached(self, tmp_path, mocker: MockerFixture):
        executor = mocker.MagicMock()
        executor.execute = mocker.AsyncMock(return_value={"node": None})
        client = GitHubClient("o", "r", cache=ResponseCache(tmp_path), graphql=executor)

        await client.execute("query { x }", {"a": 1})
        await client.execute("query { x }", {"a": 1})

        assert executor.execute.await_count == 2
        assert ResponseCache(tmp_path).size() == 0

    def test_from_repo(self):
        client = GitHubClient.from_repo("owner/name")
        assert (client.owner, client.repo) == ("owner", "name")
        assert client.cache is None
