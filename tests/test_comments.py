"""Tests for diffing and merging local comment state against GitHub."""

from __future__ import annotations

import pytest

from reviewsync.comments import CommentManager
from reviewsync.github_api import GitHubError
from reviewsync.models import Comment, Review
from reviewsync.threads import ThreadResolutionTracker


class FakeFetcher:
    def __init__(self, states: dict[int, bool] | Exception) -> None:
        self.states = states
        self.calls = 0

    async def get_all_thread_states(self, owner: str, repo: str, pr_number: int) -> dict[int, bool]:
        self.calls += 1
        if isinstance(self.states, Exception):
            raise self.states
        return self.states


class FakeReviewSource:
    def __init__(self, reviews: list[Review]) -> None:
        self.reviews = reviews

    async def get_pr_reviews(self, pr_number: int) -> list[Review]:
        return self.reviews


def _manager(reviews: list[Review], states: dict[int, bool] | Exception) -> tuple[CommentManager, FakeFetcher]:
    fetcher = FakeFetcher(states)
    tracker = ThreadResolutionTracker(fetcher, "o", "r")
    return CommentManager(FakeReviewSource(reviews), tracker), fetcher


def _review(review_id: int, comments: list[Comment], reviewer: str = "alice", at: str = "2025-01-01T00:00:00Z"):
    return Review(id=review_id, reviewer=reviewer, submitted_at=at, comments=comments)


# ---------------------------------------------------------------------------
# fetch_and_compare_comments
# ---------------------------------------------------------------------------


class TestFetchAndCompareComments:
    async def test_new_modified_deleted(self):
        remote = [
            _review(1, [Comment(id=1, body="same"), Comment(id=2, body="edited"), Comment(id=4, body="brand new")]),
        ]
        local = [
            Comment(id=1, body="same"),
            Comment(id=2, body="original"),
            Comment(id=3, body="gone"),
        ]
        manager, fetcher = _manager(remote, {1: False, 2: False, 4: False})

        result = await manager.fetch_and_compare_comments(1, local)

        assert [c.id for c in result.new_comments] == [4]
        assert [c.id for c in result.modified_comments] == [2]
        assert [c.id for c in result.deleted_comments] == [3]
        assert fetcher.calls == 1

    async def test_resolution_change_is_a_modification(self):
        remote = [_review(1, [Comment(id=1, body="x")])]
        local = [Comment(id=1, body="x", github_thread_resolved=False)]
        manager, _ = _manager(remote, {1: True})

        result = await manager.fetch_and_compare_comments(1, local)

        assert [c.id for c in result.modified_comments] == [1]
        assert result.github_comments[0].github_thread_resolved
        assert result.github_comments[0].last_checked_at

    async def test_unchanged_comments_not_reported(self):
        remote = [_review(1, [Comment(id=1, body="x")])]
        manager, _ = _manager(remote, {1: True})
        result = await manager.fetch_and_compare_comments(1, [Comment(id=1, body="x", github_thread_resolved=True)])
        assert not result.new_comments
        assert not result.modified_comments
        assert not result.deleted_comments

    async def test_synthetic_local_comments_excluded(self):
        manager, _ = _manager([_review(1, [Comment(id=1, body="x")])], {1: False})
        result = await manager.fetch_and_compare_comments(1, [Comment(id=0, body="from review body")])
        assert not result.deleted_comments
        assert [c.id for c in result.new_comments] == [1]

    async def test_duplicate_reviews_collapsed(self):
        comment = Comment(id=0, file="a.py", line=1, body="nit")
        remote = [
            _review(1, [comment], reviewer="bot", at="2025-01-01T10:00:00Z"),
            _review(2, [comment], reviewer="bot", at="2025-01-01T11:00:00Z"),
        ]
        manager, _ = _manager(remote, {})
        result = await manager.fetch_and_compare_comments(1, [])
        assert len(result.github_comments) == 1

    async def test_report_uses_local_task_flags(self):
        remote = [_review(1, [Comment(id=1, body="a"), Comment(id=2, body="b"), Comment(id=3, body="c")])]
        local = [Comment(id=1, body="a", tasks_generated=True), Comment(id=2, body="b", tasks_generated=True)]
        manager, _ = _manager(remote, {1: False, 2: True, 3: False})

        report = (await manager.fetch_and_compare_comments(1, local)).unresolved_report

        assert [c.id for c in report.in_progress] == [1]
        assert [c.id for c in report.resolved] == [2]
        assert [c.id for c in report.unanalyzed] == [3]

    async def test_thread_state_failure_propagates(self):
        manager, _ = _manager([_review(1, [Comment(id=1)])], GitHubError("GraphQL error: boom"))
        with pytest.raises(GitHubError, match="boom"):
            await manager.fetch_and_compare_comments(1, [])


# ---------------------------------------------------------------------------
# update_comment_states
# ---------------------------------------------------------------------------


class TestUpdateCommentStates:
    async def test_preserves_local_task_flags(self):
        remote = [_review(1, [Comment(id=1, body="updated body")])]
        local = [Comment(id=1, body="old body", tasks_generated=True, all_tasks_completed=True)]
        manager, _ = _manager(remote, {1: True})

        updated = await manager.update_comment_states(1, local)

        assert len(updated) == 1
        assert updated[0].body == "updated body"
        assert updated[0].github_thread_resolved
        assert updated[0].tasks_generated
        assert updated[0].all_tasks_completed

    async def test_keeps_deleted_and_synthetic_comments(self):
        local = [
            Comment(id=5, body="deleted remotely", tasks_generated=True, last_checked_at="2020-01-01T00:00:00Z"),
            Comment(id=0, body="synthetic", tasks_generated=True),
        ]
        manager, _ = _manager([], {})

        updated = await manager.update_comment_states(1, local)

        assert [c.id for c in updated] == [5, 0]
        assert updated[0].tasks_generated
        assert updated[0].last_checked_at != "2020-01-01T00:00:00Z"
        assert updated[1] == local[1]

    async def test_appends_new_comments_with_fresh_flags(self):
        remote = [_review(1, [Comment(id=1, body="a"), Comment(id=2, body="b", tasks_generated=True)])]
        manager, _ = _manager(remote, {})

        updated = await manager.update_comment_states(1, [Comment(id=1, body="a", tasks_generated=True)])

        assert [c.id for c in updated] == [1, 2]
        assert updated[0].tasks_generated
        assert not updated[1].tasks_generated
        assert not updated[1].all_tasks_completed


# ---------------------------------------------------------------------------
# get_unresolved_comments_report
# ---------------------------------------------------------------------------


class TestGetUnresolvedCommentsReport:
    async def test_without_local_comments_everything_open_is_unanalyzed(self):
        remote = [_review(1, [Comment(id=1), Comment(id=2)])]
        manager, _ = _manager(remote, {1: True, 2: False})

        report = await manager.get_unresolved_comments_report(1)

        assert [c.id for c in report.resolved] == [1]
        assert [c.id for c in report.unanalyzed] == [2]
        assert "1 comments not yet analyzed" in report.summary()

    async def test_all_resolved(self):
        manager, _ = _manager([_review(1, [Comment(id=1)])], {1: True})
        report = await manager.get_unresolved_comments_report(1, [Comment(id=1, tasks_generated=True)])
        assert report.is_complete()
