"""Tests for reconciling local task completion with GitHub thread state."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from reviewsync.github_api import GitHubError, ThreadNotFoundError
from reviewsync.models import Comment, Review, Task, TaskStatus
from reviewsync.reconciler import Reconciler

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


class FakeStorage:
    def __init__(self, tasks: list[Task]) -> None:
        self.tasks = tasks

    def get_all_tasks(self) -> list[Task]:
        return self.tasks


@pytest.fixture
def github(mocker: MockerFixture):
    gateway = mocker.MagicMock()
    gateway.get_all_thread_states = mocker.AsyncMock(return_value={})
    gateway.resolve_comment_thread = mocker.AsyncMock(side_effect=lambda o, r, pr, cid: f"T{cid}")
    return gateway


def _reviews(*comment_ids: int) -> list[Review]:
    return [Review(id=1, reviewer="alice", comments=[Comment(id=i) for i in comment_ids])]


def _task(task_id: str, comment_id: int, status: TaskStatus, *, pr: int = 7, replied: bool = False) -> Task:
    return Task(id=task_id, source_comment_id=comment_id, status=status, pr_number=pr, cancel_comment_posted=replied)


class TestReconcileWithGitHub:
    async def test_resolves_only_complete_and_open_threads(self, github):
        github.get_all_thread_states.return_value = {1: False, 2: False, 3: True}
        tasks = [
            _task("a", 1, TaskStatus.DONE),
            _task("b", 1, TaskStatus.DONE),
            _task("c", 2, TaskStatus.DONE),
            _task("d", 2, TaskStatus.TODO),
            _task("e", 3, TaskStatus.DONE),
        ]
        result = await Reconciler(github, FakeStorage(tasks)).reconcile_with_github("o", "r", 7, _reviews(1, 2, 3, 0))

        assert result.resolved_threads == [1]
        assert result.local_tasks_needing_resolve == 1
        assert result.total_comments == 3
        assert result.resolved_on_github == 1
        github.resolve_comment_thread.assert_awaited_once_with("o", "r", 7, 1)

    async def test_cancel_with_reply_counts_as_complete(self, github):
        github.get_all_thread_states.return_value = {1: False}
        tasks = [_task("a", 1, TaskStatus.DONE), _task("b", 1, TaskStatus.CANCEL, replied=True)]
        result = await Reconciler(github, FakeStorage(tasks)).reconcile_with_github("o", "r", 7, _reviews(1))
        assert result.resolved_threads == [1]

    async def test_cancel_without_reply_blocks_and_warns(self, github):
        github.get_all_thread_states.return_value = {1: False}
        tasks = [_task("a", 1, TaskStatus.DONE), _task("b", 1, TaskStatus.CANCEL)]
        result = await Reconciler(github, FakeStorage(tasks)).reconcile_with_github("o", "r", 7, _reviews(1))

        assert result.resolved_threads == []
        assert result.cancel_tasks_without_reply == 1
        assert any("Task b" in w for w in result.warnings)
        assert any("please post reply" in w for w in result.warnings)
        github.resolve_comment_thread.assert_not_awaited()

    async def test_ignores_tasks_from_other_prs_and_unknown_comments(self, github):
        github.get_all_thread_states.return_value = {1: False}
        tasks = [_task("a", 1, TaskStatus.DONE, pr=8), _task("b", 99, TaskStatus.DONE)]
        result = await Reconciler(github, FakeStorage(tasks)).reconcile_with_github("o", "r", 7, _reviews(1))
        assert result.resolved_threads == []
        github.resolve_comment_thread.assert_not_awaited()

    async def test_resolve_failure_becomes_warning(self, github):
        github.get_all_thread_states.return_value = {1: False, 2: False}
        github.resolve_comment_thread.side_effect = [ThreadNotFoundError(1), "T2"]
        tasks = [_task("a", 1, TaskStatus.DONE), _task("b", 2, TaskStatus.DONE)]

        result = await Reconciler(github, FakeStorage(tasks)).reconcile_with_github("o", "r", 7, _reviews(1, 2))

        assert result.resolved_threads == [2]
        assert len(result.warnings) == 1
        assert "comment 1" in result.warnings[0]

    async def test_thread_state_failure_is_fatal(self, github):
        github.get_all_thread_states.side_effect = GitHubError("boom")
        with pytest.raises(GitHubError):
            await Reconciler(github, FakeStorage([])).reconcile_with_github("o", "r", 7, _reviews(1))


class TestUpdateCommentResolutionStates:
    async def test_stamps_known_comments(self, github):
        github.get_all_thread_states.return_value = {1: True}
        reviews = _reviews(1, 2, 0)

        updated = await Reconciler(github, FakeStorage([])).update_comment_resolution_states("o", "r", 7, reviews)

        comments = updated[0].comments
        assert comments[0].github_thread_resolved
        assert comments[0].last_checked_at
        assert not comments[1].github_thread_resolved
        assert comments[1].last_checked_at == ""
        assert comments[2] == reviews[0].comments[2]
