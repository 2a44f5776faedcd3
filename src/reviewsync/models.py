"""Pydantic models for reviewsync."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from enum import StrEnum

from pydantic import BaseModel, Field

# Timestamp format used for every string timestamp we persist (sortable)
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class Reply(BaseModel):
    """A reply posted under a review comment."""

    id: int = Field(default=0, description="GitHub database ID of the reply")
    body: str = Field(default="", description="Reply body text")
    author: str = Field(default="", description="GitHub username of the reply author")
    created_at: str = Field(default="", description="When the reply was posted")
    url: str = Field(default="", description="GitHub URL of the reply")


class Comment(BaseModel):
    """A review comment, with remote resolution state and local task-tracking flags."""

    id: int = Field(default=0, description="GitHub database ID (0 for comments parsed out of a review body)")
    file: str = Field(default="", description="File path the comment is on")
    line: int = Field(default=0, description="Line number in the file")
    body: str = Field(default="", description="Comment body text")
    author: str = Field(default="", description="GitHub username of the comment author")
    created_at: str = Field(default="", description="When the comment was posted")
    url: str = Field(default="", description="GitHub URL of the comment")
    replies: list[Reply] = Field(default_factory=list, description="Replies under this comment")
    github_thread_resolved: bool = Field(default=False, description="Whether the comment's thread is resolved on GitHub")
    last_checked_at: str = Field(default="", description="When the thread state was last fetched")
    tasks_generated: bool = Field(default=False, description="Whether local tasks were generated from this comment")
    all_tasks_completed: bool = Field(default=False, description="Whether every local task for this comment is done")

    @property
    def is_synthetic(self) -> bool:
        """True for comments with no remote identity."""
        return self.id == 0


class Review(BaseModel):
    """A pull-request review with its inline comments."""

    id: int = Field(default=0, description="GitHub database ID of the review")
    reviewer: str = Field(default="", description="GitHub username of the reviewer")
    state: str = Field(default="", description="Review state (APPROVED, COMMENTED, ...)")
    body: str = Field(default="", description="Review summary body")
    submitted_at: str = Field(default="", description="Submission time as a sortable string")
    comments: list[Comment] = Field(default_factory=list, description="Inline comments in this review")


class ReviewFingerprint(BaseModel):
    """Content digest of a review, used to spot duplicate submissions."""

    reviewer: str = Field(description="Reviewer the fingerprint belongs to")
    content_hash: str = Field(description="SHA-256 of the review body and comment signatures")
    comment_ids: list[int] = Field(default_factory=list, description="Sorted non-zero comment IDs (informational)")


class ReviewThreadStatus(BaseModel):
    """Snapshot of one comment's thread resolution state."""

    comment_id: int = Field(description="Comment the status belongs to")
    github_thread_resolved: bool = Field(default=False, description="Whether the thread is resolved on GitHub")
    last_checked_at: datetime = Field(description="When the state was fetched")
    in_reply_to_id: int | None = Field(default=None, description="Parent comment ID, when known")


class UnresolvedCommentsReport(BaseModel):
    """Partition of a comment set by resolution progress."""

    unanalyzed: list[Comment] = Field(default_factory=list, description="Comments with no tasks generated yet")
    in_progress: list[Comment] = Field(default_factory=list, description="Comments with tasks but an unresolved thread")
    resolved: list[Comment] = Field(default_factory=list, description="Comments whose thread is resolved")

    def is_complete(self) -> bool:
        return not self.unanalyzed and not self.in_progress

    def summary(self) -> str:
        """Human-readable one-paragraph summary."""
        if self.is_complete():
            return "✅ All comments analyzed and resolved"

        lines = [f"Unresolved Comments: {len(self.unanalyzed) + len(self.in_progress)}"]
        if self.unanalyzed:
            lines.append(f"  ❌ {len(self.unanalyzed)} comments not yet analyzed")
        if self.in_progress:
            lines.append(f"  ⏳ {len(self.in_progress)} comments with pending tasks")
        if self.resolved:
            lines.append(f"  ✅ {len(self.resolved)} comments resolved")
        return "\n".join(lines)


class CommentComparisonResult(BaseModel):
    """Diff between locally persisted comments and the current GitHub state."""

    local_comments: list[Comment] = Field(default_factory=list, description="Comments as persisted locally")
    github_comments: list[Comment] = Field(default_factory=list, description="Comments as currently on GitHub")
    thread_statuses: list[ReviewThreadStatus] = Field(default_factory=list, description="Fresh thread state snapshot")
    new_comments: list[Comment] = Field(default_factory=list, description="On GitHub but not local")
    modified_comments: list[Comment] = Field(default_factory=list, description="Body or resolution flag changed")
    deleted_comments: list[Comment] = Field(default_factory=list, description="Local but gone from GitHub")
    unresolved_report: UnresolvedCommentsReport = Field(
        default_factory=UnresolvedCommentsReport, description="Resolution progress of the GitHub comments"
    )


class TaskStatus(StrEnum):
    """Lifecycle of a locally tracked task."""

    TODO = "todo"
    DOING = "doing"
    DONE = "done"
    PENDING = "pending"
    CANCEL = "cancel"


class Task(BaseModel):
    """A local work item generated from a review comment."""

    id: str = Field(description="Task UUID")
    description: str = Field(default="", description="What needs to be done")
    origin_text: str = Field(default="", description="Original review comment text")
    priority: str = Field(default="medium", description="Task priority")
    source_review_id: int = Field(default=0, description="Review the task came from")
    source_comment_id: int = Field(default=0, description="Comment the task came from")
    task_index: int = Field(default=0, description="Index of the task within its comment")
    file: str = Field(default="", description="File path the task concerns")
    line: int = Field(default=0, description="Line number the task concerns")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="Current task status")
    created_at: str = Field(default="", description="Creation timestamp")
    updated_at: str = Field(default="", description="Last update timestamp")
    pr_number: int = Field(default=0, description="PR the task belongs to")
    cancel_comment_posted: bool = Field(default=False, description="Whether a cancellation reply was posted on GitHub")


class ResolutionResult(BaseModel):
    """Decision of the resolution policy for one task-completion event."""

    thread_resolved: bool = Field(default=False, description="Whether the thread should be (or was) resolved")
    comment_id: int = Field(default=0, description="Source comment of the task")
    total_tasks: int = Field(default=0, description="Tasks stored for the comment")
    completed_tasks: int = Field(default=0, description="Tasks with status done")
    remaining_tasks: int = Field(default=0, description="total_tasks - completed_tasks")
    mode: str = Field(default="", description="Resolution policy mode in effect")
    message: str = Field(default="", description="Human-readable explanation")
    should_notify: bool = Field(default=False, description="Whether to show this result to the user")


class ReconciliationResult(BaseModel):
    """Outcome of reconciling local task state with GitHub thread state."""

    total_comments: int = Field(default=0, description="Comments with a GitHub identity")
    resolved_on_github: int = Field(default=0, description="Of those, how many are already resolved")
    local_tasks_needing_resolve: int = Field(default=0, description="Comments whose tasks are all complete but thread open")
    cancel_tasks_without_reply: int = Field(default=0, description="Cancelled tasks with no explanation posted")
    resolved_threads: list[int] = Field(default_factory=list, description="Comment IDs whose threads were resolved")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal problems found during reconciliation")
