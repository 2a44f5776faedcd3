"""CLI for reviewsync, built on cyclopts."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import TYPE_CHECKING, Annotated, Any, TypeVar

import cyclopts

from reviewsync.config import Config, get_config, load_config, set_config

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from reviewsync.engine import SyncEngine

app = cyclopts.App(
    name="reviewsync",
    help="reviewsync: keep local PR review tasks and GitHub review threads in sync.",
)

RepoOption = Annotated[str, cyclopts.Parameter(name=["--repo", "-R"], help="Repository as owner/repo")]
VerboseOption = Annotated[bool, cyclopts.Parameter(name=["--verbose", "-v"], help="Enable debug logging")]

_T = TypeVar("_T")


def _setup(verbose: bool) -> Config:
    """Configure logging and load the project config."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config, path = load_config()
    except ValueError as exc:
        print(f"❌ Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)
    set_config(config, config_path=path)
    return config


def _engine(repo: str) -> SyncEngine:
    from reviewsync.engine import SyncEngine  # noqa: PLC0415

    return SyncEngine.from_repo(repo, get_config())


def _run(coro: Coroutine[Any, Any, _T]) -> _T:
    """Run *coro*, turning GitHub and storage failures into a clean exit."""
    from reviewsync.github_api import GitHubError  # noqa: PLC0415
    from reviewsync.storage import StorageError  # noqa: PLC0415

    try:
        return asyncio.run(coro)
    except (GitHubError, StorageError) as exc:
        print(f"❌ {exc}", file=sys.stderr)
        sys.exit(1)


# ---------------------------------------------------------------------------
# Cache maintenance
# ---------------------------------------------------------------------------


@app.command(name="cache-clear")
def cache_clear(*, verbose: VerboseOption = False) -> None:
    """Delete every cached GitHub API response."""
    from reviewsync.engine import build_cache  # noqa: PLC0415

    cache = build_cache(_setup(verbose))
    if cache is None:
        print("Cache is disabled.")
        return
    removed = cache.size()
    cache.clear()
    print(f"Removed {removed} cached response(s) from {cache.directory}")


@app.command(name="cache-prune")
def cache_prune(*, verbose: VerboseOption = False) -> None:
    """Delete only expired (or unreadable) cached responses."""
    from reviewsync.engine import build_cache  # noqa: PLC0415

    cache = build_cache(_setup(verbose))
    if cache is None:
        print("Cache is disabled.")
        return
    before = cache.size()
    cache.clear_expired()
    print(f"Pruned {before - cache.size()} expired response(s), {cache.size()} remaining")


# ---------------------------------------------------------------------------
# Synchronization
# ---------------------------------------------------------------------------


@app.command
def report(pr_number: int, *, repo: RepoOption, verbose: VerboseOption = False) -> None:
    """Print how far the PR's review comments are from being fully resolved."""
    _setup(verbose)
    result = _run(_engine(repo).report(pr_number))
    print(result.summary())


@app.command
def sync(pr_number: int, *, repo: RepoOption, verbose: VerboseOption = False) -> None:
    """Refresh the stored reviews of a PR from GitHub."""
    _setup(verbose)
    result = _run(_engine(repo).sync_comments(pr_number))
    print(
        f"PR #{pr_number}: {len(result.new_comments)} new, "
        f"{len(result.modified_comments)} modified, {len(result.deleted_comments)} deleted"
    )
    print(result.unresolved_report.summary())


@app.command
def reconcile(pr_number: int, *, repo: RepoOption, verbose: VerboseOption = False) -> None:
    """Resolve threads whose local tasks are all complete."""
    _setup(verbose)
    result = _run(_engine(repo).reconcile(pr_number))
    print(f"{result.resolved_on_github}/{result.total_comments} comment(s) resolved on GitHub")
    for comment_id in result.resolved_threads:
        print(f"  ✅ resolved thread for comment {comment_id}")
    for warning in result.warnings:
        print(f"  {warning}")


@app.command
def done(task_id: str, *, repo: RepoOption, verbose: VerboseOption = False) -> None:
    """Mark a task done and apply the auto-resolve policy to its thread."""
    _setup(verbose)
    result = _run(_engine(repo).complete_task(task_id))
    print(f"Task {task_id} done: {result.message}")


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


@app.command(name="check-env")
def check_env() -> None:
    """Validate configuration and GitHub authentication and print a summary."""
    print("reviewsync check-env")
    print("=" * 40)

    token_vars = [k for k in ("GH_TOKEN", "GITHUB_TOKEN") if os.environ.get(k)]
    if token_vars:
        for key in token_vars:
            print(f"  {key} = {_mask_value(os.environ[key])}")
    else:
        print("\nNo GH_TOKEN / GITHUB_TOKEN set, falling back to `gh auth token`.")

    print("\n" + "-" * 40)
    print("Validating configuration...\n")
    try:
        config, path = load_config()
    except ValueError as exc:
        print(f"❌ Configuration error: {exc}")
        sys.exit(1)

    print(f"  Config file: {path or 'none (defaults)'}")
    _print_config_summary(config)

    print("-" * 40)
    print("Checking GitHub token...\n")
    from reviewsync import github_api  # noqa: PLC0415

    try:
        asyncio.run(github_api.get_token())
    except github_api.GitHubAuthError as exc:
        print(f"  ❌ {exc}")
    else:
        print("  ✅ GitHub token available")
    print()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_MASK_MIN_LENGTH = 4


def _mask_value(value: str) -> str:
    """Mask a secret, keeping two characters at each end."""
    if len(value) > _MASK_MIN_LENGTH:
        return value[:2] + "*" * (len(value) - _MASK_MIN_LENGTH) + value[-2:]
    return "****"


def _print_config_summary(config: Config) -> None:
    """Print a human-readable config summary."""
    cache = config.cache
    if cache.enabled:
        print(f"  Cache: enabled, ttl {cache.ttl_seconds}s, dir {cache.directory or 'default'}")
    else:
        print("  Cache: DISABLED")
    print(f"  Auto-resolve: {config.done_workflow.enable_auto_resolve}")
    print(f"  Storage: {config.storage.directory}")
    print()
