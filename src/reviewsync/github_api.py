"""httpx transport for the GitHub REST and GraphQL APIs.

The token is looked up once per process, first in ``GH_TOKEN``, then in
``GITHUB_TOKEN``, and finally via ``gh auth token`` (which only reads the gh
CLI's local credentials). Nothing here caches responses; see
:mod:`reviewsync.client` for that.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import subprocess  # noqa: S404
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
GRAPHQL_URL = f"{API_URL}/graphql"
TOKEN_CREATE_URL = "https://github.com/settings/tokens/new?scopes=repo&description=reviewsync"  # noqa: S105

_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403
_HTTP_NOT_FOUND = 404

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')


class GitHubError(Exception):
    """A GitHub call failed: transport, HTTP status, GraphQL errors or bad payload."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubAuthError(GitHubError):
    """No usable token, or GitHub rejected the one we sent."""

    def __init__(self, detail: str = "") -> None:
        hint = (
            "GitHub token not found. Export GH_TOKEN or GITHUB_TOKEN, or run 'gh auth login'.\n"
            f"New token with the right scopes: {TOKEN_CREATE_URL}"
        )
        super().__init__(f"{detail}\n{hint}" if detail else hint, status_code=_HTTP_UNAUTHORIZED)


class ThreadNotFoundError(GitHubError):
    """No review thread on the PR contains the comment."""

    def __init__(self, comment_id: int) -> None:
        super().__init__(f"No review thread found for comment ID {comment_id}", status_code=_HTTP_NOT_FOUND)
        self.comment_id = comment_id


class ThreadResolutionError(GitHubError):
    """The resolve mutation came back with the thread still open."""

    def __init__(self, thread_id: str) -> None:
        super().__init__(f"Thread {thread_id} was not resolved")
        self.thread_id = thread_id


def parse_repo(repo: str) -> tuple[str, str]:
    """Split ``owner/repo`` into its two parts.

    Raises:
        GitHubError: If either part is missing.
    """
    owner, _, name = repo.partition("/")
    if not owner or not name:
        msg = f"Invalid repo format {repo!r}. Expected 'owner/repo'."
        raise GitHubError(msg)
    return owner, name


# ---------------------------------------------------------------------------
# Token
# ---------------------------------------------------------------------------


def _resolve_token_sync() -> str | None:
    """Find a token without touching the network. Blocking; run it in a thread."""
    for var in ("GH_TOKEN", "GITHUB_TOKEN"):
        if token := os.environ.get(var):
            logger.debug("Using GitHub token from %s", var)
            return token

    try:
        proc = subprocess.run(
            ["gh", "auth", "token"],  # noqa: S607
            capture_output=True,
            text=True,
            check=False,
            timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("gh auth token unavailable: %s", exc)
        return None

    token = proc.stdout.strip() if proc.returncode == 0 else ""
    if token:
        logger.debug("Using GitHub token from gh auth token")
    return token or None


class _TokenState:
    """Process-wide token, looked up lazily."""

    __slots__ = ("resolved", "token")

    def __init__(self) -> None:
        self.token: str | None = None
        self.resolved = False


_token_state = _TokenState()


async def get_token() -> str:
    """Return the GitHub token, looking it up on first use.

    Raises:
        GitHubAuthError: If no token is configured anywhere.
    """
    if not _token_state.resolved:
        _token_state.token = await asyncio.to_thread(_resolve_token_sync)
        _token_state.resolved = True
    if _token_state.token is None:
        raise GitHubAuthError
    return _token_state.token


def reset_token() -> None:
    """Forget the looked-up token (used by tests)."""
    _token_state.token = None
    _token_state.resolved = False


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


async def _headers() -> dict[str, str]:
    return {
        "Authorization": f"Bearer {await get_token()}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }


def _raise_for_status(response: httpx.Response) -> None:
    """Map a non-2xx response onto the error hierarchy.

    401 is always an auth problem. 403 is a rate limit when GitHub says so
    and an auth problem otherwise.
    """
    if response.is_success:
        return
    if response.status_code == _HTTP_UNAUTHORIZED:
        raise GitHubAuthError

    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get("message", response.text) if isinstance(body, dict) else response.text

    if response.status_code == _HTTP_FORBIDDEN and "rate limit" not in detail.lower():
        msg = f"GitHub API access forbidden: {detail}"
        raise GitHubAuthError(msg)
    if response.status_code == _HTTP_FORBIDDEN:
        msg = f"GitHub API rate limit exceeded: {detail}"
    else:
        msg = f"GitHub API error {response.status_code}: {detail}"
    raise GitHubError(msg, status_code=response.status_code)


def _decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        msg = f"Malformed JSON in GitHub response: {exc}"
        raise GitHubError(msg, status_code=response.status_code) from exc


def _parse_next_link(link_header: str) -> str | None:
    """The ``rel="next"`` URL of a ``Link`` header, if any."""
    match = _NEXT_LINK_RE.search(link_header or "")
    return match.group(1) if match else None


async def _request(client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
    """Send one request and check its status."""
    try:
        response = await client.request(method, url, headers=await _headers(), **kwargs)
    except httpx.HTTPError as exc:
        msg = f"GitHub request failed: {exc}"
        raise GitHubError(msg) from exc
    _raise_for_status(response)
    return response


async def _iter_pages(client: httpx.AsyncClient, url: str, params: dict[str, Any] | None) -> AsyncIterator[Any]:
    """Yield each decoded page, following ``Link`` headers until exhausted."""
    next_url: str | None = url
    while next_url:
        response = await _request(client, "GET", next_url, params=params)
        yield _decode_json(response)
        next_url = _parse_next_link(response.headers.get("link", ""))
        params = None  # the next link already carries the query


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def graphql(query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
    """Run a GraphQL document and return its ``data`` object.

    A non-empty ``errors`` list fails the call even when ``data`` is present.

    Raises:
        GitHubError: Transport failure, non-2xx status, GraphQL errors or an
            undecodable body.
    """
    payload: dict[str, Any] = {"query": query}
    if variables:
        payload["variables"] = variables

    async with httpx.AsyncClient() as client:
        response = await _request(client, "POST", GRAPHQL_URL, json=payload)

    envelope = _decode_json(response)
    if not isinstance(envelope, dict):
        msg = "GraphQL response is not a JSON object"
        raise GitHubError(msg)
    if errors := envelope.get("errors"):
        detail = "; ".join(e.get("message", str(e)) if isinstance(e, dict) else str(e) for e in errors)
        msg = f"GraphQL error: {detail}"
        raise GitHubError(msg)
    return envelope.get("data") or {}


class GraphQLExecutor:
    """Object form of :func:`graphql`, for injection into components."""

    async def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        return await graphql(query, variables)


async def rest(endpoint: str, method: str = "GET", *, paginate: bool = False, **kwargs: Any) -> Any:
    """Call a REST endpoint such as ``/repos/o/r/pulls/1/reviews``.

    Extra keyword arguments become query parameters for GET and the JSON
    body otherwise. With ``paginate=True`` every page is fetched and list
    pages are concatenated.

    Returns:
        The decoded JSON, ``None`` for an empty body, or the combined list.
    """
    url = f"{API_URL}{endpoint}"
    is_get = method.upper() == "GET"

    async with httpx.AsyncClient() as client:
        if paginate:
            items: list[Any] = []
            async for page in _iter_pages(client, url, kwargs or None):
                if isinstance(page, list):
                    items.extend(page)
                elif page is not None:
                    items.append(page)
            return items

        response = await _request(
            client,
            method,
            url,
            params=kwargs if is_get and kwargs else None,
            json=kwargs if not is_get and kwargs else None,
        )

    if not response.content:
        return None
    return _decode_json(response)
