"""
Async client for the GitLab REST API (v4).

Built on httpx.AsyncClient. Every GET goes through a backoff-wrapped
request so transient failures (transport errors, 429, 5xx) are retried with
exponential delay, honouring Retry-After when GitLab sends one. Any other
4xx is raised immediately as a fatal GitLabApiError.

Paginated endpoints are exposed as async generators of pages. Pagination
follows the X-Next-Page header, which GitLab sends on all list endpoints
(X-Total-Pages is omitted for large collections).
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Union
from urllib.parse import quote

import backoff
import httpx

from gitlab_analyzer.config import Settings, get_settings
from gitlab_analyzer.gitlab.errors import (
    GitLabApiError,
    extract_error_message,
    parse_retry_after,
)

logger = logging.getLogger(__name__)

USER_AGENT = "gitlab-analyzer/0.1.0"


def _retry_wait(factor: float = 1.0, max_value: float = 60.0):
    """backoff wait generator: factor * 2**n, or the error's Retry-After."""
    error = yield
    n = 0
    while True:
        retry_after = getattr(error, "retry_after", None)
        delay = retry_after if retry_after is not None else factor * 2 ** n
        n += 1
        error = yield min(delay, max_value)


def format_since(value: Union[datetime, str]) -> str:
    """Render a datetime as the ISO 8601 UTC string GitLab expects.

    Naive datetimes are taken to be UTC already.
    """
    if isinstance(value, str):
        return value
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _encode_id(project_id: Union[int, str]) -> str:
    # Numeric ids pass through; "group/project" paths must be URL-encoded
    return quote(str(project_id), safe="")


class GitLabClient:
    """
    Thin async wrapper over the GitLab v4 API.

    Use as an async context manager, or call aclose() when done.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            settings: Settings instance. Defaults to get_settings().
            transport: Optional httpx transport (tests pass httpx.MockTransport).

        Raises:
            ValueError: if no GitLab token is configured.
        """
        self.settings = settings or get_settings()
        if not self.settings.gitlab_token:
            raise ValueError("GITLAB_TOKEN is required")

        self._http = httpx.AsyncClient(
            base_url=f"{self.settings.gitlab_url.rstrip('/')}/api/v4",
            headers={
                "PRIVATE-TOKEN": self.settings.gitlab_token,
                "User-Agent": USER_AGENT,
                "Accept": "application/json",
            },
            timeout=self.settings.gitlab_timeout_seconds,
            transport=transport,
        )
        self._get = backoff.on_exception(
            _retry_wait,
            GitLabApiError,
            max_tries=self.settings.gitlab_max_retries + 1,
            giveup=lambda e: not e.retryable,
            jitter=None,
            factor=self.settings.gitlab_backoff_seconds,
            max_value=self.settings.gitlab_backoff_max_seconds,
        )(self._get_once)

    async def __aenter__(self) -> "GitLabClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _get_once(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """Single GET attempt. Raises GitLabApiError on any failure."""
        logger.debug("GET %s %s", path, params or {})
        try:
            resp = await self._http.get(path, params=params)
        except httpx.TransportError as exc:
            raise GitLabApiError(str(exc) or exc.__class__.__name__, url=path) from exc

        if resp.status_code >= 400:
            try:
                payload = resp.json()
            except ValueError:
                payload = resp.text
            raise GitLabApiError(
                extract_error_message(payload),
                status_code=resp.status_code,
                retry_after=parse_retry_after(resp.headers.get("Retry-After")),
                url=str(resp.request.url),
            )
        return resp

    async def _paginate(
        self, path: str, params: Dict[str, Any], per_page: Optional[int] = None
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """Yield non-empty pages in API order, starting from page 1."""
        per_page = per_page or self.settings.gitlab_per_page
        page = 1
        while True:
            resp = await self._get(path, {**params, "page": page, "per_page": per_page})
            items = resp.json()
            if items:
                yield items

            next_page = (resp.headers.get("X-Next-Page") or "").strip()
            if not items or not next_page:
                return
            page = int(next_page)
            if self.settings.gitlab_page_delay_seconds > 0:
                await asyncio.sleep(self.settings.gitlab_page_delay_seconds)

    # ─── Commits ──────────────────────────────────────────────────────────────

    async def list_commits(
        self,
        project_id: Union[int, str],
        *,
        since: Optional[Union[datetime, str]] = None,
        ref_name: Optional[str] = None,
        with_stats: bool = True,
        per_page: Optional[int] = None,
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """Page through GET /projects/:id/repository/commits.

        Each call starts a fresh traversal from page 1.

        Args:
            project_id: Numeric GitLab project id or "namespace/path".
            since: Only commits after this instant (inclusive on GitLab's side).
            ref_name: Branch or tag; GitLab defaults to the default branch.
            with_stats: Include additions/deletions/total per commit.
            per_page: Page size, 1-100. Defaults to settings.gitlab_per_page.
        """
        params: Dict[str, Any] = {"with_stats": "true" if with_stats else "false"}
        if since is not None:
            params["since"] = format_since(since)
        if ref_name:
            params["ref_name"] = ref_name

        path = f"/projects/{_encode_id(project_id)}/repository/commits"
        async for page in self._paginate(path, params, per_page):
            yield page

    # ─── Projects / users ─────────────────────────────────────────────────────

    async def get_project(self, project_id: Union[int, str]) -> Dict[str, Any]:
        """Fetch GET /projects/:id."""
        resp = await self._get(f"/projects/{_encode_id(project_id)}")
        return resp.json()

    async def get_current_user(self) -> Dict[str, Any]:
        resp = await self._get("/user")
        return resp.json()

    async def test_connection(self) -> bool:
        """True if the token is accepted by GET /user."""
        try:
            await self.get_current_user()
            return True
        except GitLabApiError as exc:
            logger.warning("GitLab connection check failed: %s", exc)
            return False
