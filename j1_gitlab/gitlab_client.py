"""Async client for the GitLab REST API (v4)."""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping, TypeVar

import httpx
from pydantic import BaseModel

from j1_gitlab.schemas import (
    GitLabGroup,
    GitLabMergeRequest,
    GitLabMergeRequestApproval,
    GitLabProject,
    GitLabUser,
    GitLabUserRef,
)
from j1_gitlab.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)
API_PREFIX = "/api/v4"
REQUEST_TIMEOUT = httpx.Timeout(connect=10.0, read=60.0, write=30.0, pool=10.0)

ModelT = TypeVar("ModelT", bound=BaseModel)


class GitlabRequestError(RuntimeError):
    """Raised when GitLab answers with a non-2xx status."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"GitLab request to '{url}' failed with status {status_code}")
        self.url = url
        self.status_code = status_code


class GitlabClient:
    """Thin wrapper over ``httpx.AsyncClient`` with page-cursor pagination.

    Parameters
    ----------
    base_url:
        GitLab instance root, e.g. ``https://gitlab.com``.
    token:
        Personal access token sent as ``Private-Token``.
    per_page:
        Page size requested from paginated endpoints.
    client:
        Optional ``httpx.AsyncClient`` (useful for tests). An injected client
        is left open; one created here is closed by ``aclose``.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None,
        *,
        per_page: int = 100,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.per_page = per_page
        self._token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT, http2=True)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GitlabClient":
        cfg = settings or get_settings()
        return cls(cfg.gitlab.base_url, cfg.gitlab.token, per_page=cfg.gitlab.per_page)

    async def __aenter__(self) -> "GitlabClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_account(self) -> GitLabUser:
        return await self._fetch_one(GitLabUser, "/user")

    async def fetch_user(self, user_id: int) -> GitLabUser:
        return await self._fetch_one(GitLabUser, f"/users/{user_id}")

    async def fetch_users(self) -> list[GitLabUser]:
        return await self._fetch_all(GitLabUser, "/users")

    async def fetch_groups(self) -> list[GitLabGroup]:
        return await self._fetch_all(GitLabGroup, "/groups")

    async def fetch_projects(self) -> list[GitLabProject]:
        return await self._fetch_all(GitLabProject, "/projects", params={"owned": "true"})

    async def fetch_project_merge_requests(self, project_id: int) -> list[GitLabMergeRequest]:
        return await self._fetch_all(GitLabMergeRequest, f"/projects/{project_id}/merge_requests", max_pages=1)

    async def fetch_merge_request_approvals(self, project_id: int, merge_request_iid: int) -> GitLabMergeRequestApproval:
        return await self._fetch_one(
            GitLabMergeRequestApproval,
            f"/projects/{project_id}/merge_requests/{merge_request_iid}/approvals",
        )

    async def fetch_project_members(self, project_id: int) -> list[GitLabUserRef]:
        return await self._fetch_all(GitLabUserRef, f"/projects/{project_id}/members/all")

    async def fetch_group_members(self, group_id: int) -> list[GitLabUserRef]:
        return await self._fetch_all(GitLabUserRef, f"/groups/{group_id}/members/all")

    async def fetch_group_projects(self, group_id: int) -> list[GitLabProject]:
        return await self._fetch_all(GitLabProject, f"/groups/{group_id}/projects")

    async def fetch_group_subgroups(self, group_id: int) -> list[GitLabGroup]:
        return await self._fetch_all(GitLabGroup, f"/groups/{group_id}/subgroups")

    async def request(self, path: str, *, params: Mapping[str, Any] | None = None) -> httpx.Response:
        """GET ``path`` under ``/api/v4``; non-2xx responses raise ``GitlabRequestError``."""

        url = f"{self.base_url}{API_PREFIX}{path}"
        headers: dict[str, str] = {}
        if self._token:
            headers["Private-Token"] = self._token
        LOGGER.debug("GET %s params=%s", url, dict(params or {}))
        response = await self._client.get(url, headers=headers, params=params)
        if not response.is_success:
            raise GitlabRequestError(url, response.status_code)
        return response

    async def paginate(
        self,
        path: str,
        *,
        max_pages: int | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> list[Any]:
        """Fetch every page of ``path`` and flatten the results.

        The page count comes from ``X-Total-Pages``; without that header only
        the first page is read. ``max_pages`` caps the number of requests.
        """

        results: list[Any] = []
        page_limit = max_pages or math.inf
        page = 0
        while True:
            page += 1
            query = {"page": page, "per_page": self.per_page, **dict(params or {})}
            response = await self.request(path, params=query)
            total_pages = _total_pages(response)
            body = parse_response(response)
            if isinstance(body, list):
                results.extend(body)
            elif body is not None:
                results.append(body)
            if page >= total_pages or page >= page_limit:
                break
        return results

    async def _fetch_one(self, model: type[ModelT], path: str) -> ModelT:
        response = await self.request(path)
        return model.model_validate(parse_response(response))

    async def _fetch_all(
        self,
        model: type[ModelT],
        path: str,
        *,
        max_pages: int | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> list[ModelT]:
        records = await self.paginate(path, max_pages=max_pages, params=params)
        return [model.model_validate(record) for record in records]


def parse_response(response: httpx.Response) -> Any:
    """Decode a JSON body; empty or non-JSON bodies yield ``None``."""

    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" not in content_type.lower():
        return None
    return response.json()


def _total_pages(response: httpx.Response) -> int:
    raw = response.headers.get("X-Total-Pages")
    try:
        return int(raw) if raw is not None else 1
    except ValueError:
        return 1
