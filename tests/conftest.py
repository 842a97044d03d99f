from __future__ import annotations

import pytest

from j1_gitlab.schemas import (
    GitLabApprover,
    GitLabGroup,
    GitLabMergeRequest,
    GitLabMergeRequestApproval,
    GitLabProject,
    GitLabUser,
    GitLabUserRef,
)


class StubGitlabClient:
    """In-memory stand-in for ``GitlabClient`` with one group, two projects and one MR."""

    def __init__(self) -> None:
        self.approval_calls: list[tuple[int, int]] = []

    async def fetch_account(self) -> GitLabUser:
        return GitLabUser(id=1, username="root")

    async def fetch_users(self) -> list[GitLabUser]:
        return [GitLabUser(id=1, username="root"), GitLabUser(id=2, username="dev")]

    async def fetch_groups(self) -> list[GitLabGroup]:
        return [GitLabGroup(id=10, name="platform")]

    async def fetch_projects(self) -> list[GitLabProject]:
        return [GitLabProject(id=100, name="owned-repo")]

    async def fetch_group_projects(self, group_id: int) -> list[GitLabProject]:
        assert group_id == 10
        return [GitLabProject(id=100, name="owned-repo"), GitLabProject(id=101, name="group-repo")]

    async def fetch_project_merge_requests(self, project_id: int) -> list[GitLabMergeRequest]:
        if project_id != 101:
            return []
        return [GitLabMergeRequest(id=5000, iid=1, project_id=101, title="Add CI")]

    async def fetch_merge_request_approvals(self, project_id: int, iid: int) -> GitLabMergeRequestApproval:
        self.approval_calls.append((project_id, iid))
        return GitLabMergeRequestApproval(
            approved=True,
            approved_by=[GitLabApprover(user=GitLabUserRef(id=2, username="dev"))],
        )


@pytest.fixture
def gitlab_stub() -> StubGitlabClient:
    return StubGitlabClient()
