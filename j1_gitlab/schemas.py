"""Pydantic models for GitLab records and collector output."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GitLabRecord(BaseModel):
    """Base for API records; unknown fields are kept so artifacts stay complete."""

    model_config = ConfigDict(extra="allow")


class GitLabUser(GitLabRecord):
    id: int
    username: str
    name: str | None = None
    state: str | None = None
    avatar_url: str | None = None
    web_url: str | None = None
    email: str | None = None
    is_admin: bool | None = None


class GitLabUserRef(GitLabRecord):
    """Membership entry returned by the ``members/all`` endpoints."""

    id: int
    username: str
    name: str | None = None
    state: str | None = None
    access_level: int | None = None


class GitLabGroup(GitLabRecord):
    id: int
    name: str
    path: str | None = None
    full_path: str | None = None
    description: str | None = None
    visibility: str | None = None
    web_url: str | None = None
    parent_id: int | None = None


class GitLabNamespace(GitLabRecord):
    id: int
    name: str | None = None
    path: str | None = None
    kind: str | None = None
    full_path: str | None = None


class GitLabProject(GitLabRecord):
    id: int
    name: str
    path_with_namespace: str | None = None
    description: str | None = None
    visibility: str | None = None
    web_url: str | None = None
    created_at: str | None = None
    namespace: GitLabNamespace | None = None
    owner: GitLabUserRef | None = None


class GitLabMergeRequest(GitLabRecord):
    id: int
    iid: int
    project_id: int
    title: str
    state: str | None = None
    source_branch: str | None = None
    target_branch: str | None = None
    web_url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    merged_at: str | None = None
    author: GitLabUserRef | None = None


class GitLabApprover(GitLabRecord):
    user: GitLabUserRef


class GitLabMergeRequestApproval(GitLabRecord):
    id: int | None = None
    iid: int | None = None
    project_id: int | None = None
    approved: bool | None = None
    approvals_required: int | None = None
    approvals_left: int | None = None
    approved_by: list[GitLabApprover] = Field(default_factory=list)


class Relationship(BaseModel):
    """Edge between two collected entities, persisted beside the entities."""

    key: str = Field(description="Stable identifier, also used as the file name")
    type: str = Field(description="Relationship type, e.g. gitlab_group_has_project")
    from_key: str
    to_key: str
    properties: dict[str, Any] = Field(default_factory=dict)


class CollectionSummary(BaseModel):
    """Counts written to ``graph/summary.json`` after a collection run."""

    entities: dict[str, int] = Field(default_factory=dict, description="Entity counts keyed by type")
    relationships: dict[str, int] = Field(default_factory=dict, description="Relationship counts keyed by type")
    steps: list[str] = Field(default_factory=list, description="Steps completed, in order")
