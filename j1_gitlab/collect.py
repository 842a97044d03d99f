"""Collect GitLab data into the cache directory and read it back."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections import Counter
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Sequence, TypeVar

from pydantic import BaseModel

from j1_gitlab.cache_directory import WalkedFile, resolve_path, symlink, walk_directory, write_json_to_path
from j1_gitlab.gitlab_client import GitlabClient
from j1_gitlab.schemas import CollectionSummary, GitLabProject, Relationship

LOGGER = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")

ACCOUNT_TYPE = "gitlab_account"
USER_TYPE = "gitlab_user"
GROUP_TYPE = "gitlab_group"
PROJECT_TYPE = "gitlab_project"
MERGE_REQUEST_TYPE = "gitlab_merge_request"

ACCOUNT_HAS_GROUP = "gitlab_account_has_group"
ACCOUNT_OWNS_PROJECT = "gitlab_account_owns_project"
GROUP_HAS_PROJECT = "gitlab_group_has_project"
PROJECT_HAS_MERGE_REQUEST = "gitlab_project_has_merge_request"

STEPS = (
    "fetch-account",
    "fetch-users",
    "fetch-groups",
    "fetch-projects",
    "fetch-merge-requests",
)
SUMMARY_PATH = "graph/summary.json"


async def bounded_gather(
    items: Iterable[ItemT],
    func: Callable[[ItemT], Awaitable[ResultT]],
    *,
    concurrency: int,
) -> list[ResultT]:
    """Run ``func`` over ``items`` with at most ``concurrency`` calls in flight.

    Results keep the input order. The first failure propagates.
    """

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _run(item: ItemT) -> ResultT:
        async with semaphore:
            return await func(item)

    return list(await asyncio.gather(*(_run(item) for item in items)))


def entity_key(entity_type: str, record_id: Any) -> str:
    return f"{entity_type.replace('_', '-')}-{record_id}"


class _Collection:
    """Per-run writer that keeps artifact layout and counts in one place."""

    def __init__(self, cache_directory: str | os.PathLike[str] | None, concurrency: int) -> None:
        self.cache_directory = cache_directory
        self.concurrency = concurrency
        self.summary = CollectionSummary()

    async def write_entities(self, step: str, entity_type: str, records: Sequence[BaseModel]) -> list[str]:
        # pages can overlap when data changes mid-run; the first copy wins
        keyed: dict[str, BaseModel] = {}
        for record in records:
            keyed.setdefault(entity_key(entity_type, record.id), record)  # type: ignore[attr-defined]

        async def _persist(item: tuple[str, BaseModel]) -> str:
            key, record = item
            artifact = {"_key": key, "_type": entity_type, **record.model_dump(mode="json")}
            await self._persist("entities", step, entity_type, key, artifact)
            return key

        keys = await bounded_gather(keyed.items(), _persist, concurrency=self.concurrency)
        self.summary.entities[entity_type] = self.summary.entities.get(entity_type, 0) + len(keys)
        return keys

    async def write_relationships(self, step: str, relationships: Sequence[Relationship]) -> None:
        unique: dict[str, Relationship] = {}
        for relationship in relationships:
            unique.setdefault(relationship.key, relationship)
        relationships = list(unique.values())

        async def _persist(relationship: Relationship) -> None:
            await self._persist("relationships", step, relationship.type, relationship.key, relationship)

        await bounded_gather(relationships, _persist, concurrency=self.concurrency)
        counts = Counter(relationship.type for relationship in relationships)
        for rel_type, count in counts.items():
            self.summary.relationships[rel_type] = self.summary.relationships.get(rel_type, 0) + count

    async def _persist(self, kind: str, step: str, type_name: str, key: str, data: Any) -> None:
        source_path = f"graph/{step}/{kind}/{key}.json"
        index_path = f"index/{kind}/{type_name}/{key}.json"
        await write_json_to_path(path=source_path, data=data, cache_directory=self.cache_directory)
        # index links are rebuilt on every run
        await asyncio.to_thread(_unlink_stale_link, resolve_path(self.cache_directory, index_path))
        await symlink(source_path=source_path, destination_path=index_path, cache_directory=self.cache_directory)

    def finish_step(self, step: str) -> None:
        self.summary.steps.append(step)
        LOGGER.info("Finished step %s", step)


def _unlink_stale_link(path: Path) -> None:
    if path.is_symlink():
        path.unlink()


def _relationship(rel_type: str, from_key: str, to_key: str, **properties: Any) -> Relationship:
    return Relationship(
        key=f"{from_key}|{rel_type.replace('_', '-')}|{to_key}",
        type=rel_type,
        from_key=from_key,
        to_key=to_key,
        properties=properties,
    )


async def collect(
    client: GitlabClient,
    *,
    cache_directory: str | os.PathLike[str] | None = None,
    concurrency: int = 4,
) -> CollectionSummary:
    """Fetch account, users, groups, projects and merge requests into the cache.

    Entities land in ``graph/<step>/entities`` and are indexed by type under
    ``index/entities/<type>``; relationships follow the same layout. The run
    ends by writing ``graph/summary.json``.
    """

    run = _Collection(cache_directory, concurrency)

    account = await client.fetch_account()
    (account_key,) = await run.write_entities("fetch-account", ACCOUNT_TYPE, [account])
    run.finish_step("fetch-account")

    users = await client.fetch_users()
    await run.write_entities("fetch-users", USER_TYPE, users)
    run.finish_step("fetch-users")

    groups = await client.fetch_groups()
    group_keys = await run.write_entities("fetch-groups", GROUP_TYPE, groups)
    await run.write_relationships(
        "fetch-groups",
        [_relationship(ACCOUNT_HAS_GROUP, account_key, group_key) for group_key in group_keys],
    )
    run.finish_step("fetch-groups")

    owned = await client.fetch_projects()
    group_projects = await bounded_gather(
        groups, lambda group: client.fetch_group_projects(group.id), concurrency=concurrency
    )
    projects: dict[int, GitLabProject] = {project.id: project for project in owned}
    for batch in group_projects:
        for project in batch:
            projects.setdefault(project.id, project)
    await run.write_entities("fetch-projects", PROJECT_TYPE, list(projects.values()))
    project_relationships = [
        _relationship(ACCOUNT_OWNS_PROJECT, account_key, entity_key(PROJECT_TYPE, project.id))
        for project in owned
    ]
    for group, batch in zip(groups, group_projects):
        group_key = entity_key(GROUP_TYPE, group.id)
        project_relationships.extend(
            _relationship(GROUP_HAS_PROJECT, group_key, entity_key(PROJECT_TYPE, project.id)) for project in batch
        )
    await run.write_relationships("fetch-projects", project_relationships)
    run.finish_step("fetch-projects")

    merge_requests = await bounded_gather(
        projects.values(),
        lambda project: client.fetch_project_merge_requests(project.id),
        concurrency=concurrency,
    )
    flattened = [merge_request for batch in merge_requests for merge_request in batch]
    approvals = await bounded_gather(
        flattened,
        lambda mr: client.fetch_merge_request_approvals(mr.project_id, mr.iid),
        concurrency=concurrency,
    )
    for merge_request, approval in zip(flattened, approvals):
        setattr(merge_request, "approved", approval.approved)
        setattr(merge_request, "approved_by", [approver.user.username for approver in approval.approved_by])
    await run.write_entities("fetch-merge-requests", MERGE_REQUEST_TYPE, flattened)
    await run.write_relationships(
        "fetch-merge-requests",
        [
            _relationship(
                PROJECT_HAS_MERGE_REQUEST,
                entity_key(PROJECT_TYPE, mr.project_id),
                entity_key(MERGE_REQUEST_TYPE, mr.id),
            )
            for mr in flattened
        ],
    )
    run.finish_step("fetch-merge-requests")

    await write_json_to_path(path=SUMMARY_PATH, data=run.summary, cache_directory=cache_directory)
    LOGGER.info("Collected %s", run.summary.entities)
    return run.summary


async def load_index(
    kind: str,
    type_name: str,
    *,
    cache_directory: str | os.PathLike[str] | None = None,
) -> list[dict[str, Any]]:
    """Parse every artifact indexed under ``index/<kind>/<type_name>``."""

    records: list[dict[str, Any]] = []

    def _collect(walked: WalkedFile) -> None:
        records.append(json.loads(walked.data))

    await walk_directory(path=f"index/{kind}/{type_name}", iteratee=_collect, cache_directory=cache_directory)
    return records


async def summarize_cache(*, cache_directory: str | os.PathLike[str] | None = None) -> dict[str, int]:
    """Count indexed entity artifacts per type."""

    counts: Counter[str] = Counter()

    def _count(walked: WalkedFile) -> None:
        counts[Path(walked.file_path).parent.name] += 1

    await walk_directory(path="index/entities", iteratee=_count, cache_directory=cache_directory)
    return dict(sorted(counts.items()))
