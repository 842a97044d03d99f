from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from j1_gitlab.settings import CacheSettings, GitlabSettings, LoggingSettings, Settings
from scripts import j1_cli

runner = CliRunner()


def _fake_settings(token: str | None = "glpat-test") -> Settings:
    return Settings(
        env_path=".env",
        gitlab=GitlabSettings(base_url="https://gitlab.example.com", token=token, per_page=50, max_concurrency=2),
        cache=CacheSettings(cache_directory=None),
        logging=LoggingSettings(level="INFO"),
    )


def _patch_settings(monkeypatch, cache_directory: Path, *, token: str | None = "glpat-test") -> None:  # noqa: ANN001
    resolved = j1_cli.CLISettings(settings=_fake_settings(token), cache_directory=cache_directory)
    monkeypatch.setattr(j1_cli, "_resolve_settings", lambda cache_dir, env_file=None: resolved)


def _populate(root: Path) -> None:
    for relative, content in {
        "graph/summary.json": "summary",
        "graph/step-1/entities/1.json": "1",
        "graph/step-2/entities/2.json": "2",
    }.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")


class StubClientContext:
    def __init__(self, client) -> None:  # noqa: ANN001
        self.client = client

    async def __aenter__(self):  # noqa: ANN204
        return self.client

    async def __aexit__(self, *exc_info: object) -> None:
        return None


def test_where_prints_cache_directory(monkeypatch, tmp_path: Path):
    _patch_settings(monkeypatch, tmp_path / ".j1-integration")

    result = runner.invoke(j1_cli.cli, ["where"])

    assert result.exit_code == 0
    assert str(tmp_path / ".j1-integration") in result.output


def test_resolve_settings_prefers_cli_override(monkeypatch, tmp_path: Path):
    monkeypatch.setattr(j1_cli, "get_settings", lambda *args: _fake_settings())

    resolved = j1_cli._resolve_settings(tmp_path)

    assert resolved.cache_directory == tmp_path


def test_resolve_settings_defaults_to_working_directory(monkeypatch, tmp_path: Path):
    monkeypatch.setattr(j1_cli, "get_settings", lambda *args: _fake_settings())
    monkeypatch.chdir(tmp_path)

    resolved = j1_cli._resolve_settings(None)

    assert resolved.cache_directory == j1_cli.get_default_cache_directory()


def test_walk_lists_files(monkeypatch, tmp_path: Path):
    _populate(tmp_path)
    _patch_settings(monkeypatch, tmp_path)

    result = runner.invoke(j1_cli.cli, ["walk", "graph"])

    assert result.exit_code == 0
    assert "3 files" in result.output
    assert "summary.json" in result.output


def test_walk_raw_prints_contents(monkeypatch, tmp_path: Path):
    _populate(tmp_path)
    _patch_settings(monkeypatch, tmp_path)

    result = runner.invoke(j1_cli.cli, ["walk", "graph/step-1", "--raw"])

    assert result.exit_code == 0
    assert "1.json" in result.output
    assert "summary" not in result.output


def test_walk_missing_subtree_fails(monkeypatch, tmp_path: Path):
    _patch_settings(monkeypatch, tmp_path)

    result = runner.invoke(j1_cli.cli, ["walk", "missing"])

    assert result.exit_code == 1
    assert "Walk failed" in result.output


def test_link_creates_index_entry(monkeypatch, tmp_path: Path):
    _populate(tmp_path)
    _patch_settings(monkeypatch, tmp_path)

    result = runner.invoke(j1_cli.cli, ["link", "graph/step-1/entities/1.json", "index/entities/type/1.json"])

    assert result.exit_code == 0
    link_path = tmp_path / "index/entities/type/1.json"
    assert link_path.is_symlink()
    assert link_path.read_text(encoding="utf-8") == "1"


def test_link_existing_destination_fails(monkeypatch, tmp_path: Path):
    _populate(tmp_path)
    _patch_settings(monkeypatch, tmp_path)
    args = ["link", "graph/step-1/entities/1.json", "index/entities/type/1.json"]

    assert runner.invoke(j1_cli.cli, args).exit_code == 0
    result = runner.invoke(j1_cli.cli, args)

    assert result.exit_code == 1
    assert "Link failed" in result.output


def test_collect_runs_collector_and_prints_summary(monkeypatch, tmp_path: Path, gitlab_stub):
    _patch_settings(monkeypatch, tmp_path)
    monkeypatch.setattr(j1_cli, "_configure_logging", lambda level, verbose: None)
    monkeypatch.setattr(j1_cli, "_build_client", lambda settings: StubClientContext(gitlab_stub))

    result = runner.invoke(j1_cli.cli, ["collect"])

    assert result.exit_code == 0
    assert "gitlab_user" in result.output
    summary = json.loads((tmp_path / "graph/summary.json").read_text(encoding="utf-8"))
    assert summary["entities"]["gitlab_project"] == 2


def test_collect_requires_token(monkeypatch, tmp_path: Path):
    _patch_settings(monkeypatch, tmp_path, token=None)
    monkeypatch.setattr(j1_cli, "_configure_logging", lambda level, verbose: None)

    result = runner.invoke(j1_cli.cli, ["collect"])

    assert result.exit_code == 1
    assert "GITLAB_TOKEN" in result.output


def test_summary_counts_indexed_entities(monkeypatch, tmp_path: Path):
    _populate(tmp_path)
    for name in ("1", "2"):
        link_path = tmp_path / "index/entities/gitlab_user" / f"{name}.json"
        link_path.parent.mkdir(parents=True, exist_ok=True)
        source = next(tmp_path.glob(f"graph/*/entities/{name}.json"))
        link_path.symlink_to(source)
    _patch_settings(monkeypatch, tmp_path)

    result = runner.invoke(j1_cli.cli, ["summary"])

    assert result.exit_code == 0
    assert "gitlab_user" in result.output
    assert "2" in result.output


def test_summary_without_index_fails(monkeypatch, tmp_path: Path):
    _patch_settings(monkeypatch, tmp_path)

    result = runner.invoke(j1_cli.cli, ["summary"])

    assert result.exit_code == 1
    assert "No entity index" in result.output
