"""Integration tests for /sync routes."""
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from gitlab_analyzer.api.main import create_app
from gitlab_analyzer.api.routes.sync import _do_sync
from gitlab_analyzer.gitlab.sync_service import ProjectSyncLocks
from gitlab_analyzer.models.sync import SyncType
from factories import sha


@pytest.fixture(name="app")
def app_fixture(engine, settings):
    return create_app(engine=engine, settings=settings)


@pytest.fixture(name="client")
def client_fixture(app):
    with TestClient(app) as c:
        yield c


class TestTrigger:
    def test_trigger_all_returns_202(self, client):
        # Patch _do_sync so the background task doesn't hit GitLab
        with patch("gitlab_analyzer.api.routes.sync._do_sync", new=AsyncMock()) as mock_sync:
            resp = client.post("/sync/trigger", json={})
        assert resp.status_code == 202
        assert "started" in resp.json()["message"].lower()
        assert mock_sync.await_args.args[0] is None

    def test_trigger_with_project_id(self, client, seeded_project):
        with patch("gitlab_analyzer.api.routes.sync._do_sync", new=AsyncMock()) as mock_sync:
            resp = client.post("/sync/trigger", json={"project_id": seeded_project.id})
        assert resp.status_code == 202
        assert resp.json()["project_id"] == seeded_project.id
        assert mock_sync.await_args.args[0] == seeded_project.id

    def test_trigger_unknown_project_404(self, client):
        with patch("gitlab_analyzer.api.routes.sync._do_sync", new=AsyncMock()) as mock_sync:
            resp = client.post("/sync/trigger", json={"project_id": 999})
        assert resp.status_code == 404
        mock_sync.assert_not_awaited()

    def test_trigger_while_running_409(self, app, client, seeded_project):
        locks: ProjectSyncLocks = app.state.sync_locks
        with patch.object(locks, "is_running", return_value=True), \
             patch("gitlab_analyzer.api.routes.sync._do_sync", new=AsyncMock()):
            resp = client.post("/sync/trigger", json={"project_id": seeded_project.id})
        assert resp.status_code == 409


class TestStatus:
    def test_status_never_run(self, client):
        resp = client.get("/sync/status")
        assert resp.status_code == 200
        assert resp.json()["status"] == "never_run"

    def test_status_never_run_for_project(self, client, seeded_project):
        resp = client.get(f"/sync/status?project_id={seeded_project.id}")
        assert resp.json()["status"] == "never_run"
        assert resp.json()["project_id"] == seeded_project.id

    def test_status_after_completed_run(self, client, repos, seeded_project):
        log = repos.sync_logs.create_sync_log(seeded_project.id, SyncType.FULL)
        repos.sync_logs.complete_sync_log(
            log.id,
            records_processed=3,
            records_added=3,
            last_commit_sha=sha(3),
            last_commit_date=datetime(2025, 1, 3),
        )
        resp = client.get(f"/sync/status?project_id={seeded_project.id}")
        body = resp.json()
        assert resp.status_code == 200
        assert body["status"] == "completed"
        assert body["sync_type"] == "full"
        assert body["records_added"] == 3
        assert body["last_commit_sha"] == sha(3)

    def test_status_reports_failure(self, client, repos, seeded_project):
        log = repos.sync_logs.create_sync_log(seeded_project.id, SyncType.INCREMENTAL)
        repos.sync_logs.fail_sync_log(log.id, error_message="GitLab API error (500): boom")
        body = client.get("/sync/status").json()
        assert body["status"] == "failed"
        assert "500" in body["error_message"]


class TestLogs:
    def test_logs_newest_first_and_filtered(self, client, repos, seeded_project):
        first = repos.sync_logs.create_sync_log(
            seeded_project.id, SyncType.FULL, started_at=datetime(2025, 1, 1)
        )
        repos.sync_logs.complete_sync_log(first.id)
        repos.sync_logs.create_sync_log(
            seeded_project.id, SyncType.INCREMENTAL, started_at=datetime(2025, 1, 2)
        )

        logs = client.get(f"/sync/logs?project_id={seeded_project.id}").json()
        assert [entry["sync_type"] for entry in logs] == ["incremental", "full"]

        completed = client.get("/sync/logs?status=completed").json()
        assert [entry["id"] for entry in completed] == [first.id]

    def test_invalid_status_422(self, client):
        assert client.get("/sync/logs?status=bogus").status_code == 422


class TestDoSync:
    @pytest.mark.asyncio
    async def test_errors_are_logged_not_raised(self, repos, settings):
        settings.gitlab_token = ""
        # GitLabClient refuses to start without a token; the task must not raise
        await _do_sync(None, repos, settings, ProjectSyncLocks())

    @pytest.mark.asyncio
    async def test_syncs_single_project(self, repos, settings):
        mock_service = MagicMock()
        mock_service.sync_project_by_id = AsyncMock()
        with patch("gitlab_analyzer.api.routes.sync.GitLabClient") as mock_client_cls, \
             patch("gitlab_analyzer.api.routes.sync.CommitSyncService", return_value=mock_service):
            mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=MagicMock())
            mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
            await _do_sync(7, repos, settings, ProjectSyncLocks())

        mock_service.sync_project_by_id.assert_awaited_once_with(7)
