import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

import api.main as main_module
from config import settings
from connectors.base import BasePlatformConnector, ConnectionConfig
from connectors.retry import RetryPolicy
from connectors.trofos import TrofosConnector
from models.database import create_engine_for_url, create_session_factory, init_db
from services.artifact_store import LocalArtifactStore
from services.events import InMemoryEventPublisher
from services.job_store import ReportJobStore
from services.renderers import build_default_registry
from services.report_jobs import ReportJobOrchestrator

logger = logging.getLogger(__name__)

FAKE_PDF = b"%PDF-1.4 api report"
OWNER = {"X-User-Id": "user-1"}


class StaticTrofosConnector(TrofosConnector):
    async def fetch_project(self, project_id: str) -> dict[str, Any]:
        return {"id": project_id, "name": "Apollo"}

    async def fetch_tasks(self, project_id: str) -> list[dict[str, Any]]:
        return [
            {"id": 1, "title": "Login", "status": "done", "assignee": "Ada"},
            {"id": 2, "title": "Signup", "status": "todo"},
        ]

    async def fetch_sprints(self, project_id: str) -> list[dict[str, Any]]:
        return []

    async def fetch_team(self, project_id: str) -> list[dict[str, Any]]:
        return []


def _fake_pdf_writer(markdown_content: str, custom_css: str | None = None, title: str = "") -> bytes:
    return FAKE_PDF


async def _no_sleep(delay: float) -> None:
    return None


def _offline_client(config: ConnectionConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=config.base_url,
        transport=httpx.MockTransport(lambda request: httpx.Response(404)),
    )


@pytest.fixture
def wired(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[tuple[TestClient, ReportJobStore]]:
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    asyncio.run(init_db(engine))
    store = ReportJobStore(create_session_factory(engine))

    def build_orchestrator(storage_dir: Path) -> ReportJobOrchestrator:
        connectors: dict[str, type[BasePlatformConnector]] = {"trofos": StaticTrofosConnector}
        return ReportJobOrchestrator(
            store=store,
            renderers=build_default_registry(storage_dir / "renders", pdf_writer=_fake_pdf_writer),
            artifacts=LocalArtifactStore(storage_dir),
            connectors=connectors,
            client_factory=_offline_client,
            events=InMemoryEventPublisher(),
            retry_policy=RetryPolicy(sleep=_no_sleep),
            stage_timeout=5.0,
        )

    async def _skip_init_db() -> None:
        return None

    monkeypatch.setattr(settings, "STORAGE_DIR", str(tmp_path / "storage"))
    monkeypatch.setattr(main_module, "init_db", _skip_init_db)
    monkeypatch.setattr(main_module, "build_orchestrator", build_orchestrator)

    with TestClient(main_module.app) as client:
        yield client, store


def _create(client: TestClient, **overrides: Any) -> httpx.Response:
    body: dict[str, Any] = {
        "platform": "trofos",
        "template": "standard",
        "project_id": "12",
        "title": "Weekly Status",
        "connection": {"base_url": "https://trofos.example.com", "api_key": "secret-key"},
    }
    body.update(overrides)
    return client.post("/api/reports", json=body, headers=OWNER)


def _wait_for_terminal(client: TestClient, job_id: str) -> dict[str, Any]:
    deadline = time.monotonic() + 10
    while time.monotonic() < deadline:
        status = client.get(f"/api/reports/{job_id}/status", headers=OWNER).json()
        if status["status"] in ("completed", "failed"):
            return status
        time.sleep(0.05)
    raise AssertionError(f"Job {job_id} did not finish")


def test_create_returns_queued_job_without_secrets(wired) -> None:
    client, _ = wired

    response = _create(client)

    assert response.status_code == 201
    payload = response.json()
    logger.info("Created report job", extra={"job_id": payload["id"]})
    assert payload["status"] == "queued"
    assert payload["progress"] == 0
    assert payload["configuration"]["project_id"] == "12"
    assert "secret-key" not in response.text


def test_report_completes_and_downloads(wired) -> None:
    client, _ = wired
    job_id = _create(client).json()["id"]

    status = _wait_for_terminal(client, job_id)
    assert status == {"id": job_id, "status": "completed", "progress": 100}

    response = client.get(f"/api/reports/{job_id}/download", headers=OWNER)
    assert response.status_code == 200
    assert response.content == FAKE_PDF
    assert response.headers["content-type"] == "application/pdf"
    disposition = response.headers["content-disposition"]
    assert disposition.startswith('attachment; filename="Weekly_Status_Standard_Report_')
    assert disposition.endswith('.pdf"')

    listing = client.get("/api/reports", headers=OWNER).json()
    assert [report["id"] for report in listing["reports"]] == [job_id]
    assert listing["reports"][0]["project_info"]["name"] == "Apollo"


def test_download_before_completion_is_a_conflict(wired) -> None:
    client, store = wired
    job = asyncio.run(
        store.create(
            owner_id="user-1",
            title="Pending",
            platform="trofos",
            template="standard",
            configuration={"project_id": "12"},
        )
    )

    response = client.get(f"/api/reports/{job.id}/download", headers=OWNER)

    assert response.status_code == 409
    assert response.json()["detail"]["status"] == "queued"


def test_missing_artifact_returns_diagnostics(wired) -> None:
    client, store = wired

    async def completed_without_file():
        job = await store.create(
            owner_id="user-1",
            title="Lost",
            platform="trofos",
            template="standard",
            configuration={"project_id": "12"},
        )
        await store.try_start(job.id)
        await store.complete(job.id, "/srv/elsewhere/lost-report.docx")
        return job

    job = asyncio.run(completed_without_file())

    response = client.get(f"/api/reports/{job.id}/download", headers=OWNER)

    assert response.status_code == 404
    detail = response.json()["detail"]
    assert detail["job_id"] == str(job.id)
    assert detail["stored_hint"] == "lost-report.docx"
    assert detail["roots_searched"] >= 1
    assert "/srv/elsewhere" not in response.text


def test_other_owners_cannot_see_a_job(wired) -> None:
    client, _ = wired
    job_id = _create(client).json()["id"]

    response = client.get(f"/api/reports/{job_id}", headers={"X-User-Id": "intruder"})

    assert response.status_code == 404


def test_invalid_ids_and_missing_owner(wired) -> None:
    client, _ = wired

    assert client.get("/api/reports/not-a-uuid/status", headers=OWNER).status_code == 400
    assert client.get("/api/reports").status_code == 401


def test_unknown_template_is_rejected(wired) -> None:
    client, _ = wired

    response = _create(client, template="poster")

    assert response.status_code == 400
    assert "Unsupported template" in response.json()["detail"]


def test_unknown_platform_fails_validation(wired) -> None:
    client, _ = wired

    assert _create(client, platform="asana").status_code == 422


def test_cancel_finished_job_reports_false(wired) -> None:
    client, _ = wired
    job_id = _create(client).json()["id"]
    _wait_for_terminal(client, job_id)

    response = client.post(f"/api/reports/{job_id}/cancel", headers=OWNER)

    assert response.status_code == 200
    assert response.json() == {"id": job_id, "cancelled": False}


def test_preview_returns_analytics(wired) -> None:
    client, _ = wired

    response = client.post(
        "/api/reports/preview",
        json={
            "platform": "trofos",
            "project_id": "12",
            "connection": {"base_url": "https://trofos.example.com", "api_key": "k"},
        },
        headers=OWNER,
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["project"]["name"] == "Apollo"
    assert payload["analytics"]["completion_rate"] == 50
    assert payload["analytics"]["recommended_template"] == "executive"


def test_download_resolves_artifact_off_the_event_loop(wired, monkeypatch: pytest.MonkeyPatch) -> None:
    client, _ = wired
    job_id = _create(client).json()["id"]
    _wait_for_terminal(client, job_id)

    threaded: list[str] = []
    real_to_thread = asyncio.to_thread

    async def recording_to_thread(func, /, *args, **kwargs):
        threaded.append(getattr(func, "__name__", repr(func)))
        return await real_to_thread(func, *args, **kwargs)

    monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)

    response = client.get(f"/api/reports/{job_id}/download", headers=OWNER)

    assert response.status_code == 200
    assert "resolve" in threaded
