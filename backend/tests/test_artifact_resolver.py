import asyncio
import os
import time
from pathlib import Path
from uuid import uuid4

import pytest

from services.artifact_resolver import (
    ArtifactCorrupt,
    ArtifactNotFound,
    ArtifactResolver,
    default_storage_roots,
    stream_artifact,
)
from services.artifact_store import LocalArtifactStore, StorageError


def _write(path: Path, content: bytes = b"%PDF-1.4 data", age_seconds: float = 0) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    if age_seconds:
        stamp = time.time() - age_seconds
        os.utime(path, (stamp, stamp))
    return path


def _roots(tmp_path: Path) -> list[Path]:
    return [tmp_path / "primary", tmp_path / "secondary", tmp_path / "env"]


def test_store_put_and_get_by_job_id(tmp_path: Path) -> None:
    store = LocalArtifactStore(tmp_path / "store")
    job_id = uuid4()
    source = _write(tmp_path / "renders" / "report.pdf")

    stored = store.put(job_id, source)

    assert stored == (tmp_path / "store" / str(job_id) / "report.pdf").resolve()
    assert not source.exists()
    assert store.get(job_id) == stored
    assert store.get(uuid4()) is None


def test_store_rejects_empty_artifacts(tmp_path: Path) -> None:
    store = LocalArtifactStore(tmp_path / "store")

    with pytest.raises(StorageError):
        store.put(uuid4(), _write(tmp_path / "empty.pdf", b""))
    with pytest.raises(StorageError):
        store.put(uuid4(), tmp_path / "missing.pdf")


def test_resolver_prefers_store_lookup(tmp_path: Path) -> None:
    store = LocalArtifactStore(tmp_path / "store")
    job_id = uuid4()
    stored = store.put(job_id, _write(tmp_path / "renders" / "report.pdf"))
    resolver = ArtifactResolver(_roots(tmp_path), store=store)

    artifact = resolver.resolve(job_id, "stale/hint.pdf")

    assert artifact.path == stored
    assert artifact.media_type == "application/pdf"
    assert artifact.size == len(b"%PDF-1.4 data")


def test_relative_hint_is_found_under_another_root(tmp_path: Path) -> None:
    roots = _roots(tmp_path)
    target = _write(roots[2] / "reports" / "q1.pdf")
    resolver = ArtifactResolver(roots, recency_minutes=0)

    artifact = resolver.resolve(uuid4(), "reports/q1.pdf")

    assert artifact.path == target.resolve()


def test_absolute_hint_from_another_machine_falls_back_to_basename(tmp_path: Path) -> None:
    roots = _roots(tmp_path)
    target = _write(roots[1] / "q1.pdf")
    resolver = ArtifactResolver(roots, recency_minutes=0)

    artifact = resolver.resolve(uuid4(), "/srv/old-host/storage/q1.pdf")

    assert artifact.path == target.resolve()


def test_fallback_search_matches_job_id_suffix(tmp_path: Path) -> None:
    roots = _roots(tmp_path)
    job_id = uuid4()
    suffix = job_id.hex[-8:]
    target = _write(roots[0] / f"trofos-standard-apollo-{suffix}.pdf", age_seconds=7200)
    _write(roots[0] / "unrelated.pdf", age_seconds=7200)
    resolver = ArtifactResolver(roots, recency_minutes=60)

    artifact = resolver.resolve(job_id, None)

    assert artifact.path == target.resolve()


def test_fallback_search_picks_newest_recent_file(tmp_path: Path) -> None:
    roots = _roots(tmp_path)
    _write(roots[0] / "trofos-standard-apollo-1-aaaa.pdf", age_seconds=600)
    newest = _write(roots[1] / "trofos-standard-apollo-2-bbbb.pdf", age_seconds=60)
    _write(roots[1] / "trofos-standard-apollo-0-cccc.pdf", age_seconds=7200)
    resolver = ArtifactResolver(roots, recency_minutes=60)

    artifact = resolver.resolve(uuid4(), "trofos-standard-apollo-9-gone.pdf")

    assert artifact.path == newest.resolve()


def test_recent_files_from_other_reports_are_not_served(tmp_path: Path) -> None:
    roots = _roots(tmp_path)
    _write(roots[2] / "someone-elses-invoice.pdf")
    _write(roots[2] / "jira-detailed-apollo-5-dddd.pdf")
    resolver = ArtifactResolver(roots, recency_minutes=60)

    with pytest.raises(ArtifactNotFound):
        resolver.resolve(uuid4(), "trofos-standard-apollo-1.pdf")
    with pytest.raises(ArtifactNotFound):
        resolver.resolve(uuid4(), "gone.pdf")


def test_disabled_recency_heuristic_reports_not_found(tmp_path: Path) -> None:
    roots = _roots(tmp_path)
    _write(roots[0] / "recent.pdf")
    resolver = ArtifactResolver(roots, recency_minutes=0)

    with pytest.raises(ArtifactNotFound) as excinfo:
        resolver.resolve(uuid4(), "/var/reports/gone.pdf")

    detail = excinfo.value.to_detail()
    assert detail["stored_hint"] == "gone.pdf"
    assert detail["roots_searched"] == 3
    assert "/var/reports" not in str(detail)


def test_zero_byte_artifact_is_reported_corrupt(tmp_path: Path) -> None:
    roots = _roots(tmp_path)
    _write(roots[0] / "empty.pdf", b"")
    resolver = ArtifactResolver(roots, recency_minutes=0)

    with pytest.raises(ArtifactCorrupt):
        resolver.resolve(uuid4(), "empty.pdf")


def test_duplicate_roots_are_searched_once(tmp_path: Path) -> None:
    resolver = ArtifactResolver([tmp_path, tmp_path / ".", tmp_path / "other"])

    assert len(resolver.roots) == 2


def test_default_roots_include_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REPORT_STORAGE_DIR", str(tmp_path / "override"))

    roots = default_storage_roots(tmp_path / "primary")

    assert roots[0] == tmp_path / "primary"
    assert tmp_path / "override" in roots
    assert Path.cwd() in roots


def test_stream_artifact_yields_all_chunks(tmp_path: Path) -> None:
    content = os.urandom(10_000)
    path = _write(tmp_path / "big.pdf", content)

    async def collect() -> bytes:
        return b"".join([chunk async for chunk in stream_artifact(path, chunk_size=1024)])

    assert asyncio.run(collect()) == content
