import asyncio
import logging
from collections import Counter
from typing import Any, Callable

import httpx
import pytest

from connectors.errors import CriticalFetchExhausted
from connectors.fetcher import Endpoint, EndpointFetcher, Resource
from connectors.retry import RetryPolicy

BASE_URL = "https://pm.example.com"

BACKLOG = Resource(kind="backlog", collection_keys=("backlogs",))
PROJECT = Resource(kind="project", critical=True)


class RecordingSleeper:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _run_fetch(
    handler: Callable[[httpx.Request], httpx.Response],
    operation: Callable[[EndpointFetcher], Any],
    sleeper: RecordingSleeper | None = None,
) -> Any:
    async def _go() -> Any:
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(base_url=BASE_URL, transport=transport) as client:
            policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleep=sleeper or RecordingSleeper())
            fetcher = EndpointFetcher(client, policy, headers={"x-api-key": "secret"})
            return await operation(fetcher)

    return asyncio.run(_go())


def test_cascade_retries_transient_then_moves_past_permanent() -> None:
    hits: Counter[str] = Counter()

    def handler(request: httpx.Request) -> httpx.Response:
        hits[request.url.path] += 1
        if request.url.path.endswith("/a"):
            return httpx.Response(503)
        if request.url.path.endswith("/b"):
            return httpx.Response(404)
        return httpx.Response(200, json={"data": {"backlogs": [{"id": "1"}, {"id": "2"}]}})

    sleeper = RecordingSleeper()
    records = _run_fetch(
        handler,
        lambda fetcher: fetcher.fetch(
            BACKLOG,
            "42",
            [
                Endpoint("/v1/project/{project_id}/a"),
                Endpoint("/v1/project/{project_id}/b"),
                Endpoint("/v1/project/{project_id}/c"),
            ],
        ),
        sleeper,
    )

    assert records == [{"id": "1"}, {"id": "2"}]
    assert hits == Counter({"/v1/project/42/a": 3, "/v1/project/42/b": 1, "/v1/project/42/c": 1})
    assert sleeper.delays == [1.0, 2.0]


def test_empty_collection_falls_through_to_next_candidate() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/sprint"):
            return httpx.Response(200, json={"data": []})
        return httpx.Response(200, json=[{"id": "x"}])

    records = _run_fetch(
        handler,
        lambda fetcher: fetcher.fetch(
            BACKLOG, "7", [Endpoint("/p/{project_id}/sprint"), Endpoint("/p/{project_id}/items")]
        ),
    )

    assert records == [{"id": "x"}]


def test_embedded_endpoint_extracts_children_from_parents() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"data": {"sprints": [{"id": 5, "backlog_items": [{"id": "b1"}]}]}},
        )

    records = _run_fetch(
        handler,
        lambda fetcher: fetcher.fetch(BACKLOG, "7", [Endpoint("/p/{project_id}/sprint", embedded=True)]),
    )

    assert records == [{"id": "b1", "sprint_id": 5}]


def test_auth_headers_are_sent_with_every_request() -> None:
    seen: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("x-api-key"))
        return httpx.Response(200, json=[{"id": "1"}])

    _run_fetch(handler, lambda fetcher: fetcher.fetch(BACKLOG, "1", [Endpoint("/p/{project_id}")]))

    assert seen == ["secret"]


def test_auxiliary_exhaustion_degrades_to_empty_list(caplog: pytest.LogCaptureFixture) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    with caplog.at_level(logging.WARNING):
        records = _run_fetch(
            handler,
            lambda fetcher: fetcher.fetch(BACKLOG, "9", [Endpoint("/p/{project_id}/a"), Endpoint("/p/{project_id}/b")]),
        )

    assert records == []
    assert any("Unable to fetch backlog for project 9" in message for message in caplog.messages)


def test_critical_exhaustion_raises_with_every_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/v3"):
            return httpx.Response(500)
        return httpx.Response(200, content=b"<html>not json</html>")

    with pytest.raises(CriticalFetchExhausted) as excinfo:
        _run_fetch(
            handler,
            lambda fetcher: fetcher.fetch_record(
                PROJECT, "9", [Endpoint("/project/{project_id}/v3"), Endpoint("/project/{project_id}/v2")]
            ),
        )

    assert excinfo.value.resource == "project"
    assert len(excinfo.value.failures) == 2
    assert "HTTP 500" in excinfo.value.failures[0]


def test_fetch_record_unwraps_envelope() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"id": 3, "name": "Apollo"}})

    record = _run_fetch(
        handler, lambda fetcher: fetcher.fetch_record(PROJECT, "3", [Endpoint("/project/{project_id}")])
    )

    assert record == {"id": 3, "name": "Apollo"}


def _issue_server(total: int, server_cap: int, requested_offsets: list[int], report_total: bool = True):
    issues = [{"id": str(index)} for index in range(total)]

    def handler(request: httpx.Request) -> httpx.Response:
        offset = int(request.url.params["startAt"])
        limit = min(int(request.url.params["maxResults"]), server_cap)
        requested_offsets.append(offset)
        body: dict[str, Any] = {"issues": issues[offset : offset + limit]}
        if report_total:
            body["total"] = total
        return httpx.Response(200, json=body)

    return handler


def test_paged_endpoint_stops_at_reported_total() -> None:
    requested_offsets: list[int] = []
    issues = Resource(kind="issues", collection_keys=("issues",))

    records = _run_fetch(
        _issue_server(5, server_cap=2, requested_offsets=requested_offsets),
        lambda fetcher: fetcher.fetch(issues, "P", [Endpoint("/search", page_size=2)]),
    )

    assert [record["id"] for record in records] == ["0", "1", "2", "3", "4"]
    assert requested_offsets == [0, 2, 4]


def test_paged_endpoint_keeps_going_when_server_caps_page_size() -> None:
    requested_offsets: list[int] = []
    issues = Resource(kind="issues", collection_keys=("issues",))

    records = _run_fetch(
        _issue_server(120, server_cap=50, requested_offsets=requested_offsets),
        lambda fetcher: fetcher.fetch(issues, "P", [Endpoint("/search", page_size=100)]),
    )

    assert len(records) == 120
    assert [record["id"] for record in records] == [str(index) for index in range(120)]
    assert requested_offsets == [0, 50, 100]


def test_paged_endpoint_without_total_stops_on_empty_page() -> None:
    requested_offsets: list[int] = []
    sprints = Resource(kind="sprints", collection_keys=("issues",))

    records = _run_fetch(
        _issue_server(3, server_cap=2, requested_offsets=requested_offsets, report_total=False),
        lambda fetcher: fetcher.fetch(sprints, "P", [Endpoint("/search", page_size=2)]),
    )

    assert len(records) == 3
    assert requested_offsets == [0, 2, 3]
