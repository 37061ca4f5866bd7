"""
Endpoint fetcher – resilient multi-endpoint retrieval of upstream resources.

Given a resource description and an ordered list of candidate endpoints, the
fetcher tries each endpoint in turn (each attempt wrapped in the RetryPolicy)
and returns the first non-empty, well-formed collection. Critical resources
raise CriticalFetchExhausted when every candidate fails; auxiliary resources
log the miss and degrade to an empty list.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from functools import partial
from typing import Any, Callable

import httpx

from connectors.decoders import (
    DecodedPayload,
    PayloadShape,
    decode_collection,
    decode_record,
    envelope_layers,
    extract_embedded,
)
from connectors.errors import (
    AuxiliaryFetchExhausted,
    CriticalFetchExhausted,
    DataShapeError,
    PermanentUpstreamError,
    TransientUpstreamError,
    UpstreamError,
)
from connectors.retry import RetryPolicy

logger = logging.getLogger(__name__)

PayloadDecoder = Callable[[Any], DecodedPayload]
EmbeddedExtractor = Callable[[list[dict[str, Any]]], list[dict[str, Any]]]


@dataclass(frozen=True)
class Endpoint:
    """One candidate upstream location for a resource.

    ``path`` may contain ``{project_id}``. When ``embedded`` is set the
    response holds parent records (e.g. sprints) and the resource's extractor
    pulls the children out of them. ``page_size`` turns on offset pagination.
    """

    path: str
    method: str = "GET"
    params: dict[str, Any] | None = None
    json_body: dict[str, Any] | None = None
    embedded: bool = False
    page_size: int | None = None
    offset_param: str = "startAt"
    limit_param: str = "maxResults"
    max_pages: int = 20

    def url_for(self, project_id: str) -> str:
        return self.path.format(project_id=project_id)


@dataclass(frozen=True)
class Resource:
    """What is being fetched and how its responses are decoded."""

    kind: str
    critical: bool = False
    collection_keys: tuple[str, ...] = ()
    parent_keys: tuple[str, ...] = ("sprints",)
    extractor: EmbeddedExtractor = extract_embedded
    decoder: PayloadDecoder | None = None

    def decode(self, payload: Any) -> DecodedPayload:
        if self.decoder is not None:
            return self.decoder(payload)
        return decode_collection(payload, self.collection_keys)


def _is_last_page(payload: Any, fetched: int) -> bool:
    """True when a paged payload says nothing follows ``fetched`` records."""
    for layer in envelope_layers(payload):
        if not isinstance(layer, dict):
            continue
        if layer.get("isLast") is True:
            return True
        total = layer.get("total")
        if isinstance(total, int) and not isinstance(total, bool) and fetched >= total:
            return True
    return False


class EndpointFetcher:
    """Fetch resources through an injected ``httpx.AsyncClient``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        policy: RetryPolicy | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._client = client
        self._policy = policy or RetryPolicy()
        self._headers = headers or {}

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    # ── HTTP ─────────────────────────────────────────────────────────────

    async def request_json(self, endpoint: Endpoint, project_id: str) -> Any:
        """Single request; maps failures onto the upstream error taxonomy."""
        url: str = endpoint.url_for(project_id)
        try:
            resp: httpx.Response = await self._client.request(
                endpoint.method,
                url,
                params=endpoint.params,
                json=endpoint.json_body,
                headers=self._headers,
            )
        except httpx.TransportError as exc:
            raise TransientUpstreamError(
                f"{type(exc).__name__} calling {url}", url=url
            ) from exc

        if resp.status_code >= 500:
            raise TransientUpstreamError(
                f"HTTP {resp.status_code} from {url}", url=url, status_code=resp.status_code
            )
        if resp.status_code >= 400:
            raise PermanentUpstreamError(
                f"HTTP {resp.status_code} from {url}", url=url, status_code=resp.status_code
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise DataShapeError(f"Response from {url} is not JSON") from exc

    async def _request_with_retry(self, endpoint: Endpoint, project_id: str) -> Any:
        return await self._policy.run(
            partial(self.request_json, endpoint, project_id),
            label=endpoint.url_for(project_id),
        )

    # ── Collections ──────────────────────────────────────────────────────

    def _decode_parents(self, resource: Resource, payload: Any) -> list[dict[str, Any]]:
        decoded = decode_collection(payload, resource.parent_keys)
        if decoded.shape is PayloadShape.COLLECTION:
            return decoded.items
        if decoded.shape is PayloadShape.MALFORMED:
            single = decode_record(payload)
            if single.record is not None:
                return [single.record]
        return []

    async def _load_collection(
        self, resource: Resource, endpoint: Endpoint, project_id: str
    ) -> list[dict[str, Any]]:
        if endpoint.page_size:
            return await self._load_pages(resource, endpoint, project_id)

        payload = await self._request_with_retry(endpoint, project_id)
        if endpoint.embedded:
            return resource.extractor(self._decode_parents(resource, payload))

        decoded = resource.decode(payload)
        if decoded.shape is PayloadShape.MALFORMED:
            raise DataShapeError(f"Unrecognized {resource.kind} payload shape")
        return decoded.items

    async def _load_pages(
        self, resource: Resource, endpoint: Endpoint, project_id: str
    ) -> list[dict[str, Any]]:
        # A short page is not the end: stop on an empty page or the payload total.
        page_size: int = endpoint.page_size or 100
        collected: list[dict[str, Any]] = []
        offset = 0
        for page in range(endpoint.max_pages):
            params: dict[str, Any] = {
                **(endpoint.params or {}),
                endpoint.offset_param: offset,
                endpoint.limit_param: page_size,
            }
            payload = await self._request_with_retry(replace(endpoint, params=params), project_id)
            decoded = resource.decode(payload)
            if decoded.shape is PayloadShape.MALFORMED and page == 0:
                raise DataShapeError(f"Unrecognized {resource.kind} payload shape")
            if decoded.shape is not PayloadShape.COLLECTION or not decoded.items:
                break
            collected.extend(decoded.items)
            offset += len(decoded.items)
            if _is_last_page(payload, offset):
                break
        return collected

    async def fetch(
        self,
        resource: Resource,
        project_id: str,
        candidates: list[Endpoint],
    ) -> list[dict[str, Any]]:
        """Return the first non-empty collection from ``candidates``, in order."""
        failures: list[str] = []
        for endpoint in candidates:
            url = endpoint.url_for(project_id)
            try:
                records = await self._load_collection(resource, endpoint, project_id)
            except (UpstreamError, DataShapeError) as exc:
                logger.debug(
                    "Candidate endpoint failed",
                    extra={"resource": resource.kind, "url": url, "error": str(exc)},
                )
                failures.append(f"{url}: {exc}")
                continue

            if records:
                logger.info(
                    "Fetched %d %s records from %s", len(records), resource.kind, url
                )
                return records
            failures.append(f"{url}: empty")

        return self._exhausted(resource, project_id, failures)

    # ── Single records ───────────────────────────────────────────────────

    async def fetch_record(
        self,
        resource: Resource,
        project_id: str,
        candidates: list[Endpoint],
    ) -> dict[str, Any]:
        """Return the first decodable record from ``candidates``, in order."""
        failures: list[str] = []
        for endpoint in candidates:
            url = endpoint.url_for(project_id)
            try:
                payload = await self._request_with_retry(endpoint, project_id)
            except (UpstreamError, DataShapeError) as exc:
                logger.debug(
                    "Candidate endpoint failed",
                    extra={"resource": resource.kind, "url": url, "error": str(exc)},
                )
                failures.append(f"{url}: {exc}")
                continue

            decoded = resource.decoder(payload) if resource.decoder else decode_record(payload)
            if decoded.record:
                return decoded.record
            failures.append(f"{url}: {decoded.shape.value}")

        exhausted = self._exhausted(resource, project_id, failures)
        return exhausted[0] if exhausted else {}

    def _exhausted(
        self, resource: Resource, project_id: str, failures: list[str]
    ) -> list[dict[str, Any]]:
        if resource.critical:
            raise CriticalFetchExhausted(resource.kind, project_id, failures)
        miss = AuxiliaryFetchExhausted(resource.kind, project_id, failures)
        logger.warning(
            "%s; continuing without it",
            miss,
            extra={"resource": resource.kind, "project_id": project_id},
        )
        return []
