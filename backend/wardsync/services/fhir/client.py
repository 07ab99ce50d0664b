"""Cache-aware FHIR R4 record client.

Fetches every resource kind for a patient concurrently, retries transient
source failures with linear backoff, follows ``next`` links for paginated
searchsets and keeps merged bundles in a TTL cache.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import requests

from wardsync.config import Settings
from wardsync.services.errors import FhirRequestError
from wardsync.services.fhir.resources import (
    RESOURCE_KINDS,
    extract_bundle_next_url,
    extract_bundle_resources,
    make_searchset,
)
from wardsync.utils.cache import TTLCache

logger = logging.getLogger(__name__)


class FhirRecordClient:
    """Record source client shared by the sync orchestrator and census builder."""

    def __init__(
        self,
        *,
        base_url: str,
        cache: TTLCache,
        session: requests.Session | None = None,
        page_size: int = 100,
        max_pages_per_resource: int = 10,
        max_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
        timeout_seconds: float = 20.0,
        verify_ssl: bool = True,
        bearer_token: str | None = None,
        user_agent: str = "WardSync/0.1",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.cache = cache
        self.session = session or requests.Session()
        self.page_size = page_size
        self.max_pages_per_resource = max_pages_per_resource
        self.max_retries = max(1, max_retries)
        self.retry_backoff_seconds = retry_backoff_seconds
        self.timeout_seconds = timeout_seconds
        self.verify_ssl = verify_ssl
        self.bearer_token = bearer_token
        self.user_agent = user_agent
        self._sleep = sleep
        self._inflight: dict[str, asyncio.Future[dict[str, Any]]] = {}

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        *,
        session: requests.Session | None = None,
        cache: TTLCache | None = None,
    ) -> "FhirRecordClient":
        return cls(
            base_url=config.fhir_base_url,
            cache=cache or TTLCache(config.fhir_bundle_cache_ttl_seconds),
            session=session,
            page_size=config.fhir_page_size,
            max_pages_per_resource=config.fhir_max_pages_per_resource,
            max_retries=config.fhir_max_retries,
            retry_backoff_seconds=config.fhir_retry_backoff_seconds,
            timeout_seconds=config.fhir_timeout_seconds,
            verify_ssl=config.fhir_verify_ssl,
            bearer_token=config.fhir_bearer_token,
            user_agent=config.fhir_user_agent,
        )

    async def fetch_bundle(self, patient_id: str) -> dict[str, Any]:
        """Return every resource for a patient as one searchset Bundle.

        A cached bundle younger than the TTL is returned without network
        access. Concurrent calls for the same patient share one fetch.
        """
        cached = await self.cache.get(patient_id)
        if cached is not None:
            logger.debug("FHIR bundle cache hit for %s", patient_id)
            return cached

        inflight = self._inflight.get(patient_id)
        if inflight is None:
            inflight = asyncio.ensure_future(self._fetch_bundle_uncached(patient_id))
            self._inflight[patient_id] = inflight
            inflight.add_done_callback(
                lambda _fut, key=patient_id: self._inflight.pop(key, None)
            )
        return await asyncio.shield(inflight)

    async def fetch_patient_list(self, count: int) -> list[dict[str, Any]]:
        """Most recently updated Patient resources, at most ``count`` of them.

        Raises FhirRequestError when the source rejects or fails a page.
        """
        if count <= 0:
            return []
        patients: list[dict[str, Any]] = []
        next_url: str | None = f"{self.base_url}/Patient"
        params: dict[str, str] | None = {
            "_count": str(min(count, self.page_size)),
            "_sort": "-_lastUpdated",
        }
        while next_url and len(patients) < count:
            page = await self._get_json_strict(next_url, params)
            resources = [
                resource
                for resource in extract_bundle_resources(page)
                if resource.get("resourceType") == "Patient"
            ]
            if not resources:
                break
            patients.extend(resources)
            next_url = extract_bundle_next_url(page)
            params = None
        logger.info("Fetched %d patients from %s", min(len(patients), count), self.base_url)
        return patients[:count]

    async def fetch_patient_metadata(self, patient_id: str) -> dict[str, Any] | None:
        """Direct Patient lookup, or None when the source has no usable record."""
        payload = await self._get_json_with_retry(
            f"{self.base_url}/Patient/{patient_id}", None
        )
        if payload is None or payload.get("resourceType") != "Patient":
            return None
        return payload

    async def invalidate(self, patient_id: str) -> None:
        await self.cache.pop(patient_id)

    async def clear_cache(self) -> None:
        await self.cache.clear()
        logger.info("FHIR bundle cache cleared")

    def close(self) -> None:
        self.session.close()

    async def _fetch_bundle_uncached(self, patient_id: str) -> dict[str, Any]:
        results = await asyncio.gather(
            *(self._fetch_kind(kind, patient_id) for kind in RESOURCE_KINDS),
            return_exceptions=True,
        )
        resources: list[dict[str, Any]] = []
        for kind, result in zip(RESOURCE_KINDS, results):
            if isinstance(result, BaseException):
                logger.error(
                    "FHIR %s fetch failed for %s: %s", kind, patient_id, result
                )
                continue
            resources.extend(result)

        bundle = make_searchset(resources, self.base_url)
        await self.cache.set(patient_id, bundle)
        logger.info(
            "Fetched FHIR bundle for %s (%d resources)", patient_id, bundle["total"]
        )
        return bundle

    async def _fetch_kind(self, kind: str, patient_id: str) -> list[dict[str, Any]]:
        if kind == "Patient":
            patient = await self.fetch_patient_metadata(patient_id)
            return [patient] if patient is not None else []

        # No _sort here; date sorts are rejected for several kinds.
        resources: list[dict[str, Any]] = []
        next_url: str | None = f"{self.base_url}/{kind}"
        params: dict[str, str] | None = {
            "patient": patient_id,
            "_count": str(self.page_size),
        }
        pages = 0
        while next_url and pages < self.max_pages_per_resource:
            page = await self._get_json_with_retry(next_url, params)
            if page is None:
                break
            resources.extend(
                resource
                for resource in extract_bundle_resources(page)
                if resource.get("resourceType") == kind
            )
            next_url = extract_bundle_next_url(page)
            params = None
            pages += 1
        return resources

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/fhir+json",
            "User-Agent": self.user_agent,
        }
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        return headers

    def _send(self, url: str, params: dict[str, str] | None) -> requests.Response:
        return self.session.get(
            url,
            headers=self._headers(),
            params=params,
            timeout=self.timeout_seconds,
            verify=self.verify_ssl,
        )

    async def _get_json_with_retry(
        self,
        url: str,
        params: dict[str, str] | None,
    ) -> dict[str, Any] | None:
        """GET a JSON object, degrading every failure to None.

        5xx responses and network errors are retried with linear backoff up
        to ``max_retries`` attempts; 4xx responses are returned as None at once.
        """
        failure = "no attempts made"
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await asyncio.to_thread(self._send, url, params)
            except requests.RequestException as exc:
                failure = f"{exc.__class__.__name__}: {exc}"
            else:
                status_code = response.status_code
                if status_code < 400:
                    return _json_object(response, url)
                if status_code < 500:
                    logger.warning(
                        "FHIR request %s returned HTTP %d; treating as no data",
                        url,
                        status_code,
                    )
                    return None
                failure = f"HTTP {status_code}"

            if attempt < self.max_retries:
                delay_seconds = self.retry_backoff_seconds * attempt
                logger.warning(
                    "FHIR request attempt %d/%d for %s failed (%s). Retrying in %.1fs.",
                    attempt,
                    self.max_retries,
                    url,
                    failure,
                    delay_seconds,
                )
                await self._sleep(delay_seconds)

        logger.error(
            "FHIR request %s failed after %d attempts (%s)",
            url,
            self.max_retries,
            failure,
        )
        return None

    async def _get_json_strict(
        self,
        url: str,
        params: dict[str, str] | None,
    ) -> dict[str, Any]:
        try:
            response = await asyncio.to_thread(self._send, url, params)
        except requests.RequestException as exc:
            raise FhirRequestError(f"FHIR request failed for {url}: {exc}") from exc

        if response.status_code >= 400:
            snippet = response.text.strip().replace("\n", " ")[:240]
            raise FhirRequestError(
                f"FHIR request returned HTTP {response.status_code} for {url}: {snippet}",
                status_code=response.status_code,
            )
        payload = _json_object(response, url)
        if payload is None:
            raise FhirRequestError(f"FHIR response for {url} is not a JSON object")
        return payload


def _json_object(response: requests.Response, url: str) -> dict[str, Any] | None:
    try:
        payload = response.json()
    except ValueError:
        logger.warning("FHIR response for %s is not valid JSON", url)
        return None
    if not isinstance(payload, dict):
        logger.warning("FHIR response for %s is not a JSON object", url)
        return None
    return payload
