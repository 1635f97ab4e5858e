"""
Source adapters feeding the reconciliation pipeline.

Two interchangeable sources produce the same dataset shape
(``employees``/``responses`` frames plus ``rejected`` counts):

- ``SheetCsvSource`` reads a published spreadsheet CSV directly
- ``BackendJsonSource`` asks the spreadsheet script backend for the
  ``employees`` and ``responses`` arrays

Every call fetches again; nothing is cached between calls. Failures are
raised as ``TransportError`` and are never retried here.
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

import httpx
from loguru import logger

from . import logic

DEFAULT_TIMEOUT = 30.0
SOURCE_MODES = ("csv", "json")


class TransportError(Exception):
    """Fetch failed: network error, non-success status or unreadable body."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.url = url


class HttpSource(ABC):
    """Base for sources that fetch over HTTP with an optional shared client."""

    mode = ""

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._http_client = http_client

    async def fetch(self) -> dict:
        if self._http_client is not None:
            return await self._fetch(self._http_client)
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            return await self._fetch(client)

    @abstractmethod
    async def _fetch(self, client: httpx.AsyncClient) -> dict:
        """Fetch through ``client`` and map the payload to a dataset."""

    async def _get(self, client: httpx.AsyncClient, params: dict[str, Any] | None = None) -> httpx.Response:
        logger.debug(f"GET {self.url} {params or ''}".rstrip())
        try:
            response = await client.get(self.url, params=params)
        except httpx.HTTPError as e:
            logger.error(f"Request to {self.url} failed: {e}")
            raise TransportError(f"Request to {self.url} failed: {e}", url=self.url) from e
        if not response.is_success:
            logger.error(f"{self.url} responded with HTTP {response.status_code}")
            raise TransportError(
                f"{self.url} responded with HTTP {response.status_code}",
                status=response.status_code,
                url=self.url,
            )
        return response


class SheetCsvSource(HttpSource):
    """Published sheet CSV; every row is one submission."""

    mode = "csv"

    async def _fetch(self, client: httpx.AsyncClient) -> dict:
        response = await self._get(client)
        return logic.dataset_from_sheet_csv(response.text)


class BackendJsonSource(HttpSource):
    """Script backend answering ``?action=employees`` and ``?action=responses``."""

    mode = "json"

    async def _fetch(self, client: httpx.AsyncClient) -> dict:
        employees = await self._get_list(client, "employees")
        responses = await self._get_list(client, "responses")
        return logic.dataset_from_json(employees, responses)

    async def _get_list(self, client: httpx.AsyncClient, action: str) -> list:
        response = await self._get(client, params={"action": action})
        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(f"{action}: response is not valid JSON", status=response.status_code, url=self.url) from e
        # Some script deployments wrap the array as {"data": [...]}
        if isinstance(payload, dict) and isinstance(payload.get("data"), list):
            payload = payload["data"]
        if not isinstance(payload, list):
            raise TransportError(
                f"{action}: expected a JSON array, got {type(payload).__name__}",
                status=response.status_code,
                url=self.url,
            )
        return payload


def make_source(
    mode: str,
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    http_client: httpx.AsyncClient | None = None,
) -> HttpSource:
    """Pick the adapter for ``mode`` (``csv`` or ``json``)."""
    if mode not in SOURCE_MODES:
        raise ValueError(f"Unknown source mode '{mode}'. Expected one of {', '.join(SOURCE_MODES)}")
    if not url:
        raise ValueError(f"No URL configured for source mode '{mode}'")
    if mode == "csv":
        return SheetCsvSource(url, timeout=timeout, http_client=http_client)
    return BackendJsonSource(url, timeout=timeout, http_client=http_client)


def source_from_env(environ: Mapping[str, str]) -> HttpSource:
    mode = (environ.get("EVALUASI_SOURCE") or "csv").strip().lower()
    url_var = "EVALUASI_SHEET_URL" if mode == "csv" else "EVALUASI_BACKEND_URL"
    timeout = float(environ.get("EVALUASI_TIMEOUT") or DEFAULT_TIMEOUT)
    return make_source(mode, (environ.get(url_var) or "").strip(), timeout=timeout)


async def run_pipeline(source: HttpSource, department: Optional[str] = None) -> dict:
    """Fetch once and reconcile; a TransportError aborts with no partial result."""
    dataset = await source.fetch()
    return logic.build_report(dataset, department=department)
