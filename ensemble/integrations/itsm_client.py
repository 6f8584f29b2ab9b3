"""
ITSM client: read-only access to the ticketing system's change and
incident feeds.

Endpoints (GET, JSON envelope ``{"Data": [...]}``):
    {base}/change     RFCs, filterable by assignment group and CMDB CI
    {base}/incidents  incidents, filterable by assignment group

Any transport failure, timeout, non-2xx status or malformed body is raised
as ExternalSyncError so the caller can degrade to "queue unchanged".
"""

import logging
from datetime import date
from typing import Any, Protocol

import httpx

from ..core.config import get_settings
from ..core.exceptions import ExternalSyncError

logger = logging.getLogger(__name__)


class ItsmSource(Protocol):
    """What the reconciliation engine needs from a ticket source."""

    async def get_changes(
        self,
        assignment_groups: list[str],
        opened_at_min: date,
        opened_at_max: date,
        cmdb_cis: list[str] | None = None,
    ) -> list[dict[str, Any]]: ...

    async def get_incidents(
        self,
        assignment_groups: list[str],
        opened_at_min: date,
        opened_at_max: date,
    ) -> list[dict[str, Any]]: ...


class ItsmClient:
    """httpx-backed ItsmSource."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "ItsmClient":
        settings = get_settings()
        return cls(
            base_url=settings.itsm_base_url,
            timeout=settings.itsm_timeout_seconds,
            api_key=settings.itsm_api_key,
        )

    async def get_changes(
        self,
        assignment_groups: list[str],
        opened_at_min: date,
        opened_at_max: date,
        cmdb_cis: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        params = self._window_params(assignment_groups, opened_at_min, opened_at_max)
        if cmdb_cis:
            params["cmdb_ci"] = ",".join(cmdb_cis)
        return await self._fetch("/change", params)

    async def get_incidents(
        self,
        assignment_groups: list[str],
        opened_at_min: date,
        opened_at_max: date,
    ) -> list[dict[str, Any]]:
        params = self._window_params(assignment_groups, opened_at_min, opened_at_max)
        return await self._fetch("/incidents", params)

    @staticmethod
    def _window_params(
        assignment_groups: list[str],
        opened_at_min: date,
        opened_at_max: date,
    ) -> dict[str, str]:
        return {
            "assignment_group": ",".join(assignment_groups),
            "opened_at_min": opened_at_min.strftime("%Y-%m-%d"),
            "opened_at_max": opened_at_max.strftime("%Y-%m-%d"),
        }

    async def _fetch(self, path: str, params: dict[str, str]) -> list[dict[str, Any]]:
        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"ITSM request to {path} timed out after {self.timeout}s")
            raise ExternalSyncError(f"ITSM request to {path} timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"ITSM request to {path} failed: {e}")
            raise ExternalSyncError(f"ITSM request to {path} failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"ITSM API error: {response.status_code} - {response.text[:200]}")
            raise ExternalSyncError(
                f"ITSM API returned {response.status_code} for {path}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ExternalSyncError(f"ITSM API returned invalid JSON for {path}") from e

        data = body.get("Data") if isinstance(body, dict) else None
        if not isinstance(data, list):
            raise ExternalSyncError(f"ITSM API response for {path} has no Data list")

        return [item for item in data if isinstance(item, dict)]
