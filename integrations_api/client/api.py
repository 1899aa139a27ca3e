"""
HTTP client for the Integrations API (httpx).
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

logger = logging.getLogger("integrations_api.client")


class ClientError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AdmissionConflict(ClientError):
    """A run is already in progress for the key; carries that job"""

    def __init__(self, message: str, job_id: str, status: str):
        super().__init__(message, status_code=409)
        self.job_id = job_id
        self.status = status


@dataclass
class SubmitResult:
    job_id: str
    status: str


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"http_{response.status_code}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or f"http_{response.status_code}")
    return f"http_{response.status_code}"


class IntegrationsClient:

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self):
        await self._client.aclose()

    async def run_integration(self, tenant_id: str, provider_slug: str) -> SubmitResult:
        try:
            r = await self._client.post("/v1/integrations/run",
                                        json={"tenant_id": tenant_id, "provider_slug": provider_slug})
        except httpx.HTTPError as e:
            raise ClientError(str(e) or type(e).__name__) from e

        if r.status_code == 409:
            body = r.json()
            raise AdmissionConflict(body.get("error", "Job already in progress"), body["job_id"], body["status"])
        if r.status_code >= 400:
            raise ClientError(_error_message(r), status_code=r.status_code)
        body = r.json()
        return SubmitResult(job_id=body["job_id"], status=body["status"])

    async def list_jobs(self, tenant_id: Optional[str] = None, provider_slug: Optional[str] = None,
                        limit: int = 100) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": limit}
        if tenant_id:
            params["tenant_id"] = tenant_id
        if provider_slug:
            params["provider_slug"] = provider_slug
        r = await self._client.get("/v1/integration-jobs", params=params)
        if r.status_code >= 400:
            raise ClientError(_error_message(r), status_code=r.status_code)
        return r.json()

    async def stream_changes(self, tenant_id: Optional[str] = None) -> AsyncIterator[Dict[str, Any]]:
        """Yield ``{"eventType", "record"}`` dicts from the SSE change feed until it closes."""
        params = {"tenant_id": tenant_id} if tenant_id else {}
        async with self._client.stream("GET", "/v1/integration-jobs/stream", params=params,
                                       timeout=httpx.Timeout(self._client.timeout.connect, read=None)) as r:
            if r.status_code >= 400:
                await r.aread()
                raise ClientError(_error_message(r), status_code=r.status_code)
            data_lines: List[str] = []
            async for line in r.aiter_lines():
                if line.startswith(":"):
                    continue
                if line.startswith("data:"):
                    data_lines.append(line[5:].lstrip())
                    continue
                if line == "" and data_lines:
                    payload = "\n".join(data_lines)
                    data_lines = []
                    try:
                        yield json.loads(payload)
                    except ValueError:
                        logger.warning("Dropping malformed change event", extra={"component": "reconciler"})
