"""HTTP client for the CalcGrid client-facing API."""

import asyncio
import time
from typing import Any, Optional

import httpx
import structlog


logger = structlog.get_logger(__name__)


class APIError(Exception):
    """Raised when the coordinator returns an error response."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


class CalcGridClient:
    """Client for the coordinator's REST API.

    Provides typed methods for every client endpoint,
    with connection pooling and retries on connection errors.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        timeout: float = 30.0,
        max_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    # ── lifecycle ────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Create the HTTP connection pool."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            headers={"Content-Type": "application/json"},
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the HTTP connection pool."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "CalcGridClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Call connect() first")
        return self._client

    # ── low-level request ────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Send a request, retrying on connection errors."""
        last_exc: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                resp = await self.client.request(method, path, json=json_body)
            except httpx.ConnectError as exc:
                last_exc = exc
                await logger.adebug("connect_failed", path=path, attempt=attempt, error=str(exc))
                if attempt < self.max_retries:
                    await asyncio.sleep(0.5 * attempt)
                continue

            if resp.status_code >= 400:
                detail = resp.text
                try:
                    body = resp.json()
                except ValueError:
                    body = None
                if isinstance(body, dict):
                    detail = body.get("error", resp.text)
                raise APIError(resp.status_code, detail)
            return resp.json()

        raise ConnectionError(
            f"Cannot reach CalcGrid at {self.base_url} "
            f"after {self.max_retries} attempts: {last_exc}"
        )

    # ── endpoints ────────────────────────────────────────────────────

    async def health(self) -> dict[str, Any]:
        """GET /health: coordinator status and counts."""
        return await self._request("GET", "/health")

    async def calculate(self, expression: str) -> dict[str, Any]:
        """POST /api/v1/calculate: submit an expression.

        Returns:
            {"id": "..."} in distributed/local mode,
            {"id": "...", "result": "..."} in sync mode.
        """
        return await self._request("POST", "/api/v1/calculate", json_body={"expression": expression})

    async def list_expressions(self) -> list[dict[str, Any]]:
        """GET /api/v1/expressions: every known expression."""
        data = await self._request("GET", "/api/v1/expressions")
        return data.get("expressions", [])

    async def get_expression(self, expression_id: str) -> dict[str, Any]:
        """GET /api/v1/expressions/{id}: one expression."""
        data = await self._request("GET", f"/api/v1/expressions/{expression_id}")
        return data["expression"]

    async def wait_for_expression(
        self,
        expression_id: str,
        *,
        poll_interval: float = 1.0,
        timeout: float = 60.0,
    ) -> dict[str, Any]:
        """Poll an expression until it is completed."""
        start = time.monotonic()
        while True:
            expression = await self.get_expression(expression_id)
            if expression.get("status") == "completed":
                return expression
            if time.monotonic() - start >= timeout:
                raise TimeoutError(
                    f"Expression {expression_id} did not complete within {timeout}s"
                )
            await asyncio.sleep(poll_interval)
