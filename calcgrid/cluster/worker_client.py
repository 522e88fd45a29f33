"""Worker client: pulls binary-operation jobs from the coordinator.

Each poll loop alternates between two states:
  1. Idle: ``GET /internal/task``. On a transport error, a 404 ("no tasks
     available") or any other failure, sleep ``poll_interval`` and poll again.
  2. Computing: apply the job's operator and ``POST /internal/task`` with
     ``{id, result}`` or ``{id, error}``. A report that does not reach the
     coordinator is sent again every ``poll_interval`` until it is accepted
     or rejected; then return to Idle.

Operators are applied with the same primitive as the synchronous evaluator,
so a zero divisor is reported as an error rather than as an infinity.

Usage:
    calcgrid-worker [--url http://localhost:8080] [--concurrency 4]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError

from calcgrid.calculator import CalculationError, apply_operator
from calcgrid.cluster.models import Job
from calcgrid.config import WorkerSettings, load_settings
from calcgrid.logging_setup import configure_logging

logger = structlog.get_logger(__name__)

TASK_PATH = "/internal/task"


class WorkerClient:
    """Runs one or more poll loops against a coordinator.

    Args:
        coordinator_url: The coordinator's base URL.
        poll_interval: Seconds to wait after a failed or empty poll.
        request_timeout: Transport timeout in seconds; None waits forever.
        concurrency: Number of poll loops sharing one connection pool.
        transport: Optional httpx transport (tests route it to an ASGI app).
    """

    def __init__(
        self,
        coordinator_url: str = "http://localhost:8080",
        poll_interval: float = 1.0,
        request_timeout: Optional[float] = None,
        concurrency: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.coordinator_url = coordinator_url.rstrip("/")
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self.concurrency = max(1, concurrency)
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._loops: list[asyncio.Task] = []
        self._running = False
        self.jobs_done = 0

    @classmethod
    def from_settings(cls, settings: WorkerSettings, **kwargs: Any) -> WorkerClient:
        return cls(
            coordinator_url=settings.coordinator_url,
            poll_interval=settings.poll_interval,
            request_timeout=settings.request_timeout,
            concurrency=settings.concurrency,
            **kwargs,
        )

    # ── Lifecycle ─────────────────────────────────────────────────

    async def connect(self) -> None:
        """Create the HTTP connection pool."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.coordinator_url,
                timeout=httpx.Timeout(self.request_timeout),
                transport=self._transport,
            )

    async def close(self) -> None:
        """Close the HTTP connection pool."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Call connect() first")
        return self._client

    async def run(self) -> None:
        """Poll until ``stop()`` is called or the loops are cancelled."""
        self._running = True
        await self.connect()
        await logger.ainfo(
            "worker_starting",
            coordinator_url=self.coordinator_url,
            concurrency=self.concurrency,
            poll_interval=self.poll_interval,
        )
        self._loops = [
            asyncio.create_task(self._poll_loop(n), name=f"poll-{n}")
            for n in range(self.concurrency)
        ]
        try:
            await asyncio.gather(*self._loops)
        except asyncio.CancelledError:
            pass
        finally:
            self._running = False
            await self.close()
            await logger.ainfo("worker_stopped", jobs_done=self.jobs_done)

    async def stop(self) -> None:
        """Stop every poll loop."""
        self._running = False
        for task in self._loops:
            if not task.done():
                task.cancel()

    async def _poll_loop(self, loop_id: int) -> None:
        while self._running:
            await self.run_once()

    # ── One Idle → Computing → Idle cycle ─────────────────────────

    async def run_once(self) -> bool:
        """Poll for one job and process it.

        Returns:
            True if a job was computed and reported, False if the poll found
            nothing (after sleeping ``poll_interval``).
        """
        job = await self.poll()
        if job is None:
            await asyncio.sleep(self.poll_interval)
            return False
        await self.deliver(job.id, **self.compute(job))
        self.jobs_done += 1
        return True

    async def poll(self) -> Optional[Job]:
        """Ask the coordinator for a job; None on any failure or empty queue."""
        try:
            response = await self.client.get(TASK_PATH)
        except httpx.HTTPError as e:
            await logger.awarning("poll_failed", error=str(e), retry_in=self.poll_interval)
            return None

        if response.status_code != 200:
            if response.status_code != 404:
                await logger.awarning("poll_rejected", status_code=response.status_code)
            return None

        try:
            return Job.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            await logger.awarning("job_undecodable", error=str(e))
            return None

    @staticmethod
    def compute(job: Job) -> dict[str, Any]:
        """Apply the job's operator; returns the report fields."""
        try:
            return {"result": apply_operator(job.operation, job.arg1, job.arg2)}
        except CalculationError as e:
            return {"error": e.message}

    async def report(self, job_id: str, **outcome: Any) -> bool:
        """Post a job outcome once. Returns True if the coordinator accepted it."""
        return await self._post_report(job_id, outcome) == 200

    async def deliver(self, job_id: str, **outcome: Any) -> bool:
        """Post a job outcome until the coordinator answers it.

        Transport errors and 5xx answers are retried every ``poll_interval``.

        Returns:
            True if accepted, False if the coordinator rejected the report.
        """
        while True:
            status_code = await self._post_report(job_id, outcome)
            if status_code == 200:
                return True
            if status_code is not None and status_code < 500:
                return False
            await asyncio.sleep(self.poll_interval)

    async def _post_report(self, job_id: str, outcome: dict[str, Any]) -> Optional[int]:
        """Send one report; returns the HTTP status, or None if it never arrived.

        The body is encoded with ``json.dumps`` so that overflowed values
        travel as ``Infinity``/``NaN``, matching the coordinator's responses.
        """
        body = json.dumps({"id": job_id, **outcome}).encode("utf-8")
        try:
            response = await self.client.post(
                TASK_PATH, content=body, headers={"Content-Type": "application/json"}
            )
        except httpx.HTTPError as e:
            await logger.awarning("report_failed", job_id=job_id, error=str(e), retry_in=self.poll_interval)
            return None
        if response.status_code != 200:
            await logger.awarning("report_rejected", job_id=job_id, status_code=response.status_code)
        else:
            await logger.adebug("job_reported", job_id=job_id, **outcome)
        return response.status_code


# ── Command line ─────────────────────────────────────────────────────


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="CalcGrid worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Environment variables (CALCGRID_COORDINATOR_URL, CALCGRID_POLL_INTERVAL,\n"
            "CALCGRID_REQUEST_TIMEOUT, CALCGRID_CONCURRENCY) override the config file;\n"
            "command-line flags override both.\n"
        ),
    )
    parser.add_argument("--config", default=os.environ.get("CALCGRID_CONFIG"), help="YAML config file")
    parser.add_argument("--url", dest="coordinator_url", help="Coordinator base URL")
    parser.add_argument("--poll-interval", type=float, help="Seconds between empty polls (default: 1)")
    parser.add_argument("--timeout", dest="request_timeout", type=float, help="HTTP timeout in seconds")
    parser.add_argument("--concurrency", type=int, help="Parallel poll loops (default: 1)")
    parser.add_argument("--log-level", help="Log level (default: info)")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    try:
        settings = load_settings(
            WorkerSettings,
            args.config,
            coordinator_url=args.coordinator_url,
            poll_interval=args.poll_interval,
            request_timeout=args.request_timeout,
            concurrency=args.concurrency,
            log_level=args.log_level,
        )
    except (ValueError, ValidationError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    configure_logging(settings.log_level, settings.json_logs)
    worker = WorkerClient.from_settings(settings)
    try:
        asyncio.run(worker.run())
    except KeyboardInterrupt:
        logger.info("worker_shutdown", reason="User interrupt")


if __name__ == "__main__":
    main()
