"""Coordinator HTTP service.

Client protocol:
  POST /api/v1/calculate        submit an expression
  GET  /api/v1/expressions      list every expression
  GET  /api/v1/expressions/{id} fetch one expression

Worker protocol:
  GET  /internal/task           claim a ready binary-operation job
  POST /internal/task           report a job's result or error

Usage:
    calcgrid-coordinator [--host 0.0.0.0] [--port 8080] [--mode distributed|local|sync]
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Optional

import structlog
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from calcgrid.calculator import CalculationError
from calcgrid.cluster.coordinator import Coordinator
from calcgrid.cluster.models import CalculateRequest, JobReport
from calcgrid.config import CoordinatorSettings, load_settings
from calcgrid.logging_setup import configure_logging

logger = structlog.get_logger(__name__)


class WireJSONResponse(JSONResponse):
    """JSONResponse that keeps non-finite floats (Infinity/NaN) on the wire.

    Operands produced by overflowing jobs can be infinite; Python's json
    module on the worker side reads them back.
    """

    def render(self, content: Any) -> bytes:
        return json.dumps(content, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def _error(message: str, status_code: int, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


async def _read_model(request: Request, model):
    """Parse the request body into ``model``; None if it is not valid."""
    try:
        body = await request.json()
        return model.model_validate(body)
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
        return None


def create_app(coordinator: Optional[Coordinator] = None) -> Starlette:
    """Build the Starlette application around a coordinator.

    Args:
        coordinator: Coordinator owning the registry. A distributed-mode
            coordinator is created if omitted.
    """
    coordinator = coordinator or Coordinator()

    # ── Client endpoints ──────────────────────────────────────────

    async def calculate(request: Request) -> JSONResponse:
        payload = await _read_model(request, CalculateRequest)
        if payload is None:
            return _error("Invalid request body", 400)

        if coordinator.mode == "sync":
            task = await coordinator.calculate(payload.expression)
            return JSONResponse({"id": task.id, "result": task.result}, status_code=200)

        task = await coordinator.submit(payload.expression)
        background = None
        if coordinator.mode == "local":
            background = BackgroundTask(coordinator.evaluate_locally, task.id, payload.expression)
        return JSONResponse({"id": task.id}, status_code=201, background=background)

    async def list_expressions(request: Request) -> JSONResponse:
        tasks = await coordinator.list_tasks()
        return JSONResponse({"expressions": [t.to_dict() for t in tasks]})

    async def get_expression(request: Request) -> JSONResponse:
        task = await coordinator.get_task(request.path_params["expression_id"])
        if task is None:
            return _error("Expression not found", 404)
        return JSONResponse({"expression": task.to_dict()})

    # ── Worker endpoints ──────────────────────────────────────────

    async def claim_task(request: Request) -> JSONResponse:
        job = await coordinator.claim_job()
        if job is None:
            return _error("No tasks available", 404)
        return WireJSONResponse(job.model_dump())

    async def report_task(request: Request) -> JSONResponse:
        report = await _read_model(request, JobReport)
        if report is None:
            return _error("Invalid request body", 400)
        await coordinator.report_job(report)
        return JSONResponse({})

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "mode": coordinator.mode, **await coordinator.stats()})

    # ── Error mapping ─────────────────────────────────────────────

    async def calculation_error(request: Request, exc: CalculationError) -> JSONResponse:
        await logger.ainfo("calculation_rejected", path=request.url.path, kind=exc.kind, error=exc.message)
        return JSONResponse(exc.to_dict(), status_code=422)

    async def internal_error(request: Request, exc: Exception) -> JSONResponse:
        await logger.aerror("request_failed", path=request.url.path, error=str(exc), exc_info=exc)
        return _error("Internal server error", 500)

    app = Starlette(
        routes=[
            Route("/api/v1/calculate", calculate, methods=["POST"]),
            Route("/api/v1/expressions", list_expressions, methods=["GET"]),
            Route("/api/v1/expressions/{expression_id}", get_expression, methods=["GET"]),
            Route("/internal/task", claim_task, methods=["GET"]),
            Route("/internal/task", report_task, methods=["POST"]),
            Route("/health", health, methods=["GET"]),
        ],
        exception_handlers={
            CalculationError: calculation_error,
            Exception: internal_error,
        },
    )
    app.state.coordinator = coordinator
    return app


# ── Command line ─────────────────────────────────────────────────────


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="CalcGrid coordinator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Environment variables (CALCGRID_HOST, CALCGRID_PORT, CALCGRID_MODE,\n"
            "CALCGRID_CLAIM_TIMEOUT, CALCGRID_LOG_LEVEL, CALCGRID_JSON_LOGS) override\n"
            "the config file; command-line flags override both.\n"
        ),
    )
    parser.add_argument("--config", default=os.environ.get("CALCGRID_CONFIG"), help="YAML config file")
    parser.add_argument("--host", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, help="Bind port (default: 8080)")
    parser.add_argument("--mode", choices=["distributed", "local", "sync"], help="Calculation mode")
    parser.add_argument(
        "--claim-timeout", type=float, help="Seconds before an unreported job is handed out again (default: 30)"
    )
    parser.add_argument("--log-level", help="Log level (default: info)")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    """Serve the coordinator with uvicorn."""
    import uvicorn

    args = parse_args(argv)
    try:
        settings = load_settings(
            CoordinatorSettings,
            args.config,
            host=args.host,
            port=args.port,
            mode=args.mode,
            claim_timeout=args.claim_timeout,
            log_level=args.log_level,
        )
    except (ValueError, ValidationError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    configure_logging(settings.log_level, settings.json_logs)
    logger.info(
        "coordinator_starting",
        host=settings.host,
        port=settings.port,
        mode=settings.mode,
        claim_timeout=settings.claim_timeout,
    )

    app = create_app(Coordinator(mode=settings.mode, claim_timeout=settings.claim_timeout))
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level, access_log=False)


if __name__ == "__main__":
    main()
