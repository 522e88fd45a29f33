"""Settings for the coordinator and worker processes.

Values are resolved in order: model defaults, then an optional YAML file,
then ``CALCGRID_*`` environment variables (e.g. ``CALCGRID_PORT=9000``,
``CALCGRID_POLL_INTERVAL=0.5``).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional, TypeVar

import yaml
from pydantic import BaseModel, Field

ENV_PREFIX = "CALCGRID_"

CalculationMode = Literal["distributed", "local", "sync"]


class CoordinatorSettings(BaseModel):
    """Configuration for the coordinator HTTP service.

    Attributes:
        host: Bind address.
        port: Bind port.
        mode: How ``POST /api/v1/calculate`` evaluates expressions:
            "distributed" hands binary-operation jobs to workers,
            "local" evaluates in a background task on the coordinator,
            "sync" evaluates inline and returns the result.
        claim_timeout: Seconds a worker may hold a claimed job without
            reporting before the job is handed to another worker.
        log_level: Minimum log level name.
        json_logs: Render logs as JSON lines instead of console output.
    """

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080, ge=1, le=65535)
    mode: CalculationMode = Field(default="distributed")
    claim_timeout: float = Field(default=30.0, gt=0)
    log_level: str = Field(default="info")
    json_logs: bool = Field(default=False)


class WorkerSettings(BaseModel):
    """Configuration for a worker process.

    Attributes:
        coordinator_url: Base URL of the coordinator.
        poll_interval: Seconds to wait after a failed or empty poll.
        request_timeout: Transport timeout in seconds; None blocks indefinitely.
        concurrency: Number of independent poll loops in this process.
        log_level: Minimum log level name.
        json_logs: Render logs as JSON lines instead of console output.
    """

    coordinator_url: str = Field(default="http://localhost:8080")
    poll_interval: float = Field(default=1.0, gt=0)
    request_timeout: Optional[float] = Field(default=None, gt=0)
    concurrency: int = Field(default=1, ge=1)
    log_level: str = Field(default="info")
    json_logs: bool = Field(default=False)


S = TypeVar("S", CoordinatorSettings, WorkerSettings)


def load_config_file(config_path: Optional[str]) -> dict:
    """Load a YAML mapping; a missing or empty file yields an empty dict."""
    if not config_path:
        return {}
    config_file = Path(config_path)
    if not config_file.exists():
        return {}
    with open(config_file) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_path}: expected a mapping at top level")
    return data


def env_overrides(model: type[BaseModel], environ: Optional[dict] = None) -> dict:
    """Collect ``CALCGRID_<FIELD>`` values for the fields of ``model``."""
    environ = os.environ if environ is None else environ
    overrides = {}
    for name in model.model_fields:
        key = f"{ENV_PREFIX}{name.upper()}"
        if key in environ and environ[key] != "":
            overrides[name] = environ[key]
    return overrides


def load_settings(
    model: type[S],
    config_path: Optional[str] = None,
    environ: Optional[dict] = None,
    **explicit,
) -> S:
    """Build settings from file, environment and explicit keyword values.

    Explicit values (typically from command-line flags) win over the
    environment; ``None`` values are ignored.
    """
    values = load_config_file(config_path)
    values.update(env_overrides(model, environ))
    values.update({k: v for k, v in explicit.items() if v is not None})
    return model.model_validate(values)
