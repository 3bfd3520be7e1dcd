"""Engine settings loaded from the environment (and an optional ``.env`` file)."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .models.agent import DEFAULT_MAX_ITERATIONS
from .models.workflow import FailurePolicy

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
ENV_PREFIX = "AGENTFLOW_"


@dataclass
class EngineSettings:
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    step_timeout: Optional[float] = 300.0
    workflow_timeout: Optional[float] = None
    failure_policy: FailurePolicy = FailurePolicy.DRAIN
    max_steps: int = 1000
    max_concurrent_steps: Optional[int] = None
    max_retained_executions: Optional[int] = 1000
    sqlite_path: Optional[str] = None
    file_tool_root: Optional[Path] = None
    agents_dir: Optional[Path] = None
    log_level: str = "INFO"
    openai_model: str = "gpt-4o-mini"
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True
    ) -> "EngineSettings":
        """Build settings from ``AGENTFLOW_*`` variables.

        ``load_dotenv`` runs first unless ``dotenv`` is false; variables
        already present in the process environment win over the file.
        """
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        def get(name: str) -> Optional[str]:
            value = environ.get(ENV_PREFIX + name)
            return value if value not in (None, "") else None

        defaults = cls()
        return cls(
            max_iterations=_int(get("MAX_ITERATIONS"), defaults.max_iterations),
            step_timeout=_timeout(get("STEP_TIMEOUT"), defaults.step_timeout),
            workflow_timeout=_timeout(get("WORKFLOW_TIMEOUT"), defaults.workflow_timeout),
            failure_policy=FailurePolicy(get("FAILURE_POLICY") or defaults.failure_policy.value),
            max_steps=_int(get("MAX_STEPS"), defaults.max_steps),
            max_concurrent_steps=_int(get("MAX_CONCURRENT_STEPS"), None),
            max_retained_executions=_limit(
                get("MAX_RETAINED_EXECUTIONS"), defaults.max_retained_executions
            ),
            sqlite_path=get("SQLITE_PATH"),
            file_tool_root=_path(get("FILE_TOOL_ROOT")),
            agents_dir=_path(get("AGENTS_DIR")),
            log_level=(get("LOG_LEVEL") or defaults.log_level).upper(),
            openai_model=get("OPENAI_MODEL") or defaults.openai_model,
            openai_api_key=get("OPENAI_API_KEY") or environ.get("OPENAI_API_KEY"),
            openai_base_url=get("OPENAI_BASE_URL"),
            api_host=get("API_HOST") or defaults.api_host,
            api_port=_int(get("API_PORT"), defaults.api_port),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _int(value: Optional[str], default: Optional[int]) -> Optional[int]:
    return int(value) if value is not None else default


def _timeout(value: Optional[str], default: Optional[float]) -> Optional[float]:
    # "0" or "none" disables the timeout
    if value is None:
        return default
    if value.lower() == "none" or float(value) <= 0:
        return None
    return float(value)


def _path(value: Optional[str]) -> Optional[Path]:
    return Path(value).expanduser() if value is not None else None


def _limit(value: Optional[str], default: Optional[int]) -> Optional[int]:
    # "0" or "none" keeps every execution
    if value is None:
        return default
    if value.lower() == "none" or int(value) <= 0:
        return None
    return int(value)
