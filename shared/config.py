"""
Configuration management for services.

Process settings come from environment variables (optionally seeded from a
``.env`` file at the project root). Pipeline tunables come from
``config/pipeline.yaml`` and can be overridden per key with
``PIPELINE_FLAG_<DOTTED_PATH_UPPERCASE>`` environment variables.
"""

import json
import os
from collections.abc import Callable
from typing import Any

import yaml

from dotenv import load_dotenv

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# (config key, environment variable, default, caster)
ENV_SETTINGS: list[tuple[str, str, str | None, Callable[[str], Any]]] = [
    ("openai_api_key", "OPENAI_API_KEY", None, str),
    ("openai_timeout_seconds", "OPENAI_TIMEOUT_SECONDS", "120", float),
    ("kore_base_url", "KORE_BASE_URL", "https://bots.kore.ai", str),
    ("http_timeout_seconds", "HTTP_TIMEOUT_SECONDS", "60", int),
    ("log_level", "LOG_LEVEL", "INFO", str.upper),
    ("debug", "DEBUG", "false", _as_bool),
    ("allowed_origins", "ALLOWED_ORIGINS", '["*"]', json.loads),
]


class ServiceConfig:
    """Environment and pipeline configuration shared by every service."""

    def __init__(self, pipeline_config_path: str | None = None) -> None:
        load_dotenv(dotenv_path=os.path.join(PROJECT_ROOT, ".env"), override=False)
        self.config: dict[str, Any] = {}
        self.pipeline_config: dict[str, Any] = {}
        self.pipeline_config_path = pipeline_config_path or os.getenv(
            "PIPELINE_CONFIG_PATH", os.path.join(PROJECT_ROOT, "config", "pipeline.yaml")
        )
        self.load_from_env()
        self.load_pipeline_config()

    def load_from_env(self) -> None:
        """Load process settings from environment variables."""
        values: dict[str, Any] = {}
        for key, env_var, default, caster in ENV_SETTINGS:
            raw = os.getenv(env_var, default)
            try:
                values[key] = caster(raw) if raw is not None else None
            except ValueError as e:
                raise ValueError(f"Invalid value for {env_var}: {raw!r}") from e
        self.config = values

    def get(self, key: str, default: Any = None) -> Any:
        """Process setting ``key``, or ``default`` when unset."""
        value = self.config.get(key)
        return default if value is None else value

    def set(self, key: str, value: Any) -> None:
        self.config[key] = value

    def reload(self) -> None:
        """Re-read the environment and the pipeline file."""
        self.load_from_env()
        self.load_pipeline_config()

    def load_pipeline_config(self) -> None:
        """Load pipeline tunables from YAML. A missing file means all defaults."""
        try:
            with open(self.pipeline_config_path, "r", encoding="utf-8") as stream:
                data = yaml.safe_load(stream) or {}
        except FileNotFoundError:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"Pipeline config {self.pipeline_config_path} must be a mapping")
        self.pipeline_config = data

    def set_pipeline_config(self, pipeline_config: dict[str, Any]) -> None:
        """Replace pipeline tunables wholesale (used by tests)."""
        self.pipeline_config = pipeline_config

    def get_pipeline_value(self, path: str, default: Any = None) -> Any:
        """
        Retrieve a pipeline value via dotted path, e.g. ``analysis.batch_size``.

        An environment override wins over the YAML file; values are parsed as
        JSON when possible so numbers, booleans and lists keep their types.
        """
        env_value = os.getenv(f"PIPELINE_FLAG_{path.replace('.', '_').upper()}")
        if env_value is not None:
            return self._coerce_env_value(env_value, default)

        node: Any = self.pipeline_config
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return default if node is None else node

    @staticmethod
    def _coerce_env_value(raw: str, default: Any) -> Any:
        if not raw.strip():
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw


# Global configuration instance
config = ServiceConfig()
