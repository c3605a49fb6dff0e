"""Resolve storage settings from environment variables and CLI overrides."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any, TypeVar

from streamup.config.settings import StorageConfig

ConfigT = TypeVar("ConfigT", bound=StorageConfig)

_ENV_MAP: dict[str, str] = {
    "access_key_id": "S3_ACCESS_KEY_ID",
    "secret_access_key": "S3_SECRET_ACCESS_KEY",
    "bucket": "S3_BUCKET",
    "endpoint": "S3_ENDPOINT",
    "region": "S3_REGION",
    "account_id": "R2_ACCOUNT_ID",
}


class ConfigManager:
    """Build effective transfer configuration from env and CLI overrides.

    CLI values win over environment variables; empty values never override.
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        """Initialise ConfigManager.

        Args:
            environ: Environment to read, ``os.environ`` when None.
        """
        self.environ = environ if environ is not None else os.environ

    def _read_env_overrides(self) -> dict[str, Any]:
        """Read storage settings from environment variables.

        Returns:
            A dictionary of configuration field names to override values.
        """
        overrides: dict[str, Any] = {}
        for field_name, env_var_name in _ENV_MAP.items():
            env_value = self.environ.get(env_var_name)
            if env_value:
                overrides[field_name] = env_value
        return overrides

    def resolve(
        self, base_config: ConfigT, cli_config: dict[str, Any] | None = None
    ) -> ConfigT:
        """Resolve the effective configuration for this run.

        Args:
            base_config: Configuration carrying the command's own settings.
            cli_config: Optional CLI-provided overrides; None values are ignored.

        Returns:
            A copy of ``base_config`` with env and CLI values applied.
        """
        merged_config = base_config.model_copy(update=self._read_env_overrides())

        if cli_config is not None:
            updates = {
                name: value
                for name, value in cli_config.items()
                if value is not None and value != ""
            }
            merged_config = merged_config.model_copy(update=updates)

        return merged_config
