"""Engine settings.

Configuration is loaded from:
- environment variables prefixed with `PHASEFLOW_`
- and a local `.env` file (if present)

Settings only tune the runtime (logging, contract checks). Programs themselves
are passed in by the host application and never loaded from here.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from phaseflow.logging import configure_logging


class EngineSettings(BaseSettings):
    """Settings for the workflow runtime.

    Environment variables:
    - PHASEFLOW_LOG_LEVEL
    - PHASEFLOW_LOG_JSON
    - PHASEFLOW_VALIDATE_CONTRACTS
    - PHASEFLOW_VALIDATE_INITIAL_DATA

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        description="Root logging level",
    )
    log_json: bool = Field(
        default=True,
        description="Emit structured JSON log records instead of plain text",
    )
    validate_contracts: bool = Field(
        default=True,
        description="Validate service input/output against operation contracts",
    )
    validate_initial_data: bool = Field(
        default=True,
        description="Validate caller-supplied initial data against the data schema",
    )

    model_config = SettingsConfigDict(
        env_prefix="PHASEFLOW_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure logging based on settings."""

        configure_logging(self.log_level, json_output=self.log_json)
