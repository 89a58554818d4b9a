"""
Reporter configuration.

Loads settings from environment variables (and an optional .env file) into a
Pydantic model. TeamCity build agents export TEAMCITY_VERSION, which is what
switches reporting on when no command-line flag asks for it.
"""

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReporterConfig(BaseSettings):
    """
    Settings shared by the unittest runner, the pytest plugin and the CLI.
    """

    TEAMCITY_VERSION: str = Field(default="", description="Set by TeamCity build agents")
    TEAMCITY_FLOW_ID: int = Field(
        default_factory=os.getpid, ge=0, description="flowId attached to every message"
    )
    TEAMCITY_OUTPUT_PATH: str = Field(
        default="", description="Write messages to this file instead of stdout"
    )
    TEAMCITY_CAPTURE_STANDARD_OUTPUT: bool = Field(
        default=True, description="Ask the server to treat test stdout/stderr as test output"
    )

    LOG_LEVEL: str = Field(default="WARNING", description="Reporter diagnostics log level")
    LOG_CONFIG_PATH: str = Field(default="", description="Optional YAML logging config path")

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    @property
    def running_under_teamcity(self) -> bool:
        return bool(self.TEAMCITY_VERSION.strip())

    @property
    def capture_standard_output(self) -> str:
        return "true" if self.TEAMCITY_CAPTURE_STANDARD_OUTPUT else "false"
