"""Planner settings loaded from environment variables."""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class PlannerSettings(BaseSettings):
    """Configuration for az-condplan.

    Values are read from ``CONDPLAN_*`` environment variables
    (case-insensitive) and optionally from a ``.env`` file in the working
    directory.
    """

    # Ceiling on declared nodes (resources, modules and module members)
    max_nodes: int = Field(default=800, ge=1)

    # When True, same-name siblings conflict unless their conditions are
    # provably disjoint.  When False, only simultaneous inclusion conflicts.
    strict_name_conflicts: bool = True

    default_provider: str = "dry-run"

    host: str = "127.0.0.1"
    port: int = 5002

    model_config = SettingsConfigDict(
        env_prefix="CONDPLAN_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


def get_settings() -> PlannerSettings:
    """Return settings freshly read from the environment."""
    return PlannerSettings()
