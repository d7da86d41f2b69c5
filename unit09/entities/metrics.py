"""
Global and per-repository counters.

Counters only grow. They are incremented by successful entity creation and
by observations, never decremented.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class GlobalMetrics(BaseModel):
    """Deployment-wide totals."""

    model_config = ConfigDict(extra="ignore")

    total_repos: int = Field(0, ge=0)
    total_modules: int = Field(0, ge=0)
    total_forks: int = Field(0, ge=0)
    total_observations: int = Field(0, ge=0)
    total_lines_of_code: int = Field(0, ge=0)
    total_files_processed: int = Field(0, ge=0)
    last_observation_at: Optional[datetime] = None

    def to_json(self) -> Dict[str, str]:
        """Counters as decimal strings, safe for clients without big ints."""
        return {
            name: str(getattr(self, name))
            for name in type(self).model_fields
            if name.startswith("total_")
        }


class RepoMetrics(BaseModel):
    """Totals scoped to one repository."""

    model_config = ConfigDict(extra="ignore")

    repo_key: str
    modules: int = Field(0, ge=0)
    observations: int = Field(0, ge=0)
    lines_of_code: int = Field(0, ge=0)
    files_processed: int = Field(0, ge=0)
