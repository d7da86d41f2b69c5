"""
Deployment configuration singleton.

There is exactly one Config record per ledger. Before anyone has written
it, reads return the defaults below. Setting it only touches the fields
the update carries.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, constr

from .primitives import NO_CHANGE, NoChange

MAX_FEE_BPS = 10_000
DEFAULT_MAX_MODULES_PER_REPO = 1024


class Config(BaseModel):
    """Ledger-wide settings and the write switch."""

    model_config = ConfigDict(extra="ignore")

    fee_bps: int = Field(0, ge=0, le=MAX_FEE_BPS)
    max_modules_per_repo: int = Field(DEFAULT_MAX_MODULES_PER_REPO, ge=1)
    is_active: bool = True
    policy_ref: Optional[str] = None
    updated_at: Optional[datetime] = None


class ConfigUpdate(BaseModel):
    """Partial update for the Config singleton."""

    model_config = ConfigDict(extra="forbid")

    fee_bps: Union[int, NoChange] = NO_CHANGE
    max_modules_per_repo: Union[int, NoChange] = NO_CHANGE
    is_active: Union[bool, NoChange] = NO_CHANGE
    policy_ref: Union[Optional[constr(min_length=1, max_length=128)], NoChange] = NO_CHANGE
