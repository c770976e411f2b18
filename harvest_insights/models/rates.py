from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class RateSource(str, Enum):
    HARVEST_API = "harvest_api"
    CONFIG_FILE = "config_file"
    ENV_DEFAULT = "env_default"
    FALLBACK_ZERO = "fallback_zero"


class RateInfo(BaseModel):
    """A resolved rate together with where it came from"""

    rate: float
    source: RateSource
    source_detail: Optional[str] = None


class UserRate(BaseModel):
    user_id: int
    user_name: str
    cost_rate: RateInfo
    default_hourly_rate: Optional[RateInfo] = None


class ProjectRate(BaseModel):
    project_id: int
    project_name: str
    client_id: int
    client_name: str
    hourly_rate: Optional[RateInfo] = None
    budget: Optional[float] = None
    budget_by: str
    is_billable: bool


class UserOverride(BaseModel):
    cost_rate: Optional[float] = None
    billable_rate: Optional[float] = None


class ProjectOverride(BaseModel):
    hourly_rate: Optional[float] = None


class RateDefaults(BaseModel):
    cost_rate: float = 0.0
    billable_rate: Optional[float] = None


class RatesConfig(BaseModel):
    """Local rate override file (keys are upstream ids as strings)"""

    user_overrides: Dict[str, UserOverride] = Field(default_factory=dict)
    project_overrides: Dict[str, ProjectOverride] = Field(default_factory=dict)
    defaults: RateDefaults = Field(default_factory=RateDefaults)


class RatesResponse(BaseModel):
    users: Optional[List[UserRate]] = None
    projects: Optional[List[ProjectRate]] = None
    config_loaded: bool = False
    warnings: List[str] = Field(default_factory=list)
