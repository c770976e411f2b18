"""
Rate resolution with provenance.

Cost rates resolve through a fallback chain:
1. Harvest API (user.cost_rate)
2. Per-user override in the local rates file
3. defaults.cost_rate in the rates file
4. DEFAULT_COST_RATE (environment, or rates.default_cost_rate in config)
5. Zero, with a warning

Every resolved value carries its source so callers can report where a
number came from.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import structlog
import yaml
from pydantic import ValidationError

from harvest_insights.models.config import RatesSettings
from harvest_insights.models.harvest import Project, User, items_of
from harvest_insights.models.rates import (
    RateInfo,
    RateSource,
    RatesConfig,
    RatesResponse,
    ProjectRate,
    UserRate,
)
from harvest_insights.services.gateway import ApiGateway
from harvest_insights.utils.exceptions import ConfigLoadError

logger = structlog.get_logger()

DEFAULT_COST_RATE_ENV = "DEFAULT_COST_RATE"


def load_rates_config(path: Path) -> RatesConfig:
    """
    Read a rates override file (YAML or JSON).

    Raises:
        ConfigLoadError: File exists but cannot be read, parsed or validated
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return RatesConfig.model_validate(data)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        raise ConfigLoadError(f"Failed to load {path}: {e}") from e


def describe_rate_source(rate_info: RateInfo) -> str:
    """Human-readable provenance of a rate"""
    if rate_info.source == RateSource.HARVEST_API:
        return f"From Harvest API ({rate_info.source_detail})"
    if rate_info.source == RateSource.CONFIG_FILE:
        return f"From config file ({rate_info.source_detail})"
    if rate_info.source == RateSource.ENV_DEFAULT:
        return f"From environment variable ({rate_info.source_detail})"
    return "No rate configured (using 0)"


class RatesService:
    """Resolves user cost rates and project billable rates"""

    def __init__(
        self,
        gateway: ApiGateway,
        settings: Optional[RatesSettings] = None,
        max_pages: int = 10,
    ):
        self.gateway = gateway
        self.settings = settings or RatesSettings()
        self.config_path = Path(self.settings.config_path)
        self.max_pages = max_pages
        self._config: Optional[RatesConfig] = None
        self._config_loaded = False
        self._warnings: List[str] = []

    @property
    def default_cost_rate(self) -> float:
        """Configured default, else DEFAULT_COST_RATE from the environment"""
        if self.settings.default_cost_rate is not None:
            return self.settings.default_cost_rate
        raw = os.environ.get(DEFAULT_COST_RATE_ENV)
        if not raw:
            return 0.0
        try:
            return float(raw)
        except ValueError:
            logger.warning("invalid_default_cost_rate", value=raw)
            return 0.0

    def _default_cost_source(self) -> str:
        if self.settings.default_cost_rate is not None:
            return "rates.default_cost_rate"
        return DEFAULT_COST_RATE_ENV

    def load_config(self) -> Tuple[RatesConfig, bool]:
        """
        Load the override file once.

        Returns:
            (config, loaded) where loaded is False when the file is missing
            or unusable and built-in defaults are in effect
        """
        if self._config is not None:
            return self._config, self._config_loaded

        if not self.config_path.exists():
            self._config, self._config_loaded = RatesConfig(), False
            return self._config, False

        try:
            self._config = load_rates_config(self.config_path)
            self._config_loaded = True
            logger.info("rates_config_loaded", path=str(self.config_path))
        except ConfigLoadError as e:
            logger.warning("rates_config_load_failed", error=str(e))
            self._warnings.append(str(e))
            self._config, self._config_loaded = RatesConfig(), False
        return self._config, self._config_loaded

    def reload(self) -> None:
        self._config = None
        self._config_loaded = False

    # ==================== Resolution ====================

    def resolve_cost_rate(self, user: User) -> RateInfo:
        config, _ = self.load_config()

        if user.cost_rate is not None:
            return RateInfo(
                rate=user.cost_rate,
                source=RateSource.HARVEST_API,
                source_detail="user.cost_rate",
            )

        override = config.user_overrides.get(str(user.id))
        if override is not None and override.cost_rate is not None:
            return RateInfo(
                rate=override.cost_rate,
                source=RateSource.CONFIG_FILE,
                source_detail=str(self.config_path),
            )

        if config.defaults.cost_rate > 0:
            return RateInfo(
                rate=config.defaults.cost_rate,
                source=RateSource.CONFIG_FILE,
                source_detail=f"{self.config_path} (defaults.cost_rate)",
            )

        env_rate = self.default_cost_rate
        if env_rate > 0:
            return RateInfo(
                rate=env_rate,
                source=RateSource.ENV_DEFAULT,
                source_detail=self._default_cost_source(),
            )

        self._warnings.append(
            f"User {user.full_name} ({user.id}) has no cost rate configured"
        )
        return RateInfo(rate=0.0, source=RateSource.FALLBACK_ZERO)

    def resolve_project_rate(self, project: Project) -> Optional[RateInfo]:
        """Billable rate for a billable project, None otherwise"""
        if not project.is_billable:
            return None

        config, _ = self.load_config()

        if project.hourly_rate is not None:
            return RateInfo(
                rate=project.hourly_rate,
                source=RateSource.HARVEST_API,
                source_detail="project.hourly_rate",
            )

        override = config.project_overrides.get(str(project.id))
        if override is not None and override.hourly_rate is not None:
            return RateInfo(
                rate=override.hourly_rate,
                source=RateSource.CONFIG_FILE,
                source_detail=str(self.config_path),
            )

        if config.defaults.billable_rate is not None:
            return RateInfo(
                rate=config.defaults.billable_rate,
                source=RateSource.CONFIG_FILE,
                source_detail=f"{self.config_path} (defaults.billable_rate)",
            )
        return None

    def _user_rate(self, user: User) -> UserRate:
        hourly = None
        if user.default_hourly_rate:
            hourly = RateInfo(
                rate=user.default_hourly_rate,
                source=RateSource.HARVEST_API,
                source_detail="user.default_hourly_rate",
            )
        return UserRate(
            user_id=user.id,
            user_name=user.full_name,
            cost_rate=self.resolve_cost_rate(user),
            default_hourly_rate=hourly,
        )

    def _project_rate(self, project: Project) -> ProjectRate:
        return ProjectRate(
            project_id=project.id,
            project_name=project.name,
            client_id=project.client.id,
            client_name=project.client.name,
            hourly_rate=self.resolve_project_rate(project),
            budget=project.budget,
            budget_by=project.budget_by,
            is_billable=project.is_billable,
        )

    # ==================== Fetching ====================

    async def _fetch_users(self, user_id: Optional[int] = None) -> List[User]:
        if user_id is not None:
            payload = await self.gateway.get_user(user_id)
            return [User.model_validate(payload)]
        result = await self.gateway.auto_paginate(
            self.gateway.list_users,
            items_of("users"),
            {"is_active": True},
            max_pages=self.max_pages,
        )
        return result.parse(User)

    async def _fetch_projects(self, project_id: Optional[int] = None) -> List[Project]:
        if project_id is not None:
            payload = await self.gateway.get_project(project_id)
            return [Project.model_validate(payload)]
        result = await self.gateway.auto_paginate(
            self.gateway.list_projects,
            items_of("projects"),
            {"is_active": True},
            max_pages=self.max_pages,
        )
        return result.parse(Project)

    async def get_user_rates(self, user_id: Optional[int] = None) -> List[UserRate]:
        self.load_config()
        return [self._user_rate(user) for user in await self._fetch_users(user_id)]

    async def get_project_rates(
        self, project_id: Optional[int] = None
    ) -> List[ProjectRate]:
        self.load_config()
        return [
            self._project_rate(project)
            for project in await self._fetch_projects(project_id)
        ]

    async def get_user_rate_table(self) -> Dict[int, RateInfo]:
        """Cost rate of every active user, keyed by user id"""
        return {rate.user_id: rate.cost_rate for rate in await self.get_user_rates()}

    async def get_rates(
        self,
        user_id: Optional[int] = None,
        project_id: Optional[int] = None,
        include_all_users: bool = False,
        include_all_projects: bool = False,
    ) -> RatesResponse:
        """
        Rates for the requested users and projects.

        With no selector at all, every active user and project is returned.
        """
        self._warnings = []
        # Config errors from an earlier call are reported again
        self.reload()
        _, config_loaded = self.load_config()

        response = RatesResponse(config_loaded=config_loaded)
        nothing_selected = not (
            user_id or project_id or include_all_users or include_all_projects
        )

        if user_id or include_all_users or nothing_selected:
            response.users = await self.get_user_rates(user_id)
        if project_id or include_all_projects or nothing_selected:
            response.projects = await self.get_project_rates(project_id)

        response.warnings = list(self._warnings)
        return response

    def pop_warnings(self) -> List[str]:
        """Warnings gathered since the last call, then cleared"""
        warnings, self._warnings = self._warnings, []
        return warnings
