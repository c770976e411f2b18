"""Unit tests for rate resolution and provenance"""

from unittest.mock import AsyncMock

import pytest

from harvest_insights.models.config import HarvestSettings, RatesSettings
from harvest_insights.models.harvest import Project, User
from harvest_insights.models.rates import RateInfo, RateSource
from harvest_insights.services.gateway import ApiGateway, SharedResources
from harvest_insights.services.rates_service import (
    RatesService,
    describe_rate_source,
    load_rates_config,
)
from harvest_insights.utils.exceptions import ConfigLoadError

RATES_YAML = """
user_overrides:
  "2":
    cost_rate: 60
project_overrides:
  "20":
    hourly_rate: 140
defaults:
  cost_rate: 0
  billable_rate: 110
"""


@pytest.fixture(autouse=True)
def no_env_rate(monkeypatch):
    monkeypatch.delenv("DEFAULT_COST_RATE", raising=False)


@pytest.fixture
def gateway():
    return ApiGateway(
        HarvestSettings(access_token="t", account_id="1"), shared=SharedResources()
    )


@pytest.fixture
def rates_file(tmp_path):
    path = tmp_path / "rates.yaml"
    path.write_text(RATES_YAML)
    return path


def make_user(user_id, cost_rate=None, **kwargs):
    return User(id=user_id, first_name="User", last_name=str(user_id), cost_rate=cost_rate, **kwargs)


def make_project(project_id, **kwargs):
    return Project(
        id=project_id, name=f"Project {project_id}", client={"id": 1, "name": "Acme"}, **kwargs
    )


class TestCostRateChain:
    def test_api_rate_wins(self, gateway, rates_file):
        service = RatesService(gateway, RatesSettings(config_path=str(rates_file)))

        info = service.resolve_cost_rate(make_user(2, cost_rate=45))

        assert info.rate == 45
        assert info.source == RateSource.HARVEST_API

    def test_user_override(self, gateway, rates_file):
        service = RatesService(gateway, RatesSettings(config_path=str(rates_file)))

        info = service.resolve_cost_rate(make_user(2))

        assert info.rate == 60
        assert info.source == RateSource.CONFIG_FILE
        assert info.source_detail == str(rates_file)

    def test_file_default(self, gateway, tmp_path):
        path = tmp_path / "rates.yaml"
        path.write_text("defaults:\n  cost_rate: 40\n")
        service = RatesService(gateway, RatesSettings(config_path=str(path)))

        info = service.resolve_cost_rate(make_user(3))

        assert info.rate == 40
        assert info.source == RateSource.CONFIG_FILE

    def test_env_default(self, gateway, rates_file, monkeypatch):
        monkeypatch.setenv("DEFAULT_COST_RATE", "35.5")
        service = RatesService(gateway, RatesSettings(config_path=str(rates_file)))

        info = service.resolve_cost_rate(make_user(3))

        assert info.rate == 35.5
        assert info.source == RateSource.ENV_DEFAULT
        assert info.source_detail == "DEFAULT_COST_RATE"

    def test_configured_default_beats_env(self, gateway, tmp_path, monkeypatch):
        monkeypatch.setenv("DEFAULT_COST_RATE", "35")
        service = RatesService(
            gateway,
            RatesSettings(config_path=str(tmp_path / "missing.yaml"), default_cost_rate=42),
        )

        info = service.resolve_cost_rate(make_user(3))

        assert info.rate == 42
        assert info.source_detail == "rates.default_cost_rate"

    def test_fallback_zero_warns(self, gateway, rates_file):
        service = RatesService(gateway, RatesSettings(config_path=str(rates_file)))

        info = service.resolve_cost_rate(make_user(3))

        assert info.rate == 0
        assert info.source == RateSource.FALLBACK_ZERO
        assert service.pop_warnings() == ["User User 3 (3) has no cost rate configured"]
        assert service.pop_warnings() == []

    def test_invalid_env_rate_ignored(self, gateway, tmp_path, monkeypatch):
        monkeypatch.setenv("DEFAULT_COST_RATE", "lots")
        service = RatesService(
            gateway, RatesSettings(config_path=str(tmp_path / "missing.yaml"))
        )

        assert service.default_cost_rate == 0


class TestProjectRate:
    def test_non_billable_has_no_rate(self, gateway, rates_file):
        service = RatesService(gateway, RatesSettings(config_path=str(rates_file)))

        assert service.resolve_project_rate(make_project(20, is_billable=False)) is None

    def test_chain(self, gateway, rates_file):
        service = RatesService(gateway, RatesSettings(config_path=str(rates_file)))

        api = service.resolve_project_rate(make_project(20, hourly_rate=150))
        override = service.resolve_project_rate(make_project(20))
        default = service.resolve_project_rate(make_project(21))

        assert (api.rate, api.source) == (150, RateSource.HARVEST_API)
        assert (override.rate, override.source) == (140, RateSource.CONFIG_FILE)
        assert (default.rate, default.source) == (110, RateSource.CONFIG_FILE)


class TestConfigFile:
    def test_missing_file_uses_defaults(self, gateway, tmp_path):
        service = RatesService(
            gateway, RatesSettings(config_path=str(tmp_path / "missing.yaml"))
        )

        config, loaded = service.load_config()

        assert loaded is False
        assert config.defaults.cost_rate == 0

    def test_unparseable_file_warns(self, gateway, tmp_path):
        path = tmp_path / "rates.yaml"
        path.write_text("user_overrides: [unclosed")
        service = RatesService(gateway, RatesSettings(config_path=str(path)))

        _, loaded = service.load_config()

        assert loaded is False
        assert len(service.pop_warnings()) == 1

    def test_load_rates_config_raises(self, tmp_path):
        path = tmp_path / "rates.yaml"
        path.write_text("defaults:\n  cost_rate: not-a-number\n")

        with pytest.raises(ConfigLoadError):
            load_rates_config(path)

    def test_json_file_accepted(self, tmp_path):
        path = tmp_path / "rates.json"
        path.write_text('{"user_overrides": {"5": {"cost_rate": 80}}}')

        config = load_rates_config(path)

        assert config.user_overrides["5"].cost_rate == 80


def test_describe_rate_source():
    assert describe_rate_source(
        RateInfo(rate=1, source=RateSource.HARVEST_API, source_detail="user.cost_rate")
    ) == "From Harvest API (user.cost_rate)"
    assert describe_rate_source(RateInfo(rate=0, source=RateSource.FALLBACK_ZERO)) == (
        "No rate configured (using 0)"
    )


class TestGetRates:
    @pytest.mark.asyncio
    async def test_nothing_selected_returns_everything(self, gateway, rates_file):
        gateway.list_users = AsyncMock(
            return_value={
                "users": [
                    {"id": 1, "first_name": "Ann", "last_name": "Lee", "cost_rate": 50},
                    {"id": 2, "first_name": "Bo", "last_name": "Kim"},
                ],
                "next_page": None,
            }
        )
        gateway.list_projects = AsyncMock(
            return_value={
                "projects": [
                    {"id": 20, "name": "Site", "client": {"id": 1, "name": "Acme"}, "budget": 100, "budget_by": "person"}
                ],
                "next_page": None,
            }
        )
        service = RatesService(gateway, RatesSettings(config_path=str(rates_file)))

        response = await service.get_rates()

        assert response.config_loaded is True
        assert [u.cost_rate.rate for u in response.users] == [50, 60]
        assert response.projects[0].hourly_rate.rate == 140
        assert response.projects[0].budget_by == "person"
        assert response.warnings == []

    @pytest.mark.asyncio
    async def test_single_user(self, gateway, tmp_path):
        gateway.get_user = AsyncMock(
            return_value={"id": 9, "first_name": "No", "last_name": "Rate"}
        )
        service = RatesService(
            gateway, RatesSettings(config_path=str(tmp_path / "missing.yaml"))
        )

        response = await service.get_rates(user_id=9)

        gateway.get_user.assert_awaited_once_with(9)
        assert response.projects is None
        assert response.users[0].cost_rate.source == RateSource.FALLBACK_ZERO
        assert response.warnings == ["User No Rate (9) has no cost rate configured"]

    @pytest.mark.asyncio
    async def test_rate_table(self, gateway, rates_file):
        gateway.list_users = AsyncMock(
            return_value={"users": [{"id": 2, "first_name": "Bo", "last_name": "Kim"}], "next_page": None}
        )
        service = RatesService(gateway, RatesSettings(config_path=str(rates_file)))

        table = await service.get_user_rate_table()

        assert table[2].rate == 60
