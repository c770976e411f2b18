"""Shared CLI utilities.

Config loading, error handling, async execution against a gateway and
result output for every command.
"""

import asyncio
import functools
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import structlog
import typer
from pydantic import BaseModel

from harvest_insights.models.analytics import DateRange
from harvest_insights.models.config import AppConfig
from harvest_insights.observability.context import correlation_id_context
from harvest_insights.observability.logging import configure_logging
from harvest_insights.services.config_manager import DEFAULT_CONFIG_PATH, ConfigManager
from harvest_insights.services.gateway import ApiGateway
from harvest_insights.utils.exceptions import ConfigValidationError

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable)
T = TypeVar("T")

DATE_FORMATS = ["%Y-%m-%d"]

CONFIG_OPTION = typer.Option(
    DEFAULT_CONFIG_PATH,
    "--config",
    "-c",
    help="Path to config YAML (falls back to HARVEST_* environment variables)",
)


def load_config(config_path: Path) -> AppConfig:
    """Load configuration and set up logging.

    Raises:
        typer.Exit: If configuration is invalid.
    """
    config_manager = ConfigManager(config_path=str(config_path))
    try:
        config = config_manager.load_config()
    except ConfigValidationError as e:
        typer.secho(f"Configuration Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    configure_logging(level=config.logging.level, json_output=config.logging.json_output)
    return config


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling.

    Logs the failure and exits with status 1 and a red message.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except Exception as e:
            logger.exception("command_failed")
            typer.secho(f"Error: {e}", fg=typer.colors.RED)
            raise typer.Exit(code=1)

    return wrapper  # type: ignore[return-value]


def run_with_gateway(
    config: AppConfig,
    operation: Callable[[ApiGateway], Awaitable[T]],
    name: Optional[str] = None,
) -> T:
    """Run an async operation against a gateway sharing one HTTP session."""

    async def runner() -> T:
        async with ApiGateway.from_config(config) as gateway:
            return await operation(gateway)

    with correlation_id_context(name):
        return asyncio.run(runner())


def to_date_range(start: datetime, end: datetime) -> DateRange:
    try:
        return DateRange(from_date=start.date(), to_date=end.date())
    except ValueError as e:
        typer.secho(f"Invalid date range: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def print_result(result: BaseModel) -> None:
    """Print a result model in its wire shape"""
    typer.echo(result.model_dump_json(by_alias=True, indent=2))


def display_warnings(warnings: list) -> None:
    for warning in warnings:
        typer.secho(f"Warning: {warning}", fg=typer.colors.YELLOW, err=True)


def display_info(message: str) -> None:
    typer.secho(message, fg=typer.colors.CYAN)
