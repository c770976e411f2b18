"""Directory commands: entity resolution, rates and gateway status."""

import json
from pathlib import Path
from typing import List, Optional

import typer

from harvest_insights.cli.utils import (
    CONFIG_OPTION,
    display_info,
    display_warnings,
    handle_errors,
    load_config,
    print_result,
    run_with_gateway,
)
from harvest_insights.models.entities import EntityResolutionParams, EntityType
from harvest_insights.observability.metrics import get_metrics_text
from harvest_insights.services.entity_resolver import EntityResolver
from harvest_insights.services.rates_service import RatesService


@handle_errors
def resolve_command(
    query: str = typer.Argument(..., help="Name to look up"),
    types: Optional[List[EntityType]] = typer.Option(
        None, "--type", "-t", help="Entity type to search, repeatable (default: all)"
    ),
    min_confidence: float = typer.Option(0.5, "--min-confidence"),
    limit: int = typer.Option(5, "--limit", help="Maximum results per type"),
    config_path: Path = CONFIG_OPTION,
):
    """Match a free-text name to clients, projects, users or tasks."""
    config = load_config(config_path)
    params = EntityResolutionParams(
        query=query,
        types=types or list(EntityType),
        min_confidence=min_confidence,
        limit=limit,
    )

    result = run_with_gateway(
        config,
        lambda gateway: EntityResolver(gateway, config.resolver).resolve(params),
        name="cli-resolve",
    )
    print_result(result)


@handle_errors
def rates_command(
    user_id: Optional[int] = typer.Option(None, "--user-id"),
    project_id: Optional[int] = typer.Option(None, "--project-id"),
    all_users: bool = typer.Option(False, "--all-users"),
    all_projects: bool = typer.Option(False, "--all-projects"),
    config_path: Path = CONFIG_OPTION,
):
    """Show cost and billable rates with where each one came from."""
    config = load_config(config_path)

    result = run_with_gateway(
        config,
        lambda gateway: RatesService(
            gateway, config.rates, max_pages=config.resolver.max_pages
        ).get_rates(
            user_id=user_id,
            project_id=project_id,
            include_all_users=all_users,
            include_all_projects=all_projects,
        ),
        name="cli-rates",
    )
    print_result(result)
    display_warnings(result.warnings)


@handle_errors
def status_command(
    check: bool = typer.Option(
        False, "--check", help="Call the API once to verify credentials"
    ),
    metrics: bool = typer.Option(
        False, "--metrics", help="Print Prometheus metrics recorded by the check"
    ),
    config_path: Path = CONFIG_OPTION,
):
    """Show gateway limits and cache settings, optionally checking access."""
    config = load_config(config_path)

    display_info(f"API: {config.harvest.base_url} (account {config.harvest.account_id})")
    display_info(
        f"Rate limit: {config.rate_limit.max_requests} requests / "
        f"{config.rate_limit.window_ms} ms"
    )
    cache_state = "enabled" if config.cache.enabled else "disabled"
    display_info(
        f"Cache: {cache_state}, {config.cache.max_size} entries, "
        f"TTL {config.cache.ttl_seconds:g}s"
    )

    if not check:
        return

    async def operation(gateway):
        company = await gateway.get_company()
        return company, gateway.get_rate_limit_status()

    company, status = run_with_gateway(config, operation, name="cli-status")
    typer.echo(
        json.dumps(
            {
                "company": company.get("name"),
                "rate_limit_remaining": status.remaining,
                "rate_limit_total": status.total,
            },
            indent=2,
        )
    )
    if metrics:
        typer.echo(get_metrics_text().decode("utf-8"))
