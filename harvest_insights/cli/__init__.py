"""Harvest Insights CLI.

Usage:
    python -m harvest_insights.cli resolve "Acme"
    python -m harvest_insights.cli profitability --from 2024-01-01 --to 2024-01-31 -g client
    python -m harvest_insights.cli utilization --from 2024-01-01 --to 2024-01-31
    python -m harvest_insights.cli aggregate --from 2024-01-01 --to 2024-01-31 -g project
    python -m harvest_insights.cli budget --from 2024-01-01 --to 2024-03-31
    python -m harvest_insights.cli rates --all-users
    python -m harvest_insights.cli status --check
"""

import typer

from harvest_insights.cli.analytics import (
    aggregate_command,
    budget_command,
    profitability_command,
    utilization_command,
)
from harvest_insights.cli.directory import rates_command, resolve_command, status_command

app = typer.Typer(help="Harvest Insights: analytics over the Harvest time-tracking API")

app.command(name="resolve")(resolve_command)
app.command(name="profitability")(profitability_command)
app.command(name="utilization")(utilization_command)
app.command(name="aggregate")(aggregate_command)
app.command(name="budget")(budget_command)
app.command(name="rates")(rates_command)
app.command(name="status")(status_command)

__all__ = [
    "app",
    "aggregate_command",
    "budget_command",
    "profitability_command",
    "rates_command",
    "resolve_command",
    "status_command",
    "utilization_command",
]
