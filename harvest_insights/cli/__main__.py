"""CLI entry point: python -m harvest_insights.cli"""

from harvest_insights.cli import app

if __name__ == "__main__":
    app()
