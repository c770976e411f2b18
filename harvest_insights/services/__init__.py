"""Gateway, cache, configuration, rates and entity resolution services.

Usage:
    from harvest_insights.services import ApiGateway

    async with ApiGateway.from_config(config) as gateway:
        projects = await gateway.list_projects({"is_active": True})
"""

from harvest_insights.services.cache_service import ResponseCache
from harvest_insights.services.config_manager import ConfigManager
from harvest_insights.services.entity_resolver import EntityResolver
from harvest_insights.services.gateway import ApiGateway, ApiResponse, SharedResources
from harvest_insights.services.rates_service import RatesService

__all__ = [
    "ApiGateway",
    "ApiResponse",
    "ConfigManager",
    "EntityResolver",
    "RatesService",
    "ResponseCache",
    "SharedResources",
]
