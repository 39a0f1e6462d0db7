"""
Fact/context building: turns stored farm state (plus an optional live weather
feed) into the immutable ``EvaluationContext`` the rules engine evaluates.

Modules
-------
builder        : ContextBuilder — per-source isolation, derived day counts.
weather_client : StoredWeatherProvider / OpenMeteoClient.
"""

from farm_advisor.context.builder import ContextBuilder, weather_provider_from_config
from farm_advisor.context.weather_client import OpenMeteoClient, StoredWeatherProvider

__all__ = [
    "ContextBuilder",
    "OpenMeteoClient",
    "StoredWeatherProvider",
    "weather_provider_from_config",
]
