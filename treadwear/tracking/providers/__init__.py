"""Activity data providers.

Each provider implements the ActivityDataProvider ABC and supplies hourly
step and distance samples for a calendar day.

Available providers:
    StaticActivityProvider:    in-memory samples (development, tests)
    AppleHealthExportProvider: Apple Health export.xml
"""

from treadwear.tracking.providers.apple_health import AppleHealthExportProvider
from treadwear.tracking.providers.static import StaticActivityProvider

__all__ = [
    "AppleHealthExportProvider",
    "StaticActivityProvider",
]

# Registry: source slug → provider class
PROVIDER_REGISTRY: dict[str, type] = {
    "static": StaticActivityProvider,
    "apple_health": AppleHealthExportProvider,
}


def get_provider(source_id: str) -> type:
    """Return the provider class for a source slug.

    Raises:
        KeyError: If the source is not registered.
    """
    if source_id not in PROVIDER_REGISTRY:
        raise KeyError(
            f"No activity provider registered for source '{source_id}'. "
            f"Available: {list(PROVIDER_REGISTRY)}"
        )
    return PROVIDER_REGISTRY[source_id]
