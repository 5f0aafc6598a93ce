from .health import HealthTracker
from .registry import DEFAULT_PROVIDERS, Provider, ProviderRegistry

__all__ = ["DEFAULT_PROVIDERS", "HealthTracker", "Provider", "ProviderRegistry"]
