from .base import ProviderClient
from .oauth2_client import OAuth2ProviderClient
from .registry import ProviderRegistry

__all__ = ["OAuth2ProviderClient", "ProviderClient", "ProviderRegistry"]
