from .client import UpstreamClient
from .errors import CredentialMissing, FetchError, UpstreamError, UpstreamUnavailable
from .settings import FetchConfig, load_fetch_config

__all__ = [
    "UpstreamClient",
    "FetchConfig",
    "load_fetch_config",
    "FetchError",
    "CredentialMissing",
    "UpstreamUnavailable",
    "UpstreamError",
]
