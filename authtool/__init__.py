"""authtool - inspect OAuth2/OIDC authorization code + PKCE flows against any provider."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("authtool")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = ["__version__"]
