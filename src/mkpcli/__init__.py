from ._version import __version__
from .client import MarketplaceClient, MarketplaceError, MarketplaceHTTPError
from .marketplace import Marketplace

__all__ = [
    "Marketplace",
    "MarketplaceClient",
    "MarketplaceError",
    "MarketplaceHTTPError",
    "__version__",
]
