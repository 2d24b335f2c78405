"""Multi-source wallet portfolio resolution for Ethereum mainnet."""

from .config import EngineSettings, load_settings
from .coordinator import RequestCoordinator, build_coordinator
from .errors import InvalidAddress, ResolverError
from .schemas import PortfolioSnapshot, ResolvedToken

__version__ = "0.1.0"

__all__ = [
    "EngineSettings",
    "load_settings",
    "RequestCoordinator",
    "build_coordinator",
    "InvalidAddress",
    "ResolverError",
    "PortfolioSnapshot",
    "ResolvedToken",
]
