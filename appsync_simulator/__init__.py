"""
Local AppSync-style GraphQL simulator.

Serves GraphQL queries and mutations over HTTP and the AppSync realtime
subscription protocol over WebSocket from a single local listener.
"""

from .auth.validators import AllowAllAuthValidator, ApiKeyAuthValidator, AuthValidator
from .config import SimulatorConfig, get_config
from .exceptions import PortUnavailableError, SimulatorError
from .schema import SimulatorSchema
from .simulator import SimulatorServer

__version__ = "0.1.0"

__all__ = [
    "AllowAllAuthValidator",
    "ApiKeyAuthValidator",
    "AuthValidator",
    "PortUnavailableError",
    "SimulatorConfig",
    "SimulatorError",
    "SimulatorSchema",
    "SimulatorServer",
    "get_config",
]
