"""
Structured logging package for the AppSync simulator.

All imports should use explicit paths like
'from appsync_simulator.structured_logging.enhanced_logging_config import get_logger'.

The package is named 'structured_logging' rather than 'logging' to avoid
namespace conflicts with Python's standard library logging module.
"""

__all__: list[str] = []
