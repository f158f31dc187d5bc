"""Services package for diet_parser.

This package contains service wiring with dependency injection support.

Modules:
    factory: ServiceFactory for centralized dependency management
"""

from .factory import ServiceFactory

__all__ = ["ServiceFactory"]
