"""
bootgate - Ordered database bootstrap and process supervision for api and frontend hosts
"""

__version__ = "0.1.0"

from .core import HostBootstrapper
from .errors import BootstrapError

__all__ = ["HostBootstrapper", "BootstrapError"]
