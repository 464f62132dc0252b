"""
Warmstack: long-lived worker servers in containers

Starts named worker server instances once and keeps them warm, so later
sessions connect to an already running server instead of paying startup cost.
"""

__version__ = "0.1.0"
__author__ = "Warmstack Contributors"

from .config import WarmstackConfig
from .logging_config import setup_logging
from .manager import InstanceManager, StartOptions

__all__ = [
    "InstanceManager",
    "StartOptions",
    "WarmstackConfig",
    "setup_logging",
]
