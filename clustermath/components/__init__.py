"""
System components for clustermath.

This module provides the configuration and server components.
"""

from clustermath.components.config import Config, ConfigManager
from clustermath.components.server import Server, ServerManager
