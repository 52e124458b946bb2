"""
Configuration package for the TXO strategy risk engine
"""

from .settings import (
    Config,
    ConfigurationError,
    DEFAULT_CONFIG,
    get_config,
    set_config,
)

__all__ = ['Config', 'ConfigurationError', 'DEFAULT_CONFIG', 'get_config', 'set_config']
