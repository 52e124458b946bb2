"""
Configuration management for the TXO strategy risk engine
Handles loading and validation of configuration parameters from config.yaml
"""

import copy
import logging
import warnings
from pathlib import Path
from typing import Dict, Any, Optional, List

import yaml


class ConfigurationError(Exception):
    """Custom exception for configuration-related errors"""
    pass


# Built-in values used for every key missing from config.yaml and as the
# whole configuration when no file can be found.
DEFAULT_CONFIG: Dict[str, Any] = {
    'market': {
        'multiplier': 50,
        'margin_a': 50000,
        'margin_b': 25000,
        'strike_spacing': 50,
    },
    'calendar': {
        'holidays': [],
        'timezone': 'Asia/Taipei',
    },
    'sweep': {
        'range_points': 4000,
        'step_points': 10,
    },
    'defaults': {
        'current_price': 32000,
        'risk_free_rate': 2.0,
        'vix': 16,
        'vol_correction': 50,
        'strike': 32000,
        'premium': 350,
        'lower_strike': 31800,
        'lower_premium': 200,
        'higher_strike': 32200,
        'higher_premium': 80,
        'middle_strike': 32000,
        'middle_premium': 150,
        'call_premium': 250,
        'put_premium': 280,
        'put_k1': 31600,
        'put_k1_premium': 40,
        'put_k2': 31800,
        'put_k2_premium': 120,
        'call_k3': 32200,
        'call_k3_premium': 110,
        'call_k4': 32400,
        'call_k4_premium': 30,
        'lower_put_k': 31800,
        'lower_put_premium': 150,
        'center_strike': 32000,
        'center_put_premium': 300,
        'center_call_premium': 320,
        'higher_call_k': 32200,
        'higher_call_premium': 140,
        'custom_legs': [
            {'id': 1, 'action': 'buy', 'type': 'call', 'strike': 32000,
             'premium': 350, 'quantity': 1},
        ],
        'simulation_a_legs': [],
        'simulation_b_legs': [],
        'simulation_c_legs': [],
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'file': None,
    },
}


class Config:
    """
    Main configuration class for the strategy risk engine
    Loads parameters from config.yaml and provides structured access
    """

    def __init__(self, config_path: Optional[str] = None, setup_logging: bool = True):
        """
        Initialize configuration with automatic YAML loading

        Args:
            config_path: Path to config.yaml file. If None, uses default location.
            setup_logging: Whether to configure the root logger from the file.
        """
        # Set up project paths - try multiple possible locations
        possible_roots = [
            Path(__file__).parent.parent.parent.parent,  # src/txo_risk/config/settings.py -> project_root
            Path.cwd(),
        ]

        self.PROJECT_ROOT = None
        for root in possible_roots:
            if (root / "config.yaml").exists():
                self.PROJECT_ROOT = root
                break

        if self.PROJECT_ROOT is None:
            self.PROJECT_ROOT = possible_roots[0]

        self.CONFIG_FILE = Path(config_path) if config_path else self.PROJECT_ROOT / "config.yaml"

        self._config_data: Dict[str, Any] = {}
        self._loaded = False

        self.load_configuration()

        if setup_logging:
            self._setup_logging()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Build a configuration directly from a dictionary (no file access)"""
        instance = cls.__new__(cls)
        instance._config_data = copy.deepcopy(data)
        instance._loaded = True
        instance.PROJECT_ROOT = Path.cwd()
        instance.CONFIG_FILE = None
        return instance

    def load_configuration(self) -> None:
        """Load configuration from YAML file with error handling"""
        if not self.CONFIG_FILE.exists():
            raise ConfigurationError(f"Configuration file not found: {self.CONFIG_FILE}")

        try:
            with open(self.CONFIG_FILE, 'r', encoding='utf-8') as file:
                self._config_data = yaml.safe_load(file) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Error parsing YAML configuration: {e}")
        except OSError as e:
            raise ConfigurationError(f"Error loading configuration: {e}")

        if not isinstance(self._config_data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.CONFIG_FILE}")

        self._loaded = True

    def _get_config_value(self, path: str, default: Any = None, required: bool = False) -> Any:
        """
        Helper method to get nested configuration values

        Args:
            path: Dot-separated path to configuration value (e.g., 'market.margin_a')
            default: Default value if path not found
            required: Whether to raise exception if value not found

        Returns:
            Configuration value or default
        """
        keys = path.split('.')
        value = self._config_data

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            if required:
                raise ConfigurationError(f"Required configuration parameter '{path}' not found")
            return default

    def _section(self, name: str) -> Dict[str, Any]:
        """Top-level section as a mapping; an empty or missing section reads as {}"""
        section = self._get_config_value(name, default={})
        if section is None:
            return {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Configuration section '{name}' must be a mapping")
        return section

    def _setup_logging(self) -> None:
        """Configure logging based on configuration parameters"""
        log_level = getattr(logging, self.logging.level.upper(), logging.INFO)
        handlers: List[logging.Handler] = [logging.StreamHandler()]

        if self.logging.file:
            log_file = Path(self.logging.file)
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_file))

        logging.basicConfig(level=log_level, format=self.logging.format, handlers=handlers)

    # =============================================================================
    # CONFIGURATION SECTION PROPERTIES
    # =============================================================================

    @property
    def market(self) -> 'MarketConfig':
        """Access to contract and margin parameters"""
        return MarketConfig(self._section('market'))

    @property
    def calendar(self) -> 'CalendarConfig':
        """Access to exchange calendar configuration"""
        return CalendarConfig(self._section('calendar'))

    @property
    def sweep(self) -> 'SweepConfig':
        """Access to price sweep configuration"""
        return SweepConfig(self._section('sweep'))

    @property
    def defaults(self) -> 'DefaultsConfig':
        """Access to default application inputs"""
        return DefaultsConfig(self._section('defaults'))

    @property
    def logging(self) -> 'LoggingConfig':
        """Access to logging configuration"""
        return LoggingConfig(self._section('logging'))


# =============================================================================
# CONFIGURATION SECTION CLASSES
# =============================================================================

class MarketConfig:
    """Contract multiplier and exchange margin parameters"""

    def __init__(self, config: Dict[str, Any]):
        self._config = config
        self._defaults = DEFAULT_CONFIG['market']

    @property
    def multiplier(self) -> float:
        """Currency units per index point"""
        return float(self._config.get('multiplier', self._defaults['multiplier']))

    @property
    def margin_a(self) -> float:
        """Exchange margin A value (changes with exchange announcements)"""
        return float(self._config.get('margin_a', self._defaults['margin_a']))

    @property
    def margin_b(self) -> float:
        """Exchange margin B value, the per-leg floor"""
        return float(self._config.get('margin_b', self._defaults['margin_b']))

    @property
    def strike_spacing(self) -> int:
        return int(self._config.get('strike_spacing', self._defaults['strike_spacing']))


class CalendarConfig:
    """Exchange calendar configuration"""

    def __init__(self, config: Dict[str, Any]):
        self._config = config

    @property
    def holidays(self) -> List[str]:
        # YAML turns unquoted ISO dates into date objects
        return [str(day) for day in (self._config.get('holidays') or [])]

    @property
    def timezone(self) -> str:
        return self._config.get('timezone', DEFAULT_CONFIG['calendar']['timezone'])


class SweepConfig:
    """Price sweep used by the generic portfolio strategy"""

    def __init__(self, config: Dict[str, Any]):
        self._config = config

    @property
    def range_points(self) -> float:
        return float(self._config.get('range_points', DEFAULT_CONFIG['sweep']['range_points']))

    @property
    def step_points(self) -> float:
        return float(self._config.get('step_points', DEFAULT_CONFIG['sweep']['step_points']))


class DefaultsConfig:
    """Default application inputs (strategy parameters and market snapshot)"""

    def __init__(self, config: Dict[str, Any]):
        self._config = config

    def as_inputs(self) -> Dict[str, Any]:
        """Full input dictionary: built-in defaults overlaid with configured values"""
        inputs = copy.deepcopy(DEFAULT_CONFIG['defaults'])
        inputs.update(copy.deepcopy(self._config))
        return inputs

    @property
    def current_price(self) -> float:
        return float(self._config.get('current_price', DEFAULT_CONFIG['defaults']['current_price']))

    @property
    def risk_free_rate(self) -> float:
        return float(self._config.get('risk_free_rate', DEFAULT_CONFIG['defaults']['risk_free_rate']))

    @property
    def vix(self) -> float:
        return float(self._config.get('vix', DEFAULT_CONFIG['defaults']['vix']))

    @property
    def vol_correction(self) -> float:
        return float(self._config.get('vol_correction', DEFAULT_CONFIG['defaults']['vol_correction']))


class LoggingConfig:
    """Configuration for logging settings"""

    def __init__(self, config: Dict[str, Any]):
        self._config = config

    @property
    def level(self) -> str:
        return self._config.get('level', 'INFO')

    @property
    def format(self) -> str:
        return self._config.get('format', DEFAULT_CONFIG['logging']['format'])

    @property
    def file(self) -> Optional[str]:
        return self._config.get('file')


# =============================================================================
# GLOBAL CONFIGURATION INSTANCE
# =============================================================================

config: Optional[Config] = None


def get_config() -> Config:
    """
    Get the global configuration instance

    Falls back to the built-in defaults when config.yaml cannot be loaded.

    Returns:
        Config: Global configuration instance
    """
    global config

    if config is None:
        try:
            config = Config()
        except ConfigurationError as e:
            warnings.warn(f"Failed to load configuration, using built-in defaults: {e}")
            config = Config.from_dict(DEFAULT_CONFIG)

    return config


def set_config(new_config: Optional[Config]) -> None:
    """Replace the global configuration instance (None forces a reload on next access)"""
    global config
    config = new_config
