"""
Configuration management for clustermath.

This module provides functionality for managing configuration,
including loading from environment variables, configuration files and
default values.
"""

import os
import json
import logging
import threading
from typing import Dict, Optional, Any
from copy import deepcopy
import yaml

from clustermath.utils.general import to_bool, to_int

# Set up logging
logger = logging.getLogger(__name__)

LOG_LEVELS = ('debug', 'info', 'warn', 'warning', 'error', 'critical')


def _env(name: str, current: Any, convert=None) -> Any:
    """
    Environment override for a single value.

    Unset variables, and values the converter rejects, keep the current value.
    """
    if name not in os.environ:
        return current
    raw = os.environ[name]
    if convert is None:
        return raw
    value = convert(raw)
    if value is None:
        logger.warning(f"Ignoring invalid value for {name}: {raw!r}")
        return current
    return value


def _deep_update(target: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            target[key] = _deep_update(target[key], value)
        else:
            target[key] = value
    return target


class Config:
    """
    Layered configuration: defaults, environment, overrides, inferred values.
    """

    def __init__(self, overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration.

        Args:
            overrides: Optional configuration overrides
        """
        self._lock = threading.RLock()
        self._config = {}
        self._initialized = False

        self.load_config(overrides)

    def load_config(self, overrides: Optional[Dict[str, Any]] = None) -> None:
        """
        Load configuration from all sources.

        Args:
            overrides: Optional configuration overrides
        """
        with self._lock:
            config = self._get_defaults()
            config = self._apply_env_vars(config)

            if overrides:
                config = self._apply_overrides(config, overrides)

            config = self._apply_inferred_values(config)

            self._config = config
            self._initialized = True

            logger.info("Configuration loaded")

    def _get_defaults(self) -> Dict[str, Any]:
        """
        Get default configuration values.

        Returns:
            Default configuration
        """
        return {
            # Server
            'server': {
                'port': 8080,
                'host': 'localhost'
            },

            # Hierarchical clustering
            'hierarchical': {
                'method': 'average-between',
                'measure': 'SEUCLID',
                'power': 2,
                'root': 2,
                'present': 1,
                'absent': 0,
                'standardize': 'none',
                'standardize-by': 'variable',
                'transform': {
                    'absolute': False,
                    'change-sign': False,
                    'rescale': False
                },
                'display': {
                    'mode': 'all',
                    'start': 1,
                    'stop': None,
                    'step': 1,
                    'k': None
                },
                'membership': {
                    'mode': 'none',
                    'k': None,
                    'min-k': None,
                    'max-k': None
                }
            },

            # Two-step clustering
            'twostep': {
                'distance': 'log-likelihood',
                'standardize': True,
                'max-branch': 8,
                'max-depth': 3,
                'initial-threshold': 0.0,  # 0 or less starts at 0.5
                'noise': False,
                'noise-threshold': 0.25,   # fraction of the largest sub-cluster
                'seed': 42,
                'clusters': {
                    'mode': 'auto',
                    'fixed-k': 5,
                    'max-k': 15,
                    'criterion': 'bic'
                }
            },

            # Logging
            'logging': {
                'level': 'warn'
            }
        }

    def _apply_env_vars(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply environment variables to configuration.

        Args:
            config: Current configuration

        Returns:
            Updated configuration
        """
        config = deepcopy(config)

        # Server
        config['server']['port'] = _env('PORT', config['server']['port'], to_int)
        config['server']['host'] = _env('HOST', config['server']['host'])

        # Hierarchical
        hierarchical = config['hierarchical']
        hierarchical['method'] = _env('CLUSTER_METHOD', hierarchical['method'])
        hierarchical['measure'] = _env('CLUSTER_MEASURE', hierarchical['measure'])

        # Two-step
        twostep = config['twostep']
        twostep['distance'] = _env('TWOSTEP_DISTANCE', twostep['distance'])
        twostep['max-branch'] = _env('TWOSTEP_MAX_BRANCH', twostep['max-branch'], to_int)
        twostep['max-depth'] = _env('TWOSTEP_MAX_DEPTH', twostep['max-depth'], to_int)
        twostep['seed'] = _env('TWOSTEP_SEED', twostep['seed'], to_int)
        twostep['noise'] = _env('TWOSTEP_NOISE', twostep['noise'], to_bool)
        twostep['clusters']['max-k'] = _env('TWOSTEP_MAX_K', twostep['clusters']['max-k'], to_int)

        # Logging
        config['logging']['level'] = _env('LOG_LEVEL', config['logging']['level']).lower()

        return config

    def _apply_overrides(self, config: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep-merge configuration overrides.

        Args:
            config: Current configuration
            overrides: Configuration overrides

        Returns:
            Updated configuration
        """
        return _deep_update(deepcopy(config), deepcopy(overrides))

    def _apply_inferred_values(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply inferred configuration values.

        Args:
            config: Current configuration

        Returns:
            Updated configuration
        """
        config = deepcopy(config)

        config['server-url'] = f"http://{config['server']['host']}:{config['server']['port']}"

        # Leaf capacity of a full CF-tree
        twostep = config.get('twostep', {})
        branch, depth = to_int(twostep.get('max-branch')), to_int(twostep.get('max-depth'))
        if branch and depth:
            twostep['capacity'] = branch ** depth

        level = str(config.get('logging', {}).get('level', 'warn')).lower()
        if level not in LOG_LEVELS:
            logger.warning(f"Unknown log level {level!r}, using 'warn'")
            config['logging']['level'] = 'warn'

        return config

    def get(self, path: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            path: Configuration path (dot-separated)
            default: Default value if not found

        Returns:
            Configuration value, or default if not found
        """
        if not self._initialized:
            self.load_config()

        value = self._config
        for component in path.split('.'):
            if isinstance(value, dict) and component in value:
                value = value[component]
            else:
                return default

        return value

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value.

        Args:
            path: Configuration path (dot-separated)
            value: Configuration value
        """
        with self._lock:
            if not self._initialized:
                self.load_config()

            components = path.split('.')
            config = self._config
            for component in components[:-1]:
                if not isinstance(config.get(component), dict):
                    config[component] = {}
                config = config[component]

            config[components[-1]] = value

    def section(self, name: str, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Copy of a top-level section with request-level overrides merged in.

        Args:
            name: Section name (e.g. 'hierarchical')
            overrides: Values to deep-merge over the section

        Returns:
            Section dictionary
        """
        base = deepcopy(self.get(name, {})) or {}
        if overrides:
            base = _deep_update(base, deepcopy(overrides))
        return base

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert configuration to a dictionary.

        Returns:
            Configuration dictionary
        """
        if not self._initialized:
            self.load_config()

        return deepcopy(self._config)

    def save_to_file(self, filepath: str) -> None:
        """
        Save configuration to a file.

        Args:
            filepath: Path to save configuration (.json, .yaml or .yml)
        """
        if not self._initialized:
            self.load_config()

        if filepath.endswith('.json'):
            with open(filepath, 'w') as f:
                json.dump(self._config, f, indent=2)
        elif filepath.endswith('.yaml') or filepath.endswith('.yml'):
            with open(filepath, 'w') as f:
                yaml.safe_dump(self._config, f, default_flow_style=False)
        else:
            raise ValueError(f"Unsupported file format: {filepath}")

    def load_from_file(self, filepath: str) -> None:
        """
        Load configuration overrides from a file.

        Args:
            filepath: Path to load configuration from (.json, .yaml or .yml)
        """
        if filepath.endswith('.json'):
            with open(filepath, 'r') as f:
                overrides = json.load(f)
        elif filepath.endswith('.yaml') or filepath.endswith('.yml'):
            with open(filepath, 'r') as f:
                overrides = yaml.safe_load(f)
        else:
            raise ValueError(f"Unsupported file format: {filepath}")

        self.load_config(overrides or {})


class ConfigManager:
    """
    Singleton manager for configuration.
    """

    _instance = None
    _lock = threading.RLock()

    @classmethod
    def get_config(cls, overrides: Optional[Dict[str, Any]] = None) -> Config:
        """
        Get the configuration instance.

        Args:
            overrides: Optional configuration overrides

        Returns:
            Config instance
        """
        with cls._lock:
            if cls._instance is None:
                cls._instance = Config(overrides)
            elif overrides:
                cls._instance.load_config(overrides)

            return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the shared instance (used by tests)."""
        with cls._lock:
            cls._instance = None
