"""
Configuration Management

Utilities for loading the decision engine configuration with
environment variable substitution.
"""

import os
import yaml
from typing import Dict, Any, Optional
from pathlib import Path
import re


DEFAULT_CONFIG_NAME = 'engine'


class ConfigLoader:
    """
    Configuration loader with environment variable substitution.

    Supports loading YAML configuration files with environment variable
    substitution using the format ${VAR_NAME:-default_value}.
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing configuration files.
                       Defaults to the directory of this file.
        """
        if config_dir is None:
            config_dir = Path(__file__).parent
        self.config_dir = Path(config_dir)

    def load_config(self, config_name: str) -> Dict[str, Any]:
        """
        Load a configuration file with environment variable substitution.

        Args:
            config_name: Name of the configuration file (without .yaml extension)

        Returns:
            Dictionary containing the configuration

        Raises:
            FileNotFoundError: If the configuration file doesn't exist
            yaml.YAMLError: If the YAML is invalid
        """
        return self.load_file(self.config_dir / f"{config_name}.yaml")

    def load_file(self, config_path) -> Dict[str, Any]:
        """Load an explicit YAML file path."""
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as file:
            content = file.read()

        # Substitute environment variables
        content = self._substitute_env_vars(content)

        config = yaml.safe_load(content)

        return config or {}

    def _substitute_env_vars(self, content: str) -> str:
        """
        Substitute environment variables in the format ${VAR_NAME:-default}.

        Args:
            content: String content with environment variable placeholders

        Returns:
            String with environment variables substituted
        """
        pattern = r'\$\{([^}]+)\}'

        def replace_var(match):
            var_expr = match.group(1)

            if ':-' in var_expr:
                var_name, default_value = var_expr.split(':-', 1)
                return os.getenv(var_name.strip(), default_value)
            else:
                var_name = var_expr.strip()
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(f"Environment variable {var_name} is required but not set")
                return value

        return re.sub(pattern, replace_var, content)


# Global configuration loader instance
config_loader = ConfigLoader()


def load_engine_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the decision engine configuration.

    Args:
        config_path: Optional path to a YAML file. The bundled engine.yaml
                     is used when omitted.
    """
    if config_path is not None:
        return config_loader.load_file(config_path)
    return config_loader.load_config(DEFAULT_CONFIG_NAME)


def get_section(config: Dict[str, Any], section: str) -> Dict[str, Any]:
    """
    Get a configuration section, treating a missing or empty section as {}.

    Raises:
        KeyError: If the section exists but is not a mapping
    """
    value = config.get(section) or {}
    if not isinstance(value, dict):
        raise KeyError(f"Configuration section '{section}' must be a mapping")
    return value
