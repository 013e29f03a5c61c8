"""Configuration handler for lock fsck"""

import os
import logging
import yaml
from typing import Optional, Dict

from .errors import ConfigError
from .lock import LOCK_DIRECTORY
from .records import DEFAULT_LEASE_SECONDS

logger = logging.getLogger(__name__)


class Config:
    """Configuration handler"""

    DEFAULT_CONFIG_FILE = '.s3-lock-fsck.yml'

    @staticmethod
    def load_config(config_path: Optional[str] = None) -> Dict:
        """Load configuration from YAML file.

        Without an explicit path the default file in the working directory is
        used when present. An explicit path that does not exist is an error.
        """
        if config_path is None:
            config_path = os.path.join(os.getcwd(), Config.DEFAULT_CONFIG_FILE)
            if not os.path.exists(config_path):
                return {}
        elif not os.path.exists(config_path):
            raise ConfigError(f"config file not found: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"failed to load config file {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"config file {config_path} must contain a mapping")
        logger.debug(f"loaded config from {config_path}")
        return data

    @staticmethod
    def merge_config(file_config: Dict, cli_args: Dict) -> Dict:
        """Merge file config with CLI arguments, CLI args take precedence"""
        config = {
            'endpoint_url': cli_args.get('endpoint_url') or file_config.get('endpoint-url'),
            'region': cli_args.get('region') or file_config.get('region'),
            'lock_directory': file_config.get('lock-directory', LOCK_DIRECTORY),
            'lease_seconds': cli_args.get('lease_seconds'),
        }
        if config['lease_seconds'] is None:
            config['lease_seconds'] = file_config.get('lease-seconds', DEFAULT_LEASE_SECONDS)

        lease_seconds = config['lease_seconds']
        if not isinstance(lease_seconds, int) or isinstance(lease_seconds, bool) or lease_seconds < 0:
            raise ConfigError(f"lease-seconds must be a non-negative integer, got {lease_seconds!r}")
        if not isinstance(config['lock_directory'], str) or not config['lock_directory'].strip('/'):
            raise ConfigError(f"lock-directory must be a non-empty path, got {config['lock_directory']!r}")

        # Remove None values
        return {k: v for k, v in config.items() if v is not None}
