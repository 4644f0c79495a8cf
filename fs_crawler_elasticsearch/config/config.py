import os
import copy
import logging
from typing import Dict, Any

import yaml

from ..exceptions import ConfigurationError
from ..utils.durations import parse_duration
from ..utils.size_formatter import parse_size

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOLS = ('local', 'ftp', 'ssh')

DEFAULT_CONFIG = {
    'name': None,
    'fs': {
        'url': None,
        'update_rate': '15m',
        'includes': [],
        'excludes': ['*/~*'],
        'recursive': True,
        'index_content': True,
        'index_folders': True,
        'remove_deleted': True,
        'continue_on_error': True,
        'filename_as_id': False,
        'add_filesize': True,
        'attributes_support': False,
        'follow_symlinks': False,
        'ignore_above': None,
        'indexed_chars': 100000,
        'checksum': None,
        'max_retries': 3,
        'retry_delay_seconds': 0,
    },
    'server': {
        'protocol': 'local',
        'hostname': None,
        # Defaults to 21 for ftp and 22 for ssh
        'port': None,
        'username': None,
        'password': None,
        # Private key file for ssh
        'pem_path': None,
    },
    'elasticsearch': {
        'host': 'localhost',
        'port': 9200,
        'scheme': 'http',
        'username': None,
        'password': None,
        'index': None,
        'index_folder': None,
        'pipeline': None,
        'bulk_size': 100,
        'flush_interval': '5s',
        'byte_size': '10mb',
        'request_timeout': 300,
    },
    'database': {
        'path': 'data/crawler_state.duckdb',
        'threads': 2,
        'memory_limit': '1GB',
    },
    'logging': {
        'level': 'INFO',
        'file': 'logs/fs-crawler.log',
        'max_size_mb': 10,
        'backup_count': 5,
        'console': True,
    },
}

def get_base_dir():
    """Get the base directory for the application."""
    return os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged

def load_config(config_path=None) -> Dict[str, Any]:
    """Load configuration from file and merge it over the defaults."""
    base_dir = get_base_dir()
    config_locations = [
        os.path.join(base_dir, 'config', 'crawler-config.yaml'),  # Project config directory
        os.path.join(base_dir, 'crawler-config.yaml'),         # Current directory
        os.path.join(os.path.dirname(__file__), 'crawler-config.yaml'),  # Package directory
    ]

    if not config_path:
        for loc in config_locations:
            if os.path.exists(loc):
                config_path = loc
                break
    
    if not config_path or not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found in any of the expected locations: {config_locations}")
    
    with open(config_path, 'r') as f:
        try:
            user_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e

    if not isinstance(user_config, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping at top level")

    logger.debug(f"Loaded configuration from {config_path}")
    return build_config(user_config)

def build_config(user_config: Dict[str, Any]) -> Dict[str, Any]:
    """Merge user settings over DEFAULT_CONFIG and validate the result."""
    config = _merge(DEFAULT_CONFIG, user_config)
    validate_config(config)
    return config

def validate_config(config: Dict[str, Any]) -> None:
    """Fail fast on settings the crawler cannot run with.

    Raises:
        ConfigurationError: describing the first invalid setting found
    """
    # Imported here: the crawler package depends on this module's defaults
    from ..crawler.path_matcher import PathMatcher
    from ..crawler.checksum import new_digest

    if not config.get('name'):
        raise ConfigurationError("Job 'name' is required")

    fs_config = config.get('fs', {})
    if not fs_config.get('url'):
        raise ConfigurationError("'fs.url' is required")

    PathMatcher(fs_config.get('includes'), fs_config.get('excludes'))

    if fs_config.get('filename_as_id') and fs_config.get('recursive', True):
        raise ConfigurationError(
            "'fs.filename_as_id' can only be used with 'fs.recursive: false': "
            "same-named files in different directories would share an id"
        )

    protocol = config.get('server', {}).get('protocol', 'local')
    if protocol not in SUPPORTED_PROTOCOLS:
        raise ConfigurationError(
            f"Unsupported protocol '{protocol}', expected one of {', '.join(SUPPORTED_PROTOCOLS)}"
        )
    if protocol != 'local' and not config['server'].get('hostname'):
        raise ConfigurationError(f"'server.hostname' is required for protocol '{protocol}'")

    if fs_config.get('checksum'):
        try:
            new_digest(fs_config['checksum'])
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    es_config = config.get('elasticsearch', {})
    try:
        parse_duration(fs_config.get('update_rate'))
        parse_duration(es_config.get('flush_interval'))
        parse_size(es_config.get('byte_size'))
        if fs_config.get('ignore_above') is not None:
            parse_size(fs_config['ignore_above'])
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    if int(es_config.get('bulk_size', 0)) < 1:
        raise ConfigurationError("'elasticsearch.bulk_size' must be at least 1")
    if int(fs_config.get('max_retries', 0)) < 0:
        raise ConfigurationError("'fs.max_retries' must not be negative")

def get_index_names(config: Dict[str, Any]):
    """Return (docs_index, folders_index) for the job."""
    es_config = config.get('elasticsearch', {})
    index = es_config.get('index') or config['name']
    index_folder = es_config.get('index_folder') or f"{index}_folder"
    return index, index_folder
