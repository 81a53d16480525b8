"""Configuration loader with YAML support and environment variable substitution."""

import copy
import os
import re
from typing import Any, Dict
from urllib.parse import urlparse

import yaml

DEFAULT_CONFIG: Dict[str, Any] = {
    'graph': {
        'tenant': 'common',
        'redirect_uri': 'http://localhost:8400/',
        'scopes': ['user.read', 'notes.read'],
        'remember_sign_in': True,
    },
    'import': {
        'vault_path': './vault',
        'output_folder': 'OneNote',
        'sections': [],
        'skip_previously_imported': True,
        'import_incompatible_attachments': False,
        'attachment_folder': None,
        'frontmatter': False,
    },
    'advanced': {
        'request_timeout': 30,
        'verify_ssl': True,
        'max_retries': 5,
        'rate_limit_default_wait': 5.0,
        'max_rate_limit_retries': None,
        'retry_backoff_factor': 1.0,
        'stall_timeout': 600,
        'consecutive_failure_threshold': 5,
        'attachment_batch_size': 7,
        'attachment_batch_pause': 7.5,
        'page_batch_size': 50,
        'page_batch_pause': 5.0,
    },
    'state': {
        'path': '.onenote-importer.json',
    },
    'logging': {
        'level': None,
        'file': None,
    },
}

POSITIVE_INTEGERS = (
    'advanced.max_retries',
    'advanced.consecutive_failure_threshold',
    'advanced.attachment_batch_size',
    'advanced.page_batch_size',
)
POSITIVE_NUMBERS = (
    'advanced.request_timeout',
    'advanced.stall_timeout',
)
NON_NEGATIVE_NUMBERS = (
    'advanced.rate_limit_default_wait',
    'advanced.retry_backoff_factor',
    'advanced.attachment_batch_pause',
    'advanced.page_batch_pause',
)
BOOLEANS = (
    'graph.remember_sign_in',
    'import.skip_previously_imported',
    'import.import_incompatible_attachments',
    'import.frontmatter',
    'advanced.verify_ssl',
)


class ConfigLoader:
    """Handles loading and validation of configuration files."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

    @classmethod
    def load(cls, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from YAML file with environment variable substitution.

        Values missing from the file are filled in from DEFAULT_CONFIG.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Parsed configuration dictionary

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)

        if config_data is None:
            config_data = {}
        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a dictionary")

        config_data = cls._substitute_env_vars_recursive(config_data)
        return cls.with_defaults(config_data)

    @classmethod
    def with_defaults(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """Deep copy of DEFAULT_CONFIG overlaid with config."""
        return _deep_merge(copy.deepcopy(DEFAULT_CONFIG), config)

    @classmethod
    def validate(cls, config: Dict[str, Any]) -> None:
        """
        Validate configuration for required fields and correct values.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ValueError: If validation fails
        """
        cls._validate_required_field(config, 'graph.client_id')
        cls._validate_url(get_nested(config, 'graph.redirect_uri', DEFAULT_CONFIG['graph']['redirect_uri']),
                          'graph.redirect_uri')

        scopes = get_nested(config, 'graph.scopes', [])
        if not isinstance(scopes, list) or not all(isinstance(s, str) for s in scopes):
            raise ValueError("graph.scopes must be a list of strings")

        sections = get_nested(config, 'import.sections', [])
        if sections is not None and not isinstance(sections, list):
            raise ValueError("import.sections must be a list of section IDs")

        cls._validate_required_field(config, 'import.vault_path')
        vault_path = get_nested(config, 'import.vault_path')
        if os.path.exists(vault_path) and not os.path.isdir(vault_path):
            raise ValueError(f"import.vault_path '{vault_path}' is not a directory")

        attachment_folder = get_nested(config, 'import.attachment_folder')
        if attachment_folder is not None and not isinstance(attachment_folder, str):
            raise ValueError("import.attachment_folder must be a folder path or null")

        for field in BOOLEANS:
            value = get_nested(config, field)
            if value is not None and not isinstance(value, bool):
                raise ValueError(f"{field} must be a boolean")

        for field in POSITIVE_INTEGERS:
            value = get_nested(config, field)
            if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 1):
                raise ValueError(f"{field} must be a positive integer")

        for field in POSITIVE_NUMBERS:
            value = get_nested(config, field)
            if value is not None and (not _is_number(value) or value <= 0):
                raise ValueError(f"{field} must be a positive number")

        for field in NON_NEGATIVE_NUMBERS:
            value = get_nested(config, field)
            if value is not None and (not _is_number(value) or value < 0):
                raise ValueError(f"{field} must be a non-negative number")

        rate_limit_retries = get_nested(config, 'advanced.max_rate_limit_retries')
        if rate_limit_retries is not None and (
            not isinstance(rate_limit_retries, int) or isinstance(rate_limit_retries, bool)
            or rate_limit_retries < 0
        ):
            raise ValueError("advanced.max_rate_limit_retries must be a non-negative integer or null")

    @classmethod
    def merge_with_args(cls, config: Dict[str, Any], args) -> Dict[str, Any]:
        """
        Merge configuration file with CLI arguments.
        CLI arguments take precedence over config file values.

        Args:
            config: Base configuration dictionary
            args: CLI arguments with attributes matching config keys

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(config)
        for section in ('import', 'logging'):
            merged.setdefault(section, {})

        if getattr(args, 'vault', None):
            merged['import']['vault_path'] = args.vault

        if getattr(args, 'output_folder', None):
            merged['import']['output_folder'] = args.output_folder

        if getattr(args, 'sections', None):
            merged['import']['sections'] = [s.strip() for s in args.sections.split(',') if s.strip()]

        if getattr(args, 'no_skip', False):
            merged['import']['skip_previously_imported'] = False

        if getattr(args, 'log_file', None):
            merged['logging']['file'] = args.log_file

        verbose = getattr(args, 'verbose', 0) or 0
        if verbose >= 2:
            merged['logging']['level'] = 'DEBUG'
        elif verbose == 1:
            merged['logging']['level'] = 'INFO'

        return merged

    @classmethod
    def _substitute_env_vars_recursive(cls, data: Any) -> Any:
        """Recursively substitute environment variables in data structure."""
        if isinstance(data, dict):
            return {key: cls._substitute_env_vars_recursive(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [cls._substitute_env_vars_recursive(item) for item in data]
        elif isinstance(data, str):
            return cls._substitute_env_vars(data)
        else:
            return data

    @classmethod
    def _substitute_env_vars(cls, value: str) -> str:
        """Substitute environment variables in a string value."""
        def replace_match(match):
            env_value = os.getenv(match.group(1))
            return env_value if env_value is not None else match.group(0)

        return cls.ENV_VAR_PATTERN.sub(replace_match, value)

    @staticmethod
    def _validate_required_field(config: dict, field: str) -> None:
        """Validate that a required field exists and has a value."""
        value = get_nested(config, field)
        if value is None or value == '':
            raise ValueError(f"Missing required configuration: {field}")

        if isinstance(value, str):
            match = ConfigLoader.ENV_VAR_PATTERN.search(value)
            if match:
                raise ValueError(
                    f"Configuration field '{field}' contains unsubstituted environment variable: {value}. "
                    f"Please set the {match.group(1)} environment variable or provide a value in config file."
                )

    @staticmethod
    def _validate_url(url: str, field_name: str) -> None:
        """Validate URL format."""
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(f"{field_name} must use http or https scheme: {url}")
        if not parsed.netloc:
            raise ValueError(f"{field_name} missing hostname: {url}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def get_nested(config: dict, path: str, default: Any = None) -> Any:
    """Safely retrieve nested configuration values using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., "graph.client_id")
        default: Default value if path doesn't exist

    Returns:
        Value at the nested path or default
    """
    value = config
    for key in path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


__all__ = ['ConfigLoader', 'DEFAULT_CONFIG', 'get_nested']
