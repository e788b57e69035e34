"""
Configuration system for remote stores and publish sessions.

Provides:
- YAML-based store and publish configuration
- Environment variable substitution (${VAR} and ${VAR:default})
- Factory for remote store adapters
- Builder producing ready-to-use Publisher sessions
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .cache import MetadataCache
from .errors import ConfigurationError
from .providers.memory import InMemoryRemoteStore
from .providers.s3 import S3RemoteStore
from .publisher import Publisher
from .storage import RemoteStore
from .sync import ExclusionSet

logger = logging.getLogger(__name__)

PROVIDERS = {"s3", "memory"}
_TRUE_VALUES = {"true", "1", "yes", "on"}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    return bool(value)


@dataclass
class StorageConfig:
    """Configuration for a remote store."""
    provider: str  # 's3' or 'memory'
    bucket: str
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    credentials: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "provider": self.provider,
            "bucket": self.bucket,
            "region": self.region,
            "endpoint_url": self.endpoint_url,
            "credentials": self.credentials,
        }


@dataclass
class PublishConfig:
    """Options of a publish session."""
    storage_config: StorageConfig
    force_republish: bool = False
    conservative: bool = False
    simulate: bool = False
    header_overrides: Dict[str, str] = field(default_factory=dict)
    exclusions: List[str] = field(default_factory=list)
    exclusion_patterns: List[str] = field(default_factory=list)
    charset: Optional[str] = None
    max_workers: int = 4
    max_in_flight: Optional[int] = None
    cache_path: Optional[Path] = None

    def validate(self) -> None:
        """
        Fail fast on inconsistent options.

        Raises:
            ConfigurationError: If the options cannot work together
        """
        if self.force_republish and self.conservative:
            raise ConfigurationError("force_republish and conservative are mutually exclusive")
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be positive, got {self.max_workers}")
        if self.max_in_flight is not None and self.max_in_flight < 1:
            raise ConfigurationError(f"max_in_flight must be positive, got {self.max_in_flight}")
        for name, value in self.header_overrides.items():
            if not isinstance(name, str) or not isinstance(value, str):
                raise ConfigurationError(f"Header overrides must be strings: {name!r}={value!r}")

    def exclusion_set(self) -> ExclusionSet:
        return ExclusionSet(keys=self.exclusions, patterns=self.exclusion_patterns)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "storage": self.storage_config.to_dict(),
            "publish": {
                "force_republish": self.force_republish,
                "conservative": self.conservative,
                "simulate": self.simulate,
                "headers": dict(self.header_overrides),
                "exclusions": list(self.exclusions),
                "exclusion_patterns": list(self.exclusion_patterns),
                "charset": self.charset,
                "max_workers": self.max_workers,
                "max_in_flight": self.max_in_flight,
                "cache_path": str(self.cache_path) if self.cache_path else None,
            },
        }


class RemoteStoreFactory:
    """Factory for creating remote store adapters."""

    @staticmethod
    def create(config: StorageConfig) -> RemoteStore:
        """
        Create a remote store from config.

        Args:
            config: StorageConfig object

        Returns:
            RemoteStore instance (not yet connected)

        Raises:
            ConfigurationError: If provider type is unknown
        """
        provider = config.provider.lower()

        if provider == "s3":
            creds = config.credentials or {}
            return S3RemoteStore(
                bucket=config.bucket,
                region=config.region or "us-east-1",
                aws_access_key_id=creds.get("aws_access_key_id"),
                aws_secret_access_key=creds.get("aws_secret_access_key"),
                aws_session_token=creds.get("aws_session_token"),
                endpoint_url=config.endpoint_url,
            )

        elif provider == "memory":
            return InMemoryRemoteStore(bucket=config.bucket)

        else:
            raise ConfigurationError(f"Unknown provider: {provider}")


class ConfigManager:
    """Manages configuration loading and storage."""

    @staticmethod
    def load_yaml(config_path: Path) -> Dict[str, Any]:
        """
        Load configuration from YAML file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If the file is not a YAML mapping
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, "r") as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if config is None:
            config = {}
        if not isinstance(config, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {config_path}")

        logger.info(f"Loaded configuration from {config_path}")
        return config

    @staticmethod
    def save_yaml(config: Dict[str, Any], config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.safe_dump(config, f, default_flow_style=False)

        logger.info(f"Saved configuration to {config_path}")

    @staticmethod
    def create_storage_config(config_dict: Dict[str, Any]) -> StorageConfig:
        """
        Create StorageConfig from dictionary.

        Raises:
            ConfigurationError: If required fields are missing or invalid
        """
        config_dict = ConfigManager._substitute_env_vars(config_dict or {})

        provider = (config_dict.get("provider") or "s3").lower()
        bucket = config_dict.get("bucket")

        if not bucket:
            raise ConfigurationError("'bucket' field is required")
        if provider not in PROVIDERS:
            raise ConfigurationError(f"Unknown provider: {provider}")

        return StorageConfig(
            provider=provider,
            bucket=bucket,
            region=config_dict.get("region"),
            endpoint_url=config_dict.get("endpoint_url"),
            credentials=config_dict.get("credentials"),
        )

    @staticmethod
    def create_publish_config(config_dict: Dict[str, Any]) -> PublishConfig:
        """Create PublishConfig from a dictionary with 'storage' and 'publish' sections."""
        config_dict = ConfigManager._substitute_env_vars(config_dict or {})
        storage_config = ConfigManager.create_storage_config(config_dict.get("storage", {}))
        publish = config_dict.get("publish") or {}

        cache_path = publish.get("cache_path")
        max_in_flight = publish.get("max_in_flight")

        try:
            config = PublishConfig(
                storage_config=storage_config,
                force_republish=_as_bool(publish.get("force_republish", False)),
                conservative=_as_bool(publish.get("conservative", False)),
                simulate=_as_bool(publish.get("simulate", False)),
                header_overrides=dict(publish.get("headers") or {}),
                exclusions=list(publish.get("exclusions") or []),
                exclusion_patterns=list(publish.get("exclusion_patterns") or []),
                charset=publish.get("charset"),
                max_workers=int(publish.get("max_workers", 4)),
                max_in_flight=int(max_in_flight) if max_in_flight else None,
                cache_path=Path(cache_path) if cache_path else None,
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid publish configuration: {e}") from e

        config.validate()
        return config

    @staticmethod
    def _substitute_env_vars(config: Any) -> Any:
        """
        Recursively substitute environment variables in config.

        Format: ${VAR_NAME} or ${VAR_NAME:default_value}
        """
        if isinstance(config, dict):
            return {k: ConfigManager._substitute_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [ConfigManager._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            pattern = r'\$\{([^}]+)\}'

            def replacer(match):
                var_spec = match.group(1)
                if ':' in var_spec:
                    var_name, default = var_spec.split(':', 1)
                    return os.getenv(var_name.strip(), default.strip())
                else:
                    return os.getenv(var_spec, match.group(0))

            return re.sub(pattern, replacer, config)
        else:
            return config


class PublisherBuilder:
    """Builder for creating configured publish sessions."""

    @staticmethod
    def from_config_file(config_path: Path, **overrides: Any) -> Publisher:
        """Create a Publisher from a YAML configuration file."""
        config_dict = ConfigManager.load_yaml(config_path)
        return PublisherBuilder.from_config_dict(config_dict, **overrides)

    @staticmethod
    def from_config_dict(config_dict: Dict[str, Any], **overrides: Any) -> Publisher:
        """
        Create a Publisher from a configuration dictionary.

        Args:
            config_dict: Configuration with 'storage' and 'publish' sections
            overrides: PublishConfig fields replacing the configured values
                (e.g. ``simulate=True`` from a command line flag)

        Returns:
            Publisher, not yet opened
        """
        config = ConfigManager.create_publish_config(config_dict)
        for name, value in overrides.items():
            if not hasattr(config, name):
                raise ConfigurationError(f"Unknown publish option: {name}")
            if value is not None:
                setattr(config, name, value)
        return PublisherBuilder.from_config(config)

    @staticmethod
    def from_config(config: PublishConfig) -> Publisher:
        config.validate()
        store = RemoteStoreFactory.create(config.storage_config)
        cache = MetadataCache(store.bucket, config.cache_path)

        publisher = Publisher(
            store=store,
            cache=cache,
            force_republish=config.force_republish,
            conservative=config.conservative,
            simulate=config.simulate,
            header_overrides=config.header_overrides,
            exclusions=config.exclusion_set(),
            charset=config.charset,
            max_workers=config.max_workers,
            max_in_flight=config.max_in_flight,
        )
        logger.info(
            f"Created publisher for {config.storage_config.provider}://{config.storage_config.bucket}"
        )
        return publisher

    @staticmethod
    def from_env() -> Publisher:
        """
        Create a Publisher from environment variables.

        Expected environment variables:
        - S3PUBLISH_BUCKET: bucket name (required)
        - S3PUBLISH_PROVIDER: s3 or memory (default s3)
        - S3PUBLISH_REGION, S3PUBLISH_ENDPOINT_URL
        - S3PUBLISH_FORCE, S3PUBLISH_SIMULATE: booleans
        - S3PUBLISH_MAX_WORKERS, S3PUBLISH_CACHE_PATH
        """
        bucket = os.getenv("S3PUBLISH_BUCKET")
        if not bucket:
            raise ConfigurationError("S3PUBLISH_BUCKET environment variable is required")

        config_dict = {
            "storage": {
                "provider": os.getenv("S3PUBLISH_PROVIDER", "s3"),
                "bucket": bucket,
                "region": os.getenv("S3PUBLISH_REGION"),
                "endpoint_url": os.getenv("S3PUBLISH_ENDPOINT_URL"),
            },
            "publish": {
                "force_republish": os.getenv("S3PUBLISH_FORCE", "false"),
                "simulate": os.getenv("S3PUBLISH_SIMULATE", "false"),
                "max_workers": os.getenv("S3PUBLISH_MAX_WORKERS", "4"),
                "cache_path": os.getenv("S3PUBLISH_CACHE_PATH"),
            },
        }
        return PublisherBuilder.from_config_dict(config_dict)
