"""
Tests for configuration loading, the store factory and the publisher builder.
"""

import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from s3publish import (
    Artifact,
    ConfigManager,
    ConfigurationError,
    InMemoryRemoteStore,
    PublishConfig,
    PublishState,
    Publisher,
    PublisherBuilder,
    RemoteStoreFactory,
    StorageConfig,
)


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config_dict(temp_dir):
    return {
        "storage": {"provider": "memory", "bucket": "site-bucket"},
        "publish": {
            "headers": {"Cache-Control": "max-age=60"},
            "exclusions": ["robots.txt"],
            "exclusion_patterns": ["legacy/.*"],
            "charset": "utf-8",
            "max_workers": 8,
            "cache_path": str(temp_dir / "cache.json"),
        },
    }


class TestStorageConfig:
    """Tests for StorageConfig."""

    def test_to_dict(self):
        config = StorageConfig(provider="s3", bucket="b", region="eu-west-1")
        d = config.to_dict()
        assert d["provider"] == "s3"
        assert d["bucket"] == "b"
        assert d["region"] == "eu-west-1"
        assert d["endpoint_url"] is None


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_create_storage_config_from_dict(self):
        config = ConfigManager.create_storage_config({
            "provider": "S3",
            "bucket": "my-bucket",
            "region": "eu-west-1",
        })
        assert config.provider == "s3"
        assert config.bucket == "my-bucket"
        assert config.region == "eu-west-1"

    def test_provider_defaults_to_s3(self):
        assert ConfigManager.create_storage_config({"bucket": "b"}).provider == "s3"

    def test_bucket_required(self):
        with pytest.raises(ConfigurationError, match="bucket"):
            ConfigManager.create_storage_config({"provider": "s3"})

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError, match="Unknown provider"):
            ConfigManager.create_storage_config({"provider": "ftp", "bucket": "b"})

    def test_env_var_substitution(self):
        with patch.dict(os.environ, {"TEST_BUCKET": "my-test-bucket"}):
            config_dict = ConfigManager._substitute_env_vars({
                "provider": "s3",
                "bucket": "${TEST_BUCKET}",
                "nested": ["${TEST_BUCKET}/x"],
            })

        assert config_dict["bucket"] == "my-test-bucket"
        assert config_dict["nested"] == ["my-test-bucket/x"]

    def test_env_var_with_default(self):
        config_dict = ConfigManager._substitute_env_vars({
            "region": "${S3PUBLISH_NONEXISTENT_VAR:us-east-1}",
            "unset": "${S3PUBLISH_NONEXISTENT_VAR}",
        })
        assert config_dict["region"] == "us-east-1"
        assert config_dict["unset"] == "${S3PUBLISH_NONEXISTENT_VAR}"

    def test_create_publish_config(self, config_dict):
        config = ConfigManager.create_publish_config(config_dict)

        assert isinstance(config, PublishConfig)
        assert config.header_overrides == {"Cache-Control": "max-age=60"}
        assert config.max_workers == 8
        assert config.charset == "utf-8"
        assert config.exclusion_set().matches("legacy/a.html")
        assert config.exclusion_set().matches("robots.txt")

    def test_boolean_strings(self, config_dict):
        config_dict["publish"]["simulate"] = "yes"
        config_dict["publish"]["force_republish"] = "false"

        config = ConfigManager.create_publish_config(config_dict)

        assert config.simulate is True
        assert config.force_republish is False

    def test_force_and_conservative(self, config_dict):
        config_dict["publish"]["force_republish"] = True
        config_dict["publish"]["conservative"] = True

        with pytest.raises(ConfigurationError, match="mutually exclusive"):
            ConfigManager.create_publish_config(config_dict)

    def test_invalid_worker_count(self, config_dict):
        config_dict["publish"]["max_workers"] = "many"
        with pytest.raises(ConfigurationError):
            ConfigManager.create_publish_config(config_dict)

    def test_yaml_round_trip(self, temp_dir, config_dict):
        path = temp_dir / "config" / "publish.yaml"

        ConfigManager.save_yaml(config_dict, path)

        assert ConfigManager.load_yaml(path) == config_dict

    def test_load_missing_file(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            ConfigManager.load_yaml(temp_dir / "missing.yaml")

    def test_load_invalid_yaml(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text("storage: [unclosed")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            ConfigManager.load_yaml(path)

    def test_load_non_mapping(self, temp_dir):
        path = temp_dir / "list.yaml"
        path.write_text(yaml.safe_dump(["a", "b"]))
        with pytest.raises(ConfigurationError, match="mapping"):
            ConfigManager.load_yaml(path)


class TestRemoteStoreFactory:
    """Tests for RemoteStoreFactory."""

    @patch("s3publish.config.S3RemoteStore")
    def test_create_s3_provider(self, mock_s3):
        config = StorageConfig(
            provider="s3",
            bucket="test-bucket",
            credentials={"aws_access_key_id": "AKIA", "aws_secret_access_key": "secret"},
        )

        RemoteStoreFactory.create(config)

        kwargs = mock_s3.call_args[1]
        assert kwargs["bucket"] == "test-bucket"
        assert kwargs["region"] == "us-east-1"
        assert kwargs["aws_access_key_id"] == "AKIA"

    def test_create_memory_provider(self):
        store = RemoteStoreFactory.create(StorageConfig(provider="memory", bucket="b"))
        assert isinstance(store, InMemoryRemoteStore)
        assert store.bucket == "b"

    def test_create_unknown_provider_raises_error(self):
        config = StorageConfig(provider="unknown", bucket="bucket")

        with pytest.raises(ValueError, match="Unknown provider"):
            RemoteStoreFactory.create(config)


class TestPublisherBuilder:
    """Tests for PublisherBuilder."""

    def test_from_config_dict(self, config_dict, temp_dir):
        publisher = PublisherBuilder.from_config_dict(config_dict)

        assert isinstance(publisher, Publisher)
        assert publisher.bucket == "site-bucket"
        assert publisher.max_workers == 8
        assert publisher.header_overrides == {"Cache-Control": "max-age=60"}
        assert publisher.exclusions.matches("robots.txt")
        assert publisher.cache.path == temp_dir / "cache.json"

    def test_overrides(self, config_dict):
        publisher = PublisherBuilder.from_config_dict(config_dict, simulate=True, max_workers=None)

        assert publisher.simulate is True
        assert publisher.max_workers == 8

    def test_unknown_override(self, config_dict):
        with pytest.raises(ConfigurationError, match="Unknown publish option"):
            PublisherBuilder.from_config_dict(config_dict, turbo=True)

    def test_override_validated(self, config_dict):
        config_dict["publish"]["conservative"] = True
        with pytest.raises(ConfigurationError):
            PublisherBuilder.from_config_dict(config_dict, force_republish=True)

    def test_from_config_file(self, temp_dir, config_dict):
        path = temp_dir / "publish.yaml"
        path.write_text(yaml.safe_dump(config_dict))

        publisher = PublisherBuilder.from_config_file(path)

        assert publisher.bucket == "site-bucket"

    def test_from_env(self, temp_dir):
        env = {
            "S3PUBLISH_BUCKET": "env-bucket",
            "S3PUBLISH_PROVIDER": "memory",
            "S3PUBLISH_SIMULATE": "true",
            "S3PUBLISH_MAX_WORKERS": "2",
            "S3PUBLISH_CACHE_PATH": str(temp_dir / "env-cache.json"),
        }
        with patch.dict(os.environ, env):
            publisher = PublisherBuilder.from_env()

        assert publisher.bucket == "env-bucket"
        assert publisher.simulate is True
        assert publisher.max_workers == 2
        assert publisher.cache.path == temp_dir / "env-cache.json"

    def test_from_env_requires_bucket(self):
        with patch.dict(os.environ, {"S3PUBLISH_BUCKET": ""}):
            with pytest.raises(ConfigurationError, match="S3PUBLISH_BUCKET"):
                PublisherBuilder.from_env()

    def test_built_publisher_publishes(self, config_dict):
        with PublisherBuilder.from_config_dict(config_dict) as publisher:
            results = list(publisher.publish([Artifact("index.html", b"<html/>")], commit=True))
            assert results[0].state == PublishState.CREATE
            assert publisher.store.get_headers("index.html")["Cache-Control"] == "max-age=60"
