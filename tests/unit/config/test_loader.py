"""Tests for loading config/dev.yml."""

from pathlib import Path
from typing import Any

import pytest

from devfleet.config.env_loader import get_env_var, load_env_file, substitute_env_vars
from devfleet.config.loader import load_config, parse_config
from devfleet.lib.errors import ConfigError
from devfleet.models.config import BuildSourceType, ProviderType


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "dev.yml"
    path.write_text(content, encoding="utf-8")
    return path


MINIMAL = """\
service: myapp
image: ruby:3.2
provider:
  type: upcloud
"""


class TestLoadConfig:
    """Tests for load_config()."""

    def test_minimal_config_defaults(self, tmp_path: Path) -> None:
        config = load_config(_write(tmp_path, MINIMAL), env_file=None)

        assert config.service == "myapp"
        assert config.provider.type == ProviderType.UPCLOUD
        assert config.provider.zone == "us-nyc1"
        assert config.provider.plan == "1xCPU-2GB"
        assert config.vms.count == 1
        assert config.naming.pattern == "{service}-{index}"
        assert config.state_file == ".devfleet/dev_state.yml"
        assert config.provisioning.poll_timeout == 120.0
        assert config.provisioning.poll_interval == 5.0
        assert not config.registry.configured

    def test_provider_type_is_case_insensitive(self, tmp_path: Path) -> None:
        config = load_config(
            _write(tmp_path, MINIMAL.replace("upcloud", "UpCloud")), env_file=None
        )

        assert config.provider.type == ProviderType.UPCLOUD

    def test_env_substitution(self, tmp_path: Path, monkeypatch: Any) -> None:
        monkeypatch.setenv("UPCLOUD_USERNAME", "api-user")
        monkeypatch.delenv("UPCLOUD_ZONE", raising=False)
        content = MINIMAL + (
            "  username: ${UPCLOUD_USERNAME}\n  zone: ${UPCLOUD_ZONE:-de-fra1}\n"
        )

        config = load_config(_write(tmp_path, content), env_file=None)

        assert config.provider.username == "api-user"
        assert config.provider.zone == "de-fra1"

    def test_env_file_loaded(self, tmp_path: Path, isolated_env: Any) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("DEVFLEET_TEST_PLAN=2xCPU-4GB\n", encoding="utf-8")
        content = MINIMAL + "  plan: ${DEVFLEET_TEST_PLAN}\n"

        config = load_config(_write(tmp_path, content), env_file=env_file)

        assert config.provider.plan == "2xCPU-4GB"

    def test_unset_variable(self, tmp_path: Path, monkeypatch: Any) -> None:
        monkeypatch.delenv("DEVFLEET_MISSING", raising=False)
        content = MINIMAL + "  username: ${DEVFLEET_MISSING}\n"

        with pytest.raises(ConfigError, match="DEVFLEET_MISSING"):
            load_config(_write(tmp_path, content), env_file=None)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="devfleet init"):
            load_config(tmp_path / "dev.yml", env_file=None)

    def test_empty_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="empty"):
            load_config(_write(tmp_path, ""), env_file=None)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(_write(tmp_path, "service: [unclosed"), env_file=None)

    def test_top_level_list(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="mapping"):
            load_config(_write(tmp_path, "- service\n"), env_file=None)

    def test_unknown_field_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="colour"):
            load_config(_write(tmp_path, MINIMAL + "colour: blue\n"), env_file=None)


class TestParseConfig:
    """Tests for field-level validation."""

    def _data(self, **overrides: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "service": "myapp",
            "image": "ruby:3.2",
            "provider": {"type": "upcloud"},
        }
        data.update(overrides)
        return data

    def test_missing_required_fields(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            parse_config({"service": "myapp"})

        assert "Field 'image'" in exc_info.value.message
        assert "Field 'provider'" in exc_info.value.message

    def test_invalid_service_name(self) -> None:
        with pytest.raises(ConfigError, match="Docker names"):
            parse_config(self._data(service="-bad name"))

    def test_unsupported_provider(self) -> None:
        with pytest.raises(ConfigError, match="provider.type"):
            parse_config(self._data(provider={"type": "hetzner"}))

    def test_naming_pattern_needs_index(self) -> None:
        with pytest.raises(ConfigError, match="index"):
            parse_config(self._data(naming={"pattern": "{service}"}))

    def test_vm_count_must_be_positive(self) -> None:
        with pytest.raises(ConfigError, match="vms.count"):
            parse_config(self._data(vms={"count": 0}))

    def test_build_sources_are_exclusive(self) -> None:
        with pytest.raises(ConfigError, match="mutually exclusive"):
            parse_config(
                self._data(
                    build={"devcontainer": "a.json", "dockerfile": "Dockerfile"}
                )
            )

    def test_devcontainer_image_path(self) -> None:
        config = parse_config(self._data(image=".devcontainer/devcontainer.json"))

        assert config.uses_devcontainer_json
        assert config.devcontainer_path == ".devcontainer/devcontainer.json"

    def test_build_devcontainer(self) -> None:
        config = parse_config(
            self._data(build={"devcontainer": ".devcontainer/devcontainer.json"})
        )

        assert config.build.source_type == BuildSourceType.DEVCONTAINER
        assert config.uses_devcontainer_json
        assert config.devcontainer_path == ".devcontainer/devcontainer.json"

    def test_plain_image(self) -> None:
        assert not parse_config(self._data()).uses_devcontainer_json

    def test_registry_list_syntax(self, monkeypatch: Any) -> None:
        monkeypatch.setenv("REG_USER", "me")
        config = parse_config(
            self._data(registry={"username": ["REG_USER"], "password": ["REG_PASS"]})
        )

        assert config.registry.username == "REG_USER"
        assert config.registry.configured
        assert config.registry.resolve_username() == "me"

    def test_ssh_key_paths(self) -> None:
        config = parse_config(self._data(ssh={"key_path": "/keys/id_ed25519.pub"}))

        assert config.ssh.public_key_path == "/keys/id_ed25519.pub"
        assert config.ssh.private_key_path == "/keys/id_ed25519"


class TestEnvHelpers:
    """Tests for the env_loader helpers."""

    def test_substitute_multiple(self, monkeypatch: Any) -> None:
        monkeypatch.setenv("A", "1")
        monkeypatch.setenv("B", "two")

        assert substitute_env_vars("${A}-${B}-$C") == "1-two-$C"

    def test_empty_value_is_kept(self, monkeypatch: Any) -> None:
        monkeypatch.setenv("EMPTY", "")

        assert substitute_env_vars("x${EMPTY:-d}y") == "xy"

    def test_get_env_var(self, monkeypatch: Any) -> None:
        monkeypatch.setenv("SET", "value")
        monkeypatch.setenv("BLANK", "")

        assert get_env_var("SET") == "value"
        assert get_env_var("BLANK", "fallback") == "fallback"
        assert get_env_var("DEVFLEET_NOT_SET_AT_ALL") is None

    def test_load_env_file_does_not_override(
        self, tmp_path: Path, monkeypatch: Any
    ) -> None:
        monkeypatch.setenv("KEEP_ME", "original")
        env_file = tmp_path / ".env"
        env_file.write_text("KEEP_ME=replaced\n", encoding="utf-8")

        assert load_env_file(env_file) is True
        assert get_env_var("KEEP_ME") == "original"

    def test_load_env_file_missing(self, tmp_path: Path) -> None:
        assert load_env_file(tmp_path / ".env") is False
