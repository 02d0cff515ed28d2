"""Unit tests for devcontainer.json parsing."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from devfleet.deploy.devcontainer import DevcontainerParser, strip_json_comments
from devfleet.lib.errors import ConfigError


def _write(tmp_path: Path, content: str | dict) -> Path:
    path = tmp_path / ".devcontainer" / "devcontainer.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, dict):
        content = json.dumps(content)
    path.write_text(content, encoding="utf-8")
    return path


class TestStripJsonComments:
    """Tests for comment stripping."""

    def test_line_and_block_comments(self) -> None:
        content = """{
  // editor settings
  "image": "ruby:3.2", /* inline */
  /* multi
     line */
  "forwardPorts": [3000]
}"""

        assert json.loads(strip_json_comments(content)) == {
            "image": "ruby:3.2",
            "forwardPorts": [3000],
        }

    def test_urls_survive(self) -> None:
        content = '{"image": "ghcr.io/acme/app", "docs": "https://example.com/x"}'

        data = json.loads(strip_json_comments(content))

        assert data["docs"] == "https://example.com/x"


class TestDevcontainerParser:
    """Tests for DevcontainerParser.parse."""

    def test_full_file(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            {
                "image": "ruby:3.2",
                "forwardPorts": [3000, 5432],
                "mounts": [
                    {"source": "gems", "target": "/usr/local/bundle", "type": "volume"},
                    {"source": "/data", "target": "/data"},
                ],
                "containerEnv": {"RAILS_ENV": "development", "PORT": 3000},
                "runArgs": ["--cpus=2", "--memory=4g"],
                "remoteUser": "vscode",
                "workspaceFolder": "/workspaces/app",
            },
        )

        spec = DevcontainerParser(path).parse({"DATABASE_URL": "cG9zdGdyZXM="})

        assert spec.image == "ruby:3.2"
        assert spec.ports == [3000, 5432]
        assert [(m.source, m.type) for m in spec.mounts] == [
            ("gems", "volume"),
            ("/data", "bind"),
        ]
        assert spec.env == {"RAILS_ENV": "development", "PORT": "3000"}
        assert spec.secrets == {"DATABASE_URL": "cG9zdGdyZXM="}
        assert spec.options == ["--cpus=2", "--memory=4g"]
        assert spec.user == "vscode"
        assert spec.workspace == "/workspaces/app"

    def test_minimal_file(self, tmp_path: Path) -> None:
        spec = DevcontainerParser(_write(tmp_path, {"image": "python:3.12"})).parse()

        assert spec.image == "python:3.12"
        assert spec.ports == []
        assert spec.mounts == []
        assert spec.secrets == {}
        assert spec.user is None

    def test_commented_file(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            '{\n  // base image\n  "image": "node:20"\n}\n',
        )

        assert DevcontainerParser(path).parse().image == "node:20"

    def test_missing_image(self, tmp_path: Path) -> None:
        path = _write(tmp_path, {"name": "app"})

        with pytest.raises(ConfigError, match="'image' or 'dockerComposeFile'"):
            DevcontainerParser(path).parse()

    def test_dockerfile_builds_rejected(self, tmp_path: Path) -> None:
        path = _write(tmp_path, {"build": {"dockerfile": "Dockerfile"}})

        with pytest.raises(ConfigError, match="Dockerfile builds are not supported"):
            DevcontainerParser(path).parse()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            DevcontainerParser(tmp_path / "devcontainer.json").parse()

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = _write(tmp_path, '{"image": ')

        with pytest.raises(ConfigError, match="Invalid JSON"):
            DevcontainerParser(path).parse()

    def test_top_level_must_be_object(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "[1, 2]")

        with pytest.raises(ConfigError, match="must be an object"):
            DevcontainerParser(path).parse()


class TestComposeReference:
    """Tests for dockerComposeFile handling."""

    def test_compose_path_relative_to_devcontainer(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path, {"dockerComposeFile": "compose.yaml", "service": "app"}
        )
        parser = DevcontainerParser(path)

        assert parser.uses_compose
        assert parser.compose_file_path == tmp_path / ".devcontainer" / "compose.yaml"

    def test_compose_list_uses_first_entry(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path, {"dockerComposeFile": ["compose.yaml", "compose.override.yaml"]}
        )

        assert DevcontainerParser(path).compose_file_path.name == "compose.yaml"

    def test_no_compose(self, tmp_path: Path) -> None:
        parser = DevcontainerParser(_write(tmp_path, {"image": "ruby:3.2"}))

        assert not parser.uses_compose
        assert parser.compose_file_path is None
