"""Unit tests for run specification models."""

from __future__ import annotations

from devfleet.models.run_spec import Mount, RunSpec


class TestRunSpec:
    """Tests for docker run argv generation."""

    def test_minimal_command(self) -> None:
        spec = RunSpec(image="ruby:3.2")

        assert spec.docker_run_command("app-1") == [
            "docker",
            "run",
            "-d",
            "--name",
            "app-1",
            "ruby:3.2",
        ]

    def test_flags_in_order(self) -> None:
        spec = RunSpec(
            image="ruby:3.2",
            ports=[3000],
            mounts=[Mount(source="gems", target="/usr/local/bundle", type="volume")],
            env={"RAILS_ENV": "development"},
            secrets={"DATABASE_URL": "cG9zdGdyZXM="},
            options=["--cpus=2"],
            user="vscode",
            workspace="/workspaces/app",
        )

        assert spec.docker_run_flags() == [
            "-p",
            "3000:3000",
            "-v",
            "gems:/usr/local/bundle",
            "-e",
            "RAILS_ENV=development",
            "-e",
            "DATABASE_URL_B64=cG9zdGdyZXM=",
            "--cpus=2",
            "--user",
            "vscode",
            "-w",
            "/workspaces/app",
        ]

    def test_values_are_separate_arguments(self) -> None:
        """Values with shell metacharacters stay single argv entries."""
        spec = RunSpec(image="img", env={"GREETING": "hello; rm -rf /"})

        command = spec.docker_run_command("app-1")

        assert "GREETING=hello; rm -rf /" in command
        assert command[-1] == "img"
