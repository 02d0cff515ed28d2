"""Pytest configuration and shared fixtures for DevFleet tests."""

from __future__ import annotations

import os
import threading
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from devfleet.deploy.providers.base import BaseProvider
from devfleet.deploy.state import StateStore
from devfleet.models.provider import (
    CostEstimate,
    Instance,
    InstanceSpec,
    InstanceStatus,
)


class FakeProvider(BaseProvider):
    """In-memory provider with scriptable behaviour.

    Attributes:
        create_errors: Exception to raise from create_instance, by title
        status_script: Statuses (or exceptions) returned by query_status, by
            title; the last entry repeats
        initial_status: Status reported by create_instance
        with_address: Whether create_instance reports an address
        lookup_address: Address returned by instance_address
    """

    name = "fake"

    def __init__(self) -> None:
        self.created: list[InstanceSpec] = []
        self.destroyed: list[str] = []
        self.queried: list[str] = []
        self.address_lookups: list[str] = []
        self.create_errors: dict[str, Exception] = {}
        self.status_script: dict[str, list[Any]] = {}
        self.initial_status = InstanceStatus.PENDING
        self.with_address = True
        self.lookup_address: str | None = "192.0.2.10"
        self.titles: dict[str, str] = {}
        self._lock = threading.Lock()

    def create_instance(self, spec: InstanceSpec) -> Instance:
        self.created.append(spec)
        if spec.title in self.create_errors:
            raise self.create_errors[spec.title]
        with self._lock:
            number = len(self.titles) + 1
            instance_id = f"vm-{number:04d}"
            self.titles[instance_id] = spec.title
        return Instance(
            id=instance_id,
            address=f"10.0.0.{number}" if self.with_address else None,
            status=self.initial_status,
        )

    def query_status(self, instance_id: str) -> InstanceStatus:
        self.queried.append(instance_id)
        script = self.status_script.get(self.titles.get(instance_id, ""))
        if not script:
            return InstanceStatus.RUNNING
        value = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(value, Exception):
            raise value
        return value

    def destroy_instance(self, instance_id: str) -> bool:
        self.destroyed.append(instance_id)
        return True

    def estimate_cost(self, spec: InstanceSpec) -> CostEstimate:
        return CostEstimate(
            warning="Check pricing for accurate costs.",
            plan=spec.plan,
            zone=spec.zone,
            pricing_url="https://example.com/pricing",
        )

    def instance_address(self, instance_id: str) -> str | None:
        self.address_lookups.append(instance_id)
        return self.lookup_address


@pytest.fixture
def fake_provider() -> FakeProvider:
    """Provide a fresh in-memory provider."""
    return FakeProvider()


@pytest.fixture
def state_store(tmp_path: Path) -> StateStore:
    """Provide a state store backed by a temporary file."""
    return StateStore(tmp_path / ".devfleet" / "dev_state.yml", lock_timeout=0.5)


@pytest.fixture
def instance_spec() -> InstanceSpec:
    """Instance template used by reconciler tests."""
    return InstanceSpec(
        zone="us-nyc1",
        plan="1xCPU-2GB",
        title="template",
        public_key="ssh-ed25519 AAAATEST devfleet@test",
    )


@pytest.fixture
def isolated_env() -> Generator[dict[str, str]]:
    """Provide isolated environment variables for testing.

    Saves current environment and restores after test.
    """
    original_env = os.environ.copy()
    yield original_env
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def write_config(tmp_path: Path):
    """Return a helper that writes a dev.yml into ``tmp_path``.

    The config points the state file, secrets file and SSH key into
    ``tmp_path``; a dummy public key is created.
    """
    key_path = tmp_path / "id_test.pub"
    key_path.write_text("ssh-ed25519 AAAATEST devfleet@test\n", encoding="utf-8")

    def _write(extra: str = "", credentials: bool = True) -> Path:
        creds = "  username: api-user\n  password: api-pass\n" if credentials else ""
        content = (
            "service: svc\n"
            "image: ruby:3.2\n"
            "provider:\n"
            "  type: upcloud\n"
            f"{creds}"
            f"state_file: {tmp_path / 'state' / 'dev_state.yml'}\n"
            f"secrets_file: {tmp_path / 'secrets'}\n"
            "ssh:\n"
            f"  key_path: {key_path}\n"
            f"{extra}"
        )
        path = tmp_path / "config" / "dev.yml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write
