"""Persisted deployment state with file locking.

The state file is a YAML mapping of deployment name to ``ResourceRecord``:

```yaml
version: "1.0"
deployments:
  myapp-1:
    name: myapp-1
    instance_id: 00b1c2d3-...
    address: 94.237.1.2
    status: running
    kind: container
    containers: [...]
    created_at: "2025-11-16T10:00:00+00:00"
```

Readers take a shared lock and writers an exclusive one held across the whole
read-modify-write. Locks live on a sibling ``.lock`` file so that the atomic
rename of the data file never swaps the inode out from under a waiter. The
data file and its lock file are removed once the last record is gone; a
missing file reads as an empty mapping. A waiter that wakes up holding a lock
on a removed lock file opens the current one and locks again.
"""

from __future__ import annotations

import fcntl
import os
import tempfile
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from devfleet.lib.errors import LockTimeoutError, StateError
from devfleet.lib.logging_config import get_logger
from devfleet.models.deployment_state import (
    DeploymentState,
    LifecycleStatus,
    ResourceRecord,
)

logger = get_logger(__name__)

STATE_VERSION = "1.0"
LOCK_TIMEOUT = 10.0
LOCK_POLL_INTERVAL = 0.05

# Fields fixed at creation time.
IMMUTABLE_FIELDS = frozenset({"name", "instance_id", "created_at"})

Records = dict[str, ResourceRecord]


class StateStore:
    """Concurrency-safe store of tracked resources.

    Example:
        >>> store = StateStore(Path(".devfleet/dev_state.yml"))
        >>> store.upsert(record)
        >>> store.set_status("myapp-1", LifecycleStatus.RUNNING)
        >>> store.read()["myapp-1"].status
        <LifecycleStatus.RUNNING: 'running'>
    """

    def __init__(self, path: str | Path, lock_timeout: float = LOCK_TIMEOUT) -> None:
        self.path = Path(path)
        self.lock_timeout = lock_timeout

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(f"{self.path.name}.lock")

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> Records:
        """Return all records under a shared lock.

        Raises:
            LockTimeoutError: If the lock is not acquired in time
            StateError: If the file exists but cannot be parsed
        """
        if not self.path.exists():
            return {}
        with self._locked(exclusive=False):
            return self._load()

    def get(self, name: str) -> ResourceRecord | None:
        return self.read().get(name)

    def update(self, fn: Callable[[Records], Records]) -> Records:
        """Atomically apply ``fn`` to the current records and persist the result.

        The exclusive lock spans read, ``fn`` and write, so concurrent writers
        never interleave. An empty result deletes the state file.

        Returns:
            The records as written
        """
        with self._locked(exclusive=True):
            current = self._load()
            updated = fn(dict(current))
            self._write(updated)
            return updated

    def upsert(self, record: ResourceRecord) -> ResourceRecord:
        """Insert or overwrite a record, keeping the original ``created_at``."""
        stored: dict[str, ResourceRecord] = {}

        def _apply(records: Records) -> Records:
            existing = records.get(record.name)
            created_at = existing.created_at if existing else record.created_at
            stored["record"] = record.model_copy(
                update={"created_at": created_at, "updated_at": _now()}
            )
            records[record.name] = stored["record"]
            return records

        self.update(_apply)
        return stored["record"]

    def patch(self, name: str, /, **changes: Any) -> ResourceRecord | None:
        """Change mutable fields of one record.

        Returns:
            The updated record, or None if ``name`` is not tracked

        Raises:
            ValueError: If an immutable field is passed
        """
        frozen = IMMUTABLE_FIELDS.intersection(changes)
        if frozen:
            raise ValueError(f"Cannot change immutable field(s): {sorted(frozen)}")

        stored: dict[str, ResourceRecord] = {}

        def _apply(records: Records) -> Records:
            existing = records.get(name)
            if existing is None:
                return records
            stored["record"] = existing.model_copy(
                update={**changes, "updated_at": _now()}
            )
            records[name] = stored["record"]
            return records

        self.update(_apply)
        return stored.get("record")

    def set_status(
        self, name: str, status: LifecycleStatus
    ) -> ResourceRecord | None:
        """Set the lifecycle status of a tracked record."""
        record = self.patch(name, status=status)
        if record is not None:
            logger.debug(f"{name}: status -> {status.value}")
        return record

    def remove(self, name: str) -> bool:
        """Delete a record; the state file goes away with the last one.

        Returns:
            True if the record existed
        """
        removed: list[str] = []

        def _apply(records: Records) -> Records:
            if records.pop(name, None) is not None:
                removed.append(name)
            return records

        if not self.path.exists():
            return False
        self.update(_apply)
        return bool(removed)

    @contextmanager
    def _locked(self, exclusive: bool) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        while True:
            handle = open(self.lock_path, "a")
            try:
                self._acquire(handle, exclusive)
            except BaseException:
                handle.close()
                raise
            if _is_current(handle, self.lock_path):
                break
            handle.close()

        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()

    def _acquire(self, handle: Any, exclusive: bool) -> None:
        mode = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
        deadline = time.monotonic() + self.lock_timeout
        while True:
            try:
                fcntl.flock(handle.fileno(), mode | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise LockTimeoutError(
                        "exclusive" if exclusive else "shared", self.lock_timeout
                    ) from None
                time.sleep(LOCK_POLL_INTERVAL)

    def _load(self) -> Records:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StateError(f"Failed to read state at {self.path}: {exc}") from exc

        if not content.strip():
            return {}

        try:
            data = yaml.safe_load(content) or {}
            state = DeploymentState.model_validate(data)
        except (yaml.YAMLError, ValidationError) as exc:
            raise StateError(
                f"Invalid deployment state format in {self.path}: {exc}"
            ) from exc
        return dict(state.deployments)

    def _write(self, records: Records) -> None:
        if not records:
            if self.path.exists():
                self.path.unlink()
                logger.debug(f"Removed empty state file {self.path}")
            # Still held by the caller; waiters re-check it on wake-up.
            self.lock_path.unlink(missing_ok=True)
            return

        state = DeploymentState(version=STATE_VERSION, deployments=records)
        payload = yaml.safe_dump(
            state.model_dump(mode="json"), sort_keys=False, default_flow_style=False
        )

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            raise StateError(f"Failed to write state to {self.path}: {exc}") from exc
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)


def new_record(**fields: Any) -> ResourceRecord:
    """Build a ResourceRecord stamped with the current time."""
    now = _now()
    fields.setdefault("created_at", now)
    fields.setdefault("updated_at", now)
    return ResourceRecord(**fields)


def _is_current(handle: Any, path: Path) -> bool:
    """Whether ``handle`` still refers to the file at ``path``."""
    try:
        return os.path.samestat(os.fstat(handle.fileno()), os.stat(path))
    except FileNotFoundError:
        return False


def _now() -> datetime:
    return datetime.now(timezone.utc)
