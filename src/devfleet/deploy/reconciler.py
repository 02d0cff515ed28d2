"""Reconcile a service's tracked machines against a desired count.

A run has two phases:

1. Provision: reuse tracked machines owned by the service and create only the
   shortfall. Each new machine is written to the state store as
   ``provisioning`` the moment the provider returns an id, before any
   waiting, so an interrupted run never loses track of a billable machine.
   Reused machines that an interrupted run left short of ready are polled
   again on the next run.
2. Deploy: hand every target to the deploy callback. Failures are collected
   per target; one bad machine never stops the others.

Only whole-batch conditions are raised: zero successes
(``BatchDeploymentError``), rejected credentials (``AuthenticationError``)
and state lock contention (``LockTimeoutError``).
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TypeVar

from devfleet.deploy.naming import NamingPattern
from devfleet.deploy.poller import ReadinessPoller
from devfleet.deploy.providers.base import BaseProvider
from devfleet.deploy.state import StateStore, new_record
from devfleet.lib.errors import (
    AuthenticationError,
    BatchDeploymentError,
    DeploymentError,
    LockTimeoutError,
    ProviderError,
    ProvisioningTimeoutError,
)
from devfleet.lib.logging_config import get_logger
from devfleet.models.deployment_state import (
    ContainerRecord,
    DeploymentKind,
    LifecycleStatus,
    ResourceFailure,
    ResourceRecord,
)
from devfleet.models.provider import Instance, InstanceSpec

logger = get_logger(__name__)

DeployFn = Callable[[ResourceRecord], list[ContainerRecord]]

# Errors that end the whole run instead of a single target.
FATAL_ERRORS: tuple[type[Exception], ...] = (AuthenticationError, LockTimeoutError)

# Statuses a reused record is polled again from.
UNSETTLED_STATUSES = frozenset({LifecycleStatus.PROVISIONING, LifecycleStatus.READY})

_T = TypeVar("_T")
_R = TypeVar("_R")


@dataclass
class ReconcilePlan:
    """What a reconcile run will do before it touches the provider.

    Attributes:
        reuse: Tracked records that will be reused, in index order
        create: Names of machines to create
    """

    reuse: list[ResourceRecord] = field(default_factory=list)
    create: list[str] = field(default_factory=list)

    @property
    def needs_provider(self) -> bool:
        return bool(self.create)


@dataclass
class ReconcileResult:
    """Outcome of a reconcile run.

    Attributes:
        succeeded: Records that ended up running
        failed: Targets that failed, with the stage and error
        created: Names of machines created during this run
        reused: Names of machines that were already tracked
    """

    succeeded: list[ResourceRecord] = field(default_factory=list)
    failed: list[ResourceFailure] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    reused: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def partial(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)


class Reconciler:
    """Drive a service to exactly N running deployments.

    Example:
        >>> reconciler = Reconciler(store, provider)
        >>> result = reconciler.reconcile(
        ...     "myapp", 3, template=spec, deploy=executor.deployer_for(run_spec)
        ... )
        >>> [r.name for r in result.succeeded]
        ['myapp-1', 'myapp-2', 'myapp-3']
    """

    def __init__(
        self,
        store: StateStore,
        provider: BaseProvider,
        poller: ReadinessPoller | None = None,
        *,
        max_workers: int = 1,
        reuse_failed: bool = True,
    ) -> None:
        """Initialize the reconciler.

        Args:
            store: State store holding the current truth
            provider: Backend used for new machines
            poller: Readiness poller (defaults to one on ``provider``)
            max_workers: Targets handled concurrently in each phase
            reuse_failed: Whether ``failed`` records count as reusable
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.store = store
        self.provider = provider
        self.poller = poller or ReadinessPoller(provider)
        self.max_workers = max_workers
        self.reuse_failed = reuse_failed

    def plan(
        self,
        records: dict[str, ResourceRecord],
        naming: NamingPattern,
        count: int,
    ) -> ReconcilePlan:
        """Split ``count`` into reused records and names to create.

        Reuse is optimistic: any owned record counts regardless of its last
        known status (``removed`` excepted, ``failed`` only if
        ``reuse_failed``). New names continue after the highest index seen.
        """
        if count < 0:
            raise ValueError("count must not be negative")

        owned = [record for name, record in records.items() if naming.owns(name)]
        reusable = [record for record in owned if self._reusable(record)]
        reusable.sort(key=lambda r: _sort_key(naming, r.name))

        if len(reusable) >= count:
            return ReconcilePlan(reuse=reusable[:count])

        start = naming.next_index(records)
        needed = count - len(reusable)
        return ReconcilePlan(
            reuse=reusable,
            create=[naming.format(start + offset) for offset in range(needed)],
        )

    def reconcile(
        self,
        service: str,
        count: int,
        *,
        template: InstanceSpec,
        deploy: DeployFn | None,
        naming: NamingPattern | None = None,
        kind: DeploymentKind = DeploymentKind.CONTAINER,
    ) -> ReconcileResult:
        """Provision the shortfall and deploy to every target.

        Args:
            service: Service name
            count: Desired number of running deployments
            template: Instance shape; the title is set per machine
            deploy: Per-target deploy callback, or None to skip deploying
                (targets are marked running as-is)
            naming: Naming pattern (defaults to ``{service}-{index}``)
            kind: Recorded on newly created records

        Returns:
            ReconcileResult; ``partial`` is True when some targets failed

        Raises:
            BatchDeploymentError: If no target succeeded
            AuthenticationError: If the provider rejected the credentials
            LockTimeoutError: If the state store stayed locked
        """
        naming = naming or NamingPattern(service)
        plan = self.plan(self.store.read(), naming, count)
        result = ReconcileResult(reused=[record.name for record in plan.reuse])
        targets: list[ResourceRecord] = []

        if plan.reuse:
            logger.info(f"Reusing {len(plan.reuse)} tracked machine(s) for {service}")
            for outcome in self._each(self._revalidate, plan.reuse):
                if isinstance(outcome, ResourceFailure):
                    result.failed.append(outcome)
                else:
                    targets.append(outcome)

        if plan.create:
            logger.info(f"Provisioning {len(plan.create)} new machine(s) for {service}")
            outcomes = self._each(
                lambda name: self._provision(name, template, kind), plan.create
            )
            for outcome in outcomes:
                if isinstance(outcome, ResourceFailure):
                    result.failed.append(outcome)
                else:
                    result.created.append(outcome.name)
                    targets.append(outcome)

        for outcome in self._each(lambda record: self._deploy(record, deploy), targets):
            if isinstance(outcome, ResourceFailure):
                result.failed.append(outcome)
            else:
                result.succeeded.append(outcome)

        if count > 0 and not result.succeeded:
            raise BatchDeploymentError(result.failed)
        if result.failed:
            names = ", ".join(f"{f.name} ({f.stage})" for f in result.failed)
            logger.warning(
                f"{len(result.failed)} of {count} deployment(s) failed: {names}"
            )
        return result

    def _reusable(self, record: ResourceRecord) -> bool:
        if record.status == LifecycleStatus.REMOVED:
            return False
        if record.status == LifecycleStatus.FAILED:
            return self.reuse_failed
        return True

    def _provision(
        self, name: str, template: InstanceSpec, kind: DeploymentKind
    ) -> ResourceRecord | ResourceFailure:
        spec = template.model_copy(update={"title": name})
        try:
            instance = self.provider.create_instance(spec)
        except FATAL_ERRORS:
            raise
        except ProviderError as exc:
            logger.warning(f"{name}: create failed: {exc}")
            return ResourceFailure(name=name, stage="provision", error=exc)

        # Durable before any waiting.
        record = self.store.upsert(
            new_record(
                name=name,
                instance_id=instance.id,
                address=instance.address,
                status=LifecycleStatus.PROVISIONING,
                kind=kind,
            )
        )
        logger.info(f"{name}: created instance {instance.id}, waiting for it to start")
        return self._await_ready(record, instance)

    def _revalidate(self, record: ResourceRecord) -> ResourceRecord | ResourceFailure:
        """Bring a reused record up to date before deploying to it.

        A record an earlier run left at ``provisioning`` or ``ready`` is
        polled again, and a missing address is looked up. Settled records
        with an address are returned without provider calls.
        """
        poll = record.status in UNSETTLED_STATUSES
        if not poll and record.address:
            return record
        instance = Instance(id=record.instance_id, address=record.address)
        return self._await_ready(record, instance, poll=poll)

    def _await_ready(
        self, record: ResourceRecord, instance: Instance, poll: bool = True
    ) -> ResourceRecord | ResourceFailure:
        name = record.name
        changes: dict[str, object] = {}

        if poll:
            try:
                self.poller.wait(instance)
            except FATAL_ERRORS:
                raise
            except ProvisioningTimeoutError as exc:
                logger.warning(
                    f"{name}: {exc}; record kept as {record.status.value}"
                )
                return ResourceFailure(name=name, stage="provision", error=exc)
            except ProviderError as exc:
                logger.warning(f"{name}: {exc}")
                self.store.set_status(name, LifecycleStatus.FAILED)
                return ResourceFailure(name=name, stage="provision", error=exc)
            changes["status"] = LifecycleStatus.READY

        if record.address is None:
            try:
                address = self.provider.instance_address(instance.id)
            except FATAL_ERRORS:
                raise
            except ProviderError as exc:
                logger.warning(f"{name}: could not look up address: {exc}")
                address = None
            if address:
                changes["address"] = address

        if not changes:
            return record
        updated = self.store.patch(name, **changes)
        if poll:
            logger.info(f"{name}: ready")
        return updated or record.model_copy(update=changes)

    def _deploy(
        self, record: ResourceRecord, deploy: DeployFn | None
    ) -> ResourceRecord | ResourceFailure:
        if deploy is None:
            running = self.store.set_status(record.name, LifecycleStatus.RUNNING)
            return running or record.with_status(LifecycleStatus.RUNNING)

        previous = record.status
        self.store.set_status(record.name, LifecycleStatus.DEPLOYING)
        try:
            if not record.address:
                raise DeploymentError(
                    operation="deploy",
                    message=f"{record.name} has no known address",
                )
            containers = deploy(record)
            if not containers:
                raise DeploymentError(
                    operation="deploy",
                    message=f"No containers reported running on {record.name}",
                )
        except FATAL_ERRORS:
            raise
        except Exception as exc:
            logger.warning(f"{record.name}: deploy failed: {exc}")
            self.store.set_status(record.name, previous)
            return ResourceFailure(name=record.name, stage="deploy", error=exc)

        running = self.store.patch(
            record.name, status=LifecycleStatus.RUNNING, containers=containers
        )
        logger.info(f"{record.name}: running ({len(containers)} container(s))")
        return running or record.model_copy(
            update={"status": LifecycleStatus.RUNNING, "containers": containers}
        )

    def _each(self, fn: Callable[[_T], _R], items: Sequence[_T]) -> list[_R]:
        """Apply ``fn`` to each item, in parallel up to ``max_workers``.

        Results keep the order of ``items``.
        """
        if self.max_workers == 1 or len(items) <= 1:
            return [fn(item) for item in items]
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as pool:
            return list(pool.map(fn, items))


def _sort_key(naming: NamingPattern, name: str) -> tuple[int, int, str]:
    index = naming.index_of(name)
    return (0, index, name) if index is not None else (1, 0, name)
