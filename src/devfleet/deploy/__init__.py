"""DevFleet deployment engine.

This package holds the reconcile core (state store, providers, readiness
poller, reconciler) and the collaborators it drives: manifest resolvers,
secrets, the SSH deploy executor and the image builder.
"""

from devfleet.deploy.builder import BuildResult, ContainerBuilder, generate_tag
from devfleet.deploy.naming import NamingPattern
from devfleet.deploy.poller import ReadinessPoller
from devfleet.deploy.reconciler import ReconcilePlan, ReconcileResult, Reconciler
from devfleet.deploy.state import StateStore

__all__ = [
    "BuildResult",
    "ContainerBuilder",
    "NamingPattern",
    "ReadinessPoller",
    "ReconcilePlan",
    "ReconcileResult",
    "Reconciler",
    "StateStore",
    "generate_tag",
]
