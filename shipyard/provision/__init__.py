"""Provisioning: converge live infrastructure to the declared resource graph."""

from .drivers import DriverError, DriverSet, LocalResourceDriver, ResourceDriver, SecretDriver, local_drivers
from .provisioner import (
    ApplyReport,
    DestroyReport,
    Plan,
    PlanAction,
    PlannedChange,
    ProvisionError,
    ProvisionFailure,
    Provisioner,
)
from .state import ProvisionState, ResourceRecord, StateError, load_state, save_state

__all__ = [
    "ApplyReport",
    "DestroyReport",
    "DriverError",
    "DriverSet",
    "LocalResourceDriver",
    "Plan",
    "PlanAction",
    "PlannedChange",
    "ProvisionError",
    "ProvisionFailure",
    "ProvisionState",
    "Provisioner",
    "ResourceDriver",
    "ResourceRecord",
    "SecretDriver",
    "StateError",
    "load_state",
    "local_drivers",
    "save_state",
]
