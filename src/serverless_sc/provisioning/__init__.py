"""Service Catalog provisioned-product compiler."""

from .errors import MissingDeploymentBucket, MissingHandler, ProvisioningError, ReadError
from .models import DeployState, Slot, ToggleBranch, ToggleDecision
from .reconciler import CompileReport, ReconcileResult, Reconciler
from .stack import StackStateProbe
from .template import ProvisioningParameterSet, TemplateSink

__all__ = [
    "CompileReport",
    "DeployState",
    "MissingDeploymentBucket",
    "MissingHandler",
    "ProvisioningError",
    "ProvisioningParameterSet",
    "ReadError",
    "ReconcileResult",
    "Reconciler",
    "Slot",
    "StackStateProbe",
    "TemplateSink",
    "ToggleBranch",
    "ToggleDecision",
]
