"""Error kinds raised while compiling provisioned products."""

from __future__ import annotations


class ProvisioningError(RuntimeError):
    """Terminal failure for a single function's reconciliation."""

    reason_code = "PROVISIONING_FAILED"

    def __init__(self, message: str, *, function_key: str | None = None) -> None:
        super().__init__(message)
        self.function_key = function_key


class MissingDeploymentBucket(ProvisioningError):
    reason_code = "DEPLOYMENT_BUCKET_MISSING"


class MissingHandler(ProvisioningError):
    reason_code = "HANDLER_MISSING"


class UnknownFunction(ProvisioningError):
    reason_code = "FUNCTION_UNKNOWN"


class ReadError(ProvisioningError):
    """Artifact bytes could not be read to completion."""

    reason_code = "ARTIFACT_READ_FAILED"
