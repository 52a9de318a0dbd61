"""Provisioned-product reconciliation (probe -> digest -> toggle -> template)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

from . import toggle
from .artifacts import ArtifactStore
from .config import FunctionConfig, ServiceConfig
from .digest import digest_stream
from .errors import MissingDeploymentBucket, MissingHandler, ProvisioningError, UnknownFunction
from .models import DeployState, ToggleDecision
from .naming import (
    artifact_basename,
    default_artifact_directory,
    function_artifact_name,
    provisioned_product_logical_id,
    service_artifact_name,
    service_endpoint_import,
)
from .stack import StackStateProbe
from .template import ProvisioningParameterSet, TemplateSink, provisioned_product_body

DEFAULT_MEMORY_SIZE = 1024
DEFAULT_TIMEOUT = 6
DEFAULT_RUNTIME = "nodejs4.3"


@dataclass(frozen=True)
class ReconcileResult:
    function_key: str
    function_name: str
    logical_id: str
    artifact_path: str
    memory_size: int | float
    timeout: int | float
    runtime: str
    state: DeployState
    decision: ToggleDecision

    def as_dict(self) -> dict[str, Any]:
        return {
            "function_key": self.function_key,
            "function_name": self.function_name,
            "logical_id": self.logical_id,
            "artifact_path": self.artifact_path,
            "memory_size": self.memory_size,
            "timeout": self.timeout,
            "runtime": self.runtime,
            "state": self.state.as_dict(),
            "decision": self.decision.as_dict(),
        }


@dataclass
class CompileReport:
    results: list[ReconcileResult] = field(default_factory=list)
    failures: dict[str, ProvisioningError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def as_dict(self) -> dict[str, Any]:
        return {
            "results": [result.as_dict() for result in self.results],
            "failures": {
                key: {"reason_code": exc.reason_code, "message": str(exc)} for key, exc in self.failures.items()
            },
        }


class Reconciler:
    def __init__(
        self,
        service: ServiceConfig,
        *,
        probe: StackStateProbe,
        artifact_store: ArtifactStore,
        stage: str | None = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.service = service
        self.probe = probe
        self.artifact_store = artifact_store
        self.stage = service.resolve_stage(stage)

    def reconcile_all(self, sink: TemplateSink) -> CompileReport:
        report = CompileReport()
        for function_key in self.service.functions:
            try:
                report.results.append(self.reconcile(function_key, sink))
            except ProvisioningError as exc:
                self.logger.error(
                    "SC: function reconcile failed (function=%s, reason=%s): %s",
                    function_key,
                    exc.reason_code,
                    exc,
                )
                report.failures[function_key] = exc
        return report

    def reconcile(self, function_key: str, sink: TemplateSink) -> ReconcileResult:
        function = self.service.functions.get(function_key)
        if function is None:
            raise UnknownFunction(f'Unknown function "{function_key}".', function_key=function_key)

        artifact_path = self.resolve_artifact_path(function_key, function)
        bucket = self.service.deployment_bucket
        if not bucket:
            raise MissingDeploymentBucket(
                "Missing provider.deploymentBucket parameter."
                " Please make sure you provide a deployment bucket parameter."
                " SC Provisioned Product cannot create an S3 Bucket.",
                function_key=function_key,
            )
        if not function.handler:
            raise MissingHandler(
                f'Missing "handler" property in function "{function_key}".'
                " Please make sure you point to the correct lambda handler."
                " For example: handler.hello.",
                function_key=function_key,
            )

        provider = self.service.provider
        memory_size = _first_positive(function.memory_size, provider.memory_size, DEFAULT_MEMORY_SIZE)
        timeout = _first_positive(function.timeout, provider.timeout, DEFAULT_TIMEOUT)
        runtime = function.runtime or provider.runtime or DEFAULT_RUNTIME
        function_name = self.service.function_name(function_key, self.stage)
        directory = self.service.package.artifact_directory_name or default_artifact_directory(
            self.service.service, self.stage
        )

        parameters = ProvisioningParameterSet()
        parameters.update(
            {
                "BucketName": bucket,
                "BucketKey": f"{directory}/{artifact_basename(artifact_path)}",
                "FunctionHandler": function.handler,
                "FunctionName": function_name,
                "FunctionMemorySize": memory_size,
                "FunctionTimeout": timeout,
                "FunctionRuntime": runtime,
                "FunctionStage": self.stage,
            }
        )

        stack_name = self.service.stack_name(self.stage)
        state = self.probe.probe(stack_name)
        new_digest = digest_stream(self.artifact_store.open_stream(artifact_path), source=artifact_path)
        decision = toggle.select(state, new_digest)
        self.logger.info(
            "SC: toggle decision (function=%s, branch=%s, prior=%s, digest=%s)",
            function_key,
            decision.branch.value,
            state.prior_digest or "",
            new_digest,
        )
        parameters.update(decision.slot_values())

        tags: dict[str, Any] = {}
        if function.tags or provider.tags:
            tags = {**provider.tags, **function.tags}

        logical_id = provisioned_product_logical_id(function_key)
        body = provisioned_product_body(
            parameters,
            product_id=provider.sc_product_id or "",
            product_version=provider.sc_product_version,
            function_name=function_name,
            tags=tags,
        )

        sink.set_resource(logical_id, body)
        sink.set_output(
            "ProvisionedProductID",
            {"Description": "Provisioned product ID", "Value": {"Ref": logical_id}},
        )
        sink.set_output(
            "ProductCloudformationStackArn",
            {
                "Description": "The Arn of the created Service Catalog product CloudFormation Stack",
                "Value": {"Fn::GetAtt": [logical_id, "CloudformationStackArn"]},
            },
        )
        if decision.output_key:
            sink.set_output(
                decision.output_key,
                {"Description": "SHA256 hash of the latest lambda version", "Value": new_digest},
            )
        if not state.is_first_deploy:
            sink.set_output(
                "ServiceEndpoint",
                {
                    "Description": "URL of the service endpoint",
                    "Value": {"Fn::ImportValue": service_endpoint_import(function_name)},
                },
            )

        return ReconcileResult(
            function_key=function_key,
            function_name=function_name,
            logical_id=logical_id,
            artifact_path=artifact_path,
            memory_size=memory_size,
            timeout=timeout,
            runtime=runtime,
            state=state,
            decision=decision,
        )

    def resolve_artifact_path(self, function_key: str, function: FunctionConfig) -> str:
        package = self.service.package
        artifact = function.package.artifact or package.artifact
        if artifact:
            if artifact.startswith("s3://") or os.path.isabs(artifact):
                return artifact
            return os.path.join(self.service.service_path, artifact)
        if package.individually or function.package.individually:
            file_name = function_artifact_name(function_key)
        else:
            file_name = service_artifact_name(self.service.service)
        package_dir = package.path or os.path.join(self.service.service_path, ".serverless")
        return os.path.join(package_dir, file_name)


def _first_positive(*candidates: Any) -> int | float:
    for candidate in candidates:
        try:
            number = float(candidate)
        except (TypeError, ValueError):
            continue
        if number > 0:
            return int(number) if number.is_integer() else number
    raise ValueError("no positive value among candidates")
