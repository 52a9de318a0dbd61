from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterator

import pytest

from serverless_sc.provisioning.artifacts import LocalArtifactStore
from serverless_sc.provisioning.config import ServiceConfig, parse_service
from serverless_sc.provisioning.digest import digest_bytes
from serverless_sc.provisioning.errors import MissingDeploymentBucket, MissingHandler, ReadError, UnknownFunction
from serverless_sc.provisioning.reconciler import Reconciler
from serverless_sc.provisioning.stack import StackStateProbe
from serverless_sc.provisioning.template import TemplateSink


class FakeInspector:
    def __init__(self, outputs: dict[str, str] | None = None) -> None:
        self.outputs = outputs or {}

    def get_output(self, stack_name: str, key: str) -> str | None:
        return self.outputs.get(key)


class MissingStackInspector:
    def get_output(self, stack_name: str, key: str) -> str | None:
        raise RuntimeError(f"Stack with id {stack_name} does not exist")


class RecordingSink(TemplateSink):
    def __init__(self) -> None:
        super().__init__()
        self.writes: list[tuple[str, str]] = []

    def set_resource(self, logical_id: str, body: dict[str, Any]) -> None:
        self.writes.append(("resource", logical_id))
        super().set_resource(logical_id, body)

    def set_output(self, key: str, body: dict[str, Any]) -> None:
        self.writes.append(("output", key))
        super().set_output(key, body)


class BrokenArtifactStore:
    def open_stream(self, path: str) -> Iterator[bytes]:
        yield b"half"
        raise OSError("read failed")


def _service(tmp_path: Path, **overrides: Any) -> ServiceConfig:
    payload: dict[str, Any] = {
        "service": "orders",
        "provider": {
            "stage": "dev",
            "scProductId": "prod-abc",
            "scProductVersion": "v1",
        },
        "package": {
            "deploymentBucket": "deploy-bucket",
            "artifactDirectoryName": "serverless/orders/dev/1700000000",
        },
        "functions": {"hello": {"handler": "handler.hello"}},
    }
    for key, value in overrides.items():
        payload[key] = value
    return parse_service(payload, service_path=str(tmp_path))


def _write_artifact(tmp_path: Path, content: bytes, name: str = "orders.zip") -> Path:
    path = tmp_path / ".serverless" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def _reconciler(service: ServiceConfig, outputs: dict[str, str] | None = None, **kwargs: Any) -> Reconciler:
    return Reconciler(
        service,
        probe=StackStateProbe(kwargs.pop("inspector", FakeInspector(outputs))),
        artifact_store=kwargs.pop("artifact_store", LocalArtifactStore(chunk_size=2)),
        **kwargs,
    )


def _params(document: dict[str, Any], logical_id: str = "HelloSCProvisionedProduct") -> dict[str, str]:
    entries = document["Resources"][logical_id]["Properties"]["ProvisioningParameters"]
    return {entry["Key"]: entry["Value"] for entry in entries}


def test_first_deploy_writes_primary_slot(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"abc")
    h1 = digest_bytes(b"abc")
    sink = TemplateSink()
    result = _reconciler(_service(tmp_path)).reconcile("hello", sink)

    document = sink.snapshot()
    params = _params(document)
    assert params["LambdaVersionSHA256"] == h1
    assert params["LambdaVersionSHA256Update"] == ""
    assert document["Outputs"]["LambdaVersionHash"]["Value"] == h1
    assert "LambdaVersionHashUpdate" not in document["Outputs"]
    assert "ServiceEndpoint" not in document["Outputs"]
    assert result.state.is_first_deploy is True


def test_same_digest_clears_both_slots(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"abc")
    h1 = digest_bytes(b"abc")
    sink = TemplateSink()
    result = _reconciler(_service(tmp_path), {"LambdaVersionHash": h1}).reconcile("hello", sink)

    document = sink.snapshot()
    params = _params(document)
    assert params["LambdaVersionSHA256"] == ""
    assert params["LambdaVersionSHA256Update"] == ""
    assert "LambdaVersionHash" not in document["Outputs"]
    assert "LambdaVersionHashUpdate" not in document["Outputs"]
    assert document["Outputs"]["ServiceEndpoint"]["Value"] == {"Fn::ImportValue": "orders-dev-hello-ServiceEndpoint"}
    assert result.decision.digest_changed is False


def test_new_digest_toggles_to_update_slot(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"abcd")
    h2 = digest_bytes(b"abcd")
    sink = TemplateSink()
    _reconciler(_service(tmp_path), {"LambdaVersionHash": digest_bytes(b"abc")}).reconcile("hello", sink)

    document = sink.snapshot()
    params = _params(document)
    assert params["LambdaVersionSHA256"] == ""
    assert params["LambdaVersionSHA256Update"] == h2
    assert document["Outputs"]["LambdaVersionHashUpdate"]["Value"] == h2
    assert "LambdaVersionHash" not in document["Outputs"]
    assert "ServiceEndpoint" in document["Outputs"]


def test_update_slot_active_returns_to_primary(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"v3")
    sink = TemplateSink()
    _reconciler(_service(tmp_path), {"LambdaVersionHashUpdate": "h2"}).reconcile("hello", sink)
    document = sink.snapshot()
    assert _params(document)["LambdaVersionSHA256"] == digest_bytes(b"v3")
    assert "LambdaVersionHash" in document["Outputs"]
    assert "ServiceEndpoint" in document["Outputs"]


def test_static_parameters_and_body(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"abc")
    sink = TemplateSink()
    _reconciler(_service(tmp_path)).reconcile("hello", sink)
    document = sink.snapshot()
    resource = document["Resources"]["HelloSCProvisionedProduct"]
    params = _params(document)
    assert list(params) == [
        "BucketName",
        "BucketKey",
        "FunctionName",
        "FunctionStage",
        "FunctionHandler",
        "FunctionRuntime",
        "FunctionMemorySize",
        "FunctionTimeout",
        "LambdaVersionSHA256",
        "LambdaVersionSHA256Update",
    ]
    assert params["BucketName"] == "deploy-bucket"
    assert params["BucketKey"] == "serverless/orders/dev/1700000000/orders.zip"
    assert params["FunctionName"] == "orders-dev-hello"
    assert params["FunctionStage"] == "dev"
    assert params["FunctionHandler"] == "handler.hello"
    assert params["FunctionRuntime"] == "nodejs4.3"
    assert params["FunctionMemorySize"] == "1024"
    assert params["FunctionTimeout"] == "6"
    assert resource["Properties"]["ProductId"] == "prod-abc"
    assert resource["Properties"]["ProvisioningArtifactName"] == "v1"
    assert resource["Properties"]["ProvisionedProductName"] == "provisionSC-orders-dev-hello"
    assert "Tags" not in resource["Properties"]
    assert document["Outputs"]["ProvisionedProductID"]["Value"] == {"Ref": "HelloSCProvisionedProduct"}
    assert document["Outputs"]["ProductCloudformationStackArn"]["Value"] == {
        "Fn::GetAtt": ["HelloSCProvisionedProduct", "CloudformationStackArn"]
    }


def test_settings_precedence(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"abc")
    service = _service(
        tmp_path,
        provider={
            "stage": "dev",
            "scProductId": "prod-abc",
            "memorySize": 512,
            "timeout": "20",
            "runtime": "python3.12",
        },
        functions={"hello": {"handler": "handler.hello", "memorySize": "2048", "timeout": 0}},
    )
    sink = TemplateSink()
    result = _reconciler(service).reconcile("hello", sink)
    assert (result.memory_size, result.timeout, result.runtime) == (2048, 20, "python3.12")
    params = _params(sink.snapshot())
    assert params["FunctionMemorySize"] == "2048"
    assert params["FunctionTimeout"] == "20"
    assert params["FunctionRuntime"] == "python3.12"


def test_tags_merge_function_over_provider(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"abc")
    service = _service(
        tmp_path,
        provider={"stage": "dev", "scProductId": "prod-abc", "tags": {"team": "core", "env": "dev"}},
        functions={"hello": {"handler": "handler.hello", "tags": {"team": "payments"}}},
    )
    sink = TemplateSink()
    _reconciler(service).reconcile("hello", sink)
    tags = sink.snapshot()["Resources"]["HelloSCProvisionedProduct"]["Properties"]["Tags"]
    assert tags == [{"Key": "team", "Value": "payments"}, {"Key": "env", "Value": "dev"}]


def test_missing_bucket_fails_without_writes(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"abc")
    sink = RecordingSink()
    reconciler = _reconciler(_service(tmp_path, package={}))
    with pytest.raises(MissingDeploymentBucket):
        reconciler.reconcile("hello", sink)
    assert sink.writes == []


def test_missing_handler_fails_without_writes(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"abc")
    sink = RecordingSink()
    reconciler = _reconciler(_service(tmp_path, functions={"hello": {"name": "x"}}))
    with pytest.raises(MissingHandler) as excinfo:
        reconciler.reconcile("hello", sink)
    assert excinfo.value.function_key == "hello"
    assert sink.writes == []


def test_bucket_checked_before_handler(tmp_path: Path) -> None:
    reconciler = _reconciler(_service(tmp_path, package={}, functions={"hello": {}}))
    with pytest.raises(MissingDeploymentBucket):
        reconciler.reconcile("hello", RecordingSink())


def test_unreadable_artifact_fails_without_writes(tmp_path: Path) -> None:
    sink = RecordingSink()
    with pytest.raises(ReadError):
        _reconciler(_service(tmp_path)).reconcile("hello", sink)
    sink_broken = RecordingSink()
    with pytest.raises(ReadError):
        _reconciler(_service(tmp_path), artifact_store=BrokenArtifactStore()).reconcile("hello", sink_broken)
    assert sink.writes == []
    assert sink_broken.writes == []


def test_unknown_function(tmp_path: Path) -> None:
    with pytest.raises(UnknownFunction):
        _reconciler(_service(tmp_path)).reconcile("missing", TemplateSink())


def test_missing_stack_is_first_deploy(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"abc")
    sink = TemplateSink()
    result = _reconciler(_service(tmp_path), inspector=MissingStackInspector()).reconcile("hello", sink)
    assert result.state.is_first_deploy is True
    assert "ServiceEndpoint" not in sink.snapshot()["Outputs"]


def test_idempotent_output(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"abc")
    outputs = {"LambdaVersionHash": "older"}
    first = TemplateSink({"AWSTemplateFormatVersion": "2010-09-09"})
    second = TemplateSink({"AWSTemplateFormatVersion": "2010-09-09"})
    _reconciler(_service(tmp_path), outputs).reconcile("hello", first)
    _reconciler(_service(tmp_path), outputs).reconcile("hello", second)
    assert first.to_json() == second.to_json()

    again = _reconciler(_service(tmp_path), outputs)
    again.reconcile("hello", first)
    assert first.to_json() == second.to_json()


def test_individual_artifacts_and_explicit_paths(tmp_path: Path) -> None:
    service = _service(
        tmp_path,
        package={"deploymentBucket": "deploy-bucket", "individually": True},
        functions={
            "hello": {"handler": "handler.hello"},
            "world": {"handler": "handler.world", "package": {"artifact": "build/world.zip"}},
        },
    )
    reconciler = _reconciler(service)
    assert reconciler.resolve_artifact_path("hello", service.functions["hello"]) == os.path.join(
        str(tmp_path), ".serverless", "hello.zip"
    )
    assert reconciler.resolve_artifact_path("world", service.functions["world"]) == os.path.join(
        str(tmp_path), "build/world.zip"
    )

    _write_artifact(tmp_path, b"hello", name="hello.zip")
    sink = TemplateSink()
    reconciler.reconcile("hello", sink)
    assert _params(sink.snapshot())["BucketKey"] == "serverless/orders/dev/hello.zip"


def test_reconcile_all_isolates_failures(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"abc")
    service = _service(
        tmp_path,
        functions={
            "hello": {"handler": "handler.hello"},
            "broken_fn": {"name": "orders-broken"},
        },
    )
    sink = TemplateSink()
    report = _reconciler(service).reconcile_all(sink)
    assert report.ok is False
    assert [result.function_key for result in report.results] == ["hello"]
    assert isinstance(report.failures["broken_fn"], MissingHandler)
    resources = sink.snapshot()["Resources"]
    assert list(resources) == ["HelloSCProvisionedProduct"]
    assert report.as_dict()["failures"]["broken_fn"]["reason_code"] == "HANDLER_MISSING"


def test_stage_override(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"abc")
    sink = TemplateSink()
    result = _reconciler(_service(tmp_path), stage="prod").reconcile("hello", sink)
    assert result.function_name == "orders-prod-hello"
    assert _params(sink.snapshot())["FunctionStage"] == "prod"


class PerPathArtifactStore:
    def __init__(self, failing_suffix: str) -> None:
        self.failing_suffix = failing_suffix

    def open_stream(self, path: str) -> Iterator[bytes]:
        yield b"half"
        if path.endswith(self.failing_suffix):
            raise RuntimeError("connection dropped mid-body")
        yield b"rest"


def test_reconcile_all_isolates_unexpected_stream_errors(tmp_path: Path) -> None:
    service = _service(
        tmp_path,
        package={"deploymentBucket": "deploy-bucket", "individually": True},
        functions={"broken": {"handler": "handler.broken"}, "healthy": {"handler": "handler.healthy"}},
    )
    sink = TemplateSink()
    report = _reconciler(service, artifact_store=PerPathArtifactStore("broken.zip")).reconcile_all(sink)
    assert isinstance(report.failures["broken"], ReadError)
    assert [result.function_key for result in report.results] == ["healthy"]
    assert list(sink.snapshot()["Resources"]) == ["HealthySCProvisionedProduct"]


def test_product_version_omitted_when_unset(tmp_path: Path) -> None:
    _write_artifact(tmp_path, b"abc")
    service = _service(tmp_path, provider={"stage": "dev", "scProductId": "prod-abc"})
    sink = TemplateSink()
    _reconciler(service).reconcile("hello", sink)
    properties = sink.snapshot()["Resources"]["HelloSCProvisionedProduct"]["Properties"]
    assert "ProvisioningArtifactName" not in properties
    assert "null" not in sink.to_json()
