"""CloudFormation template sink and provisioned-product resource body."""

from __future__ import annotations

import copy
import json
import os
from pathlib import Path
from typing import Any, Iterator

from .models import PRIMARY_HASH_PARAM, UPDATE_HASH_PARAM

PROVISIONED_PRODUCT_TYPE = "AWS::ServiceCatalog::CloudFormationProvisionedProduct"

PROVISIONING_PARAMETER_KEYS: tuple[str, ...] = (
    "BucketName",
    "BucketKey",
    "FunctionName",
    "FunctionStage",
    "FunctionHandler",
    "FunctionRuntime",
    "FunctionMemorySize",
    "FunctionTimeout",
    PRIMARY_HASH_PARAM,
    UPDATE_HASH_PARAM,
)

_PLACEHOLDERS: dict[str, str] = {
    "BucketName": "ServerlessDeploymentBucket",
    "BucketKey": "S3Key",
    "FunctionName": "FunctionName",
    "FunctionStage": "test",
    "FunctionHandler": "Handler",
    "FunctionRuntime": "Runtime",
    "FunctionMemorySize": "MemorySize",
    "FunctionTimeout": "Timeout",
    PRIMARY_HASH_PARAM: "",
    UPDATE_HASH_PARAM: "",
}


class ProvisioningParameterSet:
    """Fixed, ordered provisioning parameters; values change, keys never do."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {key: _PLACEHOLDERS[key] for key in PROVISIONING_PARAMETER_KEYS}

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if key not in self._values:
            raise KeyError(f"unknown provisioning parameter: {key}")
        self._values[key] = str(value)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def update(self, values: dict[str, Any]) -> None:
        for key, value in values.items():
            self[key] = value

    def as_list(self) -> list[dict[str, str]]:
        return [{"Key": key, "Value": value} for key, value in self._values.items()]


def provisioned_product_body(
    parameters: ProvisioningParameterSet,
    *,
    product_id: str,
    product_version: str | None,
    function_name: str,
    tags: dict[str, Any] | None = None,
) -> dict[str, Any]:
    properties: dict[str, Any] = {
        "ProvisioningParameters": parameters.as_list(),
        "ProductId": product_id,
        "ProvisionedProductName": f"provisionSC-{function_name}",
    }
    if product_version is not None:
        properties["ProvisioningArtifactName"] = product_version
    if tags:
        properties["Tags"] = [{"Key": key, "Value": str(value)} for key, value in tags.items()]
    return {"Type": PROVISIONED_PRODUCT_TYPE, "Properties": properties}


class TemplateSink:
    """Write-side view over a compiled CloudFormation template document."""

    def __init__(self, document: dict[str, Any] | None = None) -> None:
        self._document: dict[str, Any] = copy.deepcopy(document) if document else {}
        self._document.setdefault("Resources", {})
        self._document.setdefault("Outputs", {})

    def set_resource(self, logical_id: str, body: dict[str, Any]) -> None:
        self._document["Resources"][logical_id] = copy.deepcopy(body)

    def set_output(self, key: str, body: dict[str, Any]) -> None:
        self._document["Outputs"][key] = copy.deepcopy(body)

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._document)

    def to_json(self) -> str:
        return json.dumps(self._document, indent=2, ensure_ascii=True) + "\n"

    def write(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(self.to_json(), encoding="utf-8")
        os.replace(tmp_path, path)


def load_template(path: Path | None) -> TemplateSink:
    if path is None:
        return TemplateSink({"AWSTemplateFormatVersion": "2010-09-09"})
    if not path.exists():
        raise FileNotFoundError(f"template not found: {path}")
    return TemplateSink(json.loads(path.read_text(encoding="utf-8")))
