"""Configuration loader for serverless service definitions."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

DEFAULT_STAGE = "dev"


class ServiceConfigError(ValueError):
    """Raised when a service definition cannot be loaded or validated."""


class _ServerlessModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class FunctionPackage(_ServerlessModel):
    artifact: str | None = None
    individually: bool = False


class FunctionConfig(_ServerlessModel):
    name: str | None = None
    handler: str | None = None
    memory_size: int | str | None = Field(default=None, alias="memorySize")
    timeout: int | str | None = None
    runtime: str | None = None
    tags: dict[str, Any] = Field(default_factory=dict)
    package: FunctionPackage = Field(default_factory=FunctionPackage)


class ProviderConfig(_ServerlessModel):
    name: str = "aws"
    stage: str | None = None
    region: str | None = None
    stack_name: str | None = Field(default=None, alias="stackName")
    runtime: str | None = None
    memory_size: int | str | None = Field(default=None, alias="memorySize")
    timeout: int | str | None = None
    tags: dict[str, Any] = Field(default_factory=dict)
    deployment_bucket: str | None = Field(default=None, alias="deploymentBucket")
    sc_product_id: str | None = Field(default=None, alias="scProductId")
    sc_product_version: str | None = Field(default=None, alias="scProductVersion")


class PackageConfig(_ServerlessModel):
    deployment_bucket: str | None = Field(default=None, alias="deploymentBucket")
    artifact_directory_name: str | None = Field(default=None, alias="artifactDirectoryName")
    artifact: str | None = None
    individually: bool = False
    path: str | None = None


class ServiceConfig(_ServerlessModel):
    service: str
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    package: PackageConfig = Field(default_factory=PackageConfig)
    functions: dict[str, FunctionConfig] = Field(default_factory=dict)
    service_path: str = "."

    @property
    def service_catalog_enabled(self) -> bool:
        return bool(self.provider.sc_product_id)

    @property
    def deployment_bucket(self) -> str | None:
        return self.package.deployment_bucket or self.provider.deployment_bucket

    def resolve_stage(self, override: str | None = None) -> str:
        return override or self.provider.stage or DEFAULT_STAGE

    def stack_name(self, stage: str) -> str:
        return self.provider.stack_name or f"{self.service}-{stage}"

    def function_name(self, function_key: str, stage: str) -> str:
        function = self.functions[function_key]
        return function.name or f"{self.service}-{stage}-{function_key}"


def _expand_str(value: str) -> str:
    def replacer(match: re.Match[str]) -> str:
        token = match.group(1)
        if ":-" in token:
            key, default = token.split(":-", 1)
            actual = os.getenv(key, "")
            return actual if actual.strip() else default
        actual = os.getenv(token, "")
        if not actual.strip():
            raise ServiceConfigError(f"missing environment variable: {token}")
        return actual

    return _VAR_PATTERN.sub(replacer, value)


def _expand_payload(value: Any) -> Any:
    if isinstance(value, str):
        return _expand_str(value)
    if isinstance(value, list):
        return [_expand_payload(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _expand_payload(item) for key, item in value.items()}
    return value


def _normalize_functions(payload: dict[str, Any]) -> None:
    # A bare `hello:` entry in YAML loads as None.
    functions = payload.get("functions") or {}
    if not isinstance(functions, dict):
        raise ServiceConfigError("functions must be a mapping")
    payload["functions"] = {str(key): (value or {}) for key, value in functions.items()}
    for section in ("provider", "package"):
        if payload.get(section) is None:
            payload.pop(section, None)


def parse_service(payload: Any, *, service_path: str = ".") -> ServiceConfig:
    if not isinstance(payload, dict):
        raise ServiceConfigError("service definition must be a mapping")
    expanded = _expand_payload(payload)
    _normalize_functions(expanded)
    expanded.setdefault("service_path", service_path)
    try:
        return ServiceConfig(**expanded)
    except ValidationError as exc:
        raise ServiceConfigError(f"invalid service definition: {exc}") from exc


def load_service(path: Path) -> ServiceConfig:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ServiceConfigError(f"service definition not readable: {path}") from exc
    except yaml.YAMLError as exc:
        raise ServiceConfigError(f"service definition is not valid YAML: {path}: {exc}") from exc
    return parse_service(data, service_path=str(path.parent))


def resolve_region(region: str | None = None) -> str | None:
    return region or os.getenv("AWS_DEFAULT_REGION") or os.getenv("AWS_REGION")


def resolve_endpoint_url(endpoint_url: str | None = None) -> str | None:
    return endpoint_url or os.getenv("AWS_ENDPOINT_URL")
