"""Deterministic naming helpers for compiled resources and artifacts."""

from __future__ import annotations


def normalize_name(name: str) -> str:
    normalized = name.replace("-", "Dash").replace("_", "Underscore")
    return normalized[:1].upper() + normalized[1:]


def provisioned_product_logical_id(function_key: str) -> str:
    return f"{normalize_name(function_key)}SCProvisionedProduct"


def service_artifact_name(service: str) -> str:
    return f"{service}.zip"


def function_artifact_name(function_key: str) -> str:
    return f"{function_key}.zip"


def default_artifact_directory(service: str, stage: str) -> str:
    return f"serverless/{service}/{stage}"


def artifact_basename(artifact_path: str) -> str:
    return artifact_path.replace("\\", "/").rstrip("/").split("/")[-1]


def service_endpoint_import(function_name: str) -> str:
    return f"{function_name}-ServiceEndpoint"
