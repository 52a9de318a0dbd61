"""Deployed-stack inspection for prior version hashes."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from .models import PRIMARY_HASH_OUTPUT, UPDATE_HASH_OUTPUT, DeployState, Slot

logger = logging.getLogger("serverless_sc.provisioning.stack")


class StackInspector(Protocol):
    def get_output(self, stack_name: str, key: str) -> str | None:
        ...


class NullStackInspector:
    """Reports every output as absent; used for offline compiles."""

    def get_output(self, stack_name: str, key: str) -> str | None:
        return None


class CloudFormationStackInspector:
    def __init__(self, *, region: str | None = None, endpoint_url: str | None = None, client: Any = None) -> None:
        if client is None:
            import boto3

            client = boto3.client("cloudformation", region_name=region, endpoint_url=endpoint_url)
        self._client = client

    def get_output(self, stack_name: str, key: str) -> str | None:
        from botocore.exceptions import ClientError

        try:
            response = self._client.describe_stacks(StackName=stack_name)
        except ClientError as exc:
            if _is_stack_missing(exc):
                return None
            raise
        stacks = response.get("Stacks") or []
        if not stacks:
            return None
        for output in stacks[0].get("Outputs") or []:
            if output.get("OutputKey") == key:
                return output.get("OutputValue")
        return None


class StackStateProbe:
    def __init__(self, inspector: StackInspector) -> None:
        self.inspector = inspector

    def probe(self, stack_name: str) -> DeployState:
        try:
            primary = self.inspector.get_output(stack_name, PRIMARY_HASH_OUTPUT)
            if primary:
                logger.info("SC probe: primary hash present (stack=%s)", stack_name)
                return DeployState(is_first_deploy=False, prior_digest=primary, active_slot=Slot.PRIMARY)
            update = self.inspector.get_output(stack_name, UPDATE_HASH_OUTPUT)
        except Exception as exc:
            logger.warning(
                "SC probe: stack inspection failed, assuming first deploy (stack=%s, error=%s)",
                stack_name,
                exc,
            )
            return DeployState.first_deploy()
        if update:
            logger.info("SC probe: update hash present (stack=%s)", stack_name)
            return DeployState(is_first_deploy=False, prior_digest=None, active_slot=Slot.UPDATE)
        logger.info("SC probe: no version hash outputs, first deploy (stack=%s)", stack_name)
        return DeployState.first_deploy()


def _is_stack_missing(exc: Any) -> bool:
    error = exc.response.get("Error", {})
    return error.get("Code") == "ValidationError" and "does not exist" in str(error.get("Message", ""))
