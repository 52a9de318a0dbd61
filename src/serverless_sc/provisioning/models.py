"""Deploy-state and toggle-decision models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


PRIMARY_HASH_OUTPUT = "LambdaVersionHash"
UPDATE_HASH_OUTPUT = "LambdaVersionHashUpdate"

PRIMARY_HASH_PARAM = "LambdaVersionSHA256"
UPDATE_HASH_PARAM = "LambdaVersionSHA256Update"


class Slot(str, Enum):
    PRIMARY = "primary"
    UPDATE = "update"

    @property
    def parameter_key(self) -> str:
        return PRIMARY_HASH_PARAM if self is Slot.PRIMARY else UPDATE_HASH_PARAM

    @property
    def output_key(self) -> str:
        return PRIMARY_HASH_OUTPUT if self is Slot.PRIMARY else UPDATE_HASH_OUTPUT


class ToggleBranch(str, Enum):
    UNCHANGED = "UNCHANGED"
    PRIMARY = "PRIMARY"
    UPDATE = "UPDATE"


@dataclass(frozen=True)
class DeployState:
    is_first_deploy: bool
    prior_digest: str | None = None
    active_slot: Slot | None = None

    @classmethod
    def first_deploy(cls) -> "DeployState":
        return cls(is_first_deploy=True, prior_digest=None, active_slot=None)

    def as_dict(self) -> dict[str, object]:
        return {
            "is_first_deploy": self.is_first_deploy,
            "prior_digest": self.prior_digest,
            "active_slot": self.active_slot.value if self.active_slot else None,
        }


@dataclass(frozen=True)
class ToggleDecision:
    branch: ToggleBranch
    digest_changed: bool
    target_slot: Slot | None
    digest_value: str
    output_key: str | None

    def slot_values(self) -> dict[str, str]:
        """Parameter writes for both slots; the slot not targeted is cleared."""
        values = {PRIMARY_HASH_PARAM: "", UPDATE_HASH_PARAM: ""}
        if self.target_slot is not None:
            values[self.target_slot.parameter_key] = self.digest_value
        return values

    def as_dict(self) -> dict[str, object]:
        return {
            "branch": self.branch.value,
            "digest_changed": self.digest_changed,
            "target_slot": self.target_slot.value if self.target_slot else None,
            "digest_value": self.digest_value,
            "output_key": self.output_key,
        }
