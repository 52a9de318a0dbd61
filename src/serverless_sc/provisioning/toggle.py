"""Two-slot version toggle.

A Lambda version cannot be updated in place by CloudFormation, so the product
template carries two otherwise identical hash parameters and picks whichever is
non-empty. Alternating the live slot between deploys forces a new version.
"""

from __future__ import annotations

from .models import DeployState, Slot, ToggleBranch, ToggleDecision

_BRANCH_TARGETS: dict[ToggleBranch, Slot | None] = {
    ToggleBranch.UNCHANGED: None,
    ToggleBranch.PRIMARY: Slot.PRIMARY,
    ToggleBranch.UPDATE: Slot.UPDATE,
}


def classify(state: DeployState, new_digest: str) -> ToggleBranch:
    if state.prior_digest and state.prior_digest == new_digest:
        return ToggleBranch.UNCHANGED
    if state.is_first_deploy or not state.prior_digest:
        # Only the presence of the update slot is known, never its value.
        return ToggleBranch.PRIMARY
    return ToggleBranch.UPDATE


def select(state: DeployState, new_digest: str) -> ToggleDecision:
    branch = classify(state, new_digest)
    target = _BRANCH_TARGETS[branch]
    return ToggleDecision(
        branch=branch,
        digest_changed=branch is not ToggleBranch.UNCHANGED,
        target_slot=target,
        digest_value=new_digest,
        output_key=target.output_key if target else None,
    )
