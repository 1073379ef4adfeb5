"""
registry.py - Multisig Registry Lifecycle

This module provides the pure functions that create and mutate a multisig
registry record:
1. create_multisig() - Validate owners and threshold, start at seqno 0
2. set_owners() - Replace the owner set and bump the owner-set seqno
3. change_threshold() - Replace the threshold (seqno unchanged)
4. set_owners_and_change_threshold() - Both, applied together
5. require_authority() - Check that a caller is the delegated authority

Every function takes a frozen Multisig and returns a new one. Nothing here
stores state; MultisigProgram commits the returned records.

Threshold and owner count:
    set_owners() does NOT re-validate the threshold. If the new owner set is
    smaller than the threshold, every proposal created afterwards is
    permanently below threshold. The behavior is kept on purpose; use
    set_owners_and_change_threshold() to shrink the set safely.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Iterable, Sequence

from .core import (
    Multisig, Pubkey,
    DuplicateOwner, InvalidOwnersLen, InvalidThreshold, UnauthorizedAuthority,
    authority_of,
)


def assert_unique_owners(owners: Sequence[Pubkey]) -> None:
    """
    Reject an owner list that repeats an identity.

    Raises:
        DuplicateOwner: If any identity appears more than once.
    """
    seen = set()
    for owner in owners:
        if owner in seen:
            raise DuplicateOwner(f"duplicate owner {owner}")
        seen.add(owner)


def validate_threshold(threshold: int, owner_count: int) -> None:
    """
    Require 1 <= threshold <= owner_count.

    Raises:
        InvalidThreshold: If the threshold is out of range.
    """
    if threshold < 1:
        raise InvalidThreshold(f"threshold must be at least 1, got {threshold}")
    if threshold > owner_count:
        raise InvalidThreshold(f"threshold {threshold} exceeds {owner_count} owners")


def create_multisig(
    address: Pubkey,
    owners: Iterable[Pubkey],
    threshold: int,
    nonce: int,
) -> Multisig:
    """
    Create a new multisig registry.

    Args:
        address: Account address of the new registry
        owners: Ordered owner identities (must be unique)
        threshold: Approvals needed to execute a proposal
        nonce: Seed of the delegated authority (see authority_of)

    Returns:
        Multisig with owner_set_seqno = 0

    Raises:
        DuplicateOwner: If an owner repeats
        InvalidThreshold: If threshold < 1 or threshold > len(owners)

    Example:
        authority, nonce = find_authority("ms_1", program_id)
        ms = create_multisig("ms_1", ["alice", "bob", "carol"], 2, nonce)
    """
    owners = tuple(owners)
    assert_unique_owners(owners)
    validate_threshold(threshold, len(owners))
    return Multisig(
        address=address,
        owners=owners,
        threshold=threshold,
        nonce=nonce,
        owner_set_seqno=0,
    )


def set_owners(multisig: Multisig, new_owners: Iterable[Pubkey]) -> Multisig:
    """
    Replace the owner set.

    The owner-set seqno is incremented by exactly one, which makes every
    proposal created under the previous owner set stale. The threshold is
    left unchanged, even if it now exceeds the number of owners.

    Raises:
        DuplicateOwner: If an owner repeats
        InvalidOwnersLen: If new_owners is empty
    """
    new_owners = tuple(new_owners)
    assert_unique_owners(new_owners)
    if not new_owners:
        raise InvalidOwnersLen()
    return replace(
        multisig,
        owners=new_owners,
        owner_set_seqno=multisig.owner_set_seqno + 1,
    )


def change_threshold(multisig: Multisig, threshold: int) -> Multisig:
    """
    Replace the threshold.

    Pending proposals stay fresh: the owner set did not change, so the
    seqno is not touched.

    Raises:
        InvalidThreshold: If threshold < 1 or threshold > len(owners)
    """
    validate_threshold(threshold, len(multisig.owners))
    return replace(multisig, threshold=threshold)


def set_owners_and_change_threshold(
    multisig: Multisig,
    new_owners: Iterable[Pubkey],
    threshold: int,
) -> Multisig:
    """Replace owners, then threshold (validated against the new owners)."""
    return change_threshold(set_owners(multisig, new_owners), threshold)


def require_authority(multisig: Multisig, caller: Pubkey, program_id: Pubkey) -> Pubkey:
    """
    Check that caller is the multisig's delegated authority.

    Owners cannot manage the owner set directly; the call has to be signed
    by the authority, which only happens when an approved proposal executes.

    Returns:
        The derived authority

    Raises:
        UnauthorizedAuthority: If caller is anything else
    """
    authority = authority_of(multisig.address, multisig.nonce, program_id)
    if caller != authority:
        raise UnauthorizedAuthority(f"{caller} is not the authority of {multisig.address}")
    return authority
