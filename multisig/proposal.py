"""
proposal.py - Transaction Proposals and Approval Accounting

A proposal (MultisigTransaction) records one delegated action, the owners
that approved it, and the registry's owner-set seqno at creation time.

Stored state is only `approvals` and `did_execute`. Everything else is
derived against the live registry on every access:

    stale       = proposal.owner_set_seqno != multisig.owner_set_seqno
    threshold   = len(proposal.approvals) >= multisig.threshold
    executable  = not did_execute and not stale and threshold

All functions are pure: they take frozen records and return new ones.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Tuple

from .core import (
    Multisig, MultisigTransaction, Pubkey, TargetAction,
    AlreadyExecuted, OwnerNotFound, StaleOwnerSet,
)


def create_transaction(
    multisig: Multisig,
    address: Pubkey,
    action: TargetAction,
    proposer: Pubkey,
) -> MultisigTransaction:
    """
    Create a proposal for a delegated action.

    Creating a proposal counts as the proposer's approval.

    Args:
        multisig: Registry the proposal belongs to
        address: Account address of the new proposal
        action: The delegated call to perform once approved
        proposer: Owner creating the proposal

    Returns:
        MultisigTransaction with approvals = {proposer}

    Raises:
        OwnerNotFound: If proposer is not an owner
    """
    if not multisig.is_owner(proposer):
        raise OwnerNotFound(f"{proposer} is not an owner of {multisig.address}")
    return MultisigTransaction(
        address=address,
        multisig=multisig.address,
        action=action,
        proposer=proposer,
        approvals=frozenset([proposer]),
        owner_set_seqno=multisig.owner_set_seqno,
        did_execute=False,
    )


def is_stale(multisig: Multisig, transaction: MultisigTransaction) -> bool:
    """Return True if the owner set changed since the proposal was created."""
    return transaction.owner_set_seqno != multisig.owner_set_seqno


def check_fresh(multisig: Multisig, transaction: MultisigTransaction) -> None:
    """
    Raises:
        StaleOwnerSet: If the proposal was created under an older owner set
    """
    if is_stale(multisig, transaction):
        raise StaleOwnerSet(
            f"{transaction.address} recorded seqno {transaction.owner_set_seqno}, "
            f"registry is at {multisig.owner_set_seqno}"
        )


def approve(
    multisig: Multisig,
    transaction: MultisigTransaction,
    owner: Pubkey,
) -> MultisigTransaction:
    """
    Record an owner's approval.

    Approving twice is not an error: the approval set is unchanged and the
    same record is returned.

    Raises:
        OwnerNotFound: If owner is not in the current owner set
        AlreadyExecuted: If the proposal already executed
        StaleOwnerSet: If the owner set changed since creation
    """
    if not multisig.is_owner(owner):
        raise OwnerNotFound(f"{owner} is not an owner of {multisig.address}")
    if transaction.did_execute:
        raise AlreadyExecuted(transaction.address)
    check_fresh(multisig, transaction)
    if owner in transaction.approvals:
        return transaction
    return replace(transaction, approvals=transaction.approvals | {owner})


def has_threshold(multisig: Multisig, transaction: MultisigTransaction) -> bool:
    """Return True if the proposal has at least `threshold` approvals."""
    return len(transaction.approvals) >= multisig.threshold


def is_executable(multisig: Multisig, transaction: MultisigTransaction) -> bool:
    """Return True if execute_transaction would pass its checks."""
    return (
        not transaction.did_execute
        and not is_stale(multisig, transaction)
        and has_threshold(multisig, transaction)
    )


def missing_approvals(multisig: Multisig, transaction: MultisigTransaction) -> int:
    """Number of further approvals needed to reach the threshold (0 if reached)."""
    return max(0, multisig.threshold - len(transaction.approvals))


def approved_owners(multisig: Multisig, transaction: MultisigTransaction) -> Tuple[Pubkey, ...]:
    """Approving owners, in the registry's owner order."""
    return tuple(o for o in multisig.owners if o in transaction.approvals)
