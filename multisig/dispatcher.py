"""
dispatcher.py - Execution Dispatch

This module provides the execution half of the engine:
1. Dispatcher protocol - the external collaborator that performs a call
2. DispatchResult - pass/fail outcome of one dispatched call
3. ProgramRouter - stock Dispatcher routing calls by program id
4. check_executable() - the execute-time checks, in order
5. build_signed_instruction() - substitute the authority as signer
6. check_resolved_accounts() - every referenced account must be supplied
7. mark_executed() - the terminal state transition

The engine assumes nothing about a dispatched call beyond pass/fail.
MultisigProgram.execute_transaction() wires these together and rolls the
whole operation back if the call fails.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Protocol, Tuple, Union

from .core import (
    AccountMeta, Multisig, MultisigTransaction, Pubkey, TargetAction,
    AlreadyExecuted, InsufficientApprovals, NotEnoughAccountKeys,
    authority_of,
)
from .proposal import check_fresh, has_threshold


# ============================================================================
# DISPATCH INTERFACE
# ============================================================================

@dataclass(frozen=True, slots=True)
class DispatchResult:
    """
    Outcome of a dispatched call.

    Attributes:
        success: True if the downstream call completed.
        error: Description of the failure (empty on success).
        cause: The exception raised by the downstream call, if any.
    """
    success: bool
    error: str = ""
    cause: Optional[BaseException] = None

    @classmethod
    def ok(cls) -> DispatchResult:
        return cls(success=True)

    @classmethod
    def failed(cls, error: str, cause: Optional[BaseException] = None) -> DispatchResult:
        return cls(success=False, error=error, cause=cause)


class Dispatcher(Protocol):
    """
    External collaborator that performs a delegated call.

    dispatch() runs synchronously and reports pass/fail. `signers` holds the
    signing capabilities attached to the call (the multisig's authority).
    """

    def dispatch(self, instruction: TargetAction, signers: FrozenSet[Pubkey]) -> DispatchResult:
        ...


# A program's entry point. Returning None counts as success.
Handler = Callable[[TargetAction, FrozenSet[Pubkey]], Optional[DispatchResult]]


class ProgramRouter:
    """
    Dispatcher that routes each call to the handler registered for its
    program id.

    An exception raised by a handler becomes a failed result carrying it as
    `cause`. Only BaseExceptions outside Exception (KeyboardInterrupt,
    SystemExit) propagate.

    Example:
        router = ProgramRouter()
        router.register("memo", lambda ix, signers: None)
        program = MultisigProgram(dispatcher=router)
    """

    def __init__(self, handlers: Optional[Dict[Pubkey, Handler]] = None):
        self.handlers: Dict[Pubkey, Handler] = dict(handlers or {})

    def register(self, program_id: Pubkey, handler: Handler) -> None:
        """
        Register the handler for a program id.

        Raises:
            ValueError: If the program id already has a handler
        """
        if program_id in self.handlers:
            raise ValueError(f"Program {program_id} already registered")
        self.handlers[program_id] = handler

    def dispatch(self, instruction: TargetAction, signers: FrozenSet[Pubkey]) -> DispatchResult:
        handler = self.handlers.get(instruction.program_id)
        if handler is None:
            return DispatchResult.failed(f"program not found: {instruction.program_id}")
        try:
            result = handler(instruction, signers)
        except Exception as exc:
            return DispatchResult.failed(f"{type(exc).__name__}: {exc}", cause=exc)
        return result if result is not None else DispatchResult.ok()


# ============================================================================
# EXECUTION STEPS
# ============================================================================

def check_executable(multisig: Multisig, transaction: MultisigTransaction) -> None:
    """
    Run the execute-time checks, in order.

    Raises:
        AlreadyExecuted: If the proposal already executed
        StaleOwnerSet: If the owner set changed since creation
        InsufficientApprovals: If approvals are below the threshold
    """
    if transaction.did_execute:
        raise AlreadyExecuted(transaction.address)
    check_fresh(multisig, transaction)
    if not has_threshold(multisig, transaction):
        raise InsufficientApprovals(
            f"{len(transaction.approvals)} of {multisig.threshold} approvals"
        )


def build_signed_instruction(action: TargetAction, authority: Pubkey) -> TargetAction:
    """
    Return the action with the authority's account marked as signer.

    The stored action may list the authority as a non-signer (clients cannot
    sign for it); the program signs on the multisig's behalf at execution.
    """
    accounts = tuple(
        replace(meta, is_signer=True) if meta.pubkey == authority else meta
        for meta in action.accounts
    )
    return replace(action, accounts=accounts)


def check_resolved_accounts(
    action: TargetAction,
    resolved_accounts: Optional[Iterable[Union[AccountMeta, Pubkey]]],
) -> None:
    """
    Require every account the action references to be supplied.

    The target program id counts as a referenced account. Passing None
    skips the check.

    Raises:
        NotEnoughAccountKeys: If any referenced account is missing
    """
    if resolved_accounts is None:
        return
    supplied = {
        item.pubkey if isinstance(item, AccountMeta) else item
        for item in resolved_accounts
    }
    required = [action.program_id] + [meta.pubkey for meta in action.accounts]
    missing = [pubkey for pubkey in required if pubkey not in supplied]
    if missing:
        raise NotEnoughAccountKeys(f"missing {', '.join(missing)}")


def prepare_execution(
    multisig: Multisig,
    transaction: MultisigTransaction,
    program_id: Pubkey,
    resolved_accounts: Optional[Iterable[Union[AccountMeta, Pubkey]]] = None,
) -> Tuple[TargetAction, FrozenSet[Pubkey]]:
    """
    Validate a proposal for execution and build the call to dispatch.

    Returns:
        (instruction, signers): the signed instruction and the signing
        capabilities to attach ({authority})

    Raises:
        AlreadyExecuted, StaleOwnerSet, InsufficientApprovals,
        NotEnoughAccountKeys
    """
    check_executable(multisig, transaction)
    check_resolved_accounts(transaction.action, resolved_accounts)
    authority = authority_of(multisig.address, multisig.nonce, program_id)
    instruction = build_signed_instruction(transaction.action, authority)
    return instruction, frozenset([authority])


def mark_executed(transaction: MultisigTransaction) -> MultisigTransaction:
    """Return the proposal in its terminal executed state."""
    if transaction.did_execute:
        raise AlreadyExecuted(transaction.address)
    return replace(transaction, did_execute=True)
