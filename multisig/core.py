"""
Core types and pure functions for the multisig approval engine.

This module provides the foundational data structures and protocols:
1. Protocols: ProgramView for read-only access to program accounts
2. Immutable data structures: AccountMeta, TargetAction, Multisig,
   MultisigTransaction, AccountStateChange, OperationRecord
3. Exceptions: MultisigError and the stable (code, message) taxonomy
4. Type aliases: Pubkey, AccountState
5. Delegated authority derivation: authority_of, find_authority

All functions in this module are pure. No function can mutate program state.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from enum import Enum
import hashlib
from typing import (
    Any, ClassVar, Dict, FrozenSet, Optional, Protocol,
    Tuple, Union, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Program id used when a MultisigProgram is created without one.
DEFAULT_PROGRAM_ID = "multisig_program"

# First code of the program-specific error range. Lower codes belong to the
# runtime framework (instruction decoding, account loading).
ERROR_CODE_OFFSET = 6000

# Highest (and canonical) authority nonce. Seeds are a single byte.
CANONICAL_NONCE = 255

# Appended to every derivation so authorities cannot collide with plain hashes.
AUTHORITY_MARKER = b"ProgramDerivedAddress"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Owners, proposers, program ids, account addresses and authorities.
Pubkey = str

# A stored account: either a registry or a proposal record.
AccountState = Union['Multisig', 'MultisigTransaction']


# ============================================================================
# ERROR CODES
# ============================================================================

class ErrorCode(Enum):
    """
    Stable (number, message) pairs surfaced to callers.

    Numbers below ERROR_CODE_OFFSET are framework errors raised while
    decoding instructions or loading accounts; the rest are program errors.
    """
    INSTRUCTION_FALLBACK_NOT_FOUND = (101, "Fallback functions are not supported")
    INSTRUCTION_DID_NOT_DESERIALIZE = (102, "The program could not deserialize the given instruction")
    ACCOUNT_DISCRIMINATOR_ALREADY_SET = (3000, "The account discriminator was already set on this account")
    NOT_ENOUGH_ACCOUNT_KEYS = (3005, "Not enough account keys given to the instruction")
    ACCOUNT_NOT_INITIALIZED = (3012, "The program expected this account to be already initialized")

    INVALID_OWNER = (6000, "The given owner is not part of this multisig.")
    INVALID_OWNERS_LEN = (6001, "Owners length must be non zero.")
    NOT_ENOUGH_SIGNERS = (6002, "Not enough owners signed this transaction.")
    ALREADY_EXECUTED = (6006, "The given transaction has already been executed.")
    INVALID_THRESHOLD = (6007, "Threshold must be less than or equal to the number of owners.")
    UNIQUE_OWNERS = (6008, "Owners must be unique")
    STALE_OWNER_SET = (6009, "The owner set changed since this transaction was created.")
    UNAUTHORIZED_AUTHORITY = (6010, "The caller is not the multisig's delegated authority.")
    DOWNSTREAM_DISPATCH_FAILED = (6011, "The delegated instruction failed.")

    def __init__(self, number: int, message: str):
        self.number = number
        self.message = message

    @property
    def is_program_error(self) -> bool:
        """True for program errors, False for framework errors."""
        return self.number >= ERROR_CODE_OFFSET


# ============================================================================
# EXCEPTIONS
# ============================================================================

class MultisigError(Exception):
    """
    Base exception for all multisig errors.

    Every concrete subclass is bound to one ErrorCode. The exception text is
    the code's message, followed by the optional detail in parentheses.
    """
    error_code: ClassVar[Optional[ErrorCode]] = None

    def __init__(self, detail: str = ""):
        self.detail = detail
        text = self.message
        if detail:
            text = f"{text} ({detail})" if text else detail
        super().__init__(text)

    @property
    def code(self) -> Optional[int]:
        """Numeric error code, or None for the abstract base."""
        return self.error_code.number if self.error_code else None

    @property
    def message(self) -> str:
        """Human-readable message of the error code."""
        return self.error_code.message if self.error_code else ""


class InstructionFallbackNotFound(MultisigError):
    """Raised when instruction data names no known instruction."""
    error_code = ErrorCode.INSTRUCTION_FALLBACK_NOT_FOUND


class InstructionDidNotDeserialize(MultisigError):
    """Raised when instruction data is truncated or has trailing bytes."""
    error_code = ErrorCode.INSTRUCTION_DID_NOT_DESERIALIZE


class AccountDiscriminatorAlreadySet(MultisigError):
    """Raised when creating an account at an address that is already in use."""
    error_code = ErrorCode.ACCOUNT_DISCRIMINATOR_ALREADY_SET


class NotEnoughAccountKeys(MultisigError):
    """Raised when the resolved accounts do not cover an action's account list."""
    error_code = ErrorCode.NOT_ENOUGH_ACCOUNT_KEYS


class AccountNotInitialized(MultisigError):
    """Raised when loading an address that holds no account of the expected kind."""
    error_code = ErrorCode.ACCOUNT_NOT_INITIALIZED


class OwnerNotFound(MultisigError):
    """Raised when a proposer or approver is not in the current owner set."""
    error_code = ErrorCode.INVALID_OWNER


class InvalidOwnersLen(MultisigError):
    """Raised when an owner set would become empty."""
    error_code = ErrorCode.INVALID_OWNERS_LEN


class InsufficientApprovals(MultisigError):
    """Raised when executing a proposal below the threshold."""
    error_code = ErrorCode.NOT_ENOUGH_SIGNERS


class AlreadyExecuted(MultisigError):
    """Raised when approving or executing a proposal that already executed."""
    error_code = ErrorCode.ALREADY_EXECUTED


class InvalidThreshold(MultisigError):
    """Raised when a threshold is outside [1, len(owners)]."""
    error_code = ErrorCode.INVALID_THRESHOLD


class DuplicateOwner(MultisigError):
    """Raised when an owner list repeats an identity."""
    error_code = ErrorCode.UNIQUE_OWNERS


class StaleOwnerSet(MultisigError):
    """Raised when a proposal was created under an older owner set."""
    error_code = ErrorCode.STALE_OWNER_SET


class UnauthorizedAuthority(MultisigError):
    """Raised when owner management is not signed by the multisig's authority."""
    error_code = ErrorCode.UNAUTHORIZED_AUTHORITY


class DownstreamDispatchFailed(MultisigError):
    """Raised when the dispatched action fails; the proposal stays retryable."""
    error_code = ErrorCode.DOWNSTREAM_DISPATCH_FAILED


# ============================================================================
# DELEGATED AUTHORITY
# ============================================================================

def authority_of(address: Pubkey, nonce: int, program_id: Pubkey) -> Pubkey:
    """
    Derive the delegated authority of a multisig.

    The derivation is a pure function of the registry address, its nonce
    and the owning program: sha256(address || nonce || program_id || marker).
    The result is only ever used as a capability token, never as an
    account that holds data.

    Raises:
        ValueError: If nonce does not fit in one byte.
    """
    if not 0 <= nonce <= 255:
        raise ValueError(f"nonce must be in [0, 255], got {nonce}")
    digest = hashlib.sha256()
    digest.update(address.encode())
    digest.update(bytes([nonce]))
    digest.update(program_id.encode())
    digest.update(AUTHORITY_MARKER)
    return digest.hexdigest()


def find_authority(address: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Return the canonical (authority, nonce) pair for a multisig address."""
    return authority_of(address, CANONICAL_NONCE, program_id), CANONICAL_NONCE


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class ProgramView(Protocol):
    """
    Read-only interface to the program's accounts.

    Functions accepting a ProgramView declare their read-only intent.
    MultisigProgram implements this protocol but also provides the
    mutating operations.
    """

    @property
    def program_id(self) -> Pubkey:
        """Return the id of the program owning the accounts."""
        ...

    def get_multisig(self, address: Pubkey) -> 'Multisig':
        """Return the registry stored at address."""
        ...

    def get_transaction(self, address: Pubkey) -> 'MultisigTransaction':
        """Return the proposal stored at address."""
        ...

    def list_multisigs(self) -> Tuple[Pubkey, ...]:
        """Return the addresses of all registries, sorted."""
        ...

    def authority_of(self, address: Pubkey) -> Pubkey:
        """Return the delegated authority of the registry at address."""
        ...


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

def _require_identity(value: Any, label: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} cannot be empty")


@dataclass(frozen=True, slots=True)
class AccountMeta:
    """
    One account reference of a target action.

    Attributes:
        pubkey: The referenced account.
        is_signer: Whether the call must be signed by this account.
        is_writable: Whether the call may modify this account.
    """
    pubkey: Pubkey
    is_signer: bool = False
    is_writable: bool = False

    def __post_init__(self):
        _require_identity(self.pubkey, "AccountMeta pubkey")

    def __repr__(self) -> str:
        flags = ("s" if self.is_signer else "-") + ("w" if self.is_writable else "-")
        return f"AccountMeta({self.pubkey} {flags})"


@dataclass(frozen=True, slots=True)
class TargetAction:
    """
    Opaque descriptor of a delegated call.

    The engine never interprets the payload. It only substitutes the
    multisig's authority as signer and hands the call to a dispatcher.

    Attributes:
        program_id: The program the call is addressed to.
        accounts: Ordered account references, each tagged signer/writable.
        data: Opaque payload bytes.
    """
    program_id: Pubkey
    accounts: Tuple[AccountMeta, ...]
    data: bytes

    def __post_init__(self):
        _require_identity(self.program_id, "TargetAction program_id")
        if not isinstance(self.accounts, tuple):
            object.__setattr__(self, 'accounts', tuple(self.accounts))
        for meta in self.accounts:
            if not isinstance(meta, AccountMeta):
                raise ValueError(f"TargetAction accounts must be AccountMeta, got {type(meta)}")
        if isinstance(self.data, bytearray):
            object.__setattr__(self, 'data', bytes(self.data))
        if not isinstance(self.data, bytes):
            raise ValueError(f"TargetAction data must be bytes, got {type(self.data)}")

    @property
    def digest(self) -> str:
        """
        Deterministic content hash of the action.

        Two actions with the same target, account list and payload always
        have the same digest. Used for audit output only.
        """
        parts = [f"program:{self.program_id}"]
        for meta in self.accounts:
            parts.append(f"account:{meta.pubkey}|{int(meta.is_signer)}|{int(meta.is_writable)}")
        parts.append(f"data:{self.data.hex()}")
        return hashlib.sha256("|".join(parts).encode()).hexdigest()[:16]

    def __repr__(self) -> str:
        return f"TargetAction({self.program_id}, {len(self.accounts)} accounts, {len(self.data)} bytes)"


@dataclass(frozen=True, slots=True)
class Multisig:
    """
    A multisig registry: owner set, threshold and owner-set version.

    Attributes:
        address: Account address of the registry.
        owners: Ordered, unique owner identities.
        threshold: Approvals needed to execute a proposal.
        nonce: Seed for deriving the delegated authority.
        owner_set_seqno: Incremented by exactly 1 on every owner-set change.
    """
    address: Pubkey
    owners: Tuple[Pubkey, ...]
    threshold: int
    nonce: int
    owner_set_seqno: int = 0
    _owner_set: FrozenSet[Pubkey] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        _require_identity(self.address, "Multisig address")
        if not isinstance(self.owners, tuple):
            object.__setattr__(self, 'owners', tuple(self.owners))
        for owner in self.owners:
            _require_identity(owner, "Multisig owner")
        if not isinstance(self.threshold, int) or isinstance(self.threshold, bool):
            raise ValueError(f"threshold must be int, got {type(self.threshold)}")
        if not 0 <= self.nonce <= 255:
            raise ValueError(f"nonce must be in [0, 255], got {self.nonce}")
        if self.owner_set_seqno < 0:
            raise ValueError(f"owner_set_seqno must be non-negative, got {self.owner_set_seqno}")
        object.__setattr__(self, '_owner_set', frozenset(self.owners))

    def is_owner(self, pubkey: Pubkey) -> bool:
        """Return True if pubkey is in the current owner set."""
        return pubkey in self._owner_set

    def __repr__(self) -> str:
        return (f"Multisig({self.address}: {self.threshold}-of-{len(self.owners)}, "
                f"seqno={self.owner_set_seqno})")


@dataclass(frozen=True, slots=True)
class MultisigTransaction:
    """
    A pending delegated action awaiting owner approvals.

    Attributes:
        address: Account address of the proposal.
        multisig: Address of the registry this proposal belongs to.
        action: The delegated call.
        proposer: Owner that created the proposal.
        approvals: Owners that approved (the proposer included).
        owner_set_seqno: Registry seqno when the proposal was created.
        did_execute: True once executed; never reverts.
    """
    address: Pubkey
    multisig: Pubkey
    action: TargetAction
    proposer: Pubkey
    approvals: FrozenSet[Pubkey]
    owner_set_seqno: int
    did_execute: bool = False

    def __post_init__(self):
        _require_identity(self.address, "MultisigTransaction address")
        _require_identity(self.multisig, "MultisigTransaction multisig")
        _require_identity(self.proposer, "MultisigTransaction proposer")
        if not isinstance(self.approvals, frozenset):
            object.__setattr__(self, 'approvals', frozenset(self.approvals))

    def __repr__(self) -> str:
        status = "executed" if self.did_execute else f"{len(self.approvals)} approvals"
        return f"MultisigTransaction({self.address} -> {self.multisig}, {status})"


def _state_fields(state: Optional[AccountState]) -> Dict[str, Any]:
    if state is None:
        return {}
    return {f.name: getattr(state, f.name) for f in fields(state) if f.init}


@dataclass(frozen=True, slots=True)
class AccountStateChange:
    """
    Before/after snapshot of one account touched by an operation.

    Attributes:
        address: The account that changed.
        old_state: Record before the change (None when the account was created).
        new_state: Record after the change.
    """
    address: Pubkey
    old_state: Optional[AccountState]
    new_state: AccountState

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Map each field that differs to its (old_value, new_value) pair."""
        old = _state_fields(self.old_state)
        new = _state_fields(self.new_state)
        changes = {}
        for key in sorted(set(old) | set(new)):
            if old.get(key) != new.get(key):
                changes[key] = (old.get(key), new.get(key))
        return changes


@dataclass(frozen=True, slots=True)
class OperationRecord:
    """
    An applied operation - one entry of the program's audit log.

    Attributes:
        instruction: Name of the operation (e.g. "approve").
        caller: Authenticated identity that invoked it.
        state_changes: Accounts created or modified, in application order.
        program_id: Program that applied the operation.
        sequence_number: Monotonic position within the program's log.
    """
    instruction: str
    caller: Pubkey
    state_changes: Tuple[AccountStateChange, ...]
    program_id: Pubkey
    sequence_number: int

    @property
    def addresses(self) -> FrozenSet[Pubkey]:
        """Addresses of every account touched by this operation."""
        return frozenset(sc.address for sc in self.state_changes)

    def __repr__(self) -> str:
        lines = [f"Operation #{self.sequence_number}: {self.instruction} by {self.caller}"]
        for sc in self.state_changes:
            if sc.old_state is None:
                lines.append(f"   + {sc.address}: {sc.new_state!r}")
                continue
            for name, (old_val, new_val) in sc.changed_fields().items():
                lines.append(f"   ~ {sc.address}.{name}: {old_val!r} → {new_val!r}")
        return "\n".join(lines)
