"""
multisig - Multisig Approval Engine

An on-ledger multisig account: a set of owners and a threshold that
collectively propose, approve and execute delegated actions, with every
pending proposal invalidated when the owner set changes.

Usage:
    from multisig import (
        MultisigProgram, find_authority, set_owners_action,
    )

    program = MultisigProgram(verbose=False)
    authority, nonce = find_authority("ms_1", program.program_id)
    program.create_multisig("ms_1", ["alice", "bob", "carol"], 2, nonce)

    # Owners propose replacing carol with dave
    action = set_owners_action(
        program.program_id, "ms_1", authority, ["alice", "bob", "dave"]
    )
    program.create_transaction("ms_1", "tx_1", action, proposer="alice")
    program.approve("tx_1", "bob")

    # 2 of 3 approved: execute, signed by the multisig's authority
    program.execute_transaction("tx_1")
    assert program.get_multisig("ms_1").owner_set_seqno == 1
"""

# Core types
from .core import (
    Pubkey,
    AccountMeta,
    TargetAction,
    Multisig,
    MultisigTransaction,
    AccountStateChange,
    OperationRecord,
    ProgramView,
    ErrorCode,
    MultisigError,
    InstructionFallbackNotFound,
    InstructionDidNotDeserialize,
    AccountDiscriminatorAlreadySet,
    NotEnoughAccountKeys,
    AccountNotInitialized,
    OwnerNotFound,
    InvalidOwnersLen,
    InsufficientApprovals,
    AlreadyExecuted,
    InvalidThreshold,
    DuplicateOwner,
    StaleOwnerSet,
    UnauthorizedAuthority,
    DownstreamDispatchFailed,
    authority_of,
    find_authority,
    DEFAULT_PROGRAM_ID,
    ERROR_CODE_OFFSET,
    CANONICAL_NONCE,
)

# Registry lifecycle
from .registry import (
    create_multisig,
    set_owners,
    change_threshold,
    set_owners_and_change_threshold,
    require_authority,
    assert_unique_owners,
)

# Proposals and approvals
from .proposal import (
    create_transaction,
    approve,
    has_threshold,
    is_stale,
    is_executable,
    missing_approvals,
    approved_owners,
)

# Execution dispatch
from .dispatcher import (
    Dispatcher,
    DispatchResult,
    ProgramRouter,
    check_executable,
    build_signed_instruction,
    check_resolved_accounts,
    prepare_execution,
    mark_executed,
)

# Instruction codec
from .instructions import (
    encode_set_owners,
    encode_change_threshold,
    encode_set_owners_and_change_threshold,
    decode_instruction,
    set_owners_action,
    change_threshold_action,
    set_owners_and_change_threshold_action,
)

# Program host
from .program import MultisigProgram

__all__ = [
    # Core
    'Pubkey', 'AccountMeta', 'TargetAction', 'Multisig', 'MultisigTransaction',
    'AccountStateChange', 'OperationRecord', 'ProgramView',
    'ErrorCode', 'MultisigError', 'InstructionFallbackNotFound',
    'InstructionDidNotDeserialize', 'AccountDiscriminatorAlreadySet',
    'NotEnoughAccountKeys', 'AccountNotInitialized', 'OwnerNotFound',
    'InvalidOwnersLen', 'InsufficientApprovals', 'AlreadyExecuted',
    'InvalidThreshold', 'DuplicateOwner', 'StaleOwnerSet',
    'UnauthorizedAuthority', 'DownstreamDispatchFailed',
    'authority_of', 'find_authority',
    'DEFAULT_PROGRAM_ID', 'ERROR_CODE_OFFSET', 'CANONICAL_NONCE',
    # Registry
    'create_multisig', 'set_owners', 'change_threshold',
    'set_owners_and_change_threshold', 'require_authority', 'assert_unique_owners',
    # Proposals
    'create_transaction', 'approve', 'has_threshold', 'is_stale',
    'is_executable', 'missing_approvals', 'approved_owners',
    # Dispatch
    'Dispatcher', 'DispatchResult', 'ProgramRouter', 'check_executable',
    'build_signed_instruction', 'check_resolved_accounts', 'prepare_execution',
    'mark_executed',
    # Instructions
    'encode_set_owners', 'encode_change_threshold',
    'encode_set_owners_and_change_threshold', 'decode_instruction',
    'set_owners_action', 'change_threshold_action',
    'set_owners_and_change_threshold_action',
    # Program
    'MultisigProgram',
]

__version__ = '1.0.0'
