"""
program.py - In-Memory Multisig Program Host

The MultisigProgram class is the central state manager of the engine.
It is the only module that mutates state, ensuring controlled and auditable
changes.

Key responsibilities:
    - Implements the ProgramView protocol for read-only access
    - Stores registry and proposal accounts by address
    - Applies each operation atomically (all account writes or none)
    - Dispatches approved actions, rolling everything back on failure
    - Serves owner-management instructions signed by a multisig's authority
    - Always logs - every applied operation lands in the operation log
"""

from __future__ import annotations
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

from .core import (
    # Types
    AccountMeta, AccountState, AccountStateChange, Multisig, MultisigTransaction,
    OperationRecord, Pubkey, TargetAction,
    # Constants
    DEFAULT_PROGRAM_ID,
    # Exceptions
    MultisigError, AccountDiscriminatorAlreadySet, AccountNotInitialized,
    DownstreamDispatchFailed, NotEnoughAccountKeys, UnauthorizedAuthority,
    # Functions
    authority_of,
)
from . import registry, proposal
from .dispatcher import (
    DispatchResult, Dispatcher, ProgramRouter,
    mark_executed, prepare_execution,
)
from .instructions import (
    CHANGE_THRESHOLD, SET_OWNERS, SET_OWNERS_AND_CHANGE_THRESHOLD,
    decode_instruction,
)


_Snapshot = Tuple[Dict[Pubkey, AccountState], int, int]


class MultisigProgram:
    """
    Multisig program with atomic operations and a full audit trail.

    Implements the ProgramView protocol, so the program can be passed to
    code that only reads accounts.

    Design Principles:
        - Validate first: every check runs before any account is written.
          A rejected operation leaves the program exactly as it was.
        - Always logs: every applied operation is recorded with before/after
          snapshots of the accounts it touched.

    Self-invocation:
        When no dispatcher is given, the program creates a ProgramRouter and
        registers itself under its own program id, so an approved proposal
        can call back into the program (e.g. set_owners signed by the
        multisig's authority).

    Thread Safety:
        Not thread-safe. Operations are applied in call order; each thread
        should maintain its own MultisigProgram instance.

    Example:
        program = MultisigProgram(verbose=False)
        authority, nonce = find_authority("ms_1", program.program_id)
        program.create_multisig("ms_1", ["alice", "bob", "carol"], 2, nonce)

        action = set_owners_action(program.program_id, "ms_1", authority,
                                   ["alice", "bob", "dave"])
        program.create_transaction("ms_1", "tx_1", action, proposer="alice")
        program.approve("tx_1", "bob")
        program.execute_transaction("tx_1")
    """

    def __init__(
        self,
        program_id: Pubkey = DEFAULT_PROGRAM_ID,
        dispatcher: Optional[Dispatcher] = None,
        verbose: bool = True,
    ):
        """
        Create a program.

        Args:
            program_id: Identity of this program (default: DEFAULT_PROGRAM_ID)
            dispatcher: Performs approved actions (default: a ProgramRouter
                        with this program registered on it)
            verbose: Print one line per applied or rejected operation (default: True)
        """
        self._program_id = program_id
        self.accounts: Dict[Pubkey, AccountState] = {}
        self.operation_log: List[OperationRecord] = []
        self.verbose = verbose
        # Monotonic sequence counter for operation ordering
        self._next_sequence: int = 0

        if dispatcher is None:
            dispatcher = ProgramRouter()
        if isinstance(dispatcher, ProgramRouter) and program_id not in dispatcher.handlers:
            dispatcher.register(program_id, self.process_instruction)
        self.dispatcher = dispatcher

    # ========================================================================
    # ProgramView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def program_id(self) -> Pubkey:
        """Identity of this program."""
        return self._program_id

    def get_multisig(self, address: Pubkey) -> Multisig:
        """
        Get the registry stored at address.

        Raises:
            AccountNotInitialized: If address holds no registry
        """
        account = self.accounts.get(address)
        if not isinstance(account, Multisig):
            raise AccountNotInitialized(f"no multisig at {address}")
        return account

    def get_transaction(self, address: Pubkey) -> MultisigTransaction:
        """
        Get the proposal stored at address.

        Raises:
            AccountNotInitialized: If address holds no proposal
        """
        account = self.accounts.get(address)
        if not isinstance(account, MultisigTransaction):
            raise AccountNotInitialized(f"no transaction at {address}")
        return account

    def list_multisigs(self) -> Tuple[Pubkey, ...]:
        """Addresses of all registries, sorted."""
        return tuple(sorted(a for a, acc in self.accounts.items() if isinstance(acc, Multisig)))

    def list_transactions(
        self,
        multisig: Optional[Pubkey] = None,
        include_executed: bool = True,
    ) -> Tuple[Pubkey, ...]:
        """
        Addresses of proposals, sorted.

        Args:
            multisig: Only proposals of this registry (default: all)
            include_executed: Include proposals that already executed
        """
        return tuple(sorted(
            address for address, acc in self.accounts.items()
            if isinstance(acc, MultisigTransaction)
            and (multisig is None or acc.multisig == multisig)
            and (include_executed or not acc.did_execute)
        ))

    def authority_of(self, address: Pubkey) -> Pubkey:
        """Delegated authority of the registry at address."""
        multisig = self.get_multisig(address)
        return authority_of(multisig.address, multisig.nonce, self._program_id)

    def is_executable(self, transaction_address: Pubkey) -> bool:
        """Whether execute_transaction would pass its checks right now."""
        tx = self.get_transaction(transaction_address)
        return proposal.is_executable(self.get_multisig(tx.multisig), tx)

    def history(self, address: Pubkey) -> List[AccountStateChange]:
        """All logged state changes of one account, oldest first."""
        return [
            sc
            for record in self.operation_log
            for sc in record.state_changes
            if sc.address == address
        ]

    # ========================================================================
    # REGISTRY OPERATIONS (Mutating)
    # ========================================================================

    def create_multisig(
        self,
        address: Pubkey,
        owners: Iterable[Pubkey],
        threshold: int,
        nonce: int,
    ) -> Multisig:
        """
        Create a multisig registry at address.

        Raises:
            AccountDiscriminatorAlreadySet: If address is already in use
            DuplicateOwner: If an owner repeats
            InvalidThreshold: If threshold < 1 or threshold > len(owners)
        """
        def compute():
            self._require_vacant(address)
            return [registry.create_multisig(address, owners, threshold, nonce)]

        self._transition("create_multisig", address, compute)
        multisig = self.get_multisig(address)
        if self.verbose:
            print(f"📝 Registered: {address} ({multisig.threshold}-of-{len(multisig.owners)}) "
                  f"authority={self.authority_of(address)}")
        return multisig

    def set_owners(
        self,
        multisig_address: Pubkey,
        new_owners: Iterable[Pubkey],
        caller: Pubkey,
    ) -> Multisig:
        """
        Replace the owner set; callable only by the multisig's authority.

        The threshold is not re-validated against the new owner count.

        Raises:
            UnauthorizedAuthority: If caller is not the derived authority
            DuplicateOwner: If an owner repeats
            InvalidOwnersLen: If new_owners is empty
        """
        def compute():
            multisig = self.get_multisig(multisig_address)
            registry.require_authority(multisig, caller, self._program_id)
            return [registry.set_owners(multisig, new_owners)]

        self._transition("set_owners", caller, compute)
        return self.get_multisig(multisig_address)

    def change_threshold(
        self,
        multisig_address: Pubkey,
        threshold: int,
        caller: Pubkey,
    ) -> Multisig:
        """
        Replace the threshold; callable only by the multisig's authority.

        Raises:
            UnauthorizedAuthority: If caller is not the derived authority
            InvalidThreshold: If threshold < 1 or threshold > len(owners)
        """
        def compute():
            multisig = self.get_multisig(multisig_address)
            registry.require_authority(multisig, caller, self._program_id)
            return [registry.change_threshold(multisig, threshold)]

        self._transition("change_threshold", caller, compute)
        return self.get_multisig(multisig_address)

    def set_owners_and_change_threshold(
        self,
        multisig_address: Pubkey,
        new_owners: Iterable[Pubkey],
        threshold: int,
        caller: Pubkey,
    ) -> Multisig:
        """Replace owners and threshold together; authority only."""
        def compute():
            multisig = self.get_multisig(multisig_address)
            registry.require_authority(multisig, caller, self._program_id)
            return [registry.set_owners_and_change_threshold(multisig, new_owners, threshold)]

        self._transition("set_owners_and_change_threshold", caller, compute)
        return self.get_multisig(multisig_address)

    # ========================================================================
    # PROPOSAL OPERATIONS (Mutating)
    # ========================================================================

    def create_transaction(
        self,
        multisig_address: Pubkey,
        transaction_address: Pubkey,
        action: TargetAction,
        proposer: Pubkey,
    ) -> MultisigTransaction:
        """
        Propose a delegated action; the proposer's approval is recorded.

        Raises:
            AccountDiscriminatorAlreadySet: If transaction_address is in use
            AccountNotInitialized: If there is no multisig at multisig_address
            OwnerNotFound: If proposer is not an owner
        """
        def compute():
            self._require_vacant(transaction_address)
            multisig = self.get_multisig(multisig_address)
            return [proposal.create_transaction(multisig, transaction_address, action, proposer)]

        self._transition("create_transaction", proposer, compute)
        return self.get_transaction(transaction_address)

    def approve(self, transaction_address: Pubkey, owner: Pubkey) -> MultisigTransaction:
        """
        Record an owner's approval. Approving twice changes nothing.

        Raises:
            OwnerNotFound: If owner is not in the current owner set
            AlreadyExecuted: If the proposal already executed
            StaleOwnerSet: If the owner set changed since the proposal was created
        """
        def compute():
            tx = self.get_transaction(transaction_address)
            multisig = self.get_multisig(tx.multisig)
            return [proposal.approve(multisig, tx, owner)]

        self._transition("approve", owner, compute)
        return self.get_transaction(transaction_address)

    def execute_transaction(
        self,
        transaction_address: Pubkey,
        resolved_accounts: Optional[Iterable[Union[AccountMeta, Pubkey]]] = None,
        executor: Optional[Pubkey] = None,
    ) -> MultisigTransaction:
        """
        Execute an approved proposal through the dispatcher.

        The action is dispatched with the multisig's authority attached as
        signer. The proposal is marked executed only if the dispatch
        succeeds; otherwise every account write made during the call
        (including writes the call made through this program) is undone. This
        also holds when the call is interrupted (KeyboardInterrupt, SystemExit),
        which is re-raised after the rollback.

        Args:
            transaction_address: The proposal to execute
            resolved_accounts: Accounts supplied by the caller; must cover
                               every account the action references (None skips
                               the check)
            executor: Identity recorded in the log (anyone may execute)

        Raises:
            AlreadyExecuted: If the proposal already executed
            StaleOwnerSet: If the owner set changed since creation
            InsufficientApprovals: If approvals are below the threshold
            NotEnoughAccountKeys: If resolved_accounts misses an account
            DownstreamDispatchFailed: If the dispatched call failed, raised, or
                returned something other than a DispatchResult (the original
                error is chained as __cause__)
        """
        name = "execute_transaction"
        try:
            tx = self.get_transaction(transaction_address)
            multisig = self.get_multisig(tx.multisig)
            instruction, signers = prepare_execution(
                multisig, tx, self._program_id, resolved_accounts
            )
        except MultisigError as exc:
            self._print_rejected(name, exc)
            raise

        snapshot = self._snapshot()
        # Provisionally executed while the call runs, so a re-entrant execute
        # of the same proposal fails AlreadyExecuted.
        self.accounts[tx.address] = mark_executed(tx)
        try:
            self._dispatch(instruction, signers)
        except BaseException as exc:
            self._restore(snapshot)
            if isinstance(exc, MultisigError):
                self._print_rejected(name, exc)
            raise

        executed = self.accounts[tx.address]
        self.accounts[tx.address] = tx
        self._commit(name, executor or "anonymous", [executed])
        return self.get_transaction(transaction_address)

    # ========================================================================
    # SELF-INVOCATION
    # ========================================================================

    def process_instruction(
        self,
        instruction: TargetAction,
        signers: Iterable[Pubkey],
    ) -> DispatchResult:
        """
        Entry point for instructions addressed to this program.

        Expects accounts[0] to be the multisig and accounts[1] to be its
        authority, flagged as signer and present in `signers`.

        Raises:
            InstructionFallbackNotFound: If the payload names no known instruction
            InstructionDidNotDeserialize: If the payload is malformed
            NotEnoughAccountKeys: If fewer than two accounts are given
            UnauthorizedAuthority: If the authority did not sign
        """
        name, args = decode_instruction(instruction.data)
        if len(instruction.accounts) < 2:
            raise NotEnoughAccountKeys(f"{name} needs multisig and authority accounts")
        multisig_meta, authority_meta = instruction.accounts[0], instruction.accounts[1]
        if not authority_meta.is_signer or authority_meta.pubkey not in set(signers):
            raise UnauthorizedAuthority(f"{authority_meta.pubkey} did not sign {name}")

        caller = authority_meta.pubkey
        if name == SET_OWNERS:
            self.set_owners(multisig_meta.pubkey, args['owners'], caller)
        elif name == CHANGE_THRESHOLD:
            self.change_threshold(multisig_meta.pubkey, args['threshold'], caller)
        elif name == SET_OWNERS_AND_CHANGE_THRESHOLD:
            self.set_owners_and_change_threshold(
                multisig_meta.pubkey, args['owners'], args['threshold'], caller
            )
        return DispatchResult.ok()

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _dispatch(self, instruction: TargetAction, signers: FrozenSet[Pubkey]) -> None:
        """
        Run the dispatcher and reduce its outcome to pass/fail.

        Raises:
            DownstreamDispatchFailed: If the dispatcher raised, returned
                anything but a DispatchResult, or reported failure
        """
        try:
            result = self.dispatcher.dispatch(instruction, signers)
        except Exception as exc:
            raise DownstreamDispatchFailed(f"{type(exc).__name__}: {exc}") from exc
        if not isinstance(result, DispatchResult):
            raise DownstreamDispatchFailed(
                f"dispatcher returned {type(result).__name__}, not DispatchResult"
            )
        if not result.success:
            raise DownstreamDispatchFailed(result.error) from result.cause

    def _require_vacant(self, address: Pubkey) -> None:
        if address in self.accounts:
            raise AccountDiscriminatorAlreadySet(f"{address} already in use")

    def _transition(self, instruction: str, caller: Pubkey, compute) -> Optional[OperationRecord]:
        """
        Validate, then commit.

        `compute` loads accounts and calls the pure functions; it must not
        write. If it raises, nothing was changed and the error propagates.
        """
        try:
            new_states: Sequence[AccountState] = compute()
        except MultisigError as exc:
            self._print_rejected(instruction, exc)
            raise
        return self._commit(instruction, caller, new_states)

    def _commit(
        self,
        instruction: str,
        caller: Pubkey,
        new_states: Sequence[AccountState],
    ) -> Optional[OperationRecord]:
        """
        Write new account states and log the operation.

        States equal to what is stored are skipped. If nothing changed, no
        record is logged and None is returned.
        """
        changes = tuple(
            AccountStateChange(state.address, self.accounts.get(state.address), state)
            for state in new_states
            if self.accounts.get(state.address) != state
        )
        if not changes:
            if self.verbose:
                print(f"= UNCHANGED {instruction} by {caller}")
            return None

        for sc in changes:
            self.accounts[sc.address] = sc.new_state

        record = OperationRecord(
            instruction=instruction,
            caller=caller,
            state_changes=changes,
            program_id=self._program_id,
            sequence_number=self._next_sequence,
        )
        self._next_sequence += 1
        self.operation_log.append(record)

        if self.verbose:
            print(repr(record))
            print(f"✓ APPLIED {instruction}")
        return record

    def _print_rejected(self, instruction: str, exc: MultisigError) -> None:
        if self.verbose:
            print(f"✗ REJECTED {instruction}: [{exc.code}] {exc}")

    def _snapshot(self) -> _Snapshot:
        # Records are frozen, so a shallow copy of the map is a full snapshot.
        return dict(self.accounts), len(self.operation_log), self._next_sequence

    def _restore(self, snapshot: _Snapshot) -> None:
        accounts, log_length, next_sequence = snapshot
        self.accounts = accounts
        del self.operation_log[log_length:]
        self._next_sequence = next_sequence

    # ========================================================================
    # PROGRAM OPERATIONS
    # ========================================================================

    def clone(self) -> MultisigProgram:
        """
        Create an independent copy of this program.

        Accounts, the operation log and the sequence counter are copied.
        A ProgramRouter dispatcher is copied too, with the clone registered
        in place of this program; any other dispatcher is shared.
        """
        dispatcher = self.dispatcher
        if isinstance(dispatcher, ProgramRouter):
            handlers = {
                program_id: handler
                for program_id, handler in dispatcher.handlers.items()
                if handler != self.process_instruction
            }
            dispatcher = ProgramRouter(handlers)

        cloned = MultisigProgram(self._program_id, dispatcher, self.verbose)
        cloned.accounts = dict(self.accounts)
        cloned.operation_log = list(self.operation_log)
        cloned._next_sequence = self._next_sequence
        return cloned
