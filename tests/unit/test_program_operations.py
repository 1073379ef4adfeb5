"""
test_program_operations.py - Unit tests for MultisigProgram operations

Tests:
- Account loading and address collisions
- Operation log records and sequence numbers
- Owner management requires the delegated authority
- Proposal and approval operations
- execute_transaction() success, failures and rollback
- process_instruction() account and signer checks
- clone() independence
- Verbose output
"""

import pytest

from multisig import (
    AccountMeta, MultisigProgram, ProgramRouter, TargetAction,
    set_owners_action, change_threshold_action, encode_change_threshold,
    AccountDiscriminatorAlreadySet, AccountNotInitialized, AlreadyExecuted,
    DownstreamDispatchFailed, DuplicateOwner, InsufficientApprovals,
    NotEnoughAccountKeys, OwnerNotFound, UnauthorizedAuthority,
)

from tests.fake_programs import (
    MEMO_PROGRAM, CrashingDispatcher, FailingHandler, InterruptingHandler,
    NoResultDispatcher, ScriptedDispatcher, memo_action, new_multisig,
)


# ============================================================================
# ACCOUNTS
# ============================================================================

class TestAccounts:

    def test_create_and_load(self, abc):
        program, authority = abc
        ms = program.get_multisig("ms")
        assert ms.owners == ("alice", "bob", "carol")
        assert program.list_multisigs() == ("ms",)
        assert program.authority_of("ms") == authority

    def test_missing_multisig(self, empty_program):
        with pytest.raises(AccountNotInitialized):
            empty_program.get_multisig("nope")

    def test_wrong_account_kind(self, abc):
        program, _ = abc
        with pytest.raises(AccountNotInitialized):
            program.get_transaction("ms")

    def test_address_reuse(self, abc):
        program, _ = abc
        with pytest.raises(AccountDiscriminatorAlreadySet) as exc_info:
            program.create_multisig("ms", ["dave"], 1, 255)
        assert exc_info.value.code == 3000

    def test_transaction_address_cannot_reuse_multisig(self, abc):
        program, _ = abc
        with pytest.raises(AccountDiscriminatorAlreadySet):
            program.create_transaction("ms", "ms", memo_action(), "alice")

    def test_create_duplicate_owners_leaves_nothing(self, empty_program):
        with pytest.raises(DuplicateOwner):
            empty_program.create_multisig("ms", ["a", "a"], 1, 255)
        assert empty_program.accounts == {}
        assert empty_program.operation_log == []

    def test_list_transactions(self, abc):
        program, _ = abc
        program.create_transaction("ms", "tx2", memo_action(), "alice")
        program.create_transaction("ms", "tx1", memo_action(), "bob")
        program.approve("tx1", "carol")
        program.execute_transaction("tx1")
        assert program.list_transactions() == ("tx1", "tx2")
        assert program.list_transactions(include_executed=False) == ("tx2",)
        assert program.list_transactions(multisig="other") == ()


# ============================================================================
# OPERATION LOG
# ============================================================================

class TestOperationLog:

    def test_records_in_sequence(self, abc):
        program, _ = abc
        program.create_transaction("ms", "tx", memo_action(), "alice")
        program.approve("tx", "bob")
        names = [r.instruction for r in program.operation_log]
        assert names == ["create_multisig", "create_transaction", "approve"]
        assert [r.sequence_number for r in program.operation_log] == [0, 1, 2]

    def test_caller_recorded(self, abc):
        program, _ = abc
        program.create_transaction("ms", "tx", memo_action(), "alice")
        assert program.operation_log[-1].caller == "alice"
        assert program.operation_log[-1].addresses == frozenset({"tx"})

    def test_repeat_approval_not_logged(self, abc):
        program, _ = abc
        program.create_transaction("ms", "tx", memo_action(), "alice")
        before = len(program.operation_log)
        program.approve("tx", "alice")
        assert len(program.operation_log) == before

    def test_history(self, abc):
        program, _ = abc
        program.create_transaction("ms", "tx", memo_action(), "alice")
        program.approve("tx", "bob")
        history = program.history("tx")
        assert len(history) == 2
        assert history[0].old_state is None
        assert history[1].changed_fields() == {
            'approvals': (frozenset({"alice"}), frozenset({"alice", "bob"}))
        }

    def test_rejected_operation_not_logged(self, abc):
        program, _ = abc
        before = len(program.operation_log)
        with pytest.raises(OwnerNotFound):
            program.create_transaction("ms", "tx", memo_action(), "mallory")
        assert len(program.operation_log) == before
        assert "tx" not in program.accounts


# ============================================================================
# OWNER MANAGEMENT
# ============================================================================

class TestOwnerManagement:

    def test_owner_cannot_set_owners_directly(self, abc):
        program, _ = abc
        with pytest.raises(UnauthorizedAuthority) as exc_info:
            program.set_owners("ms", ["alice"], caller="alice")
        assert exc_info.value.code == 6010
        assert program.get_multisig("ms").owner_set_seqno == 0

    def test_authority_can_set_owners(self, abc):
        program, authority = abc
        ms = program.set_owners("ms", ["alice", "bob", "dave"], caller=authority)
        assert ms.owners == ("alice", "bob", "dave")
        assert ms.owner_set_seqno == 1
        assert program.operation_log[-1].caller == authority

    def test_change_threshold_requires_authority(self, abc):
        program, authority = abc
        with pytest.raises(UnauthorizedAuthority):
            program.change_threshold("ms", 1, caller="bob")
        assert program.change_threshold("ms", 1, caller=authority).threshold == 1

    def test_set_owners_and_change_threshold(self, abc):
        program, authority = abc
        ms = program.set_owners_and_change_threshold("ms", ["alice"], 1, caller=authority)
        assert (ms.owners, ms.threshold, ms.owner_set_seqno) == (("alice",), 1, 1)


# ============================================================================
# EXECUTION
# ============================================================================

class TestExecuteTransaction:

    def test_success(self, abc, memo):
        program, authority = abc
        program.create_transaction("ms", "tx", memo_action("pay", signer=authority), "alice")
        program.approve("tx", "bob")
        tx = program.execute_transaction("tx", executor="carol")

        assert tx.did_execute
        instruction, signers = memo.calls[0]
        assert signers == frozenset({authority})
        assert instruction.data == b"pay"
        record = program.operation_log[-1]
        assert record.instruction == "execute_transaction"
        assert record.caller == "carol"

    def test_anyone_can_execute(self, abc):
        program, _ = abc
        program.create_transaction("ms", "tx", memo_action(), "alice")
        program.approve("tx", "bob")
        program.execute_transaction("tx")
        assert program.operation_log[-1].caller == "anonymous"

    def test_below_threshold(self, abc, memo):
        program, _ = abc
        program.create_transaction("ms", "tx", memo_action(), "alice")
        with pytest.raises(InsufficientApprovals):
            program.execute_transaction("tx")
        assert memo.calls == []

    def test_twice(self, abc, memo):
        program, _ = abc
        program.create_transaction("ms", "tx", memo_action(), "alice")
        program.approve("tx", "bob")
        program.execute_transaction("tx")
        with pytest.raises(AlreadyExecuted):
            program.execute_transaction("tx")
        assert len(memo.calls) == 1

    def test_approve_after_execute(self, abc):
        program, _ = abc
        program.create_transaction("ms", "tx", memo_action(), "alice")
        program.approve("tx", "bob")
        program.execute_transaction("tx")
        with pytest.raises(AlreadyExecuted):
            program.approve("tx", "carol")

    def test_missing_resolved_account(self, abc, memo):
        program, authority = abc
        program.create_transaction("ms", "tx", memo_action(signer=authority), "alice")
        program.approve("tx", "bob")
        with pytest.raises(NotEnoughAccountKeys):
            program.execute_transaction("tx", resolved_accounts=[MEMO_PROGRAM])
        assert memo.calls == []
        program.execute_transaction("tx", resolved_accounts=[MEMO_PROGRAM, authority])
        assert len(memo.calls) == 1

    def test_downstream_failure_rolls_back(self):
        failing = FailingHandler(failures=1, reason="insufficient funds")
        program = MultisigProgram(
            dispatcher=ProgramRouter({MEMO_PROGRAM: failing}), verbose=False
        )
        new_multisig(program)
        program.create_transaction("ms", "tx", memo_action(), "alice")
        program.approve("tx", "bob")
        accounts_before = dict(program.accounts)
        log_before = list(program.operation_log)

        with pytest.raises(DownstreamDispatchFailed, match="insufficient funds"):
            program.execute_transaction("tx")
        assert program.accounts == accounts_before
        assert program.operation_log == log_before
        assert not program.get_transaction("tx").did_execute

        # Retry succeeds
        assert program.execute_transaction("tx").did_execute
        assert failing.attempts == 2

    def test_dispatcher_exception_rolls_back(self):
        program = MultisigProgram(dispatcher=CrashingDispatcher(), verbose=False)
        new_multisig(program)
        program.create_transaction("ms", "tx", memo_action(), "alice")
        program.approve("tx", "bob")
        with pytest.raises(DownstreamDispatchFailed, match="crashed") as exc_info:
            program.execute_transaction("tx")
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert not program.get_transaction("tx").did_execute

    def test_handler_exception_reported_with_code(self):
        def handler(instruction, signers):
            raise ValueError("insufficient funds")

        program = MultisigProgram(
            dispatcher=ProgramRouter({MEMO_PROGRAM: handler}), verbose=False
        )
        new_multisig(program)
        program.create_transaction("ms", "tx", memo_action(), "alice")
        program.approve("tx", "bob")
        with pytest.raises(DownstreamDispatchFailed, match="insufficient funds") as exc_info:
            program.execute_transaction("tx")
        assert exc_info.value.code == 6011
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert not program.get_transaction("tx").did_execute

    @pytest.mark.parametrize("exc_type", [KeyboardInterrupt, SystemExit])
    def test_interrupted_dispatch_rolls_back(self, exc_type):
        program = MultisigProgram(
            dispatcher=ProgramRouter({MEMO_PROGRAM: InterruptingHandler(exc_type)}),
            verbose=False,
        )
        new_multisig(program)
        program.create_transaction("ms", "tx", memo_action(), "alice")
        program.approve("tx", "bob")
        accounts_before = dict(program.accounts)
        log_before = list(program.operation_log)

        with pytest.raises(exc_type):
            program.execute_transaction("tx")
        assert program.accounts == accounts_before
        assert program.operation_log == log_before
        assert not program.get_transaction("tx").did_execute

    def test_non_result_from_dispatcher_rolls_back(self):
        program = MultisigProgram(dispatcher=NoResultDispatcher(), verbose=False)
        new_multisig(program)
        program.create_transaction("ms", "tx", memo_action(), "alice")
        program.approve("tx", "bob")
        log_before = list(program.operation_log)

        with pytest.raises(DownstreamDispatchFailed, match="NoneType"):
            program.execute_transaction("tx")
        assert not program.get_transaction("tx").did_execute
        assert program.operation_log == log_before
        assert program.is_executable("tx")

    def test_failure_cause_chained(self):
        cause = DuplicateOwner("x")
        program = MultisigProgram(dispatcher=ScriptedDispatcher(error=cause), verbose=False)
        new_multisig(program)
        program.create_transaction("ms", "tx", memo_action(), "alice")
        program.approve("tx", "bob")
        with pytest.raises(DownstreamDispatchFailed) as exc_info:
            program.execute_transaction("tx")
        assert exc_info.value.__cause__ is cause
        assert exc_info.value.code == 6011

    def test_custom_dispatcher_receives_signed_call(self):
        dispatcher = ScriptedDispatcher()
        program = MultisigProgram(dispatcher=dispatcher, verbose=False)
        _, authority = new_multisig(program)
        action = TargetAction("token", [AccountMeta(authority)], b"")
        program.create_transaction("ms", "tx", action, "alice")
        program.approve("tx", "bob")
        program.execute_transaction("tx")
        instruction, signers = dispatcher.calls[0]
        assert instruction.accounts[0].is_signer
        assert signers == frozenset({authority})
        # Stored action is unchanged
        assert not program.get_transaction("tx").action.accounts[0].is_signer

    def test_is_executable(self, abc):
        program, _ = abc
        program.create_transaction("ms", "tx", memo_action(), "alice")
        assert not program.is_executable("tx")
        program.approve("tx", "bob")
        assert program.is_executable("tx")

    def test_reentrant_execute_rejected(self):
        router = ProgramRouter()
        program = MultisigProgram(dispatcher=router, verbose=False)
        outcomes = []

        def reenter(instruction, signers):
            try:
                program.execute_transaction("tx")
            except AlreadyExecuted as exc:
                outcomes.append(exc)

        router.register(MEMO_PROGRAM, reenter)
        new_multisig(program)
        program.create_transaction("ms", "tx", memo_action(), "alice")
        program.approve("tx", "bob")
        program.execute_transaction("tx")
        assert len(outcomes) == 1
        assert program.get_transaction("tx").did_execute


# ============================================================================
# SELF-INVOCATION
# ============================================================================

class TestProcessInstruction:

    def test_needs_two_accounts(self, abc):
        program, authority = abc
        ix = TargetAction(program.program_id, [AccountMeta("ms")], encode_change_threshold(1))
        with pytest.raises(NotEnoughAccountKeys):
            program.process_instruction(ix, frozenset({authority}))

    def test_authority_must_sign(self, abc):
        program, authority = abc
        ix = change_threshold_action(program.program_id, "ms", authority, 1)
        with pytest.raises(UnauthorizedAuthority):
            program.process_instruction(ix, frozenset())

    def test_owner_cannot_pose_as_authority(self, abc):
        program, _ = abc
        ix = change_threshold_action(program.program_id, "ms", "alice", 1)
        with pytest.raises(UnauthorizedAuthority):
            program.process_instruction(ix, frozenset({"alice"}))

    def test_signed_instruction_applies(self, abc):
        program, authority = abc
        ix = set_owners_action(program.program_id, "ms", authority, ["alice", "dave"])
        assert program.process_instruction(ix, frozenset({authority})).success
        assert program.get_multisig("ms").owners == ("alice", "dave")


# ============================================================================
# CLONE
# ============================================================================

class TestClone:

    def test_clone_is_independent(self, abc):
        program, authority = abc
        cloned = program.clone()
        cloned.set_owners("ms", ["alice"], caller=authority)
        assert program.get_multisig("ms").owner_set_seqno == 0
        assert cloned.get_multisig("ms").owner_set_seqno == 1
        assert len(cloned.operation_log) == len(program.operation_log) + 1

    def test_clone_routes_self_calls_to_clone(self, abc, memo):
        program, authority = abc
        cloned = program.clone()
        action = set_owners_action(program.program_id, "ms", authority, ["alice", "bob"])
        cloned.create_transaction("ms", "tx", action, "alice")
        cloned.approve("tx", "bob")
        cloned.execute_transaction("tx")
        assert cloned.get_multisig("ms").owners == ("alice", "bob")
        assert program.get_multisig("ms").owners == ("alice", "bob", "carol")

    def test_clone_keeps_other_programs(self, abc, memo):
        program, _ = abc
        cloned = program.clone()
        cloned.create_transaction("ms", "tx", memo_action(), "alice")
        cloned.approve("tx", "bob")
        cloned.execute_transaction("tx")
        assert len(memo.calls) == 1


# ============================================================================
# VERBOSE OUTPUT
# ============================================================================

class TestVerbose:

    def test_prints_applied_and_rejected(self, capsys):
        program = MultisigProgram(verbose=True)
        new_multisig(program)
        with pytest.raises(OwnerNotFound):
            program.create_transaction("ms", "tx", memo_action(), "mallory")
        out = capsys.readouterr().out
        assert "✓ APPLIED create_multisig" in out
        assert "📝 Registered: ms (2-of-3)" in out
        assert "✗ REJECTED create_transaction: [6000]" in out

    def test_quiet(self, capsys, abc):
        program, _ = abc
        program.create_transaction("ms", "tx", memo_action(), "alice")
        assert capsys.readouterr().out == ""
