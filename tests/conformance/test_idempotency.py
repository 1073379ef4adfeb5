"""
Idempotency Conformance Tests

INVARIANT: Approving is set insertion.

    ∀ proposal P, owner o, sequence of approvals S:
        approvals after S = {proposer} ∪ set(S)
        approve(P, o) twice ≡ approve(P, o) once
        approval order does not matter

Repeated approvals are not errors and are not logged.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from multisig import MultisigProgram

from tests.fake_programs import memo_action


OWNERS = ["o0", "o1", "o2", "o3", "o4", "o5"]


def _program_with_proposal(threshold=3):
    program = MultisigProgram(verbose=False)
    program.create_multisig("ms", OWNERS, threshold, 255)
    program.create_transaction("ms", "tx", memo_action(), "o0")
    return program


class TestIdempotencyProperties:
    """Property-based idempotency tests."""

    @given(st.lists(st.sampled_from(OWNERS), max_size=20))
    @settings(max_examples=100)
    def test_approvals_are_a_set(self, sequence):
        """
        PROPERTY: The approval set equals the proposer plus the distinct
        approvers, no matter how often each one approves.
        """
        program = _program_with_proposal()
        for owner in sequence:
            program.approve("tx", owner)
        assert program.get_transaction("tx").approvals == frozenset(["o0", *sequence])

    @given(st.lists(st.sampled_from(OWNERS), max_size=20))
    @settings(max_examples=100)
    def test_only_new_approvals_are_logged(self, sequence):
        """
        PROPERTY: The log grows by one entry per distinct new approver.
        """
        program = _program_with_proposal()
        before = len(program.operation_log)
        for owner in sequence:
            program.approve("tx", owner)
        new_approvers = set(sequence) - {"o0"}
        assert len(program.operation_log) == before + len(new_approvers)

    @given(st.permutations(OWNERS[1:]))
    @settings(max_examples=50)
    def test_order_independent(self, order):
        """
        PROPERTY: Any order of the same approvals yields the same proposal.
        """
        reference = _program_with_proposal()
        for owner in OWNERS[1:]:
            reference.approve("tx", owner)

        program = _program_with_proposal()
        for owner in order:
            program.approve("tx", owner)
        assert program.get_transaction("tx") == reference.get_transaction("tx")


class TestIdempotencyExamples:
    """Explicit idempotency examples."""

    def test_proposer_approving_again(self):
        program = _program_with_proposal()
        tx = program.get_transaction("tx")
        assert program.approve("tx", "o0") == tx

    def test_double_approval_counts_once(self):
        program = _program_with_proposal(threshold=3)
        program.approve("tx", "o1")
        program.approve("tx", "o1")
        assert not program.is_executable("tx")
