"""
conftest.py - Shared pytest fixtures for multisig tests

Provides common fixtures used across unit, functional and conformance tests:
- Empty programs
- A program whose router also serves a recording "memo" program
- A 2-of-3 multisig (alice, bob, carol) ready for proposals
"""

import pytest

from multisig import MultisigProgram, ProgramRouter

from tests.fake_programs import MEMO_PROGRAM, RecordingHandler, new_multisig


@pytest.fixture
def empty_program():
    """Fresh program with the default router and nothing else registered."""
    return MultisigProgram(verbose=False)


@pytest.fixture
def memo():
    """Recording downstream program."""
    return RecordingHandler()


@pytest.fixture
def program(memo):
    """Program whose router also serves the memo program."""
    router = ProgramRouter({MEMO_PROGRAM: memo})
    return MultisigProgram(dispatcher=router, verbose=False)


@pytest.fixture
def abc(program):
    """
    2-of-3 multisig "ms" owned by alice, bob and carol.

    Returns (program, authority).
    """
    _, authority = new_multisig(program)
    return program, authority
