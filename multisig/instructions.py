"""
instructions.py - Owner-Management Instruction Codec

Owner-set changes are only reachable through the multisig's own delegated
authority, so they travel as the opaque payload of an approved proposal and
come back into the program when the proposal executes. This module encodes
and decodes those payloads.

Wire format:
    discriminator (8 bytes) = sha256("global:<instruction name>")[:8]
    u8 / u32 / u64          = little-endian, fixed width
    string                  = u32 byte length || UTF-8 bytes
    vec<T>                  = u32 item count || items

    set_owners                       : vec<string> owners
    change_threshold                 : u64 threshold
    set_owners_and_change_threshold  : vec<string> owners || u64 threshold
"""

from __future__ import annotations
import hashlib
from typing import Any, Dict, Iterable, List, Tuple

from .core import (
    AccountMeta, Pubkey, TargetAction,
    InstructionDidNotDeserialize, InstructionFallbackNotFound,
)


# ============================================================================
# CONSTANTS
# ============================================================================

DISCRIMINATOR_SIZE = 8

SET_OWNERS = "set_owners"
CHANGE_THRESHOLD = "change_threshold"
SET_OWNERS_AND_CHANGE_THRESHOLD = "set_owners_and_change_threshold"


def discriminator(name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>")."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:DISCRIMINATOR_SIZE]


_INSTRUCTIONS = {
    discriminator(name): name
    for name in (SET_OWNERS, CHANGE_THRESHOLD, SET_OWNERS_AND_CHANGE_THRESHOLD)
}


# ============================================================================
# ENCODING
# ============================================================================

def _u32(x: int) -> bytes:
    if not 0 <= x < (1 << 32):
        raise ValueError(f"u32 out of range: {x}")
    return x.to_bytes(4, "little")


def _u64(x: int) -> bytes:
    if not 0 <= x < (1 << 64):
        raise ValueError(f"u64 out of range: {x}")
    return x.to_bytes(8, "little")


def _string(s: str) -> bytes:
    raw = s.encode("utf-8")
    return _u32(len(raw)) + raw


def _pubkeys(keys: Iterable[Pubkey]) -> bytes:
    keys = list(keys)
    return _u32(len(keys)) + b"".join(_string(k) for k in keys)


def encode_set_owners(owners: Iterable[Pubkey]) -> bytes:
    return discriminator(SET_OWNERS) + _pubkeys(owners)


def encode_change_threshold(threshold: int) -> bytes:
    return discriminator(CHANGE_THRESHOLD) + _u64(threshold)


def encode_set_owners_and_change_threshold(owners: Iterable[Pubkey], threshold: int) -> bytes:
    return discriminator(SET_OWNERS_AND_CHANGE_THRESHOLD) + _pubkeys(owners) + _u64(threshold)


# ============================================================================
# DECODING
# ============================================================================

class _Reader:
    """Cursor over instruction data; every short read is a decode error."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def take(self, n: int) -> bytes:
        end = self.offset + n
        if end > len(self.data):
            raise InstructionDidNotDeserialize(
                f"need {n} bytes at offset {self.offset}, have {len(self.data) - self.offset}"
            )
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def u32(self) -> int:
        return int.from_bytes(self.take(4), "little")

    def u64(self) -> int:
        return int.from_bytes(self.take(8), "little")

    def string(self) -> str:
        raw = self.take(self.u32())
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InstructionDidNotDeserialize(f"invalid utf-8 at offset {self.offset}") from exc

    def pubkeys(self) -> List[Pubkey]:
        return [self.string() for _ in range(self.u32())]

    def finish(self) -> None:
        if self.offset != len(self.data):
            raise InstructionDidNotDeserialize(
                f"{len(self.data) - self.offset} trailing bytes"
            )


def decode_instruction(data: bytes) -> Tuple[str, Dict[str, Any]]:
    """
    Decode an owner-management payload.

    Returns:
        (instruction name, arguments) - arguments are {"owners": [...]},
        {"threshold": n} or both

    Raises:
        InstructionFallbackNotFound: If the discriminator is unknown
        InstructionDidNotDeserialize: If the data is truncated or too long
    """
    reader = _Reader(bytes(data))
    tag = reader.take(DISCRIMINATOR_SIZE) if len(data) >= DISCRIMINATOR_SIZE else None
    name = _INSTRUCTIONS.get(tag)
    if name is None:
        raise InstructionFallbackNotFound(f"discriminator {bytes(data[:DISCRIMINATOR_SIZE]).hex()}")

    args: Dict[str, Any] = {}
    if name in (SET_OWNERS, SET_OWNERS_AND_CHANGE_THRESHOLD):
        args['owners'] = reader.pubkeys()
    if name in (CHANGE_THRESHOLD, SET_OWNERS_AND_CHANGE_THRESHOLD):
        args['threshold'] = reader.u64()
    reader.finish()
    return name, args


# ============================================================================
# ACTION BUILDERS
# ============================================================================

def _auth_accounts(multisig_address: Pubkey, authority: Pubkey) -> Tuple[AccountMeta, ...]:
    # The authority is listed as signer; the program signs for it at execution.
    return (
        AccountMeta(multisig_address, is_signer=False, is_writable=True),
        AccountMeta(authority, is_signer=True, is_writable=False),
    )


def set_owners_action(
    program_id: Pubkey,
    multisig_address: Pubkey,
    authority: Pubkey,
    owners: Iterable[Pubkey],
) -> TargetAction:
    """
    Build a proposal action that replaces the owner set.

    Example:
        authority = program.authority_of("ms_1")
        action = set_owners_action(program.program_id, "ms_1", authority, ["a", "b", "d"])
        program.create_transaction("ms_1", "tx_1", action, proposer="a")
    """
    return TargetAction(
        program_id=program_id,
        accounts=_auth_accounts(multisig_address, authority),
        data=encode_set_owners(owners),
    )


def change_threshold_action(
    program_id: Pubkey,
    multisig_address: Pubkey,
    authority: Pubkey,
    threshold: int,
) -> TargetAction:
    """Build a proposal action that replaces the threshold."""
    return TargetAction(
        program_id=program_id,
        accounts=_auth_accounts(multisig_address, authority),
        data=encode_change_threshold(threshold),
    )


def set_owners_and_change_threshold_action(
    program_id: Pubkey,
    multisig_address: Pubkey,
    authority: Pubkey,
    owners: Iterable[Pubkey],
    threshold: int,
) -> TargetAction:
    """Build a proposal action that replaces both owner set and threshold."""
    return TargetAction(
        program_id=program_id,
        accounts=_auth_accounts(multisig_address, authority),
        data=encode_set_owners_and_change_threshold(owners, threshold),
    )
