"""
Example: Rotating the owners of a multisig.

This example walks through the full lifecycle of a 2-of-3 multisig:
a payment proposal, an owner rotation executed through the multisig's own
authority, and the effect of the rotation on proposals still pending.
"""

from multisig import (
    AccountMeta, MultisigProgram, ProgramRouter, StaleOwnerSet, TargetAction,
    find_authority, set_owners_action,
)


def treasury(instruction, signers):
    """Downstream program: prints every payment it is asked to make."""
    print(f"   💸 treasury: {instruction.data.decode()} (signed by {len(signers)} authority)")


def main():
    print("=" * 80)
    print("MULTISIG - Owner Rotation Example")
    print("=" * 80)
    print()

    router = ProgramRouter({"treasury": treasury})
    program = MultisigProgram(dispatcher=router, verbose=True)

    authority, nonce = find_authority("team_ms", program.program_id)
    program.create_multisig("team_ms", ["alice", "bob", "carol"], 2, nonce)

    def payment(text):
        return TargetAction(
            "treasury",
            [AccountMeta(authority, is_signer=True, is_writable=False)],
            text.encode(),
        )

    print()
    print("Example 1: Payment")
    print("-" * 80)
    print("alice proposes a payment, bob approves, anyone may execute.")
    print()

    program.create_transaction("team_ms", "pay_1", payment("pay 100 to vendor"), "alice")
    program.approve("pay_1", "bob")
    program.execute_transaction("pay_1", executor="carol")

    print()
    print("Example 2: Owner Rotation")
    print("-" * 80)
    print("carol leaves, dave joins. The change is itself a proposal, signed")
    print("by the multisig's authority when it executes.")
    print()

    program.create_transaction("team_ms", "pay_2", payment("pay 50 to contractor"), "carol")
    rotate = set_owners_action(
        program.program_id, "team_ms", authority, ["alice", "bob", "dave"]
    )
    program.create_transaction("team_ms", "rotate", rotate, "alice")
    program.approve("rotate", "bob")
    program.execute_transaction("rotate")

    ms = program.get_multisig("team_ms")
    print()
    print(f"Owners: {', '.join(ms.owners)}  (seqno {ms.owner_set_seqno})")
    print()

    print("Example 3: Stale Proposal")
    print("-" * 80)
    print("pay_2 was created under the old owner set and can no longer execute.")
    print()

    try:
        program.approve("pay_2", "alice")
    except StaleOwnerSet as exc:
        print(f"   pay_2 rejected with code {exc.code}")

    print()
    print("Operation log:")
    for record in program.operation_log:
        print(f"   #{record.sequence_number} {record.instruction} by {record.caller[:16]}")


if __name__ == "__main__":
    main()
