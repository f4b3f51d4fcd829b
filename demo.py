#!/usr/bin/env python3
"""
Complete demo of the BitWill inheritance vault lifecycle
"""

import json
import logging
import os

from bitwill.bitcoin_integration import BitcoinKey
from bitwill.charms.prover import LocalSpellProver
from bitwill.charms.spell import decode_spell
from bitwill.errors import VaultError
from bitwill.ledger import VaultLedger, BroadcastResult
from bitwill.transaction import Utxo
from bitwill.units import format_btc, time_remaining
from bitwill.vault import Beneficiary

DAY = 86400


def mock_broadcast(pending) -> BroadcastResult:
    """Stand-in signer: the txid is a hash of the unsigned candidate"""
    payload = json.dumps(pending.result.unsigned_tx.to_dict(), sort_keys=True).encode()
    return BroadcastResult.broadcast(BitcoinKey.double_sha256(payload).hex())


def main():
    logging.basicConfig(level=os.environ.get("BITWILL_LOG_LEVEL", "WARNING"))

    print("=" * 60)
    print("🏦 BITWILL INHERITANCE VAULT - COMPLETE DEMO")
    print("=" * 60)
    print()

    # Step 1: Setup
    print("🔧 STEP 1: Setting up owner and heirs")
    print("-" * 40)

    owner = BitcoinKey().address()
    heirs = []
    for name, share in [("Alice", 50), ("Bob", 30), ("Carol", 20)]:
        address = BitcoinKey().address()
        heirs.append(Beneficiary(name=name, address=address, percentage_share=share))
        print(f"✅ {name}: {address[:16]}... ({share}% share)")

    print(f"✅ Owner: {owner[:16]}...")
    print()

    # Step 2: Create vault
    print("🏗️  STEP 2: Creating the vault")
    print("-" * 40)

    ledger = VaultLedger(prover=LocalSpellProver())
    now = 1_700_000_000
    funding = [
        Utxo("aa" * 32, 0, 60_000_000),
        Utxo("bb" * 32, 1, 45_000_000),
    ]

    pending = ledger.request_create(
        owner_utxos=funding,
        owner_address=owner,
        amount_sats=100_000_000,
        beneficiaries=heirs,
        inactivity_period_days=90,
        fee_rate=2,
        now=now,
        name="Family savings"
    )
    tx = pending.result.unsigned_tx
    print(f"✅ Vault ID: {pending.vault_id[:16]}...")
    print(f"✅ Inputs: {format_btc(tx.input_total)} BTC, fee {tx.fee_sats} sats")
    print(f"✅ Spell: {decode_spell(tx.spell_script).action.value}, {len(tx.spell_script)} bytes")
    print(f"✅ Proof verifies: {pending.proof.verify(tx.spell_script)}")

    vault = ledger.record_broadcast(pending.vault_id, mock_broadcast(pending))
    print(f"✅ Anchored at {vault.anchor.outpoint[:20]}...")
    print()

    # Step 3: Check in
    print("⏰ STEP 3: Owner checks in during the warning window")
    print("-" * 40)

    now += 85 * DAY
    print(f"   Status after 85 days: {ledger.status(vault.id, now).value}")
    pending = ledger.request_check_in(vault.id, fee_rate=2, now=now)
    vault = ledger.record_broadcast(vault.id, mock_broadcast(pending))
    remaining = time_remaining(vault, now)
    print(f"   ✅ Checked in, {remaining['days']} days until trigger, status {ledger.status(vault.id, now).value}")
    print()

    # Step 4: Trigger and claim
    print("💰 STEP 4: Owner goes silent, heirs claim")
    print("-" * 40)

    now += 91 * DAY
    print(f"   Status after 91 more days: {ledger.status(vault.id, now).value}")

    try:
        ledger.request_check_in(vault.id, fee_rate=2, now=now)
        print("   ❌ UNEXPECTED: Check-in should have failed")
    except VaultError as e:
        print(f"   ✅ EXPECTED FAILURE: {e}")

    for heir in heirs:
        claimable = [v.id for v in ledger.claimable_vaults(heir.address, now)]
        pending = ledger.request_claim(vault.id, heir.address, fee_rate=2, now=now)
        claimed = pending.result.unsigned_tx.outputs[0].value_sats
        vault = ledger.record_broadcast(vault.id, mock_broadcast(pending))
        print(f"   ✅ {heir.name} claimed {format_btc(claimed)} BTC "
              f"(listed as claimable: {vault.id in claimable}), vault now {vault.status.value}")

    print()
    print("=" * 60)
    print("🎉 DEMO COMPLETE")
    print("=" * 60)


if __name__ == "__main__":
    main()
