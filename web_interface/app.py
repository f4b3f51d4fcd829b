#!/usr/bin/env python3
"""
JSON API for BitWill inheritance vaults
"""

from flask import Flask, request, jsonify
import logging
import os
import sys
import time

# Add project root to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from bitwill.config import NetworkConfig
from bitwill.errors import VaultError, VaultNotFound
from bitwill.fees import FeeEstimator, Priority
from bitwill.ledger import VaultLedger, BroadcastResult
from bitwill.lifecycle import VaultStateMachine
from bitwill.mempool import MempoolClient
from bitwill.transaction import TransactionBuilder, Utxo
from bitwill.vault import Beneficiary
from bitwill.charms.prover import CharmsApiProver, LocalSpellProver
from bitwill.charms.spell import SpellEncoder
from bitwill.units import format_btc, time_remaining

logging.basicConfig(level=os.environ.get("BITWILL_LOG_LEVEL", "INFO"))
logger = logging.getLogger("bitwill.web")

app = Flask(__name__)

config = NetworkConfig.from_env()
mempool = MempoolClient(config.mempool_api_url)
fee_estimator = FeeEstimator(config, fee_source=mempool)
encoder = SpellEncoder(config.max_payload_bytes)
state_machine = VaultStateMachine(config.warning_threshold_seconds)

# Remote proving only when a Charms API is configured explicitly
if os.environ.get("BITWILL_CHARMS_API_URL"):
    prover = CharmsApiProver(config.charms_api_url)
else:
    prover = LocalSpellProver()

# Global storage (persistence belongs to the embedding application)
ledger = VaultLedger(
    builder=TransactionBuilder(encoder, config.dust_threshold_sats, state_machine),
    state_machine=state_machine,
    prover=prover
)


def _now(data: dict = None) -> int:
    """Request clock, overridable with a 'now' field for previews"""
    if data and data.get('now') is not None:
        return int(data['now'])
    return request.args.get('now', int(time.time()), type=int)


def _fee_rate(data: dict) -> int:
    if data.get('fee_rate') is not None:
        return data['fee_rate']
    return fee_estimator.rate_for_priority(Priority(data.get('priority', 'medium')))


def _error(e: Exception):
    status = 404 if isinstance(e, VaultNotFound) else 400
    logger.warning("Request failed: %s", e)
    return jsonify({'success': False, 'error': str(e), 'type': type(e).__name__}), status


def _vault_view(vault, now: int) -> dict:
    info = vault.to_dict()
    info['status'] = state_machine.compute_status(vault, now).value
    info['amount_btc'] = format_btc(vault.amount_sats)
    info['time_remaining'] = time_remaining(vault, now)
    info['pending'] = ledger.pending(vault.id) is not None
    return info


def _pending_view(pending) -> dict:
    view = pending.to_dict()
    view['success'] = True
    return view


@app.route('/api/vaults', methods=['POST'])
def create_vault():
    """Build the funding transaction for a new vault"""
    try:
        data = request.get_json(force=True)
        owner = data['owner_address']

        if 'utxos' in data:
            utxos = [
                Utxo(u['txid'], u['vout'], u['value'], u.get('confirmed', True))
                for u in data['utxos']
            ]
        else:
            # Skip outputs already holding a vault or funding an in-flight transaction
            reserved = ledger.reserved_outpoints()
            utxos = [u for u in mempool.get_utxos(owner) if u.outpoint not in reserved]

        beneficiaries = [
            Beneficiary(name=b['name'], address=b['address'], percentage_share=b['share'])
            for b in data['beneficiaries']
        ]

        pending = ledger.request_create(
            owner_utxos=utxos,
            owner_address=owner,
            amount_sats=data['amount_sats'],
            beneficiaries=beneficiaries,
            inactivity_period_days=data['inactivity_period_days'],
            fee_rate=_fee_rate(data),
            now=_now(data),
            name=data.get('name', '')
        )
        return jsonify(_pending_view(pending))

    except (VaultError, KeyError, TypeError, ValueError) as e:
        return _error(e)


@app.route('/api/vault/<vault_id>')
def get_vault(vault_id):
    """Vault record with its status at request time"""
    try:
        vault = ledger.get(vault_id)
    except VaultNotFound as e:
        return _error(e)
    return jsonify(_vault_view(vault, _now()))


@app.route('/api/vault/<vault_id>/check_in', methods=['POST'])
def check_in(vault_id):
    try:
        data = request.get_json(force=True, silent=True) or {}
        pending = ledger.request_check_in(vault_id, _fee_rate(data), _now(data))
        return jsonify(_pending_view(pending))
    except (VaultError, KeyError, TypeError, ValueError) as e:
        return _error(e)


@app.route('/api/vault/<vault_id>/claim', methods=['POST'])
def claim(vault_id):
    try:
        data = request.get_json(force=True)
        pending = ledger.request_claim(vault_id, data['beneficiary_address'], _fee_rate(data), _now(data))
        return jsonify(_pending_view(pending))
    except (VaultError, KeyError, TypeError, ValueError) as e:
        return _error(e)


@app.route('/api/vault/<vault_id>/cancel', methods=['POST'])
def cancel(vault_id):
    try:
        data = request.get_json(force=True, silent=True) or {}
        pending = ledger.request_cancel(vault_id, _fee_rate(data), _now(data))
        return jsonify(_pending_view(pending))
    except (VaultError, KeyError, TypeError, ValueError) as e:
        return _error(e)


@app.route('/api/vault/<vault_id>/broadcast', methods=['POST'])
def report_broadcast(vault_id):
    """Report the signer's outcome for the vault's in-flight transaction"""
    try:
        data = request.get_json(force=True)
        if data.get('txid'):
            outcome = BroadcastResult.broadcast(data['txid'])
        else:
            outcome = BroadcastResult.rejected(data.get('rejection', 'rejected by signer'))

        vault = ledger.record_broadcast(vault_id, outcome)
        return jsonify({
            'success': True,
            'accepted': outcome.accepted,
            'vault': _vault_view(vault, _now(data)) if vault else None
        })
    except (VaultError, KeyError, TypeError, ValueError) as e:
        return _error(e)


@app.route('/api/claimable/<address>')
def get_claimable(address):
    now = _now()
    vaults = ledger.claimable_vaults(address, now)
    return jsonify({'vaults': [_vault_view(v, now) for v in vaults]})


@app.route('/api/spell/decode', methods=['POST'])
def decode_spell():
    """Decode an OP_RETURN script back into its spell fields"""
    try:
        data = request.get_json(force=True)
        spell = encoder.decode(bytes.fromhex(data['script']))
        return jsonify({
            'success': True,
            'action': spell.action.value,
            'version': spell.version,
            'fields': spell.fields()
        })
    except (VaultError, KeyError, TypeError, ValueError) as e:
        return _error(e)


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 10000))
    app.run(
        host="0.0.0.0",
        port=port,
        debug=False
    )
