"""
Unsigned transaction candidates for vault actions

Every builder returns a balanced candidate (inputs == outputs + fee) in whole
satoshis or raises before producing anything.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple
from verystable.core.messages import COutPoint, CTransaction, CTxIn, CTxOut
from .bitcoin_integration import address_to_scriptpubkey, is_valid_address
from .charms.spell import (
    SpellEncoder, SpellPayload, SpellBeneficiary, CreateVaultSpell, CheckInSpell, ClaimSpell, CancelSpell
)
from .config import DUST_THRESHOLD_SATS
from .errors import InsufficientFunds, ValidationError
from .fees import FeeEstimator
from .lifecycle import VaultStateMachine
from .vault import ActionKind, Beneficiary, Vault

logger = logging.getLogger(__name__)

# Opt-in replace-by-fee (BIP 125)
RBF_SEQUENCE = 0xfffffffd


@dataclass(frozen=True)
class Utxo:
    """Unspent output reported by the UTXO index"""
    txid: str
    output_index: int
    value_sats: int
    confirmed: bool = True

    def __post_init__(self):
        if not isinstance(self.value_sats, int) or isinstance(self.value_sats, bool) or self.value_sats <= 0:
            raise ValidationError(f"UTXO value must be a positive integer of sats, got {self.value_sats!r}")
        if not isinstance(self.output_index, int) or self.output_index < 0:
            raise ValidationError(f"Invalid output index {self.output_index!r}")

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.output_index}"


class OutputRole(Enum):
    VAULT = "vault"
    CHANGE = "change"
    CLAIM = "claim"
    REFUND = "refund"
    SPELL = "spell"


@dataclass(frozen=True)
class TxInput:
    txid: str
    output_index: int
    value_sats: int

    @classmethod
    def from_utxo(cls, utxo: Utxo) -> 'TxInput':
        return cls(utxo.txid, utxo.output_index, utxo.value_sats)


@dataclass(frozen=True)
class TxOutput:
    role: OutputRole
    value_sats: int
    address: Optional[str] = None
    script: Optional[bytes] = None

    @property
    def script_pubkey(self) -> bytes:
        if self.script is not None:
            return self.script
        return address_to_scriptpubkey(self.address)


@dataclass(frozen=True)
class UnsignedTransaction:
    """Assembled inputs and outputs awaiting an external signer"""
    action: ActionKind
    inputs: Tuple[TxInput, ...]
    outputs: Tuple[TxOutput, ...]
    fee_sats: int
    vsize: int
    fee_rate: int
    spell: SpellPayload

    @property
    def input_total(self) -> int:
        return sum(i.value_sats for i in self.inputs)

    @property
    def output_total(self) -> int:
        return sum(o.value_sats for o in self.outputs)

    @property
    def is_balanced(self) -> bool:
        return self.input_total == self.output_total + self.fee_sats

    @property
    def spell_script(self) -> bytes:
        for output in self.outputs:
            if output.role == OutputRole.SPELL:
                return output.script
        raise ValueError("Transaction has no spell output")

    @property
    def vault_output_index(self) -> Optional[int]:
        """Index of the output that carries the vault forward, if any"""
        for index, output in enumerate(self.outputs):
            if output.role == OutputRole.VAULT:
                return index
        return None

    def outputs_with_role(self, role: OutputRole) -> List[TxOutput]:
        return [o for o in self.outputs if o.role == role]

    def to_ctransaction(self) -> CTransaction:
        """Unsigned transaction in wire form, inputs and outputs in candidate order"""
        tx = CTransaction()
        tx.vin = [
            CTxIn(COutPoint(int(i.txid, 16), i.output_index), b"", RBF_SEQUENCE)
            for i in self.inputs
        ]
        tx.vout = [CTxOut(o.value_sats, o.script_pubkey) for o in self.outputs]
        return tx

    def serialize_hex(self) -> str:
        """Hex of the unsigned transaction for an external signer"""
        return self.to_ctransaction().serialize_without_witness().hex()

    def to_dict(self) -> dict:
        """Plain serializable form for signers and API responses"""
        return {
            'action': self.action.value,
            'inputs': [
                {'txid': i.txid, 'vout': i.output_index, 'value': i.value_sats}
                for i in self.inputs
            ],
            'outputs': [
                {
                    'role': o.role.value,
                    'value': o.value_sats,
                    'address': o.address,
                    'script': o.script.hex() if o.script is not None else None,
                    'script_pubkey': o.script_pubkey.hex()
                }
                for o in self.outputs
            ],
            'fee': self.fee_sats,
            'vsize': self.vsize,
            'fee_rate': self.fee_rate,
            'hex': self.serialize_hex(),
        }


@dataclass(frozen=True)
class BuildResult:
    unsigned_tx: UnsignedTransaction
    estimated_fee: int
    vault_id: str
    vault: Optional[Vault] = None  # set for CreateVault only


class TransactionBuilder:
    """Assembles balanced, unsigned candidates for the four vault actions"""

    def __init__(
        self,
        encoder: SpellEncoder = None,
        dust_threshold_sats: int = DUST_THRESHOLD_SATS,
        state_machine: VaultStateMachine = None
    ):
        self.encoder = encoder or SpellEncoder()
        self.dust_threshold_sats = dust_threshold_sats
        self.state_machine = state_machine or VaultStateMachine()

    def build(self, action: ActionKind, **params) -> BuildResult:
        """Dispatch to the builder for action"""
        builders = {
            ActionKind.CREATE_VAULT: self.build_create_vault,
            ActionKind.CHECK_IN: self.build_check_in,
            ActionKind.CLAIM: self.build_claim,
            ActionKind.CANCEL: self.build_cancel,
        }
        return builders[action](**params)

    def build_create_vault(
        self,
        owner_utxos: List[Utxo],
        owner_address: str,
        amount_sats: int,
        beneficiaries: List[Beneficiary],
        inactivity_period_days: int,
        fee_rate: int,
        created_at: int,
        name: str = ""
    ) -> BuildResult:
        """
        Lock amount_sats in a new vault.

        Spends every supplied UTXO; change below dust goes to the fee.
        """
        self._check_fee_rate(fee_rate)
        utxos = list(owner_utxos)
        if not utxos:
            raise ValidationError("No UTXOs supplied to fund the vault")
        if len({u.outpoint for u in utxos}) != len(utxos):
            raise ValidationError("The same UTXO was supplied more than once")

        first = utxos[0]
        vault = self.state_machine.create_vault(
            name, owner_address, amount_sats, beneficiaries, inactivity_period_days,
            created_at, first.txid, first.output_index
        )
        if amount_sats < self.dust_threshold_sats:
            raise ValidationError(f"Vault amount {amount_sats} is below the {self.dust_threshold_sats} sat dust threshold")

        spell = CreateVaultSpell(
            vault_id=vault.id,
            owner=owner_address,
            beneficiaries=tuple(
                SpellBeneficiary(address=b.address, name=b.name, percentage=b.percentage_share)
                for b in vault.beneficiaries
            ),
            inactivity_period_seconds=vault.inactivity_period_seconds,
            amount_sats=amount_sats,
            created_at=created_at,
            last_check_in=created_at,
        )
        script = self.encoder.encode(spell)

        # Sized with a change output; dropped below if it would be dust
        vsize = FeeEstimator.estimate_vsize(ActionKind.CREATE_VAULT, len(utxos), 2, len(script))
        fee = FeeEstimator.estimate_fee(vsize, fee_rate)

        total_input = sum(u.value_sats for u in utxos)
        if total_input < amount_sats + fee:
            raise InsufficientFunds(amount_sats + fee, total_input)

        outputs = [
            TxOutput(OutputRole.VAULT, amount_sats, address=owner_address),
            TxOutput(OutputRole.SPELL, 0, script=script),
        ]
        change = total_input - amount_sats - fee
        if change >= self.dust_threshold_sats:
            outputs.append(TxOutput(OutputRole.CHANGE, change, address=owner_address))
        else:
            fee += change

        tx = self._finish(ActionKind.CREATE_VAULT, utxos, outputs, fee, vsize, fee_rate, spell)
        logger.info("Built create_vault %s: %d sats locked, fee %d", vault.id[:8], amount_sats, fee)
        return BuildResult(tx, fee, vault.id, vault)

    def build_check_in(
        self,
        vault_utxo: Utxo,
        vault_id: str,
        owner_address: str,
        fee_rate: int,
        checked_in_at: int
    ) -> BuildResult:
        """Re-lock the vault output, paying the fee from the vault itself"""
        self._check_fee_rate(fee_rate)
        self._check_address(owner_address)

        spell = CheckInSpell(vault_id=vault_id, checked_in_at=checked_in_at)
        script = self.encoder.encode(spell)

        vsize = FeeEstimator.estimate_vsize(ActionKind.CHECK_IN, 1, 1, len(script))
        fee = FeeEstimator.estimate_fee(vsize, fee_rate)

        vault_value = vault_utxo.value_sats - fee
        if vault_value < self.dust_threshold_sats:
            raise InsufficientFunds(
                fee + self.dust_threshold_sats, vault_utxo.value_sats,
                "Vault amount too small for check-in transaction"
            )

        outputs = [
            TxOutput(OutputRole.VAULT, vault_value, address=owner_address),
            TxOutput(OutputRole.SPELL, 0, script=script),
        ]
        tx = self._finish(ActionKind.CHECK_IN, [vault_utxo], outputs, fee, vsize, fee_rate, spell)
        logger.info("Built check_in %s: vault value %d, fee %d", vault_id[:8], vault_value, fee)
        return BuildResult(tx, fee, vault_id)

    def build_claim(
        self,
        vault_utxo: Utxo,
        vault_id: str,
        beneficiary_address: str,
        percentage_share: int,
        fee_rate: int,
        claimed_at: int,
        vault_address: str,
        basis_sats: int = None,
        sweep: bool = False
    ) -> BuildResult:
        """
        Pay a beneficiary their share of the vault.

        The claim is floor(basis * percentage_share / 100), basis defaulting to
        the vault UTXO value. The fee comes out of the remainder, which returns
        to vault_address when it is not dust. With sweep the beneficiary takes
        everything left after the fee.
        """
        self._check_fee_rate(fee_rate)
        self._check_address(beneficiary_address)
        if not isinstance(percentage_share, int) or not (0 < percentage_share <= 100):
            raise ValidationError(f"Claim share must be between 1 and 100, got {percentage_share!r}")

        value = vault_utxo.value_sats

        if sweep:
            # Size with the largest possible amount so the estimate never falls short
            upper = ClaimSpell(vault_id, beneficiary_address, value, claimed_at)
            vsize = FeeEstimator.estimate_vsize(ActionKind.CLAIM, 1, 1, len(self.encoder.encode(upper)))
            fee = FeeEstimator.estimate_fee(vsize, fee_rate)

            claim_amount = value - fee
            if claim_amount < self.dust_threshold_sats:
                raise InsufficientFunds(fee + self.dust_threshold_sats, value, "Vault amount too small to claim")

            spell = ClaimSpell(vault_id, beneficiary_address, claim_amount, claimed_at)
            outputs = [
                TxOutput(OutputRole.CLAIM, claim_amount, address=beneficiary_address),
                TxOutput(OutputRole.SPELL, 0, script=self.encoder.encode(spell)),
            ]
        else:
            self._check_address(vault_address)
            basis = value if basis_sats is None else basis_sats
            claim_amount = basis * percentage_share // 100
            if claim_amount < self.dust_threshold_sats:
                raise InsufficientFunds(
                    self.dust_threshold_sats, claim_amount,
                    f"Claim of {claim_amount} sats is below the dust threshold"
                )

            spell = ClaimSpell(vault_id, beneficiary_address, claim_amount, claimed_at)
            script = self.encoder.encode(spell)
            vsize = FeeEstimator.estimate_vsize(ActionKind.CLAIM, 1, 2, len(script))
            fee = FeeEstimator.estimate_fee(vsize, fee_rate)

            remainder = value - claim_amount - fee
            if remainder < 0:
                raise InsufficientFunds(claim_amount + fee, value, "No room for the fee after the claim")

            outputs = [TxOutput(OutputRole.CLAIM, claim_amount, address=beneficiary_address)]
            if remainder >= self.dust_threshold_sats:
                outputs.append(TxOutput(OutputRole.VAULT, remainder, address=vault_address))
            else:
                fee += remainder
            outputs.append(TxOutput(OutputRole.SPELL, 0, script=script))

        tx = self._finish(ActionKind.CLAIM, [vault_utxo], outputs, fee, vsize, fee_rate, spell)
        logger.info("Built claim %s: %d sats to %s, fee %d", vault_id[:8], claim_amount, beneficiary_address, fee)
        return BuildResult(tx, fee, vault_id)

    def build_cancel(
        self,
        vault_utxo: Utxo,
        vault_id: str,
        owner_address: str,
        fee_rate: int,
        cancelled_at: int
    ) -> BuildResult:
        """Return the vault value to the owner"""
        self._check_fee_rate(fee_rate)
        self._check_address(owner_address)

        spell = CancelSpell(vault_id=vault_id, cancelled_at=cancelled_at)
        script = self.encoder.encode(spell)

        vsize = FeeEstimator.estimate_vsize(ActionKind.CANCEL, 1, 1, len(script))
        fee = FeeEstimator.estimate_fee(vsize, fee_rate)

        refund = vault_utxo.value_sats - fee
        if refund < self.dust_threshold_sats:
            raise InsufficientFunds(
                fee + self.dust_threshold_sats, vault_utxo.value_sats,
                "Vault amount too small for cancellation"
            )

        outputs = [
            TxOutput(OutputRole.REFUND, refund, address=owner_address),
            TxOutput(OutputRole.SPELL, 0, script=script),
        ]
        tx = self._finish(ActionKind.CANCEL, [vault_utxo], outputs, fee, vsize, fee_rate, spell)
        logger.info("Built cancel %s: %d sats back to owner, fee %d", vault_id[:8], refund, fee)
        return BuildResult(tx, fee, vault_id)

    def _finish(self, action, utxos, outputs, fee, vsize, fee_rate, spell) -> UnsignedTransaction:
        tx = UnsignedTransaction(
            action=action,
            inputs=tuple(TxInput.from_utxo(u) for u in utxos),
            outputs=tuple(outputs),
            fee_sats=fee,
            vsize=vsize,
            fee_rate=fee_rate,
            spell=spell,
        )
        if not tx.is_balanced:
            raise ValueError(
                f"Unbalanced {action.value} candidate: inputs {tx.input_total}, "
                f"outputs {tx.output_total}, fee {fee}"
            )
        return tx

    @staticmethod
    def _check_fee_rate(fee_rate: int):
        if not isinstance(fee_rate, int) or isinstance(fee_rate, bool) or fee_rate < 1:
            raise ValidationError(f"Fee rate must be a whole number of sats/vbyte >= 1, got {fee_rate!r}")

    @staticmethod
    def _check_address(address: str):
        if not is_valid_address(address):
            raise ValidationError(f"Malformed address: {address!r}")
