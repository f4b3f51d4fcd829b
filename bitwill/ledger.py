"""
Vault ledger - the vault collection and its in-flight transactions

The ledger validates each requested action against the lifecycle rules,
builds the unsigned candidate, and holds the referenced anchor until the
caller reports what happened to the broadcast.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Set, Tuple
from .charms.prover import SpellProof, SpellProvingService
from .errors import StaleAnchor, ValidationError, VaultNotFound
from .lifecycle import VaultStateMachine
from .transaction import BuildResult, OutputRole, TransactionBuilder, Utxo
from .vault import ActionKind, Beneficiary, ChainAnchor, Vault, VaultStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BroadcastResult:
    """Outcome reported by the signing/broadcast collaborator"""
    txid: Optional[str] = None
    rejection: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.txid is not None and self.rejection is None

    @classmethod
    def broadcast(cls, txid: str) -> 'BroadcastResult':
        return cls(txid=txid)

    @classmethod
    def rejected(cls, reason: str) -> 'BroadcastResult':
        return cls(rejection=reason)


@dataclass(frozen=True)
class PendingAction:
    """An unsigned transaction that currently holds a vault's anchor"""
    action: ActionKind
    vault_id: str
    result: BuildResult
    requested_at: int
    outpoints: Tuple[str, ...]
    claimant: Optional[str] = None
    proof: Optional[SpellProof] = None

    def to_dict(self) -> dict:
        return {
            'action': self.action.value,
            'vault_id': self.vault_id,
            'unsigned_tx': self.result.unsigned_tx.to_dict(),
            'estimated_fee': self.result.estimated_fee,
            'proof': self.proof.serialize() if self.proof else None,
        }


def claimable_vaults(
    vaults: Iterable[Vault],
    address: str,
    now: int,
    state_machine: VaultStateMachine = None
) -> List[Vault]:
    """Triggered vaults in which address still has an unclaimed share"""
    if not address:
        return []

    state_machine = state_machine or VaultStateMachine()
    wanted = address.lower()
    return [
        vault for vault in vaults
        if state_machine.compute_status(vault, now) == VaultStatus.TRIGGERED
        and any(b.address.lower() == wanted for b in vault.unclaimed_beneficiaries())
    ]


class VaultLedger:
    """Owns vault records and applies their transitions"""

    def __init__(
        self,
        builder: TransactionBuilder = None,
        state_machine: VaultStateMachine = None,
        prover: SpellProvingService = None
    ):
        self.state_machine = state_machine or VaultStateMachine()
        self.builder = builder or TransactionBuilder(state_machine=self.state_machine)
        self.prover = prover
        self._vaults: Dict[str, Vault] = {}
        self._pending: Dict[str, PendingAction] = {}
        self._referenced: Dict[str, str] = {}  # outpoint -> vault id

    @property
    def vaults(self) -> List[Vault]:
        return list(self._vaults.values())

    def get(self, vault_id: str) -> Vault:
        try:
            return self._vaults[vault_id]
        except KeyError:
            raise VaultNotFound(f"Vault {vault_id} not found") from None

    def add(self, vault: Vault):
        """Register a vault restored from persistence"""
        if vault.id in self._vaults:
            raise ValidationError(f"Vault {vault.id} already exists")
        self._vaults[vault.id] = vault

    def status(self, vault_id: str, now: int) -> VaultStatus:
        return self.state_machine.compute_status(self.get(vault_id), now)

    def pending(self, vault_id: str) -> Optional[PendingAction]:
        return self._pending.get(vault_id)

    def claimable_vaults(self, address: str, now: int) -> List[Vault]:
        return claimable_vaults(self._vaults.values(), address, now, self.state_machine)

    def reserved_outpoints(self) -> Set[str]:
        """Outpoints that must not fund a new vault: live anchors and in-flight inputs"""
        return set(self._referenced) | set(self._live_anchors())

    # Action requests

    def request_create(
        self,
        owner_utxos: List[Utxo],
        owner_address: str,
        amount_sats: int,
        beneficiaries: List[Beneficiary],
        inactivity_period_days: int,
        fee_rate: int,
        now: int,
        name: str = ""
    ) -> PendingAction:
        """Build the funding transaction for a new vault"""
        outpoints = tuple(u.outpoint for u in owner_utxos)
        self._check_free(outpoints)
        self._check_not_anchor(outpoints)

        result = self.builder.build_create_vault(
            owner_utxos=owner_utxos,
            owner_address=owner_address,
            amount_sats=amount_sats,
            beneficiaries=beneficiaries,
            inactivity_period_days=inactivity_period_days,
            fee_rate=fee_rate,
            created_at=now,
            name=name,
        )
        if result.vault_id in self._vaults or result.vault_id in self._pending:
            raise StaleAnchor(f"Funding outpoint of vault {result.vault_id[:8]}... was already used")

        return self._register(ActionKind.CREATE_VAULT, result, now, outpoints)

    def request_check_in(self, vault_id: str, fee_rate: int, now: int, vault_utxo: Utxo = None) -> PendingAction:
        vault = self.get(vault_id)
        self.state_machine.validate_check_in(vault, now)
        utxo = self._anchor_utxo(vault, vault_utxo)

        result = self.builder.build_check_in(utxo, vault.id, vault.owner_address, fee_rate, now)
        return self._register(ActionKind.CHECK_IN, result, now, (utxo.outpoint,))

    def request_cancel(self, vault_id: str, fee_rate: int, now: int, vault_utxo: Utxo = None) -> PendingAction:
        vault = self.get(vault_id)
        self.state_machine.validate_cancel(vault, now)
        utxo = self._anchor_utxo(vault, vault_utxo)

        result = self.builder.build_cancel(utxo, vault.id, vault.owner_address, fee_rate, now)
        return self._register(ActionKind.CANCEL, result, now, (utxo.outpoint,))

    def request_claim(
        self,
        vault_id: str,
        beneficiary_address: str,
        fee_rate: int,
        now: int,
        vault_utxo: Utxo = None
    ) -> PendingAction:
        """
        Build a claim for one beneficiary.

        Shares are taken from the anchor value at the first claim; the last
        beneficiary left sweeps whatever remains, rounding residue included.
        An address listed more than once claims all of its shares at once.
        """
        vault = self.get(vault_id)
        beneficiary = self.state_machine.validate_claim(vault, beneficiary_address, now)
        utxo = self._anchor_utxo(vault, vault_utxo)

        basis = vault.claim_basis_sats if vault.claim_basis_sats is not None else utxo.value_sats
        result = self.builder.build_claim(
            vault_utxo=utxo,
            vault_id=vault.id,
            beneficiary_address=beneficiary.address,
            percentage_share=vault.share_of(beneficiary.address),
            fee_rate=fee_rate,
            claimed_at=now,
            vault_address=vault.owner_address,
            basis_sats=basis,
            sweep=self.state_machine.is_last_claim(vault, beneficiary.address),
        )
        return self._register(ActionKind.CLAIM, result, now, (utxo.outpoint,), claimant=beneficiary.address)

    # Broadcast outcomes

    def record_broadcast(self, vault_id: str, outcome: BroadcastResult) -> Optional[Vault]:
        """
        Apply the transition for an in-flight transaction.

        A rejected broadcast only releases the anchor. Returns the vault as it
        now stands, or None for a create that never made it.
        """
        pending = self._pending.pop(vault_id, None)
        if pending is None:
            raise StaleAnchor(f"No in-flight transaction for vault {vault_id}")
        for outpoint in pending.outpoints:
            self._referenced.pop(outpoint, None)

        if not outcome.accepted:
            logger.warning("%s for vault %s rejected: %s", pending.action.value, vault_id[:8], outcome.rejection)
            return self._vaults.get(vault_id)

        tx = pending.result.unsigned_tx
        anchor = None
        index = tx.vault_output_index
        if index is not None:
            anchor = ChainAnchor(
                txid=outcome.txid,
                output_index=index,
                value_sats=tx.outputs[index].value_sats,
                is_on_chain=True
            )

        if pending.action == ActionKind.CREATE_VAULT:
            vault = replace(pending.result.vault, anchor=anchor)
        elif pending.action == ActionKind.CHECK_IN:
            vault = self.state_machine.apply_check_in(self.get(vault_id), pending.requested_at, anchor)
        elif pending.action == ActionKind.CANCEL:
            vault = self.state_machine.apply_cancel(self.get(vault_id))
        else:
            claimed = tx.outputs_with_role(OutputRole.CLAIM)[0].value_sats
            vault = self.state_machine.apply_claim(self.get(vault_id), pending.claimant, claimed, anchor)

        self._vaults[vault_id] = vault
        logger.info("Recorded %s for vault %s in %s, status %s",
                    pending.action.value, vault_id[:8], outcome.txid, vault.status.value)
        return vault

    def abandon(self, vault_id: str) -> Optional[Vault]:
        """Drop an in-flight transaction that will never be broadcast"""
        return self.record_broadcast(vault_id, BroadcastResult.rejected("abandoned"))

    # Persistence

    def to_dict(self) -> dict:
        return {'vaults': [vault.to_dict() for vault in self._vaults.values()]}

    @classmethod
    def from_dict(cls, data: dict, **kwargs) -> 'VaultLedger':
        ledger = cls(**kwargs)
        for vault_data in data.get('vaults', []):
            ledger.add(Vault.from_dict(vault_data))
        return ledger

    # Internals

    def _check_free(self, outpoints: Iterable[str]):
        for outpoint in outpoints:
            holder = self._referenced.get(outpoint)
            if holder is not None:
                raise StaleAnchor(f"{outpoint} is already referenced by a pending transaction for vault {holder[:8]}...")

    def _live_anchors(self) -> Dict[str, str]:
        """Unspent anchor outpoint -> vault id"""
        return {
            vault.anchor.outpoint: vault.id for vault in self._vaults.values()
            if vault.anchor.is_on_chain and vault.anchor.outpoint is not None
        }

    def _check_not_anchor(self, outpoints: Iterable[str]):
        # Vault outputs pay the owner address, so they show up among the owner's UTXOs
        anchors = self._live_anchors()
        for outpoint in outpoints:
            if outpoint in anchors:
                raise StaleAnchor(f"{outpoint} is the anchor of vault {anchors[outpoint][:8]}...")

    def _anchor_utxo(self, vault: Vault, vault_utxo: Optional[Utxo]) -> Utxo:
        """The vault's current anchor as a spendable UTXO"""
        if vault.id in self._pending:
            raise StaleAnchor(f"Vault {vault.id[:8]}... already has a transaction in flight")
        if not vault.anchor.is_on_chain or vault.anchor.txid is None:
            raise StaleAnchor(f"Vault {vault.id[:8]}... has no unspent anchor")

        anchor_utxo = Utxo(vault.anchor.txid, vault.anchor.output_index, vault.anchor.value_sats)
        if vault_utxo is None:
            return anchor_utxo

        if vault_utxo.outpoint != anchor_utxo.outpoint or vault_utxo.value_sats != anchor_utxo.value_sats:
            raise StaleAnchor(f"{vault_utxo.outpoint} is not the current anchor {anchor_utxo.outpoint}")
        return vault_utxo

    def _register(self, action, result: BuildResult, now: int, outpoints, claimant: str = None) -> PendingAction:
        proof = None
        if self.prover is not None:
            proof = self.prover.prove(result.unsigned_tx.spell_script)

        pending = PendingAction(
            action=action,
            vault_id=result.vault_id,
            result=result,
            requested_at=now,
            outpoints=tuple(outpoints),
            claimant=claimant,
            proof=proof,
        )
        self._pending[result.vault_id] = pending
        for outpoint in pending.outpoints:
            self._referenced[outpoint] = result.vault_id

        logger.info("Pending %s for vault %s, fee %d", action.value, result.vault_id[:8], result.estimated_fee)
        return pending
