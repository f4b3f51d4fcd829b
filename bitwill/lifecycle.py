"""
Vault lifecycle - status derivation and action transition rules

Every function here is pure: statuses are derived from the vault's stored
fields and a caller-supplied clock, and transitions return new Vault objects.
"""

from dataclasses import replace
from typing import List, Optional
from .config import WARNING_THRESHOLD_SECONDS
from .errors import InvalidStateTransition, NotABeneficiary, ValidationError
from .vault import Vault, VaultStatus, Beneficiary, ChainAnchor, SECONDS_PER_DAY, derive_vault_id

LIVE_STATUSES = (VaultStatus.ACTIVE, VaultStatus.WARNING)


class VaultStateMachine:
    """Time-derived vault status plus the rules for each action"""

    def __init__(self, warning_threshold_seconds: int = WARNING_THRESHOLD_SECONDS):
        self.warning_threshold_seconds = warning_threshold_seconds

    def seconds_remaining(self, vault: Vault, now: int) -> int:
        """Seconds until the vault triggers, never negative"""
        elapsed = now - vault.last_check_in_timestamp
        return max(0, vault.inactivity_period_seconds - elapsed)

    def compute_status(self, vault: Vault, now: int) -> VaultStatus:
        """Current status of the vault at wall-clock time now"""
        if vault.status.is_terminal:
            return vault.status

        # Partially claimed vaults stay triggered until exhausted
        if vault.claims:
            return VaultStatus.TRIGGERED

        elapsed = now - vault.last_check_in_timestamp
        remaining = vault.inactivity_period_seconds - elapsed

        if remaining <= 0:
            return VaultStatus.TRIGGERED
        if remaining <= self.warning_threshold_seconds:
            return VaultStatus.WARNING
        return VaultStatus.ACTIVE

    # Validation

    def validate_check_in(self, vault: Vault, now: int):
        status = self.compute_status(vault, now)
        if status not in LIVE_STATUSES:
            raise InvalidStateTransition(f"Cannot check in to a {status.value} vault")

    def validate_cancel(self, vault: Vault, now: int):
        status = self.compute_status(vault, now)
        if status not in LIVE_STATUSES:
            raise InvalidStateTransition(f"Cannot cancel a {status.value} vault")

    def validate_claim(self, vault: Vault, address: str, now: int) -> Beneficiary:
        """Return the claiming beneficiary or raise why they cannot claim"""
        status = self.compute_status(vault, now)
        if status != VaultStatus.TRIGGERED:
            raise InvalidStateTransition(f"Cannot claim from a {status.value} vault")

        beneficiary = vault.get_beneficiary(address)
        if beneficiary is None:
            raise NotABeneficiary(f"{address} is not a beneficiary of vault {vault.id[:8]}...")

        if vault.has_claimed(address):
            raise InvalidStateTransition(f"{address} has already claimed from vault {vault.id[:8]}...")

        if vault.share_of(address) == 0:
            raise ValidationError(f"{address} holds a 0% share and has nothing to claim")

        return beneficiary

    def is_last_claim(self, vault: Vault, address: str) -> bool:
        """True when every beneficiary entry left to claim belongs to address"""
        wanted = address.lower()
        remaining = vault.unclaimed_beneficiaries()
        return bool(remaining) and all(b.address.lower() == wanted for b in remaining)

    # Transitions

    def create_vault(
        self,
        name: str,
        owner_address: str,
        amount_sats: int,
        beneficiaries: List[Beneficiary],
        inactivity_period_days: int,
        created_at: int,
        funding_txid: str,
        funding_output_index: int
    ) -> Vault:
        """New vault in Active, checked in at its creation time"""
        if not isinstance(inactivity_period_days, int) or inactivity_period_days <= 0:
            raise ValidationError("Inactivity period must be a positive number of days")

        return Vault(
            id=derive_vault_id(funding_txid, funding_output_index),
            name=name,
            owner_address=owner_address,
            amount_sats=amount_sats,
            beneficiaries=list(beneficiaries),
            inactivity_period_seconds=inactivity_period_days * SECONDS_PER_DAY,
            last_check_in_timestamp=created_at,
            created_at_timestamp=created_at,
            status=VaultStatus.ACTIVE,
        )

    def apply_check_in(self, vault: Vault, now: int, anchor: ChainAnchor) -> Vault:
        if vault.status.is_terminal:
            raise InvalidStateTransition(f"Cannot check in to a {vault.status.value} vault")
        return replace(vault, last_check_in_timestamp=now, status=VaultStatus.ACTIVE, anchor=anchor)

    def apply_cancel(self, vault: Vault) -> Vault:
        if vault.status.is_terminal:
            raise InvalidStateTransition(f"Cannot cancel a {vault.status.value} vault")
        return replace(vault, status=VaultStatus.CANCELLED, anchor=ChainAnchor())

    def apply_claim(self, vault: Vault, address: str, amount_sats: int, anchor: Optional[ChainAnchor]) -> Vault:
        """Record one beneficiary's claim; anchor is None when nothing remains"""
        if vault.status.is_terminal:
            raise InvalidStateTransition(f"Cannot claim from a {vault.status.value} vault")

        claims = dict(vault.claims)
        claims[address.lower()] = amount_sats

        basis = vault.claim_basis_sats
        if basis is None:
            basis = vault.anchor.value_sats

        updated = replace(vault, claims=claims, claim_basis_sats=basis, anchor=anchor or ChainAnchor())
        if anchor is None or not updated.unclaimed_beneficiaries():
            return replace(updated, status=VaultStatus.CLAIMED)
        return replace(updated, status=VaultStatus.TRIGGERED)
