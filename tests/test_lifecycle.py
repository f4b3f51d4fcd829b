import unittest
from bitwill.lifecycle import VaultStateMachine
from bitwill.vault import Vault, Beneficiary, ChainAnchor, VaultStatus, derive_vault_id
from bitwill.bitcoin_integration import BitcoinKey
from bitwill.errors import InvalidStateTransition, NotABeneficiary, ValidationError

DAY = 86400
NOW = 1_700_000_000


class TestVaultStateMachine(unittest.TestCase):

    def setUp(self):
        """Set up test fixtures"""
        self.machine = VaultStateMachine()
        self.owner = BitcoinKey().address()
        self.heirs = [BitcoinKey().address() for _ in range(2)]

    def _vault(self, last_check_in, status=VaultStatus.ACTIVE, shares=(60, 40)):
        return Vault(
            id=derive_vault_id("aa" * 32, 0),
            name="Test",
            owner_address=self.owner,
            amount_sats=1_000_000,
            beneficiaries=[
                Beneficiary(f"Heir {i}", address, share)
                for i, (address, share) in enumerate(zip(self.heirs, shares))
            ],
            inactivity_period_seconds=90 * DAY,
            last_check_in_timestamp=last_check_in,
            created_at_timestamp=last_check_in,
            status=status,
            anchor=ChainAnchor("bb" * 32, 0, 1_000_000, True)
        )

    def test_scenario_a_triggered_after_period(self):
        vault = self._vault(NOW - 91 * DAY)
        self.assertEqual(self.machine.compute_status(vault, NOW), VaultStatus.TRIGGERED)

    def test_scenario_b_warning_inside_threshold(self):
        vault = self._vault(NOW - 85 * DAY)
        self.assertEqual(self.machine.compute_status(vault, NOW), VaultStatus.WARNING)
        self.assertEqual(self.machine.seconds_remaining(vault, NOW), 5 * DAY)

    def test_boundaries(self):
        """Exactly seven days left is Warning, exactly zero is Triggered"""
        self.assertEqual(self.machine.compute_status(self._vault(NOW - 83 * DAY), NOW), VaultStatus.WARNING)
        self.assertEqual(self.machine.compute_status(self._vault(NOW - 83 * DAY + 1), NOW), VaultStatus.ACTIVE)
        self.assertEqual(self.machine.compute_status(self._vault(NOW - 90 * DAY), NOW), VaultStatus.TRIGGERED)
        self.assertEqual(self.machine.compute_status(self._vault(NOW - 90 * DAY + 1), NOW), VaultStatus.WARNING)

    def test_status_is_monotonic_without_check_in(self):
        vault = self._vault(NOW)
        order = [VaultStatus.ACTIVE, VaultStatus.WARNING, VaultStatus.TRIGGERED]

        previous = 0
        for hours in range(0, 100 * 24, 6):
            status = self.machine.compute_status(vault, NOW + hours * 3600)
            rank = order.index(status)
            self.assertGreaterEqual(rank, previous)
            previous = rank

        self.assertEqual(previous, 2)

    def test_terminal_statuses_are_sticky(self):
        for status in (VaultStatus.CLAIMED, VaultStatus.CANCELLED):
            vault = self._vault(NOW, status=status)
            for offset in (0, 85 * DAY, 91 * DAY, 10_000 * DAY):
                self.assertEqual(self.machine.compute_status(vault, NOW + offset), status)

    def test_compute_status_has_no_side_effects(self):
        vault = self._vault(NOW - 91 * DAY)
        before = vault.to_dict()
        self.machine.compute_status(vault, NOW)
        self.machine.compute_status(vault, NOW)
        self.assertEqual(vault.to_dict(), before)

    def test_check_in_resets_clock(self):
        vault = self._vault(NOW - 85 * DAY, status=VaultStatus.WARNING)
        self.machine.validate_check_in(vault, NOW)

        anchor = ChainAnchor("cc" * 32, 0, 999_000, True)
        updated = self.machine.apply_check_in(vault, NOW, anchor)
        self.assertEqual(updated.last_check_in_timestamp, NOW)
        self.assertEqual(updated.status, VaultStatus.ACTIVE)
        self.assertEqual(updated.anchor, anchor)
        self.assertEqual(self.machine.compute_status(updated, NOW), VaultStatus.ACTIVE)
        # original untouched
        self.assertEqual(vault.last_check_in_timestamp, NOW - 85 * DAY)

    def test_scenario_d_check_in_on_triggered_fails(self):
        vault = self._vault(NOW - 91 * DAY)
        with self.assertRaises(InvalidStateTransition):
            self.machine.validate_check_in(vault, NOW)

    def test_check_in_and_cancel_rejected_when_terminal(self):
        for status in (VaultStatus.CLAIMED, VaultStatus.CANCELLED):
            vault = self._vault(NOW, status=status)
            with self.assertRaises(InvalidStateTransition):
                self.machine.validate_check_in(vault, NOW)
            with self.assertRaises(InvalidStateTransition):
                self.machine.validate_cancel(vault, NOW)

    def test_cancel(self):
        vault = self._vault(NOW - 10 * DAY)
        self.machine.validate_cancel(vault, NOW)

        cancelled = self.machine.apply_cancel(vault)
        self.assertEqual(cancelled.status, VaultStatus.CANCELLED)
        self.assertFalse(cancelled.anchor.is_on_chain)

        with self.assertRaises(InvalidStateTransition):
            self.machine.validate_cancel(self._vault(NOW - 91 * DAY), NOW)

    def test_claim_requires_trigger(self):
        vault = self._vault(NOW - 10 * DAY)
        with self.assertRaises(InvalidStateTransition):
            self.machine.validate_claim(vault, self.heirs[0], NOW)

    def test_claim_requires_beneficiary(self):
        vault = self._vault(NOW - 91 * DAY)
        with self.assertRaises(NotABeneficiary):
            self.machine.validate_claim(vault, self.owner, NOW)

        beneficiary = self.machine.validate_claim(vault, self.heirs[1].upper(), NOW)
        self.assertEqual(beneficiary.percentage_share, 40)

    def test_zero_share_cannot_claim(self):
        vault = self._vault(NOW - 91 * DAY, shares=(100, 0))
        with self.assertRaises(ValidationError):
            self.machine.validate_claim(vault, self.heirs[1], NOW)

    def test_partial_claims_keep_vault_triggered(self):
        vault = self._vault(NOW - 91 * DAY)

        remainder = ChainAnchor("dd" * 32, 1, 399_000, True)
        after_first = self.machine.apply_claim(vault, self.heirs[0], 600_000, remainder)
        self.assertEqual(after_first.status, VaultStatus.TRIGGERED)
        self.assertEqual(after_first.claim_basis_sats, 1_000_000)
        self.assertTrue(self.machine.is_last_claim(after_first, self.heirs[1]))

        # A later check-in time cannot un-trigger a vault with claims
        self.assertEqual(
            self.machine.compute_status(after_first, after_first.last_check_in_timestamp),
            VaultStatus.TRIGGERED
        )

        with self.assertRaises(InvalidStateTransition):
            self.machine.validate_claim(after_first, self.heirs[0], NOW)

        after_second = self.machine.apply_claim(after_first, self.heirs[1], 398_000, None)
        self.assertEqual(after_second.status, VaultStatus.CLAIMED)
        self.assertEqual(after_second.claim_basis_sats, 1_000_000)

    def test_repeated_address_shares_add_up(self):
        vault = self._vault(NOW - 91 * DAY)
        vault.beneficiaries = [
            Beneficiary("Heir", self.heirs[0], 30),
            Beneficiary("Heir", self.heirs[0].upper(), 30),
            Beneficiary("Other", self.heirs[1], 40)
        ]
        self.assertEqual(vault.share_of(self.heirs[0]), 60)
        self.assertEqual(vault.share_of(BitcoinKey().address()), 0)
        self.assertFalse(self.machine.is_last_claim(vault, self.heirs[0]))

        after_other = self.machine.apply_claim(vault, self.heirs[1], 400_000, ChainAnchor("dd" * 32, 1, 599_000, True))
        self.assertTrue(self.machine.is_last_claim(after_other, self.heirs[0]))

        done = self.machine.apply_claim(after_other, self.heirs[0], 598_000, ChainAnchor("ee" * 32, 0, 1_000, True))
        self.assertEqual(done.unclaimed_beneficiaries(), [])
        self.assertEqual(done.status, VaultStatus.CLAIMED)

    def test_exhausted_vault_is_claimed_early(self):
        vault = self._vault(NOW - 91 * DAY)
        exhausted = self.machine.apply_claim(vault, self.heirs[0], 600_000, None)
        self.assertEqual(exhausted.status, VaultStatus.CLAIMED)

    def test_create_vault_starts_active(self):
        vault = self.machine.create_vault(
            "New", self.owner, 50_000, [Beneficiary("Heir", self.heirs[0], 100)],
            30, NOW, "ee" * 32, 2
        )
        self.assertEqual(vault.status, VaultStatus.ACTIVE)
        self.assertEqual(vault.last_check_in_timestamp, vault.created_at_timestamp)
        self.assertEqual(vault.inactivity_period_seconds, 30 * DAY)
        self.assertEqual(vault.id, derive_vault_id("ee" * 32, 2))

        with self.assertRaises(ValidationError):
            self.machine.create_vault(
                "New", self.owner, 50_000, [Beneficiary("Heir", self.heirs[0], 100)],
                0, NOW, "ee" * 32, 2
            )


if __name__ == '__main__':
    unittest.main()
