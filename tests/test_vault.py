import unittest
from bitwill.vault import Vault, Beneficiary, ChainAnchor, VaultStatus, derive_vault_id
from bitwill.bitcoin_integration import (
    BitcoinKey, address_to_scriptpubkey, is_valid_address, program_to_address, pubkey_to_address
)
from bitwill.errors import ValidationError

NOW = 1_700_000_000


class TestVault(unittest.TestCase):

    def setUp(self):
        """Set up test fixtures"""
        self.owner = BitcoinKey().address()
        self.addresses = [BitcoinKey().address() for _ in range(3)]
        self.beneficiaries = [
            Beneficiary("Alice", self.addresses[0], 50),
            Beneficiary("Bob", self.addresses[1], 30),
            Beneficiary("Carol", self.addresses[2], 20)
        ]

    def _vault(self, beneficiaries=None, amount=100_000_000):
        return Vault(
            id=derive_vault_id("aa" * 32, 0),
            name="Family",
            owner_address=self.owner,
            amount_sats=amount,
            beneficiaries=beneficiaries or self.beneficiaries,
            inactivity_period_seconds=90 * 86400,
            last_check_in_timestamp=NOW,
            created_at_timestamp=NOW
        )

    def test_vault_creation(self):
        """Test vault creation and validation"""
        vault = self._vault()
        self.assertEqual(len(vault.beneficiaries), 3)
        self.assertEqual(vault.status, VaultStatus.ACTIVE)
        self.assertEqual(sum(b.percentage_share for b in vault.beneficiaries), 100)
        self.assertFalse(vault.anchor.is_on_chain)

    def test_share_validation(self):
        """Shares must sum to exactly 100"""
        short = [
            Beneficiary("Alice", self.addresses[0], 50),
            Beneficiary("Bob", self.addresses[1], 30)
        ]
        with self.assertRaises(ValidationError):
            self._vault(short)

        with self.assertRaises(ValidationError):
            Beneficiary("Alice", self.addresses[0], 101)

        with self.assertRaises(ValidationError):
            Beneficiary("Alice", self.addresses[0], 12.5)

    def test_amount_validation(self):
        with self.assertRaises(ValidationError):
            self._vault(amount=0)
        with self.assertRaises(ValidationError):
            self._vault(amount=-5)

    def test_malformed_addresses(self):
        with self.assertRaises(ValidationError):
            Beneficiary("Mallory", "not-an-address", 100)

        with self.assertRaises(ValidationError):
            Vault(
                id="x", name="", owner_address="nope", amount_sats=1000,
                beneficiaries=[Beneficiary("Alice", self.addresses[0], 100)],
                inactivity_period_seconds=86400, last_check_in_timestamp=NOW, created_at_timestamp=NOW
            )

    def test_beneficiary_lookup(self):
        vault = self._vault()

        self.assertTrue(vault.is_beneficiary(self.addresses[0]))
        self.assertTrue(vault.is_beneficiary(self.addresses[0].upper()))
        self.assertFalse(vault.is_beneficiary(self.owner))
        self.assertEqual(vault.get_beneficiary(self.addresses[1]).percentage_share, 30)
        self.assertIsNone(vault.get_beneficiary("tb1q" + "0" * 40))

    def test_beneficiary_id_defaults_to_address_hash(self):
        first = Beneficiary("Alice", self.addresses[0], 100)
        second = Beneficiary("Alice again", self.addresses[0], 100)
        self.assertEqual(first.id, second.id)
        self.assertEqual(Beneficiary("Alice", self.addresses[0], 100, id="b1").id, "b1")

    def test_serialization_round_trip(self):
        vault = self._vault()
        vault.anchor = ChainAnchor("cc" * 32, 0, 100_000_000, True)
        vault.claims = {self.addresses[0].lower(): 50_000_000}
        vault.claim_basis_sats = 100_000_000

        data = vault.to_dict()
        self.assertEqual(data['status'], "active")
        self.assertEqual(Vault.from_dict(data), vault)

    def test_vault_id_is_sha256_of_outpoint(self):
        first = derive_vault_id("aa" * 32, 0)
        self.assertEqual(first, derive_vault_id("aa" * 32, 0))
        self.assertNotEqual(first, derive_vault_id("aa" * 32, 1))
        self.assertEqual(len(first), 64)


class TestAddresses(unittest.TestCase):

    def test_derived_addresses_are_valid(self):
        key = BitcoinKey()
        self.assertTrue(is_valid_address(key.address("testnet4"), "testnet4"))
        self.assertTrue(is_valid_address(key.address("mainnet"), "mainnet"))
        self.assertFalse(is_valid_address(key.address("mainnet"), "testnet4"))
        self.assertTrue(key.address("regtest").startswith("bcrt1q"))

    def test_compressed_public_key(self):
        _, public_hex = BitcoinKey.generate_key_pair()
        self.assertEqual(len(bytes.fromhex(public_hex)), 33)
        self.assertIn(public_hex[:2], ("02", "03"))

    def test_same_key_same_address(self):
        private_hex, public_hex = BitcoinKey.generate_key_pair()
        restored = BitcoinKey(bytes.fromhex(private_hex))
        self.assertEqual(restored.address(), pubkey_to_address(public_hex))

    def test_rejects_garbage(self):
        self.assertFalse(is_valid_address(""))
        self.assertFalse(is_valid_address(None))
        self.assertFalse(is_valid_address("tb1short"))

    def test_rejects_bad_bech32(self):
        address = BitcoinKey().address()
        flipped = address[:-1] + ("q" if address[-1] != "q" else "p")
        self.assertFalse(is_valid_address(flipped))
        # "o" is outside the bech32 alphabet
        self.assertFalse(is_valid_address("tb1" + "o" * 40))
        self.assertFalse(is_valid_address("tb1q" + "0" * 40))
        self.assertFalse(is_valid_address("xx1" + address[3:]))

    def test_case_insensitive(self):
        address = BitcoinKey().address()
        self.assertTrue(is_valid_address(address.upper()))
        self.assertEqual(address_to_scriptpubkey(address.upper()), address_to_scriptpubkey(address))

    def test_p2wpkh_script(self):
        key = BitcoinKey()
        program = key.hash160(bytes.fromhex(key.get_public_key_hex()))
        self.assertEqual(len(program), 20)
        self.assertEqual(address_to_scriptpubkey(key.address()), b"\x00\x14" + program)

    def test_taproot_address(self):
        address = program_to_address(bytes(range(32)), "mainnet", version=1)
        self.assertTrue(address.startswith("bc1p"))
        self.assertTrue(is_valid_address(address, "mainnet"))
        self.assertEqual(address_to_scriptpubkey(address), b"\x51\x20" + bytes(range(32)))

    def test_unknown_network(self):
        with self.assertRaises(ValueError):
            program_to_address(bytes(20), "litecoin")


if __name__ == '__main__':
    unittest.main()
