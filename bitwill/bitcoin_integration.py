"""
Bitcoin key and address utilities
"""

import hashlib
from ecdsa import SigningKey, SECP256k1
from typing import Tuple
from verystable.core.script import CScript, hash160
from verystable.core.segwit_addr import decode_segwit_address, encode_segwit_address

# bech32 human-readable part per network
ADDRESS_HRPS = {
    "mainnet": "bc",
    "testnet": "tb",
    "testnet4": "tb",
    "signet": "tb",
    "regtest": "bcrt",
}


class BitcoinKey:
    """Key pair for a vault owner or beneficiary"""

    def __init__(self, private_key: bytes = None):
        if private_key:
            self.private_key = SigningKey.from_string(private_key, curve=SECP256k1)
        else:
            self.private_key = SigningKey.generate(curve=SECP256k1)

        self.public_key = self.private_key.get_verifying_key()

    def get_public_key_hex(self) -> str:
        """Get compressed public key in hex format"""
        point = self.public_key.pubkey.point

        # 02 for even y, 03 for odd y
        prefix = b'\x02' if point.y() % 2 == 0 else b'\x03'
        return (prefix + point.x().to_bytes(32, 'big')).hex()

    def address(self, network: str = "testnet4") -> str:
        """P2WPKH address for the compressed public key"""
        return pubkey_to_address(self.get_public_key_hex(), network)

    @staticmethod
    def generate_key_pair() -> Tuple[str, str]:
        """Generate new key pair and return (private_key_hex, public_key_hex)"""
        key = BitcoinKey()
        return key.private_key.to_string().hex(), key.get_public_key_hex()

    @staticmethod
    def hash160(data: bytes) -> bytes:
        """Bitcoin HASH160 (RIPEMD160(SHA256(data)))"""
        return hash160(data)

    @staticmethod
    def double_sha256(data: bytes) -> bytes:
        """Bitcoin double SHA256"""
        return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def program_to_address(program: bytes, network: str = "testnet4", version: int = 0) -> str:
    """bech32/bech32m address for a witness program"""
    if network not in ADDRESS_HRPS:
        raise ValueError(f"Unknown network: {network}")
    return encode_segwit_address(ADDRESS_HRPS[network], version, program)


def pubkey_to_address(pubkey_hex: str, network: str = "testnet4") -> str:
    """P2WPKH address from a compressed public key"""
    return program_to_address(hash160(bytes.fromhex(pubkey_hex)), network)


def decode_address(address: str) -> Tuple[str, int, bytes]:
    """Split a segwit address into (hrp, witness version, program)"""
    if not isinstance(address, str) or '1' not in address:
        raise ValueError(f"Not a segwit address: {address!r}")

    hrp = address[:address.rfind('1')].lower()
    if hrp not in ADDRESS_HRPS.values():
        raise ValueError(f"Unknown address prefix {hrp!r}")

    version, program = decode_segwit_address(hrp, address)
    if version is None:
        raise ValueError(f"Bad bech32 encoding or checksum: {address!r}")
    return hrp, version, bytes(program)


def address_to_scriptpubkey(address: str) -> bytes:
    """Output script paying a segwit address"""
    _, version, program = decode_address(address)
    return bytes(CScript([version, program]))


def is_valid_address(address: str, network: str = None) -> bool:
    """Check the address decodes, for the given network or for any network"""
    try:
        hrp, _, _ = decode_address(address)
    except ValueError:
        return False
    return network is None or hrp == ADDRESS_HRPS.get(network)
