"""
Spell proving - attestations that a spell is a valid vault state transition

The proving backend is a strategy: CharmsApiProver talks to a Charms prover
over HTTP, LocalSpellProver signs spells in-process for development and tests.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import requests
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa, padding

from ..errors import ProverError

logger = logging.getLogger(__name__)

PROOF_DOMAIN = b"BITWILL_SPELL_PROOF_V1"


def spell_digest(spell_script: bytes) -> bytes:
    """Domain-separated hash of the spell being proven"""
    hasher = hashlib.sha256()
    hasher.update(PROOF_DOMAIN)
    hasher.update(spell_script)
    return hasher.digest()


def _pss() -> padding.PSS:
    return padding.PSS(
        mgf=padding.MGF1(hashes.SHA256()),
        salt_length=padding.PSS.MAX_LENGTH
    )


@dataclass(frozen=True)
class SpellProof:
    """Proof bundle returned by a proving service"""
    spell_hash: bytes
    signature: bytes
    verification_key: bytes  # DER SubjectPublicKeyInfo

    def verify(self, spell_script: bytes) -> bool:
        """Check the proof against the spell it claims to attest"""
        expected = spell_digest(spell_script)
        if self.spell_hash != expected:
            return False

        try:
            public_key = serialization.load_der_public_key(self.verification_key)
            public_key.verify(self.signature, expected, _pss(), hashes.SHA256())
        except (InvalidSignature, ValueError, TypeError):
            return False

        return True

    def serialize(self) -> dict:
        """Serialize proof for storage/transmission"""
        return {
            'spell_hash': self.spell_hash.hex(),
            'signature': self.signature.hex(),
            'verification_key': self.verification_key.hex()
        }

    @classmethod
    def deserialize(cls, data: dict) -> 'SpellProof':
        """Deserialize proof from storage"""
        return cls(
            spell_hash=bytes.fromhex(data['spell_hash']),
            signature=bytes.fromhex(data['signature']),
            verification_key=bytes.fromhex(data['verification_key'])
        )


class SpellProvingService(ABC):
    """Interface for anything that can attest a spell"""

    @abstractmethod
    def prove(self, spell_script: bytes) -> SpellProof:
        ...

    def verify(self, spell_script: bytes, proof: SpellProof) -> bool:
        return proof.verify(spell_script)


class LocalSpellProver(SpellProvingService):
    """In-process prover backed by an RSA-PSS signing key"""

    def __init__(self, private_key: rsa.RSAPrivateKey = None):
        self._private_key = private_key or rsa.generate_private_key(
            public_exponent=65537,
            key_size=2048
        )
        self.verification_key = self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        )

    def prove(self, spell_script: bytes) -> SpellProof:
        digest = spell_digest(spell_script)
        signature = self._private_key.sign(digest, _pss(), hashes.SHA256())
        return SpellProof(digest, signature, self.verification_key)


class CharmsApiProver(SpellProvingService):
    """Prover that delegates to a remote Charms proving API"""

    def __init__(self, api_url: str, session: requests.Session = None, timeout: float = 30.0):
        self.api_url = api_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    def prove(self, spell_script: bytes) -> SpellProof:
        url = f"{self.api_url}/spell/prove"
        logger.info("Requesting spell proof from %s", url)

        try:
            response = self.session.post(url, json={'spell': spell_script.hex()}, timeout=self.timeout)
            response.raise_for_status()
            proof = SpellProof.deserialize(response.json())
        except requests.RequestException as e:
            raise ProverError(f"Proving service unavailable: {e}") from e
        except (KeyError, ValueError, TypeError) as e:
            raise ProverError(f"Malformed proof response: {e}") from e

        if proof.spell_hash != spell_digest(spell_script):
            raise ProverError("Proving service attested a different spell")
        return proof
