"""
Charms stack - spell encoding and proving for vault transactions
"""

from .spell import (
    SpellEncoder, SpellBeneficiary, CreateVaultSpell, CheckInSpell, ClaimSpell, CancelSpell,
    encode_spell, decode_spell
)
from .prover import SpellProof, SpellProvingService, LocalSpellProver, CharmsApiProver

__all__ = [
    "SpellEncoder",
    "SpellBeneficiary",
    "CreateVaultSpell",
    "CheckInSpell",
    "ClaimSpell",
    "CancelSpell",
    "encode_spell",
    "decode_spell",
    "SpellProof",
    "SpellProvingService",
    "LocalSpellProver",
    "CharmsApiProver"
]
