"""
BitWill - Bitcoin inheritance vaults
Time-triggered vaults with Charms spells carried in OP_RETURN outputs
"""

from .vault import Vault, Beneficiary, ChainAnchor, VaultStatus, ActionKind
from .lifecycle import VaultStateMachine
from .transaction import TransactionBuilder, Utxo, UnsignedTransaction, BuildResult
from .fees import FeeEstimator, Priority
from .ledger import VaultLedger, BroadcastResult, claimable_vaults
from .charms.spell import SpellEncoder, encode_spell, decode_spell

__version__ = "0.1.0"
__all__ = [
    "Vault",
    "Beneficiary",
    "ChainAnchor",
    "VaultStatus",
    "ActionKind",
    "VaultStateMachine",
    "TransactionBuilder",
    "Utxo",
    "UnsignedTransaction",
    "BuildResult",
    "FeeEstimator",
    "Priority",
    "VaultLedger",
    "BroadcastResult",
    "claimable_vaults",
    "SpellEncoder",
    "encode_spell",
    "decode_spell"
]
