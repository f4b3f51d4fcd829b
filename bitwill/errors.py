"""
Typed failures raised by the vault core and its collaborators
"""


class VaultError(Exception):
    """Base class for every vault failure"""


class ValidationError(VaultError):
    """Malformed input: bad shares, non-positive amounts, bad addresses"""


class SpellDecodeError(ValidationError):
    """Auxiliary output bytes are not a valid spell"""


class InsufficientFunds(VaultError):
    """Inputs cannot cover outputs plus fee"""

    def __init__(self, needed: int, available: int, message: str = None):
        self.needed = needed
        self.available = available
        super().__init__(
            message or f"Insufficient funds. Have {available} sats, need {needed} sats"
        )


class PayloadTooLarge(VaultError):
    """Spell body exceeds the encoder ceiling"""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Spell payload is {size} bytes, limit is {limit}")


class InvalidStateTransition(VaultError):
    """Action not allowed from the vault's current status"""


class NotABeneficiary(VaultError):
    """Claiming address is not in the beneficiary list"""


class StaleAnchor(VaultError):
    """Anchor already referenced by an in-flight transaction, or out of date"""


class VaultNotFound(VaultError):
    """No vault with the requested id"""


class MempoolError(VaultError):
    """UTXO or fee index could not be reached"""


class ProverError(VaultError):
    """Spell proving service failed"""
