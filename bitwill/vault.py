import hashlib
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional
from .bitcoin_integration import is_valid_address
from .errors import ValidationError

SECONDS_PER_DAY = 24 * 60 * 60


class VaultStatus(Enum):
    ACTIVE = "active"
    WARNING = "warning"
    TRIGGERED = "triggered"
    CLAIMED = "claimed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (VaultStatus.CLAIMED, VaultStatus.CANCELLED)


class ActionKind(Enum):
    CREATE_VAULT = "create_vault"
    CHECK_IN = "check_in"
    CLAIM = "claim"
    CANCEL = "cancel"


def derive_vault_id(txid: str, output_index: int) -> str:
    """Deterministic vault ID from the outpoint that funds the vault"""
    hasher = hashlib.sha256()
    hasher.update(b"BITWILL_VAULT_V1")
    hasher.update(txid.encode())
    hasher.update(output_index.to_bytes(4, 'little'))
    return hasher.hexdigest()


def _is_share(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 100


@dataclass
class Beneficiary:
    """An address entitled to a fixed share of a triggered vault"""
    name: str
    address: str
    percentage_share: int  # 0-100
    id: str = ""

    def __post_init__(self):
        if not _is_share(self.percentage_share):
            raise ValidationError("Share percentage must be an integer between 0 and 100")
        if not is_valid_address(self.address):
            raise ValidationError(f"Malformed beneficiary address: {self.address!r}")
        if not self.id:
            self.id = hashlib.sha256(self.address.encode()).hexdigest()[:16]


@dataclass
class ChainAnchor:
    """The unspent output currently holding the vault's value"""
    txid: Optional[str] = None
    output_index: int = 0
    value_sats: int = 0
    is_on_chain: bool = False

    @property
    def outpoint(self) -> Optional[str]:
        if self.txid is None:
            return None
        return f"{self.txid}:{self.output_index}"


@dataclass
class Vault:
    """Inheritance vault state mirrored from its on-chain spell"""
    id: str
    name: str
    owner_address: str
    amount_sats: int
    beneficiaries: List[Beneficiary]
    inactivity_period_seconds: int
    last_check_in_timestamp: int
    created_at_timestamp: int
    status: VaultStatus = VaultStatus.ACTIVE
    anchor: ChainAnchor = field(default_factory=ChainAnchor)
    claims: Dict[str, int] = field(default_factory=dict)  # address -> sats claimed
    claim_basis_sats: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.amount_sats, int) or isinstance(self.amount_sats, bool) or self.amount_sats <= 0:
            raise ValidationError(f"Vault amount must be a positive integer of sats, got {self.amount_sats!r}")
        if not isinstance(self.inactivity_period_seconds, int) or self.inactivity_period_seconds <= 0:
            raise ValidationError("Inactivity period must be a positive number of seconds")
        if not is_valid_address(self.owner_address):
            raise ValidationError(f"Malformed owner address: {self.owner_address!r}")
        validate_beneficiaries(self.beneficiaries)

    def is_beneficiary(self, address: str) -> bool:
        """Check if address is in the beneficiary list"""
        return self.get_beneficiary(address) is not None

    def get_beneficiary(self, address: str) -> Optional[Beneficiary]:
        """Find a beneficiary by address, ignoring case"""
        wanted = address.lower()
        for beneficiary in self.beneficiaries:
            if beneficiary.address.lower() == wanted:
                return beneficiary
        return None

    def has_claimed(self, address: str) -> bool:
        return address.lower() in self.claims

    def share_of(self, address: str) -> int:
        """Total percentage held by address across all its beneficiary entries"""
        wanted = address.lower()
        return sum(b.percentage_share for b in self.beneficiaries if b.address.lower() == wanted)

    def unclaimed_beneficiaries(self) -> List[Beneficiary]:
        """Beneficiaries with a non-zero share that have not claimed yet"""
        return [
            b for b in self.beneficiaries
            if b.percentage_share > 0 and not self.has_claimed(b.address)
        ]

    def to_dict(self) -> dict:
        """Serialize vault to dictionary"""
        data = asdict(self)
        data['status'] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'Vault':
        """Deserialize vault from dictionary"""
        return cls(
            id=data['id'],
            name=data['name'],
            owner_address=data['owner_address'],
            amount_sats=data['amount_sats'],
            beneficiaries=[Beneficiary(**b) for b in data['beneficiaries']],
            inactivity_period_seconds=data['inactivity_period_seconds'],
            last_check_in_timestamp=data['last_check_in_timestamp'],
            created_at_timestamp=data['created_at_timestamp'],
            status=VaultStatus(data.get('status', VaultStatus.ACTIVE.value)),
            anchor=ChainAnchor(**data.get('anchor', {})),
            claims=dict(data.get('claims', {})),
            claim_basis_sats=data.get('claim_basis_sats'),
        )


def validate_beneficiaries(beneficiaries: List[Beneficiary]):
    """Raise ValidationError unless shares are integers summing to 100"""
    if not beneficiaries:
        raise ValidationError("A vault needs at least one beneficiary")

    for beneficiary in beneficiaries:
        if not _is_share(beneficiary.percentage_share):
            raise ValidationError("Share percentage must be an integer between 0 and 100")

    total_shares = sum(b.percentage_share for b in beneficiaries)
    if total_shares != 100:
        raise ValidationError(f"Beneficiary shares must sum to 100%, got {total_shares}%")
