"""
Charms spells - action payloads carried in a vault transaction's OP_RETURN output

A spell body is the protocol tag, a version byte, an action code byte and the
action fields as canonical JSON. The body is wrapped in a single data push
after OP_RETURN so the output never carries value.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union
from ..config import DEFAULT_MAX_PAYLOAD_BYTES
from ..errors import PayloadTooLarge, SpellDecodeError
from ..vault import ActionKind

PROTOCOL_TAG = b"bitwill"
SPELL_VERSION = 1

OP_RETURN = 0x6a
OP_PUSHDATA1 = 0x4c
OP_PUSHDATA2 = 0x4d
MAX_DIRECT_PUSH = 75
MAX_PUSHDATA1 = 0xFF
MAX_PUSHDATA2 = 0xFFFF

ACTION_CODES = {
    ActionKind.CREATE_VAULT: 1,
    ActionKind.CHECK_IN: 2,
    ActionKind.CLAIM: 3,
    ActionKind.CANCEL: 4,
}


@dataclass(frozen=True)
class SpellBeneficiary:
    """Beneficiary entry as recorded in a creation spell"""
    address: str
    name: str
    percentage: int


@dataclass(frozen=True)
class CreateVaultSpell:
    vault_id: str
    owner: str
    beneficiaries: Tuple[SpellBeneficiary, ...]
    inactivity_period_seconds: int
    amount_sats: int
    created_at: int
    last_check_in: int
    status: str = "active"
    version: int = SPELL_VERSION

    action = ActionKind.CREATE_VAULT

    def fields(self) -> Dict[str, Any]:
        return {
            'id': self.vault_id,
            'owner': self.owner,
            'beneficiaries': [
                {'addr': b.address, 'name': b.name, 'pct': b.percentage}
                for b in self.beneficiaries
            ],
            'inactivity': self.inactivity_period_seconds,
            'amount': self.amount_sats,
            'created': self.created_at,
            'lastCheckIn': self.last_check_in,
            'status': self.status,
        }

    @classmethod
    def from_fields(cls, data: Dict[str, Any], version: int) -> 'CreateVaultSpell':
        return cls(
            vault_id=data['id'],
            owner=data['owner'],
            beneficiaries=tuple(
                SpellBeneficiary(address=b['addr'], name=b['name'], percentage=b['pct'])
                for b in data['beneficiaries']
            ),
            inactivity_period_seconds=data['inactivity'],
            amount_sats=data['amount'],
            created_at=data['created'],
            last_check_in=data['lastCheckIn'],
            status=data['status'],
            version=version,
        )


@dataclass(frozen=True)
class CheckInSpell:
    vault_id: str
    checked_in_at: int
    version: int = SPELL_VERSION

    action = ActionKind.CHECK_IN

    def fields(self) -> Dict[str, Any]:
        return {'vaultId': self.vault_id, 'timestamp': self.checked_in_at}

    @classmethod
    def from_fields(cls, data: Dict[str, Any], version: int) -> 'CheckInSpell':
        return cls(vault_id=data['vaultId'], checked_in_at=data['timestamp'], version=version)


@dataclass(frozen=True)
class ClaimSpell:
    vault_id: str
    beneficiary: str
    amount_sats: int
    claimed_at: int
    version: int = SPELL_VERSION

    action = ActionKind.CLAIM

    def fields(self) -> Dict[str, Any]:
        return {
            'vaultId': self.vault_id,
            'beneficiary': self.beneficiary,
            'amount': self.amount_sats,
            'timestamp': self.claimed_at,
        }

    @classmethod
    def from_fields(cls, data: Dict[str, Any], version: int) -> 'ClaimSpell':
        return cls(
            vault_id=data['vaultId'],
            beneficiary=data['beneficiary'],
            amount_sats=data['amount'],
            claimed_at=data['timestamp'],
            version=version,
        )


@dataclass(frozen=True)
class CancelSpell:
    vault_id: str
    cancelled_at: int
    version: int = SPELL_VERSION

    action = ActionKind.CANCEL

    def fields(self) -> Dict[str, Any]:
        return {'vaultId': self.vault_id, 'timestamp': self.cancelled_at}

    @classmethod
    def from_fields(cls, data: Dict[str, Any], version: int) -> 'CancelSpell':
        return cls(vault_id=data['vaultId'], cancelled_at=data['timestamp'], version=version)


SpellPayload = Union[CreateVaultSpell, CheckInSpell, ClaimSpell, CancelSpell]

_SPELL_TYPES = {
    ACTION_CODES[spell_type.action]: spell_type
    for spell_type in (CreateVaultSpell, CheckInSpell, ClaimSpell, CancelSpell)
}


def push_data(data: bytes) -> bytes:
    """Frame bytes as a single script data push"""
    length = len(data)
    if length <= MAX_DIRECT_PUSH:
        return bytes([length]) + data
    if length <= MAX_PUSHDATA1:
        return bytes([OP_PUSHDATA1, length]) + data
    if length <= MAX_PUSHDATA2:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, 'little') + data
    raise PayloadTooLarge(length, MAX_PUSHDATA2)


def read_push(script: bytes, offset: int = 0) -> Tuple[bytes, int]:
    """Read one data push starting at offset, return (data, next offset)"""
    if offset >= len(script):
        raise SpellDecodeError("Missing data push")

    opcode = script[offset]
    if opcode <= MAX_DIRECT_PUSH:
        start, length = offset + 1, opcode
    elif opcode == OP_PUSHDATA1:
        if offset + 2 > len(script):
            raise SpellDecodeError("Truncated OP_PUSHDATA1 length")
        start, length = offset + 2, script[offset + 1]
    elif opcode == OP_PUSHDATA2:
        if offset + 3 > len(script):
            raise SpellDecodeError("Truncated OP_PUSHDATA2 length")
        start, length = offset + 3, int.from_bytes(script[offset + 1:offset + 3], 'little')
    else:
        raise SpellDecodeError(f"Unexpected opcode 0x{opcode:02x}")

    end = start + length
    if end > len(script):
        raise SpellDecodeError(f"Push declares {length} bytes, only {len(script) - start} present")
    return script[start:end], end


class SpellEncoder:
    """Canonical, versioned encoding of vault spells"""

    def __init__(self, max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES):
        if not (0 < max_payload_bytes <= MAX_PUSHDATA2):
            raise ValueError("max_payload_bytes must be between 1 and 65535")
        self.max_payload_bytes = max_payload_bytes

    def encode_body(self, payload: SpellPayload) -> bytes:
        """Spell body without push framing"""
        body = json.dumps(payload.fields(), sort_keys=True, separators=(',', ':'), ensure_ascii=True)
        header = PROTOCOL_TAG + bytes([payload.version, ACTION_CODES[payload.action]])
        return header + body.encode('ascii')

    def encode(self, payload: SpellPayload) -> bytes:
        """Encode a spell as an OP_RETURN script"""
        body = self.encode_body(payload)
        if len(body) > self.max_payload_bytes:
            raise PayloadTooLarge(len(body), self.max_payload_bytes)
        return bytes([OP_RETURN]) + push_data(body)

    def decode(self, script: bytes) -> SpellPayload:
        """Decode an OP_RETURN script back into its spell"""
        if not script or script[0] != OP_RETURN:
            raise SpellDecodeError("Script does not start with OP_RETURN")

        body, end = read_push(script, 1)
        if end != len(script):
            raise SpellDecodeError(f"{len(script) - end} trailing bytes after spell push")
        if len(body) > self.max_payload_bytes:
            raise PayloadTooLarge(len(body), self.max_payload_bytes)
        return self.decode_body(body)

    def decode_body(self, body: bytes) -> SpellPayload:
        header_len = len(PROTOCOL_TAG) + 2
        if len(body) < header_len or not body.startswith(PROTOCOL_TAG):
            raise SpellDecodeError("Missing bitwill protocol tag")

        version = body[len(PROTOCOL_TAG)]
        action_code = body[len(PROTOCOL_TAG) + 1]

        if version == 0 or version > SPELL_VERSION:
            raise SpellDecodeError(f"Unsupported spell version {version}")

        spell_type = _SPELL_TYPES.get(action_code)
        if spell_type is None:
            raise SpellDecodeError(f"Unknown action code {action_code}")

        try:
            data = json.loads(body[header_len:].decode('ascii'))
            return spell_type.from_fields(data, version)
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise SpellDecodeError(f"Malformed {spell_type.action.value} spell: {e}") from e


_default_encoder = SpellEncoder()


def encode_spell(payload: SpellPayload) -> bytes:
    return _default_encoder.encode(payload)


def decode_spell(script: bytes) -> SpellPayload:
    return _default_encoder.decode(script)
