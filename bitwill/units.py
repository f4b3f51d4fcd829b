"""
Satoshi formatting and countdown helpers
"""

from decimal import Decimal, InvalidOperation
from .errors import ValidationError
from .vault import Vault

SATS_PER_BTC = 100_000_000


def format_btc(satoshis: int) -> str:
    """Format satoshis as a BTC string with 8 decimals"""
    return f"{Decimal(satoshis) / SATS_PER_BTC:.8f}"


def parse_btc(btc) -> int:
    """Parse a BTC amount into satoshis, rejecting sub-satoshi precision"""
    try:
        sats = Decimal(str(btc)) * SATS_PER_BTC
    except InvalidOperation:
        raise ValidationError(f"Not a BTC amount: {btc!r}") from None

    if not sats.is_finite() or sats != sats.to_integral_value():
        raise ValidationError(f"{btc} BTC is not a whole number of satoshis")
    return int(sats)


def time_remaining(vault: Vault, now: int) -> dict:
    """Countdown until the vault triggers"""
    remaining = vault.last_check_in_timestamp + vault.inactivity_period_seconds - now

    if remaining <= 0:
        return {
            'days': 0, 'hours': 0, 'minutes': 0, 'seconds': 0,
            'is_expired': True, 'percent_remaining': 0
        }

    return {
        'days': remaining // 86400,
        'hours': (remaining % 86400) // 3600,
        'minutes': (remaining % 3600) // 60,
        'seconds': remaining % 60,
        'is_expired': False,
        'percent_remaining': min(100, remaining * 100 // vault.inactivity_period_seconds),
    }
