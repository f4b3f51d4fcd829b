"""
Fee rates and virtual-size estimates for vault transactions
"""

import logging
from decimal import Decimal, ROUND_CEILING, InvalidOperation
from enum import Enum

from .config import NetworkConfig
from .errors import MempoolError, ValidationError
from .vault import ActionKind

logger = logging.getLogger(__name__)

TX_OVERHEAD_VBYTES = 11  # version, locktime, counts, segwit marker
INPUT_VBYTES = 68  # P2WPKH input
OUTPUT_VBYTES = 31  # P2WPKH output
AUX_OUTPUT_BASE_VBYTES = 9  # value and script length, script bytes counted separately

VAULT_SPEND_ACTIONS = (ActionKind.CHECK_IN, ActionKind.CLAIM, ActionKind.CANCEL)


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# mempool.space recommended-fee keys per tier
PRIORITY_FEE_KEYS = {
    Priority.LOW: "hourFee",
    Priority.MEDIUM: "halfHourFee",
    Priority.HIGH: "fastestFee",
}


def ceil_rate(value) -> int:
    """Round a reported fee rate up to whole sats/vbyte without floats"""
    try:
        rate = Decimal(str(value)).to_integral_value(rounding=ROUND_CEILING)
    except (InvalidOperation, ValueError) as e:
        raise MempoolError(f"Invalid fee rate {value!r}") from e
    if not rate.is_finite():
        raise MempoolError(f"Invalid fee rate {value!r}")
    return max(1, int(rate))


class FeeEstimator:
    """Maps priority tiers to fee rates and sizes transactions"""

    def __init__(self, config: NetworkConfig = None, fee_source=None):
        self.config = config or NetworkConfig.testnet()
        # anything with get_recommended_fees(), e.g. MempoolClient
        self.fee_source = fee_source

    def rate_for_priority(self, priority: Priority = Priority.MEDIUM) -> int:
        """Fee rate in sats/vbyte, falling back to the network's static rate"""
        if self.fee_source is None:
            return self.config.fallback_fee_rate

        try:
            fees = self.fee_source.get_recommended_fees()
            return ceil_rate(fees[PRIORITY_FEE_KEYS[priority]])
        except (MempoolError, KeyError) as e:
            logger.warning(
                "Fee service unavailable (%s), using %s fallback of %d sat/vB",
                e, self.config.network, self.config.fallback_fee_rate
            )
            return self.config.fallback_fee_rate

    @staticmethod
    def estimate_vsize(action: ActionKind, input_count: int, output_count: int, aux_payload_len: int) -> int:
        """
        Virtual size of a vault transaction with one auxiliary output.

        output_count excludes the auxiliary output; aux_payload_len is the
        length of its full OP_RETURN script.
        """
        if input_count < 1:
            raise ValidationError("A transaction needs at least one input")
        if output_count < 0 or aux_payload_len < 0:
            raise ValidationError("Output count and payload length cannot be negative")
        if action in VAULT_SPEND_ACTIONS and input_count != 1:
            raise ValidationError(f"{action.value} spends exactly one vault input")

        return (
            TX_OVERHEAD_VBYTES
            + input_count * INPUT_VBYTES
            + output_count * OUTPUT_VBYTES
            + AUX_OUTPUT_BASE_VBYTES
            + aux_payload_len
        )

    @staticmethod
    def estimate_fee(vsize: int, fee_rate: int) -> int:
        """Fee in sats for a size and whole-sat rate"""
        return vsize * fee_rate
