import os
from dataclasses import dataclass, replace

DUST_THRESHOLD_SATS = 546
WARNING_THRESHOLD_SECONDS = 7 * 24 * 60 * 60
DEFAULT_MAX_PAYLOAD_BYTES = 1024

# Used when the fee service is unreachable
FALLBACK_FEE_RATES = {
    "mainnet": 5,
    "testnet": 1,
    "testnet4": 1,
    "signet": 1,
    "regtest": 1,
}

MEMPOOL_API_URLS = {
    "mainnet": "https://mempool.space/api",
    "testnet": "https://mempool.space/testnet4/api",
    "testnet4": "https://mempool.space/testnet4/api",
    "signet": "https://mempool.space/signet/api",
    "regtest": "http://localhost:3002/api",
}

DEFAULT_CHARMS_API_URL = "https://api.charms.dev"


@dataclass
class NetworkConfig:
    """Per-network parameters for building vault transactions"""

    network: str
    mempool_api_url: str
    charms_api_url: str
    fallback_fee_rate: int  # sats/vbyte
    dust_threshold_sats: int = DUST_THRESHOLD_SATS
    warning_threshold_seconds: int = WARNING_THRESHOLD_SECONDS
    max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES

    def __post_init__(self):
        if self.network not in FALLBACK_FEE_RATES:
            raise ValueError(f"Unknown network: {self.network}")
        if not (0 < self.max_payload_bytes <= 0xFFFF):
            raise ValueError("max_payload_bytes must be between 1 and 65535")

    @classmethod
    def for_network(cls, network: str) -> 'NetworkConfig':
        """Create the default configuration for a named network"""
        network = network.lower()
        if network not in FALLBACK_FEE_RATES:
            raise ValueError(f"Unknown network: {network}")
        return cls(
            network=network,
            mempool_api_url=MEMPOOL_API_URLS[network],
            charms_api_url=DEFAULT_CHARMS_API_URL,
            fallback_fee_rate=FALLBACK_FEE_RATES[network],
        )

    @classmethod
    def testnet(cls) -> 'NetworkConfig':
        """Testnet4 defaults, 1 sat/vbyte fallback"""
        return cls.for_network("testnet4")

    @classmethod
    def mainnet(cls) -> 'NetworkConfig':
        """Mainnet defaults, 5 sat/vbyte fallback"""
        return cls.for_network("mainnet")

    @classmethod
    def from_env(cls) -> 'NetworkConfig':
        """Build configuration from BITWILL_* environment variables"""
        config = cls.for_network(os.environ.get("BITWILL_NETWORK", "testnet4"))

        mempool_url = os.environ.get("BITWILL_MEMPOOL_URL")
        if mempool_url:
            config.mempool_api_url = mempool_url.rstrip("/")

        charms_url = os.environ.get("BITWILL_CHARMS_API_URL")
        if charms_url:
            config.charms_api_url = charms_url.rstrip("/")

        max_payload = os.environ.get("BITWILL_MAX_PAYLOAD_BYTES")
        if max_payload:
            config = replace(config, max_payload_bytes=int(max_payload))

        return config

    @property
    def is_mainnet(self) -> bool:
        return self.network == "mainnet"
