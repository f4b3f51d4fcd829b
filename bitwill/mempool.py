"""
mempool.space-compatible UTXO and fee index client
"""

import logging
from typing import Dict, List

import requests

from .errors import MempoolError
from .transaction import Utxo

logger = logging.getLogger(__name__)


class MempoolClient:
    """Reads UTXOs and recommended fees from an Esplora/mempool REST API"""

    def __init__(self, base_url: str, session: requests.Session = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get(self, path: str):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise MempoolError(f"Request to {url} failed: {e}") from e
        except ValueError as e:
            raise MempoolError(f"Invalid JSON from {url}: {e}") from e

    def get_utxos(self, address: str) -> List[Utxo]:
        """Unspent outputs for an address"""
        entries = self._get(f"/address/{address}/utxo")
        try:
            utxos = [
                Utxo(
                    txid=entry['txid'],
                    output_index=entry['vout'],
                    value_sats=entry['value'],
                    confirmed=entry.get('status', {}).get('confirmed', False)
                )
                for entry in entries
            ]
        except (KeyError, TypeError, AttributeError) as e:
            raise MempoolError(f"Malformed UTXO entry for {address}: {e}") from e

        logger.debug("Fetched %d UTXOs for %s", len(utxos), address)
        return utxos

    def get_recommended_fees(self) -> Dict[str, float]:
        """Recommended fee rates keyed fastestFee, halfHourFee, hourFee, ..."""
        fees = self._get("/v1/fees/recommended")
        if not isinstance(fees, dict):
            raise MempoolError("Fee response is not an object")
        return fees
