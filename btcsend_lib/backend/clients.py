"""
Async HTTP client for mempool.space (Esplora-compatible) indexers.

Provides the chain collaborators the transaction builder consumes:
- get_utxos(): unspent outputs of an address
- fetch_transaction(): raw previous transaction hex
- broadcast_transaction(): push a signed transaction

Uses httpx.AsyncClient for non-blocking I/O. Timeouts are owned here; the
transaction builder applies none of its own.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, List, Optional

import httpx

from ..core.constants import HTTP_TIMEOUT, get_api_url
from ..core.errors import BroadcastFailure, FetchError
from ..core.models import UTXO

logger = logging.getLogger('btcsend.clients')


class MempoolClient:
    """
    Async client for the mempool.space REST API.

    Example:
        >>> client = MempoolClient(network='mainnet')
        >>> async with client.connect():
        ...     utxos = await client.get_utxos('bc1q...')
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        network: str = 'mainnet',
        timeout: Optional[float] = HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize mempool.space client.

        Args:
            base_url: API base URL (default: mempool.space for the network)
            network: Bitcoin network name, used when base_url is not given
            timeout: Request timeout in seconds (None for no timeout)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or get_api_url(network)).rstrip('/')
        self.network = network
        self.timeout = timeout
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    @asynccontextmanager
    async def connect(self):
        """Async context manager owning the underlying HTTP connection pool."""
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport
        )
        try:
            yield self
        finally:
            await self.client.aclose()
            self.client = None

    async def _get(self, path: str) -> httpx.Response:
        if self.client is None:
            raise ConnectionError("Client is not connected")
        logger.debug(f"GET {self.base_url}{path}")
        response = await self.client.get(path)
        response.raise_for_status()
        return response

    async def get_tip_height(self) -> int:
        """
        Get the current chain tip height.

        Returns:
            Block height of the best block
        """
        response = await self._get('/blocks/tip/height')
        return int(response.text.strip())

    async def get_utxos(self, address: str) -> List[UTXO]:
        """
        Get unspent outputs for an address.

        Failures are logged and reported as an empty list.

        Args:
            address: Bitcoin address

        Returns:
            List of UTXOs with confirmation counts
        """
        try:
            response = await self._get(f'/address/{address}/utxo')
            data: Any = response.json()
        except (httpx.HTTPError, ValueError, ConnectionError) as e:
            logger.error(f"Error fetching UTXOs for {address}: {e}")
            return []

        if not isinstance(data, list) or not all(isinstance(entry, dict) for entry in data):
            logger.error(f"Unexpected UTXO response for {address}: {data!r}")
            return []

        tip_height = None
        if any((entry.get('status') or {}).get('confirmed') for entry in data):
            try:
                tip_height = await self.get_tip_height()
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Could not get tip height, confirmations unknown: {e}")

        utxos = [UTXO.from_dict(entry, tip_height) for entry in data]
        logger.info(f"Found {len(utxos)} UTXO(s) for {address}")
        return utxos

    async def fetch_transaction(self, txid: str) -> str:
        """
        Get a raw transaction.

        Args:
            txid: Transaction ID (64 hex chars)

        Returns:
            Raw transaction hex

        Raises:
            FetchError: If the transaction could not be retrieved
        """
        try:
            response = await self._get(f'/tx/{txid}/hex')
        except httpx.HTTPStatusError as e:
            logger.error(f"Error fetching transaction {txid}: {e.response.text}")
            raise FetchError(f"Transaction {txid} not available: HTTP {e.response.status_code}")
        except (httpx.HTTPError, ConnectionError) as e:
            logger.error(f"Error fetching transaction {txid}: {e}")
            raise FetchError(f"Transaction {txid} not available: {e}")
        return response.text.strip()

    async def broadcast_transaction(self, tx_hex: str) -> str:
        """
        Broadcast a signed transaction.

        Args:
            tx_hex: Serialized transaction in hexadecimal

        Returns:
            TXID reported by the indexer

        Raises:
            BroadcastFailure: If the indexer rejects the transaction or is unreachable
        """
        if self.client is None:
            logger.error("Error broadcasting transaction: client is not connected")
            raise BroadcastFailure("Transaction broadcast failed: client is not connected",
                                   detail="client is not connected")

        try:
            response = await self.client.post(
                '/tx',
                content=tx_hex,
                headers={'Content-Type': 'text/plain'}
            )
        except httpx.HTTPError as e:
            logger.error(f"Error broadcasting transaction: {e}")
            raise BroadcastFailure(f"Transaction broadcast failed: {e}", detail=str(e))

        if response.is_error:
            error_msg = response.text or f"HTTP {response.status_code}"
            logger.error(f"Error broadcasting transaction: {error_msg}")
            raise BroadcastFailure(f"Transaction broadcast failed: {error_msg}", detail=error_msg)

        # mempool.space returns the txid as plain text
        txid = response.text.strip()
        logger.info(f"Broadcast accepted: {txid}")
        return txid
