"""
Main application orchestrator for building and broadcasting transactions.

This module coordinates the indexer client, the transaction builder and the
event bus to serve one spend request end to end:
validate -> fetch UTXOs -> assemble -> (optionally) broadcast.
"""

import logging
from typing import Any, Dict, Optional, Union

from .core.constants import BuilderConfig
from .core.address import classify_address, derive_address_from_wif
from .core.engine import SigningEngine
from .core.errors import TransactionError, BroadcastFailure
from .core.models import TransactionRequest, BuildResult, BuildFailure
from .core.transaction_builder import assemble_transaction
from .backend.clients import MempoolClient
from .frontend.events import EventBus, Event, EventType
from .utils import validate_request

logger = logging.getLogger('btcsend.app')


class TransactionApp:
    """
    Application service exposing build(request).

    Coordinates:
    - MempoolClient for UTXOs, previous transactions and broadcasting
    - SigningEngine for scripts, signatures and serialization
    - EventBus for reactive updates
    """

    def __init__(
        self,
        client: MempoolClient,
        config: Optional[BuilderConfig] = None,
        engine: Optional[SigningEngine] = None,
        event_bus: Optional[EventBus] = None
    ):
        """
        Initialize the application.

        Args:
            client: Connected indexer client
            config: Builder configuration (network, dust threshold, strict mode)
            engine: Signing engine (default: embit engine for config.network)
            event_bus: Optional EventBus for emitting progress events
        """
        self.client = client
        self.config = config or BuilderConfig()
        self.engine = engine or SigningEngine(self.config.network)
        self.event_bus = event_bus or EventBus()

    async def build_from_dict(self, data: Dict[str, Any]) -> Union[BuildResult, BuildFailure]:
        """Validate a raw request body, then build it."""
        try:
            request = validate_request(data)
        except TransactionError as e:
            logger.error(f"Invalid request: {e}")
            return BuildFailure(e.kind, str(e))
        return await self.build(request)

    async def build(self, request: TransactionRequest) -> Union[BuildResult, BuildFailure]:
        """
        Build, sign and optionally broadcast a transaction.

        Domain errors never propagate: they come back as a BuildFailure.
        A failed broadcast still returns the built transaction, with the
        failure recorded in broadcast_result.

        Args:
            request: Validated spend request

        Returns:
            BuildResult on success, BuildFailure otherwise
        """
        await self.event_bus.emit(Event(
            event_type=EventType.TX_BUILD_STARTED,
            data={'from_address': request.from_address, 'to_address': request.to_address,
                  'amount': request.amount_satoshis, 'fee': request.fee_satoshis},
            source='app'
        ))

        try:
            self._check_key_matches_address(request)

            utxos = await self.client.get_utxos(request.from_address)
            await self.event_bus.emit(Event(
                event_type=EventType.UTXOS_FETCHED,
                data={'utxo_count': len(utxos), 'total_value': sum(u.value for u in utxos)},
                source='app'
            ))

            result, resolution = await assemble_transaction(
                request, utxos, self.engine, self.client, self.config
            )
        except TransactionError as e:
            logger.error(f"Failed to build transaction: {e}")
            await self.event_bus.emit(Event(
                event_type=EventType.TX_BUILD_ERROR,
                data={'kind': e.kind, 'message': str(e)},
                source='app'
            ))
            return BuildFailure(e.kind, str(e))

        for skip in result.skipped_inputs:
            await self.event_bus.emit(Event(
                event_type=EventType.INPUT_SKIPPED,
                data=skip.to_dict(),
                source='app'
            ))

        logger.info(f"Transaction built successfully: {result.txid} "
                    f"({result.size} bytes, {result.virtual_size} vbytes)")
        await self.event_bus.emit(Event(
            event_type=EventType.TX_BUILD_COMPLETE,
            data={'txid': result.txid, 'amount': resolution.amount_satoshis,
                  'change': resolution.change, 'clamped': resolution.clamped,
                  'max_send': resolution.max_send},
            source='app'
        ))

        if request.broadcast:
            await self.broadcast(result)

        return result

    async def broadcast(self, result: BuildResult) -> Dict[str, Any]:
        """
        Broadcast a built transaction.

        The outcome is stored on result.broadcast_result and returned.
        """
        try:
            txid = await self.client.broadcast_transaction(result.transaction_hex)
        except BroadcastFailure as e:
            await self.event_bus.emit(Event(
                event_type=EventType.BROADCAST_ERROR,
                data={'error': e.detail or str(e)},
                source='app'
            ))
            result.broadcast_result = {'success': False, 'error': e.detail or str(e)}
            return result.broadcast_result

        await self.event_bus.emit(Event(
            event_type=EventType.BROADCAST_COMPLETE,
            data={'txid': txid},
            source='app'
        ))
        result.broadcast_result = {'success': True, 'txid': txid}
        return result.broadcast_result

    def _check_key_matches_address(self, request: TransactionRequest) -> None:
        """Warn when the key does not control the sending address."""
        # raises ValidationError for an undecodable key
        self.engine.load_key(request.private_key)
        script_type = classify_address(request.from_address)
        derived = derive_address_from_wif(request.private_key, script_type, self.config.network)
        if derived != request.from_address:
            logger.warning(f"Private key does not control {request.from_address} "
                           f"(key derives {derived}); signatures will not be valid for these UTXOs")
