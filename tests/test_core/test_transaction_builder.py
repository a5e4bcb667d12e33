"""
Unit tests for core/transaction_builder.py - input binding, assembly and signing.

Tests include:
- bind_inputs() for P2WPKH, P2SH-P2WPKH and P2PKH senders
- Previous-transaction fetch failures, skips and caching
- TransactionAssembler state machine and bound-value checks
- assemble_transaction() end to end for every sender script type
"""

import asyncio
import unittest
from unittest.mock import AsyncMock, Mock

from embit.transaction import Transaction

from btcsend_lib.core.constants import BuilderConfig, SEQUENCE_FINAL, SEQUENCE_RBF
from btcsend_lib.core.engine import SigningEngine
from btcsend_lib.core.errors import (
    BuildStateError, FetchError, InsufficientFunds, OverSpendError, SigningFailure, ValidationError
)
from btcsend_lib.core.address import p2sh_script
from btcsend_lib.core.models import UTXO, ScriptType, BuildState, AmountResolution, InputDescriptor
from btcsend_lib.core.selection import resolve_amounts
from btcsend_lib.core.transaction_builder import bind_inputs, TransactionAssembler, assemble_transaction
from tests.fixtures import (
    TEST_PUBKEY_HEX, OTHER_PUBKEY_HEX, RECIPIENT_ADDRESS, address_for, foreign_address, make_utxo,
    make_request, make_previous_transaction
)

PUBKEY = bytes.fromhex(TEST_PUBKEY_HEX)
WITNESS_PROGRAM = bytes.fromhex('0014751e76e8199196d454941c45d1b3a323f1433bd6')


def make_fetcher(transactions=None, failures=None):
    """Fetcher mock serving raw transactions by txid."""
    transactions = transactions or {}
    failures = failures or set()

    def fetch(txid):
        if txid in failures:
            raise FetchError(f"Transaction {txid} not available: HTTP 404")
        return transactions.get(txid, '')

    fetcher = Mock()
    fetcher.fetch_transaction = AsyncMock(side_effect=fetch)
    return fetcher


def parse(result):
    return Transaction.parse(bytes.fromhex(result.transaction_hex))


class TestBindInputs(unittest.TestCase):
    """Test building input descriptors."""

    def test_p2wpkh_commitment(self):
        """Segwit inputs commit to the P2WPKH script and the UTXO value."""
        utxos = [make_utxo(1, 70000), make_utxo(2, 30000)]
        fetcher = make_fetcher()

        descriptors, skipped = asyncio.run(bind_inputs(utxos, ScriptType.P2WPKH, PUBKEY, fetcher))

        self.assertEqual(len(descriptors), 2)
        self.assertEqual(skipped, [])
        self.assertEqual(descriptors[0].witness_utxo.value, 70000)
        self.assertEqual(descriptors[1].witness_utxo.value, 30000)
        self.assertEqual(descriptors[0].witness_utxo.script_pubkey.hex(),
                         '0014751e76e8199196d454941c45d1b3a323f1433bd6')
        self.assertIsNone(descriptors[0].redeem_script)
        self.assertEqual(descriptors[0].sequence, SEQUENCE_FINAL)
        fetcher.fetch_transaction.assert_not_called()

    def test_p2sh_p2wpkh_redeem_script(self):
        """Wrapped segwit inputs carry the witness program as redeem script and commit to its P2SH script."""
        descriptors, _ = asyncio.run(
            bind_inputs([make_utxo(1, 5000)], ScriptType.P2SH_P2WPKH, PUBKEY, make_fetcher())
        )

        self.assertEqual(descriptors[0].redeem_script, WITNESS_PROGRAM)
        self.assertEqual(descriptors[0].witness_utxo.script_pubkey, p2sh_script(WITNESS_PROGRAM))
        self.assertEqual(descriptors[0].witness_utxo.script_pubkey[:2], b'\xa9\x14')

    def test_sender_script_commitment(self):
        """An explicit sender script is committed as-is."""
        sender_script = b'\x00\x14' + b'\x22' * 20
        descriptors, _ = asyncio.run(
            bind_inputs([make_utxo(1, 5000)], ScriptType.P2WPKH, PUBKEY, make_fetcher(),
                        sender_script=sender_script)
        )

        self.assertEqual(descriptors[0].witness_utxo.script_pubkey, sender_script)

    def test_rbf_sequence(self):
        """RBF sets the signalling sequence on every input."""
        utxos = [make_utxo(1, 5000), make_utxo(2, 6000)]

        descriptors, _ = asyncio.run(bind_inputs(utxos, ScriptType.P2WPKH, PUBKEY, make_fetcher(), rbf=True))

        self.assertTrue(all(d.sequence == SEQUENCE_RBF for d in descriptors))

    def test_p2pkh_fetches_previous_transactions(self):
        """Legacy inputs carry the full previous transaction."""
        raw_tx, txid = make_previous_transaction([40000])
        utxo = UTXO(txid, 0, 40000, 3)
        fetcher = make_fetcher({txid: raw_tx})

        descriptors, skipped = asyncio.run(bind_inputs([utxo], ScriptType.P2PKH, PUBKEY, fetcher))

        self.assertEqual(len(descriptors), 1)
        self.assertEqual(descriptors[0].non_witness_utxo, raw_tx)
        self.assertIsNone(descriptors[0].witness_utxo)
        self.assertEqual(skipped, [])
        fetcher.fetch_transaction.assert_awaited_once_with(txid)

    def test_p2pkh_failed_fetch_is_skipped(self):
        """A failing fetch skips the UTXO and keeps going."""
        raw_a, txid_a = make_previous_transaction([100000], seed=1)
        _, txid_b = make_previous_transaction([20000], seed=2)
        utxos = [UTXO(txid_b, 0, 20000, 10), UTXO(txid_a, 0, 100000, 5)]
        fetcher = make_fetcher({txid_a: raw_a}, failures={txid_b})

        with self.assertLogs('btcsend.transaction_builder', level='WARNING'):
            descriptors, skipped = asyncio.run(bind_inputs(utxos, ScriptType.P2PKH, PUBKEY, fetcher))

        self.assertEqual([d.utxo.txid for d in descriptors], [txid_a])
        self.assertEqual(len(skipped), 1)
        self.assertEqual(skipped[0].utxo.txid, txid_b)
        self.assertIn("HTTP 404", skipped[0].reason)

    def test_p2pkh_empty_response_is_skipped(self):
        """An empty fetch result counts as not found."""
        utxo = make_utxo(9, 1000)

        with self.assertLogs('btcsend.transaction_builder', level='WARNING'):
            descriptors, skipped = asyncio.run(bind_inputs([utxo], ScriptType.P2PKH, PUBKEY, make_fetcher()))

        self.assertEqual(descriptors, [])
        self.assertEqual(skipped[0].reason, 'previous transaction not found')

    def test_p2pkh_fetch_cache(self):
        """UTXOs sharing a txid fetch the transaction once."""
        raw_tx, txid = make_previous_transaction([1000, 2000])
        utxos = [UTXO(txid, 0, 1000, 1), UTXO(txid, 1, 2000, 1)]
        fetcher = make_fetcher({txid: raw_tx})

        descriptors, _ = asyncio.run(bind_inputs(utxos, ScriptType.P2PKH, PUBKEY, fetcher))

        self.assertEqual(len(descriptors), 2)
        self.assertEqual(fetcher.fetch_transaction.await_count, 1)

    def test_p2pkh_fetch_cache_disabled(self):
        """Without the cache every UTXO triggers its own fetch."""
        raw_tx, txid = make_previous_transaction([1000, 2000])
        utxos = [UTXO(txid, 0, 1000, 1), UTXO(txid, 1, 2000, 1)]
        fetcher = make_fetcher({txid: raw_tx})

        asyncio.run(bind_inputs(utxos, ScriptType.P2PKH, PUBKEY, fetcher, cache=False))

        self.assertEqual(fetcher.fetch_transaction.await_count, 2)


class TestTransactionAssembler(unittest.TestCase):
    """Test the build state machine."""

    def setUp(self):
        self.engine = SigningEngine('mainnet')

    def _descriptors(self, *values):
        utxos = [make_utxo(i + 1, value) for i, value in enumerate(values)]
        descriptors, _ = asyncio.run(bind_inputs(utxos, ScriptType.P2WPKH, PUBKEY, make_fetcher()))
        return descriptors

    def test_steps_out_of_order(self):
        """Each step requires the previous one."""
        assembler = TransactionAssembler(resolve_amounts(100000, 50000, 1000), self.engine)

        with self.assertRaises(BuildStateError):
            assembler.add_outputs(RECIPIENT_ADDRESS, address_for(ScriptType.P2WPKH))
        with self.assertRaises(BuildStateError):
            assembler.finalize()
        with self.assertRaises(BuildStateError):
            assembler.serialize()

    def test_bind_twice(self):
        """Inputs can only be bound once."""
        assembler = TransactionAssembler(resolve_amounts(100000, 50000, 1000), self.engine)
        assembler.bind_inputs(self._descriptors(100000))

        self.assertEqual(assembler.state, BuildState.INPUTS_BOUND)
        with self.assertRaises(BuildStateError):
            assembler.bind_inputs(self._descriptors(100000))

    def test_no_inputs(self):
        """Binding nothing fails."""
        assembler = TransactionAssembler(resolve_amounts(100000, 50000, 1000), self.engine)

        with self.assertRaises(SigningFailure):
            assembler.bind_inputs([])

    def test_bound_value_below_amount_plus_fee(self):
        """Bound inputs must still cover amount + fee."""
        assembler = TransactionAssembler(resolve_amounts(100000, 50000, 1000), self.engine)

        with self.assertRaises(SigningFailure) as context:
            assembler.bind_inputs(self._descriptors(30000))

        self.assertIn("skipped", str(context.exception))
        self.assertEqual(assembler.state, BuildState.EMPTY)

    def test_change_capped_by_bound_value(self):
        """Change never exceeds bound value minus amount and fee."""
        assembler = TransactionAssembler(resolve_amounts(120000, 50000, 1000), self.engine)
        assembler.bind_inputs(self._descriptors(100000))

        with self.assertLogs('btcsend.transaction_builder', level='WARNING'):
            self.assertEqual(assembler.change_output_value(), 49000)

    def test_capped_change_below_dust_is_dropped(self):
        """A capped change at or below the dust threshold creates no output."""
        assembler = TransactionAssembler(resolve_amounts(120000, 50000, 1000), self.engine)
        assembler.bind_inputs(self._descriptors(51500))

        with self.assertLogs('btcsend.transaction_builder', level='WARNING'):
            assembler.add_outputs(RECIPIENT_ADDRESS, address_for(ScriptType.P2WPKH))

        self.assertEqual(len(assembler.unsigned.outputs), 1)

    def test_outputs(self):
        """Recipient first, change second."""
        change_address = address_for(ScriptType.P2WPKH)
        assembler = TransactionAssembler(resolve_amounts(100000, 50000, 1000), self.engine)
        assembler.bind_inputs(self._descriptors(100000))
        assembler.add_outputs(RECIPIENT_ADDRESS, change_address)

        outputs = assembler.unsigned.outputs
        self.assertEqual([(o.address, o.amount) for o in outputs],
                         [(RECIPIENT_ADDRESS, 50000), (change_address, 49000)])
        self.assertEqual(assembler.state, BuildState.OUTPUTS_ADDED)

    def test_sign_wraps_unexpected_errors(self):
        """Engine errors surface as SigningFailure."""
        engine = Mock(wraps=self.engine)
        engine.sign.side_effect = RuntimeError("boom")
        assembler = TransactionAssembler(resolve_amounts(100000, 50000, 1000), engine)
        assembler.bind_inputs(self._descriptors(100000))
        assembler.add_outputs(RECIPIENT_ADDRESS, address_for(ScriptType.P2WPKH))

        with self.assertRaises(SigningFailure) as context:
            assembler.sign(self.engine.load_key(make_request().private_key))

        self.assertIn("boom", str(context.exception))
        self.assertEqual(assembler.state, BuildState.OUTPUTS_ADDED)


class TestAssembleTransaction(unittest.TestCase):
    """Test the full build pipeline."""

    def setUp(self):
        self.engine = SigningEngine('mainnet')

    def test_example_a_p2wpkh_with_change(self):
        """100000 in, 50000 out, 1000 fee: recipient and 49000 change."""
        sender = address_for(ScriptType.P2WPKH)
        request = make_request(from_address=sender)

        result, resolution = asyncio.run(
            assemble_transaction(request, [make_utxo(1, 100000)], self.engine, make_fetcher())
        )

        tx = parse(result)
        self.assertEqual(result.num_inputs, 1)
        self.assertEqual(result.num_outputs, 2)
        self.assertEqual([out.value for out in tx.vout], [50000, 49000])
        self.assertEqual(tx.vout[0].script_pubkey.data, self.engine.derive_script(RECIPIENT_ADDRESS).data)
        self.assertEqual(tx.vout[1].script_pubkey.data, self.engine.derive_script(sender).data)
        self.assertEqual(len(tx.vin[0].witness.items), 2)
        self.assertEqual(tx.vin[0].witness.items[1], PUBKEY)
        self.assertEqual(tx.vin[0].script_sig.data, b'')
        self.assertEqual(tx.vin[0].sequence, SEQUENCE_FINAL)
        self.assertEqual(result.txid, tx.txid().hex())
        self.assertLess(result.virtual_size, result.size)
        self.assertEqual(resolution.change, 49000)
        self.assertEqual(result.skipped_inputs, [])

    def test_example_b_max_send(self):
        """Exact total sends amount - fee and returns the fee as change."""
        request = make_request(amount=49000, fee=1000)

        result, resolution = asyncio.run(
            assemble_transaction(request, [make_utxo(1, 50000)], self.engine, make_fetcher())
        )

        tx = parse(result)
        self.assertTrue(resolution.max_send)
        self.assertEqual(request.amount_satoshis, 48000)
        self.assertEqual([out.value for out in tx.vout], [48000, 1000])

    def test_clamped_amount(self):
        """Over-spend sends everything minus the fee, without change."""
        request = make_request(amount=80000, fee=1000)
        utxos = [make_utxo(1, 30000, 2), make_utxo(2, 20000, 9)]

        result, resolution = asyncio.run(assemble_transaction(request, utxos, self.engine, make_fetcher()))

        tx = parse(result)
        self.assertTrue(resolution.clamped)
        self.assertEqual(len(tx.vout), 1)
        self.assertEqual(tx.vout[0].value, 49000)
        # most confirmed first
        self.assertEqual(tx.vin[0].txid.hex(), utxos[1].txid)
        self.assertEqual(tx.vin[1].txid.hex(), utxos[0].txid)

    def test_strict_mode(self):
        """Strict mode refuses to clamp."""
        request = make_request(amount=80000, fee=1000)

        with self.assertRaises(OverSpendError):
            asyncio.run(assemble_transaction(
                request, [make_utxo(1, 30000)], self.engine, make_fetcher(), BuilderConfig(strict=True)
            ))

    def test_rbf(self):
        """RBF requests signal on every input."""
        request = make_request(rbf=True)
        utxos = [make_utxo(1, 40000), make_utxo(2, 40000)]

        result, _ = asyncio.run(assemble_transaction(request, utxos, self.engine, make_fetcher()))

        self.assertTrue(all(inp.sequence == SEQUENCE_RBF for inp in parse(result).vin))

    def test_no_utxos(self):
        with self.assertRaises(InsufficientFunds):
            asyncio.run(assemble_transaction(make_request(), [], self.engine, make_fetcher()))

    def test_fee_exceeds_total(self):
        with self.assertRaises(InsufficientFunds):
            asyncio.run(assemble_transaction(
                make_request(amount=100, fee=5000), [make_utxo(1, 1000)], self.engine, make_fetcher()
            ))

    def test_fee_exceeds_total_before_fetching(self):
        """A legacy sender that cannot pay the fee fails before any key use or fetch."""
        engine = Mock(wraps=self.engine)
        fetcher = make_fetcher()
        request = make_request(from_address=address_for(ScriptType.P2PKH), amount=100, fee=5000)

        with self.assertRaises(InsufficientFunds):
            asyncio.run(assemble_transaction(request, [make_utxo(1, 1000), make_utxo(2, 1500)], engine, fetcher))

        fetcher.fetch_transaction.assert_not_awaited()
        engine.load_key.assert_not_called()
        engine.create_transaction.assert_not_called()

    def test_invalid_key(self):
        request = make_request()
        request.private_key = 'not-a-wif'

        with self.assertRaises(ValidationError):
            asyncio.run(assemble_transaction(request, [make_utxo(1, 100000)], self.engine, make_fetcher()))

    def test_segwit_input_without_commitment(self):
        """A segwit input with no witness commitment cannot be signed."""
        descriptor = InputDescriptor(make_utxo(1, 100000), SEQUENCE_FINAL, ScriptType.P2WPKH)
        assembler = TransactionAssembler(AmountResolution(100000, 50000, 1000, 49000, 546), self.engine)
        assembler.bind_inputs([descriptor])
        assembler.add_outputs(RECIPIENT_ADDRESS, address_for(ScriptType.P2WPKH))

        with self.assertRaises(SigningFailure):
            assembler.sign(self.engine.load_key(make_request().private_key))

    def test_p2sh_p2wpkh_sender(self):
        """Wrapped segwit inputs push the redeem script and carry a witness."""
        sender = address_for(ScriptType.P2SH_P2WPKH)
        request = make_request(from_address=sender)

        result, _ = asyncio.run(
            assemble_transaction(request, [make_utxo(1, 100000)], self.engine, make_fetcher())
        )

        tx = parse(result)
        self.assertEqual(tx.vin[0].script_sig.data.hex(), '16' + '0014751e76e8199196d454941c45d1b3a323f1433bd6')
        self.assertEqual(len(tx.vin[0].witness.items), 2)
        self.assertEqual(tx.vout[1].script_pubkey.data, self.engine.derive_script(sender).data)

    def test_p2pkh_sender(self):
        """Legacy inputs sign into the scriptSig with no witness."""
        raw_tx, txid = make_previous_transaction([100000])
        request = make_request(from_address=address_for(ScriptType.P2PKH))
        fetcher = make_fetcher({txid: raw_tx})

        result, _ = asyncio.run(
            assemble_transaction(request, [UTXO(txid, 0, 100000, 4)], self.engine, fetcher)
        )

        tx = parse(result)
        script_sig = tx.vin[0].script_sig.data
        self.assertTrue(script_sig.endswith(bytes([33]) + PUBKEY))
        self.assertEqual(script_sig[script_sig[0]], 0x01)  # SIGHASH_ALL
        self.assertEqual(result.size, result.virtual_size)
        self.assertEqual([out.value for out in tx.vout], [50000, 49000])

    def test_foreign_segwit_sender(self):
        """A key that does not control a segwit sender address cannot sign its inputs."""
        for script_type in (ScriptType.P2WPKH, ScriptType.P2SH_P2WPKH):
            request = make_request(from_address=foreign_address(script_type))

            with self.assertRaises(SigningFailure, msg=script_type.value) as context:
                asyncio.run(assemble_transaction(request, [make_utxo(1, 100000)], self.engine, make_fetcher()))

            self.assertIn("not locked to the signing key", str(context.exception))

    def test_foreign_p2pkh_sender(self):
        """Legacy outputs paying another key cannot be signed."""
        raw_tx, txid = make_previous_transaction([100000], pubkey_hex=OTHER_PUBKEY_HEX)
        request = make_request(from_address=foreign_address(ScriptType.P2PKH))

        with self.assertRaises(SigningFailure) as context:
            asyncio.run(assemble_transaction(
                request, [UTXO(txid, 0, 100000, 4)], self.engine, make_fetcher({txid: raw_tx})
            ))

        self.assertIn("not locked to the signing key", str(context.exception))

    def test_example_c_partial_skip(self):
        """A failed legacy fetch skips that input; the rest still covers the spend."""
        raw_a, txid_a = make_previous_transaction([100000], seed=1)
        _, txid_b = make_previous_transaction([20000], seed=2)
        utxos = [UTXO(txid_a, 0, 100000, 10), UTXO(txid_b, 0, 20000, 5)]
        request = make_request(from_address=address_for(ScriptType.P2PKH))
        fetcher = make_fetcher({txid_a: raw_a}, failures={txid_b})

        with self.assertLogs('btcsend.transaction_builder', level='WARNING'):
            result, resolution = asyncio.run(assemble_transaction(request, utxos, self.engine, fetcher))

        tx = parse(result)
        self.assertEqual(resolution.total_input, 120000)
        self.assertEqual(resolution.change, 69000)
        self.assertEqual(result.num_inputs, 1)
        self.assertEqual(len(result.skipped_inputs), 1)
        self.assertEqual(result.skipped_inputs[0].utxo.txid, txid_b)
        self.assertEqual([out.value for out in tx.vout], [50000, 49000])

    def test_every_input_skipped(self):
        """Nothing bound means nothing to sign."""
        request = make_request(from_address=address_for(ScriptType.P2PKH))
        utxos = [make_utxo(1, 100000)]

        with self.assertLogs('btcsend.transaction_builder', level='WARNING'):
            with self.assertRaises(SigningFailure):
                asyncio.run(assemble_transaction(request, utxos, self.engine, make_fetcher(failures={utxos[0].txid})))

    def test_skip_leaves_too_little(self):
        """Skipped inputs that leave amount + fee uncovered fail the build."""
        raw_b, txid_b = make_previous_transaction([20000], seed=2)
        _, txid_a = make_previous_transaction([100000], seed=1)
        utxos = [UTXO(txid_a, 0, 100000, 10), UTXO(txid_b, 0, 20000, 5)]
        request = make_request(from_address=address_for(ScriptType.P2PKH))

        with self.assertLogs('btcsend.transaction_builder', level='WARNING'):
            with self.assertRaises(SigningFailure):
                asyncio.run(assemble_transaction(
                    request, utxos, self.engine, make_fetcher({txid_b: raw_b}, failures={txid_a})
                ))


if __name__ == '__main__':
    unittest.main()
