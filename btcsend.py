#!/usr/bin/env python3
"""
Bitcoin Transaction Assembly Tool - Build, sign and broadcast a single-key spend

Spends every UTXO of the sending address, pays the recipient, returns change
above the dust threshold and signs with one WIF private key.
"""

import asyncio
import argparse
import getpass
import sys
import logging

from btcsend_lib import __version__
from btcsend_lib.core.constants import HTTP_TIMEOUT, DUST_THRESHOLD, NETWORKS, BuilderConfig
from btcsend_lib.core.models import BuildFailure
from btcsend_lib.backend.clients import MempoolClient
from btcsend_lib.frontend.cli import CLIFrontend
from btcsend_lib.app import TransactionApp
from btcsend_lib.utils import validate_request, get_network_display_name
from btcsend_lib.core.errors import ValidationError

# Set up logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('btcsend')


async def async_main(args):
    """
    Async main function - coordinates all async operations.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    frontend = CLIFrontend(quiet=args.quiet, assume_yes=args.yes)

    # Prompt for the key rather than taking it from argv when not given
    private_key = args.private_key or getpass.getpass("Enter WIF private key: ").strip()

    try:
        request = validate_request({
            'fromAddress': args.from_address,
            'privateKey': private_key,
            'toAddress': args.to_address,
            'amountSatoshis': args.amount,
            'feeSatoshis': args.fee,
            'rbf': args.rbf,
            'broadcast': False
        })
    except ValidationError as e:
        frontend.show_error(str(e))
        return 1

    network_name = get_network_display_name(args.network)
    frontend.show_request_summary(request, network_name)

    config = BuilderConfig(
        network=args.network,
        dust_threshold=args.dust_threshold,
        strict=args.strict,
        cache_fetches=not args.no_fetch_cache
    )

    client = MempoolClient(base_url=args.api_url, network=args.network, timeout=args.timeout)

    try:
        async with client.connect():
            logger.info(f"Using indexer {client.base_url}")

            app = TransactionApp(client=client, config=config)
            frontend.attach(app.event_bus)

            result = await app.build(request)
            if isinstance(result, BuildFailure):
                frontend.show_failure(result)
                return 1

            if args.broadcast and await frontend.prompt_confirm_broadcast(result):
                await app.broadcast(result)

            frontend.show_build_result(result)

            if result.broadcast_result is not None and not result.broadcast_result.get('success'):
                return 1
            return 0

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Error: {e}")
        frontend.show_error(str(e))
        return 1


def main():
    """Main entry point - parse arguments and run async main."""
    parser = argparse.ArgumentParser(
        description='Bitcoin Transaction Assembly Tool - Build and sign a single-key spend',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Build and print a signed transaction (key prompted)
  %(prog)s --from bc1q... --to bc1q... --amount 50000 --fee 1000

  # Signal RBF and broadcast after confirmation
  %(prog)s --from 3... --to bc1q... --amount 50000 --fee 1500 --rbf --broadcast

  # Refuse to reduce the amount when funds are short
  %(prog)s --from 1... --to bc1q... --amount 50000 --fee 1000 --strict
        """
    )

    # Spend options
    spend_group = parser.add_argument_group('spend options')
    spend_group.add_argument('--from', '-f', dest='from_address', required=True,
                             help='Sending address (all of its UTXOs are spent)')
    spend_group.add_argument('--to', '-t', dest='to_address', required=True,
                             help='Recipient address')
    spend_group.add_argument('--amount', '-a', type=int, required=True,
                             help='Amount to send in satoshis')
    spend_group.add_argument('--fee', type=int, required=True,
                             help='Absolute fee in satoshis')
    spend_group.add_argument('--key', '-k', dest='private_key',
                             help='WIF private key (prompted if omitted)')
    spend_group.add_argument('--rbf', action='store_true',
                             help='Signal replace-by-fee on every input')
    spend_group.add_argument('--strict', action='store_true',
                             help='Fail instead of reducing the amount when amount + fee exceeds the balance')
    spend_group.add_argument('--dust-threshold', type=int, default=DUST_THRESHOLD,
                             help=f'Change at or below this many sats is added to the fee (default: {DUST_THRESHOLD})')

    # Broadcast options
    broadcast_group = parser.add_argument_group('broadcast options')
    broadcast_group.add_argument('--broadcast', '-b', action='store_true',
                                 help='Broadcast the signed transaction')
    broadcast_group.add_argument('--yes', '-y', action='store_true',
                                 help='Do not ask for confirmation before broadcasting')

    # Connection options
    conn_group = parser.add_argument_group('connection options')
    conn_group.add_argument('--api-url',
                            help='mempool.space compatible API base URL (default: mempool.space for the network)')
    conn_group.add_argument('--timeout', type=float, default=HTTP_TIMEOUT,
                            help=f'HTTP timeout in seconds (default: {HTTP_TIMEOUT})')
    conn_group.add_argument('--no-fetch-cache', action='store_true',
                            help='Fetch the previous transaction again for every legacy input')

    # Network and logging options
    parser.add_argument('--network', '-n', choices=list(NETWORKS.keys()), default='mainnet',
                        help='Bitcoin network to use (default: mainnet)')
    parser.add_argument('--quiet', '-q', action='store_true',
                        help='Disable progress output')
    parser.add_argument('--log-level', '-l',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default='INFO', help='Logging level (default: INFO)')
    parser.add_argument('--version', '-v', action='version', version=f'%(prog)s {__version__}')

    args = parser.parse_args()

    # Configure logging - set root logger level so all btcsend.* loggers inherit it
    logging.getLogger().setLevel(getattr(logging, args.log_level))
    logger.setLevel(getattr(logging, args.log_level))

    if args.amount < 0 or args.fee < 0:
        parser.error("Amount and fee must not be negative")
    if args.dust_threshold < 0:
        parser.error(f"Dust threshold must not be negative, got {args.dust_threshold}")
    if args.timeout is not None and args.timeout <= 0:
        parser.error(f"Timeout must be positive, got {args.timeout}")

    exit_code = asyncio.run(async_main(args))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
