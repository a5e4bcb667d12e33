"""
Bitcoin Transaction Assembly Tool

An async implementation of a single-key Bitcoin spend: fetch UTXOs from a
mempool.space compatible indexer, resolve amount/fee/change, bind inputs per
sender script type, sign, serialize and optionally broadcast.
"""

__version__ = "0.1.0"
__author__ = "levinster82"
__license__ = "GPL-3.0"

__all__ = [
    "__version__",
    "__author__",
    "__license__",
]
