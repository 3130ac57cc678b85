"""
Chain adapters for deposit address generation and confirmation checks.
"""

from .base import ChainAdapter, GeneratedAddress, TransactionCheck
from .bitcoin import BitcoinAdapter
from .ethereum import EthereumAdapter
from .solana import SolanaAdapter
from .registry import ChainRegistry

__all__ = [
    "ChainAdapter",
    "GeneratedAddress",
    "TransactionCheck",
    "BitcoinAdapter",
    "EthereumAdapter",
    "SolanaAdapter",
    "ChainRegistry",
]
