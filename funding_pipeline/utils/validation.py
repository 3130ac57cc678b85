"""
Address validation utilities for the supported chains.
"""

import re

import base58
from bip_utils import SegwitBech32Decoder
from eth_utils import is_address, is_checksum_address, remove_0x_prefix
from solders.pubkey import Pubkey

from funding_pipeline.core.exceptions import InvalidAddressError
from funding_pipeline.models.enums import Chain


class SolanaValidator:
    """Validator for Solana addresses."""

    @staticmethod
    def is_valid_pubkey(address: str) -> bool:
        try:
            if not address or len(address) < 32 or len(address) > 44:
                return False
            Pubkey.from_string(address)
            return True
        except Exception:
            return False


class EvmValidator:
    """Validator for Ethereum-style addresses."""

    @staticmethod
    def is_valid_address(address: str) -> bool:
        """Accepts single-case hex addresses or valid EIP-55 checksummed ones."""
        if not address or not isinstance(address, str):
            return False
        if not is_address(address):
            return False

        body = remove_0x_prefix(address)
        if body != body.lower() and body != body.upper():
            return is_checksum_address(address)
        return True


class BitcoinValidator:
    """Validator for Bitcoin addresses (base58check and bech32/bech32m)."""

    LEGACY_PATTERN = re.compile(r"^[123mn][1-9A-HJ-NP-Za-km-z]{25,34}$")
    SEGWIT_HRPS = ("bc", "tb", "bcrt")

    @classmethod
    def is_valid_address(cls, address: str) -> bool:
        if not address:
            return False

        lowered = address.lower()
        for hrp in cls.SEGWIT_HRPS:
            if lowered.startswith(hrp + "1"):
                try:
                    SegwitBech32Decoder.Decode(hrp, address)
                    return True
                except Exception:
                    return False

        if not cls.LEGACY_PATTERN.match(address):
            return False
        try:
            base58.b58decode_check(address)
            return True
        except ValueError:
            return False


_VALIDATORS = {
    Chain.BTC: BitcoinValidator.is_valid_address,
    Chain.ETH: EvmValidator.is_valid_address,
    Chain.SOL: SolanaValidator.is_valid_pubkey,
}


def is_valid_address(chain: Chain, address: str) -> bool:
    """Check an address against the format of ``chain``."""
    return _VALIDATORS[chain](address)


def validate_address(chain: Chain, address: str) -> str:
    """Return the stripped address or raise InvalidAddressError."""
    address = (address or "").strip()
    if not is_valid_address(chain, address):
        raise InvalidAddressError(address, chain.value)
    return address
