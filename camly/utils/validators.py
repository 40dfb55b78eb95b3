"""Custom validators and normalizers"""

import re

from eth_utils import is_address

TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")


def normalize_wallet_address(address: str) -> str:
    """Validate and normalize an EVM wallet address to lowercase"""
    address = (address or "").strip()
    if not is_address(address):
        raise ValueError("Invalid wallet address")
    return address.lower()


def validate_tx_hash(tx_hash: str) -> str:
    """Validate transaction hash format"""
    tx_hash = (tx_hash or "").strip()
    if not TX_HASH_PATTERN.match(tx_hash):
        raise ValueError("Invalid transaction hash")
    return tx_hash.lower()


def normalize_text(text: str) -> str:
    """Normalize text input"""
    # Remove extra whitespace
    text = " ".join(text.split())

    # Remove zero-width characters
    text = re.sub(r'[\u200b\u200c\u200d\ufeff]', '', text)

    return text.strip()
