# wallet.py
import logging
from typing import Tuple

import base58

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from errors import InvalidInput


def create_wallet() -> Tuple[str, str]:
    """
    Provisions a fresh custodial keypair.

    Returns:
        Tuple[str, str]: (wallet_address, private_key_hex). The secret is the
        64 byte keypair encoding, hex encoded.
    """
    keypair = Keypair()
    wallet_address = str(keypair.pubkey())
    logging.info(f"New Solana wallet created: {wallet_address}")
    return wallet_address, bytes(keypair).hex()


def keypair_from_credential(credential: str) -> Keypair:
    """Decodes a hex or base58 secret key into a signing keypair."""
    if not credential:
        raise InvalidInput("Missing signing credential")
    try:
        return Keypair.from_bytes(bytes.fromhex(credential))
    except ValueError:
        pass
    try:
        return Keypair.from_bytes(base58.b58decode(credential))
    except ValueError:
        raise InvalidInput("Signing credential could not be decoded into a keypair") from None


def parse_address(address: str, label: str = "Token address") -> Pubkey:
    if not address:
        raise InvalidInput(f"{label} is empty")
    try:
        return Pubkey.from_string(address)
    except ValueError:
        raise InvalidInput(f"Invalid {label.lower()}: {address}") from None
