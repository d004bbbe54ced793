"""Chain-aware address validation and canonicalization. Pure functions, no I/O."""

from __future__ import annotations

import re

from pydantic import BaseModel
from solders.pubkey import Pubkey
from web3 import Web3

from chainsentry.chain.registry import CHAINS, ChainFamily
from chainsentry.errors import InvalidAddress

_HEX_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


class AddressValidation(BaseModel):
    address: str
    chain: str
    is_valid: bool
    format: str
    normalized: str | None = None
    error: str | None = None


def _validate_account_model(address: str, chain: str) -> AddressValidation:
    if not isinstance(address, str) or not _HEX_ADDRESS.match(address):
        return AddressValidation(
            address=str(address), chain=chain, is_valid=False, format="hex",
            error="expected 0x followed by 40 hex characters (20 bytes)",
        )
    checksummed = Web3.to_checksum_address(address)
    body = address[2:]
    mixed_case = body != body.lower() and body != body.upper()
    if mixed_case and address != checksummed:
        return AddressValidation(
            address=address, chain=chain, is_valid=False, format="hex",
            error="checksum mismatch",
        )
    return AddressValidation(
        address=address,
        chain=chain,
        is_valid=True,
        format="hex-checksummed" if address == checksummed else "hex",
        normalized=checksummed,
    )


def _validate_instruction_model(address: str, chain: str) -> AddressValidation:
    try:
        pubkey = Pubkey.from_string(address)
    except (ValueError, TypeError) as e:
        return AddressValidation(
            address=str(address), chain=chain, is_valid=False, format="base58",
            error=f"not a base58 public key: {e}",
        )
    if not pubkey.is_on_curve():
        return AddressValidation(
            address=address, chain=chain, is_valid=False, format="base58",
            error="public key is not on the ed25519 curve",
        )
    return AddressValidation(
        address=address, chain=chain, is_valid=True, format="base58", normalized=str(pubkey),
    )


def validate_address(address: str, chain: str) -> AddressValidation:
    """Validate an address for one chain. Never raises."""
    config = CHAINS.get(chain)
    if config is None:
        return AddressValidation(
            address=str(address), chain=chain, is_valid=False, format="unknown",
            error=f"unsupported chain: {chain}",
        )
    if config.family is ChainFamily.ACCOUNT:
        return _validate_account_model(address, chain)
    return _validate_instruction_model(address, chain)


def normalize_address(address: str, chain: str) -> str:
    """Canonical form of an address: EIP-55 checksum for EVM, base58 for Solana.

    Idempotent. Raises InvalidAddress when the address does not validate.
    """
    result = validate_address(address, chain)
    if not result.is_valid or result.normalized is None:
        raise InvalidAddress(str(address), chain, result.error or "invalid address")
    return result.normalized


def addresses_equal(a: str, b: str, chain: str) -> bool:
    """Compare two addresses after normalization; never raises."""
    try:
        return normalize_address(a, chain) == normalize_address(b, chain)
    except InvalidAddress:
        return str(a).lower() == str(b).lower()


def try_normalize(address: str | None, chain: str) -> str | None:
    """Normalize if possible, otherwise return the input unchanged."""
    if address is None:
        return None
    try:
        return normalize_address(address, chain)
    except InvalidAddress:
        return address


def detect_chains(address: str) -> list[str]:
    """Every supported chain whose address format accepts this address."""
    return [name for name in CHAINS if validate_address(address, name).is_valid]


def validate_addresses(pairs: list[tuple[str, str]]) -> list[AddressValidation]:
    return [validate_address(address, chain) for address, chain in pairs]


def validate_and_normalize(address: str, chain: str) -> dict:
    """Detailed result: original, normalized (original if invalid), validation and format."""
    validation = validate_address(address, chain)
    config = CHAINS.get(chain)
    if config is None:
        encoding = "unknown"
    elif config.family is ChainFamily.ACCOUNT:
        encoding = "hexadecimal, 20 bytes"
    else:
        encoding = "base58, 32-byte ed25519 public key"
    return {
        "original_address": address,
        "normalized_address": validation.normalized or address,
        "validation": validation,
        "format": {"format": validation.format, "length": len(str(address)), "encoding": encoding},
    }
