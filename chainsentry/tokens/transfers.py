"""Extract fungible-token transfers from receipt logs (EVM) and token-balance diffs (Solana)."""

from __future__ import annotations

from collections import defaultdict

from web3 import Web3

from chainsentry.models.schema import TokenTransfer
from chainsentry.tokens.constants import TRANSFER_TOPIC, token_info


def parse_transfer_logs(logs: list[dict], chain: str) -> list[TokenTransfer]:
    """Parse receipt logs for ERC-20 Transfer events.

    Transfer event: Transfer(address indexed from, address indexed to, uint256 value)
    - topics[0] = event signature (0xddf252ad...)
    - topics[1] = from address (padded to 32 bytes)
    - topics[2] = to address (padded to 32 bytes)
    - data = value (uint256)

    ERC-721 transfers carry the token id as a fourth topic and are skipped.
    """
    transfers: list[TokenTransfer] = []
    for log in logs:
        topics = log.get("topics", [])
        if len(topics) != 3 or _hex(topics[0]).lower() != TRANSFER_TOPIC:
            continue

        token_address = Web3.to_checksum_address(_hex(log["address"]))
        data = _hex(log.get("data", "0x0"))
        value_raw = str(int(data, 16)) if data and data not in ("0x", "0x0", "") else "0"

        log_index = log.get("logIndex")
        if isinstance(log_index, str):
            log_index = int(log_index, 16)

        known = token_info(chain, token_address)
        decimals = known[1] if known else None
        transfers.append(TokenTransfer(
            token=token_address,
            symbol=known[0] if known else "",
            from_address=Web3.to_checksum_address(_topic_to_address(topics[1])),
            to_address=Web3.to_checksum_address(_topic_to_address(topics[2])),
            value_raw=value_raw,
            decimals=decimals,
            value_decimal=int(value_raw) / 10 ** decimals if decimals is not None else None,
            log_index=log_index,
        ))
    return transfers


def parse_token_balance_diffs(meta: dict, chain: str = "solana") -> list[TokenTransfer]:
    """Infer SPL token movements from pre/post token balances, one transfer per mint.

    The owner with the largest decrease is the sender, the owner with the
    largest increase the receiver.
    """
    deltas: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    decimals: dict[str, int] = {}
    for sign, key in ((-1, "preTokenBalances"), (1, "postTokenBalances")):
        for entry in meta.get(key) or []:
            mint = entry.get("mint")
            owner = entry.get("owner")
            amount = (entry.get("uiTokenAmount") or {}).get("amount")
            if not mint or not owner or amount is None:
                continue
            deltas[mint][owner] += sign * int(amount)
            decimals[mint] = int((entry.get("uiTokenAmount") or {}).get("decimals", 0))

    transfers: list[TokenTransfer] = []
    for mint in sorted(deltas):
        changes = deltas[mint]
        senders = sorted((d, o) for o, d in changes.items() if d < 0)
        receivers = sorted(((d, o) for o, d in changes.items() if d > 0), reverse=True)
        if not senders and not receivers:
            continue
        amount = receivers[0][0] if receivers else -senders[0][0]
        known = token_info(chain, mint)
        transfers.append(TokenTransfer(
            token=mint,
            symbol=known[0] if known else "",
            from_address=senders[0][1] if senders else "unknown",
            to_address=receivers[0][1] if receivers else "unknown",
            value_raw=str(amount),
            decimals=decimals.get(mint),
            value_decimal=amount / 10 ** decimals[mint] if mint in decimals else None,
        ))
    return transfers


def _hex(value) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


def _topic_to_address(topic) -> str:
    """Convert a 32-byte padded topic to a 20-byte hex address."""
    hex_str = _hex(topic)
    if hex_str.startswith("0x"):
        hex_str = hex_str[2:]
    return "0x" + hex_str[-40:].lower()
