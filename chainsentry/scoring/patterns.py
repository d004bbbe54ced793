"""Pure detectors for laundering-style timing patterns.

Transaction detectors expect input sorted with transaction_sort_key; bridge
detectors sort their own input. Times are unix seconds.
"""

from __future__ import annotations

from chainsentry.models.schema import BridgeTransfer, CanonicalTransaction


def transaction_sort_key(tx: CanonicalTransaction) -> tuple[int, str, str]:
    return (tx.timestamp, tx.chain, tx.hash)


def bridge_sort_key(t: BridgeTransfer) -> tuple[int, str, str]:
    return (t.initiated_at, t.source_chain, t.source_tx_hash)


def sort_transactions(txs: list[CanonicalTransaction]) -> list[CanonicalTransaction]:
    return sorted(txs, key=transaction_sort_key)


def round_trips(transfers: list[BridgeTransfer], window: int) -> list[tuple[BridgeTransfer, BridgeTransfer]]:
    """Pairs where B goes back along A's route, strictly less than `window` apart.

    Transfers with an unknown destination never form a round trip.
    """
    ordered = sorted(transfers, key=bridge_sort_key)
    pairs = []
    for i, a in enumerate(ordered):
        if a.destination_chain is None:
            continue
        for b in ordered[i + 1:]:
            if b.initiated_at - a.initiated_at >= window:
                break
            if b.destination_chain is None:
                continue
            if a.source_chain == b.destination_chain and a.destination_chain == b.source_chain:
                pairs.append((a, b))
    return pairs


def has_rapid_bridging(transfers: list[BridgeTransfer], window: int, count: int = 3) -> bool:
    """True if any `count` consecutive transfers span strictly less than `window`."""
    if count < 1 or len(transfers) < count:
        return False
    times = sorted(t.initiated_at for t in transfers)
    return any(times[i + count - 1] - times[i] < window for i in range(len(times) - count + 1))


def rapid_cross_chain_pairs(txs: list[CanonicalTransaction], window: int) -> int:
    """Adjacent transactions on different chains, strictly less than `window` apart."""
    count = 0
    for a, b in zip(txs, txs[1:]):
        if a.chain != b.chain and b.timestamp - a.timestamp < window:
            count += 1
    return count


def synchronized_transactions(txs: list[CanonicalTransaction], window: int, min_chains: int = 2) -> int:
    """Transactions with activity on at least `min_chains` other chains within +/- `window`."""
    count = 0
    start = 0
    n = len(txs)
    for i, tx in enumerate(txs):
        while txs[start].timestamp < tx.timestamp - window:
            start += 1
        others: set[str] = set()
        j = start
        while j < n and txs[j].timestamp <= tx.timestamp + window:
            if j != i and txs[j].chain != tx.chain:
                others.add(txs[j].chain)
            j += 1
        if len(others) >= min_chains:
            count += 1
    return count


def burst_windows(txs: list[CanonicalTransaction], window: int, size: int) -> int:
    """Non-overlapping windows of at most `window` seconds holding at least `size` transactions."""
    bursts = 0
    i = 0
    n = len(txs)
    while i < n:
        base = txs[i].timestamp
        j = i
        while j < n and txs[j].timestamp - base <= window:
            j += 1
        in_window = j - i
        if in_window >= size:
            bursts += 1
            i = j
        else:
            i += 1
    return bursts
