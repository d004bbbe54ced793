from builders import EVM_A, NOW, bridge, canonical
from chainsentry.scoring.config import DAY, HOUR
from chainsentry.scoring.patterns import (
    burst_windows,
    has_rapid_bridging,
    rapid_cross_chain_pairs,
    round_trips,
    sort_transactions,
    synchronized_transactions,
)

MINUTE = 60


def _tx(chain: str, n: int, ts: int):
    return canonical(chain, n, ts, [EVM_A])


class TestRoundTrips:
    def test_return_leg_within_window(self):
        out = bridge(1, "ethereum", "polygon", NOW, EVM_A)
        back = bridge(2, "polygon", "ethereum", NOW + 3 * HOUR, EVM_A)
        assert round_trips([back, out], DAY) == [(out, back)]

    def test_return_leg_too_late(self):
        out = bridge(1, "ethereum", "polygon", NOW, EVM_A)
        back = bridge(2, "polygon", "ethereum", NOW + 30 * HOUR, EVM_A)
        assert round_trips([out, back], DAY) == []

    def test_window_is_exclusive(self):
        out = bridge(1, "ethereum", "polygon", NOW, EVM_A)
        back = bridge(2, "polygon", "ethereum", NOW + DAY, EVM_A)
        assert round_trips([out, back], DAY) == []

    def test_unknown_destination_never_pairs(self):
        out = bridge(1, "ethereum", None, NOW, EVM_A)
        back = bridge(2, "polygon", "ethereum", NOW + HOUR, EVM_A)
        assert round_trips([out, back], DAY) == []

    def test_same_direction_is_not_a_round_trip(self):
        a = bridge(1, "ethereum", "polygon", NOW, EVM_A)
        b = bridge(2, "ethereum", "polygon", NOW + HOUR, EVM_A)
        assert round_trips([a, b], DAY) == []


class TestRapidBridging:
    def test_three_within_the_hour(self):
        transfers = [bridge(i, "ethereum", None, NOW + i * 20 * MINUTE, EVM_A) for i in range(3)]
        transfers.append(bridge(9, "ethereum", None, NOW + 25 * HOUR, EVM_A))
        assert has_rapid_bridging(transfers, HOUR, 3)

    def test_spread_out(self):
        transfers = [
            bridge(1, "ethereum", None, NOW, EVM_A),
            bridge(2, "ethereum", None, NOW + 40 * MINUTE, EVM_A),
            bridge(3, "ethereum", None, NOW + 25 * HOUR, EVM_A),
        ]
        assert not has_rapid_bridging(transfers, HOUR, 3)

    def test_too_few(self):
        assert not has_rapid_bridging([bridge(1, "ethereum", None, NOW, EVM_A)], HOUR, 3)


class TestTimingPatterns:
    def test_rapid_cross_chain_pairs(self):
        txs = sort_transactions([
            _tx("ethereum", 1, NOW),
            _tx("polygon", 2, NOW + 2 * MINUTE),
            _tx("polygon", 3, NOW + 3 * MINUTE),  # same chain, not counted
            _tx("bsc", 4, NOW + 20 * MINUTE),  # too far apart
            _tx("base", 5, NOW + 24 * MINUTE),
        ])
        assert rapid_cross_chain_pairs(txs, 5 * MINUTE) == 2

    def test_synchronized_needs_two_other_chains(self):
        txs = sort_transactions([
            _tx("ethereum", 1, NOW),
            _tx("polygon", 2, NOW + MINUTE),
            _tx("bsc", 3, NOW + 2 * MINUTE),
            _tx("ethereum", 4, NOW + 5 * HOUR),
            _tx("polygon", 5, NOW + 5 * HOUR + MINUTE),
        ])
        assert synchronized_transactions(txs, 10 * MINUTE, 2) == 3

    def test_synchronized_window_is_inclusive(self):
        txs = sort_transactions([
            _tx("ethereum", 1, NOW),
            _tx("polygon", 2, NOW + 10 * MINUTE),
            _tx("bsc", 3, NOW + 10 * MINUTE),
        ])
        assert synchronized_transactions(txs, 10 * MINUTE, 2) == 3

    def test_burst_windows_do_not_overlap(self):
        first = [_tx("ethereum", i, NOW + i * MINUTE) for i in range(20)]
        second = [_tx("ethereum", 100 + i, NOW + 200 * MINUTE + i * MINUTE) for i in range(20)]
        assert burst_windows(sort_transactions(first + second), HOUR, 10) == 2

    def test_no_burst_when_sparse(self):
        txs = [_tx("ethereum", i, NOW + i * 10 * MINUTE) for i in range(12)]
        assert burst_windows(txs, HOUR, 10) == 0

    def test_sort_is_stable_on_ties(self):
        a = _tx("polygon", 2, NOW)
        b = _tx("ethereum", 1, NOW)
        assert sort_transactions([a, b]) == [b, a]
