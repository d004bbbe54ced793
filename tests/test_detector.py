import pytest

from builders import EVM_A, EVM_B, NOW, bridge, evm_raw, sol_address, sol_raw, tx_hash
from chainsentry.bridges.detector import BridgeDetector, classify_raw, score_bridge_transfer
from chainsentry.bridges.protocols import (
    BRIDGE_PROTOCOLS,
    contracts_on,
    is_common_route,
    programs_on_solana,
)
from chainsentry.chain.registry import CHAINS, supported_chains
from chainsentry.ingest.parsers import parse_transaction
from chainsentry.models.schema import BridgeStatus

STARGATE_ETH = BRIDGE_PROTOCOLS["stargate"].contracts["ethereum"]
WORMHOLE_ETH = BRIDGE_PROTOCOLS["wormhole"].contracts["ethereum"]
PORTAL_ETH = BRIDGE_PROTOCOLS["portal"].contracts["ethereum"]
WORMHOLE_CORE = "worm2ZoG2kUd4vFXhvjh93UUH596ayRfgQ2MgjNMTth"
PORTAL_TOKEN_BRIDGE = "wormDTUJ6AWPNvk59vGQbDvGJmqbDTdgWgAqcLBCgUb"


def _log(address: str) -> dict:
    return {"address": address, "topics": ["0x" + "1" * 64], "data": "0x"}


class TestProtocolTable:
    @pytest.mark.parametrize("chain", supported_chains())
    def test_no_address_claimed_twice(self, chain):
        contracts_on(chain)

    def test_solana_programs_unique(self):
        programs = programs_on_solana()
        assert programs[WORMHOLE_CORE] == "wormhole"
        assert programs[PORTAL_TOKEN_BRIDGE] == "portal"

    def test_common_routes_are_directional(self):
        assert is_common_route("ethereum", "polygon")
        assert not is_common_route("polygon", "ethereum")
        assert not is_common_route("ethereum", None)


class TestClassifyAccountModel:
    def test_direct_recipient(self):
        result = classify_raw(evm_raw(1, EVM_A, STARGATE_ETH.lower()), CHAINS["ethereum"])
        assert result.is_bridge
        assert result.protocol == "stargate"
        assert result.source_chain == "ethereum"
        assert result.destination_chain is None

    def test_emitted_log(self):
        raw = evm_raw(2, EVM_A, EVM_B, logs=[_log(WORMHOLE_ETH)])
        result = classify_raw(raw, CHAINS["ethereum"])
        assert result.protocol == "wormhole"

    def test_logs_from_two_protocols_are_ambiguous(self):
        raw = evm_raw(3, EVM_A, EVM_B, logs=[_log(WORMHOLE_ETH), _log(PORTAL_ETH)])
        result = classify_raw(raw, CHAINS["ethereum"])
        assert not result.is_bridge
        assert result.protocol is None

    def test_direct_recipient_wins_over_logs(self):
        raw = evm_raw(4, EVM_A, STARGATE_ETH, logs=[_log(WORMHOLE_ETH), _log(PORTAL_ETH)])
        assert classify_raw(raw, CHAINS["ethereum"]).protocol == "stargate"

    def test_contract_on_another_chain_does_not_match(self):
        # Stargate has no base deployment in the table
        assert not classify_raw(evm_raw(5, EVM_A, STARGATE_ETH), CHAINS["base"]).is_bridge

    def test_plain_transfer(self):
        assert not classify_raw(evm_raw(6, EVM_A, EVM_B), CHAINS["ethereum"]).is_bridge

    def test_odd_shapes_do_not_raise(self):
        assert not classify_raw({}, CHAINS["ethereum"]).is_bridge
        assert not classify_raw(None, CHAINS["ethereum"]).is_bridge


class TestClassifyInstructionModel:
    def test_top_level_program(self):
        raw = sol_raw("s1", [sol_address(1)], [1], [1], programs=[WORMHOLE_CORE])
        assert classify_raw(raw, CHAINS["solana"]).protocol == "wormhole"

    def test_inner_instruction_program(self):
        raw = sol_raw("s2", [sol_address(1)], [1], [1], programs=["11111111111111111111111111111111"],
                      inner_programs=[PORTAL_TOKEN_BRIDGE])
        assert classify_raw(raw, CHAINS["solana"]).protocol == "portal"

    def test_top_level_match_wins_over_inner(self):
        raw = sol_raw("s3", [sol_address(1)], [1], [1], programs=[WORMHOLE_CORE],
                      inner_programs=[PORTAL_TOKEN_BRIDGE])
        assert classify_raw(raw, CHAINS["solana"]).protocol == "wormhole"

    def test_two_top_level_protocols_are_ambiguous(self):
        raw = sol_raw("s4", [sol_address(1)], [1], [1], programs=[WORMHOLE_CORE, PORTAL_TOKEN_BRIDGE])
        assert not classify_raw(raw, CHAINS["solana"]).is_bridge


class TestScoreBridgeTransfer:
    def test_unknown_destination(self):
        score, factors = score_bridge_transfer(bridge(1, "ethereum", None, NOW, EVM_A, amount=1))
        assert score == 10 + 5
        assert "Destination chain not yet known" in factors

    def test_large_amount_on_common_route(self):
        score, _ = score_bridge_transfer(bridge(2, "ethereum", "polygon", NOW, EVM_A, amount=150_000))
        assert score == 10 + 30

    def test_medium_amount_on_uncommon_route(self):
        score, factors = score_bridge_transfer(bridge(3, "polygon", "bsc", NOW, EVM_A, amount=20_000))
        assert score == 10 + 20 + 15
        assert any("Uncommon route" in f for f in factors)

    def test_unknown_protocol(self):
        transfer = bridge(4, "ethereum", "bsc", NOW, EVM_A, protocol="mystery")
        score, factors = score_bridge_transfer(transfer)
        assert score == 10 + 25
        assert any("mystery" in f for f in factors)


class TestBridgeDetector:
    async def test_classify_fetches_through_pool(self, make_pool):
        raw = evm_raw(1, EVM_A, STARGATE_ETH)
        pool = make_pool({"ethereum": {"transactions": {tx_hash(1): raw}}})
        detector = BridgeDetector(pool)
        result = await detector.classify(tx_hash(1), "ethereum")
        assert result.is_bridge
        assert result.protocol == "stargate"

    async def test_unknown_transaction_is_not_a_bridge(self, make_pool):
        detector = BridgeDetector(make_pool())
        result = await detector.classify(tx_hash(99), "ethereum")
        assert not result.is_bridge
        assert result.source_chain == "ethereum"

    def test_build_transfer_native_amount(self, make_pool):
        detector = BridgeDetector(make_pool())
        raw = evm_raw(1, EVM_A, STARGATE_ETH, value_wei=3 * 10**18, timestamp=NOW)
        tx = parse_transaction(raw, CHAINS["ethereum"], tracked_address=EVM_A)
        transfer = detector.build_transfer(tx, detector.classify_raw(raw, "ethereum"), EVM_A)
        assert transfer.protocol == "stargate"
        assert transfer.amount == pytest.approx(3.0)
        assert transfer.token_symbol == "ETH"
        assert transfer.status == BridgeStatus.INITIATED
        assert transfer.initiated_at == NOW
        assert transfer.user_address == EVM_A
        assert transfer.risk_score == 15

    def test_build_transfer_from_failed_source(self, make_pool):
        detector = BridgeDetector(make_pool())
        raw = evm_raw(2, EVM_A, STARGATE_ETH, status=0)
        tx = parse_transaction(raw, CHAINS["ethereum"])
        transfer = detector.build_transfer(tx, detector.classify_raw(raw, "ethereum"), EVM_A)
        assert transfer.status == BridgeStatus.FAILED
