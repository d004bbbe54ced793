import pytest

from builders import EVM_A, EVM_B, sol_address, sol_case_variant, sol_off_curve
from chainsentry.chain.address import (
    addresses_equal,
    detect_chains,
    normalize_address,
    try_normalize,
    validate_address,
    validate_and_normalize,
    validate_addresses,
)
from chainsentry.chain.registry import evm_chains
from chainsentry.errors import InvalidAddress


class TestEvmAddresses:
    def test_lowercase_normalizes_to_checksum(self):
        result = validate_address(EVM_A.lower(), "ethereum")
        assert result.is_valid
        assert result.normalized == EVM_A
        assert result.format == "hex"

    def test_checksummed_input_is_reported_as_such(self):
        result = validate_address(EVM_B, "polygon")
        assert result.is_valid
        assert result.format == "hex-checksummed"

    def test_all_uppercase_body_is_accepted(self):
        upper = "0x" + EVM_A[2:].upper()
        assert normalize_address(upper, "bsc") == EVM_A

    def test_bad_mixed_case_checksum_rejected(self):
        broken = "0x5AAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
        result = validate_address(broken, "ethereum")
        assert not result.is_valid
        assert result.error == "checksum mismatch"

    @pytest.mark.parametrize("address", [
        "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeA",  # too short
        "5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",  # no prefix
        "0xZZAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",  # not hex
        "",
    ])
    def test_malformed_rejected(self, address):
        assert not validate_address(address, "arbitrum").is_valid

    def test_normalize_is_idempotent(self):
        once = normalize_address(EVM_B.lower(), "base")
        assert normalize_address(once, "base") == once

    def test_normalize_raises_invalid_address(self):
        with pytest.raises(InvalidAddress) as exc:
            normalize_address("0x1234", "ethereum")
        assert exc.value.chain == "ethereum"
        assert exc.value.kind == "InvalidAddress"


class TestSolanaAddresses:
    def test_on_curve_key_valid(self):
        address = sol_address(1)
        result = validate_address(address, "solana")
        assert result.is_valid
        assert result.normalized == address
        assert result.format == "base58"

    def test_off_curve_key_rejected(self):
        result = validate_address(sol_off_curve(), "solana")
        assert not result.is_valid
        assert "curve" in result.error

    @pytest.mark.parametrize("address", ["not-base58-0OIl", "abc", EVM_A])
    def test_malformed_rejected(self, address):
        assert not validate_address(address, "solana").is_valid


def test_unsupported_chain_is_invalid_not_an_exception():
    result = validate_address(EVM_A, "dogecoin")
    assert not result.is_valid
    assert "unsupported chain" in result.error


class TestHelpers:
    def test_addresses_equal_ignores_case(self):
        assert addresses_equal(EVM_A, EVM_A.lower(), "ethereum")
        assert not addresses_equal(EVM_A, EVM_B, "ethereum")

    def test_solana_keys_are_case_sensitive(self):
        key = sol_address(3)
        variant = sol_case_variant(key)
        assert variant != key
        assert addresses_equal(key, key, "solana")
        assert not addresses_equal(key, variant, "solana")

    def test_addresses_equal_never_raises_on_garbage(self):
        assert addresses_equal("garbage", "GARBAGE", "ethereum")
        assert not addresses_equal("garbage", EVM_A, "solana")
        assert not addresses_equal(None, EVM_A, "ethereum")

    def test_try_normalize_passes_through_invalid(self):
        assert try_normalize("unknown", "ethereum") == "unknown"
        assert try_normalize(None, "ethereum") is None
        assert try_normalize(EVM_A.lower(), "ethereum") == EVM_A

    def test_detect_chains(self):
        assert detect_chains(EVM_A) == evm_chains()
        assert detect_chains(sol_address(2)) == ["solana"]
        assert detect_chains("nonsense") == []

    def test_batch_validation_keeps_order(self):
        results = validate_addresses([(EVM_A, "ethereum"), ("bad", "solana"), (sol_address(3), "solana")])
        assert [r.is_valid for r in results] == [True, False, True]

    def test_validate_and_normalize_detail(self):
        detail = validate_and_normalize(EVM_A.lower(), "ethereum")
        assert detail["normalized_address"] == EVM_A
        assert detail["format"]["length"] == 42
        assert detail["format"]["encoding"].startswith("hexadecimal")

        invalid = validate_and_normalize("bad", "solana")
        assert invalid["normalized_address"] == "bad"
        assert not invalid["validation"].is_valid
