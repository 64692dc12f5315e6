"""
tests/unit/test_networks.py - Network registry and address detection.
"""

import pytest

from crosschain_transfer.networks import (
    detect_network,
    explorer_link,
    network_from_text,
    supported_assets,
    to_base_units,
    validate_address,
)
from tests.conftest import EVM_ADDRESS, SOLANA_ADDRESS


class TestDetection:

    def test_evm_defaults_to_ethereum(self):
        detection = detect_network(EVM_ADDRESS)
        assert detection.network == "ethereum"
        assert detection.family == "evm"
        assert detection.confidence == "medium"

    def test_evm_uses_context_hint(self):
        detection = detect_network(EVM_ADDRESS, "send it to my Base wallet")
        assert detection.network == "base"
        assert detection.confidence == "high"

    def test_non_evm_hint_is_ignored_for_evm_address(self):
        assert detect_network(EVM_ADDRESS, "solana").network == "ethereum"

    @pytest.mark.parametrize("address,network", [
        (SOLANA_ADDRESS, "solana"),
        ("TN3W4H6rK2ce4vX9YnFQHwKENnHjoxb3m9", "tron"),
        ("alice.near", "near"),
    ])
    def test_other_families(self, address, network):
        assert detect_network(address).network == network

    @pytest.mark.parametrize("address", [
        "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq",
        "cosmos1hsk6jryyqjfhp5dhc55tc9jtckygx0eph6dd02",
    ])
    def test_unsupported_families(self, address):
        detection = detect_network(address)
        assert detection.known
        assert detection.unsupported

    def test_unknown(self):
        detection = detect_network("hello world")
        assert not detection.known
        assert detection.family is None


class TestValidation:

    def test_valid_address(self):
        assert validate_address(EVM_ADDRESS, "polygon") == (True, None)

    def test_wrong_family(self):
        ok, reason = validate_address(SOLANA_ADDRESS, "base")
        assert not ok
        assert "Invalid EVM address" in reason

    def test_unknown_network(self):
        ok, reason = validate_address(EVM_ADDRESS, "fantom")
        assert not ok
        assert "not currently supported" in reason

    def test_empty(self):
        assert validate_address("", "base") == (False, "Address is empty")


class TestHelpers:

    def test_network_from_text_aliases(self):
        assert network_from_text("bridge over to matic") == "polygon"
        assert network_from_text("BSC please") == "bnb"
        assert network_from_text("nothing here") is None

    def test_supported_assets(self):
        assert supported_assets("tron") == ["USDT"]
        assert "USDm" in supported_assets("celo")
        assert supported_assets("atlantis") == []

    def test_base_units(self):
        assert to_base_units(1.5, "USDC") == 1_500_000
        assert to_base_units(2, "USDm") == 2 * 10 ** 18

    def test_explorer_link(self):
        assert explorer_link("base", "0xabc") == "https://basescan.org/tx/0xabc"
        assert explorer_link("atlantis", "0xabc").startswith("https://blockscan.com/tx/")
