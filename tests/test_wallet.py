"""Tests for the Alchemy wallet balance provider."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from pnl_tracker.errors import ConfigError, SourceFetchError
from pnl_tracker.services.wallet import AlchemyWalletProvider

ADDRESS = "0xabc"


def _rpc_responder(results):
    def fake_post(url, json, timeout):
        resp = MagicMock()
        resp.raise_for_status.return_value = None
        method = json["method"]
        key = method if method != "alchemy_getTokenMetadata" else (method, json["params"][0])
        resp.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": results[key]}
        return resp
    return fake_post


RESULTS = {
    "eth_getBalance": hex(2 * 10 ** 18),
    "alchemy_getTokenBalances": {
        "tokenBalances": [
            {"contractAddress": "0xusdc", "tokenBalance": hex(250 * 10 ** 6)},
            {"contractAddress": "0xzero", "tokenBalance": "0x0"},
            {"contractAddress": "0xdust", "tokenBalance": hex(1)},
        ]
    },
    ("alchemy_getTokenMetadata", "0xusdc"): {"symbol": "usdc", "decimals": 6},
    ("alchemy_getTokenMetadata", "0xdust"): {"symbol": "DUST", "decimals": 18},
}


@patch("pnl_tracker.services.wallet.requests.post")
def test_balances_native_and_tokens(mock_post) -> None:
    mock_post.side_effect = _rpc_responder(RESULTS)
    holdings = AlchemyWalletProvider(api_key="key").get_balances(ADDRESS)
    assert [(h.symbol, h.quantity) for h in holdings] == [("ETH", 2.0), ("USDC", 250.0)]
    assert all(h.source == "wallet" and h.price == 0.0 for h in holdings)
    assert "key" in mock_post.call_args_list[0].args[0]


@patch("pnl_tracker.services.wallet.requests.post")
def test_any_failure_is_single_error(mock_post) -> None:
    mock_post.side_effect = requests.Timeout("slow")
    with pytest.raises(SourceFetchError) as exc:
        AlchemyWalletProvider(api_key="key").get_balances(ADDRESS)
    assert exc.value.source == "wallet"


@patch("pnl_tracker.services.wallet.requests.post")
def test_rpc_error_payload(mock_post) -> None:
    resp = MagicMock()
    resp.raise_for_status.return_value = None
    resp.json.return_value = {"error": {"message": "invalid address"}}
    mock_post.return_value = resp
    with pytest.raises(SourceFetchError, match="invalid address"):
        AlchemyWalletProvider(api_key="key").get_balances(ADDRESS)


def test_missing_api_key(monkeypatch) -> None:
    monkeypatch.delenv("ALCHEMY_API_KEY", raising=False)
    with pytest.raises(ConfigError):
        AlchemyWalletProvider().get_balances(ADDRESS)


@patch("pnl_tracker.services.wallet.requests.post")
def test_token_without_contract_address_is_skipped(mock_post) -> None:
    results = {
        "eth_getBalance": hex(10 ** 18),
        "alchemy_getTokenBalances": {"tokenBalances": [{"tokenBalance": "0x10"}]},
    }
    mock_post.side_effect = _rpc_responder(results)
    holdings = AlchemyWalletProvider(api_key="key").get_balances(ADDRESS)
    assert [h.symbol for h in holdings] == ["ETH"]


@pytest.mark.parametrize("token_balances", [["0x10"], {"tokenBalances": "0x10"}, {"tokenBalances": [None]}])
@patch("pnl_tracker.services.wallet.requests.post")
def test_malformed_token_payload_is_single_error(mock_post, token_balances) -> None:
    results = {"eth_getBalance": hex(10 ** 18), "alchemy_getTokenBalances": token_balances}
    mock_post.side_effect = _rpc_responder(results)
    with pytest.raises(SourceFetchError) as exc:
        AlchemyWalletProvider(api_key="key").get_balances(ADDRESS)
    assert exc.value.source == "wallet"
