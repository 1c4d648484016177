"""Tests for app core API (add/remove transactions, positions, exchange import) and the CLI."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from pnl_tracker.app import (
    add_manual_balance,
    add_transaction,
    current_positions,
    import_exchange_transactions,
    main,
    open_repository,
    remove_manual_balance,
    remove_transaction,
)
from pnl_tracker.errors import ValidationError
from pnl_tracker.services.exchanges import ExchangeCredentials, ExchangeService
from pnl_tracker.services.pipeline import PortfolioRefresher


def test_add_transaction_persists(repository) -> None:
    tx = add_transaction(repository, " btc ", "BUY", 0.5, 45000.0, notes="first")
    stored = repository.load_ledger().all()
    assert stored == [tx]
    assert stored[0].symbol == "BTC"
    assert stored[0].side == "buy"


def test_add_invalid_transaction_saves_nothing(repository) -> None:
    add_transaction(repository, "BTC", "buy", 1.0, 100.0)
    with pytest.raises(ValidationError):
        add_transaction(repository, "BTC", "buy", 0.0, 100.0)
    with pytest.raises(ValidationError):
        add_transaction(repository, "BTC", "hold", 1.0, 100.0)
    assert len(repository.load_ledger()) == 1


def test_remove_transaction(repository) -> None:
    keep = add_transaction(repository, "ETH", "buy", 1.0, 2000.0)
    gone = add_transaction(repository, "BTC", "buy", 1.0, 100.0)
    remove_transaction(repository, gone.id)
    remove_transaction(repository, "no-such-id")
    assert repository.load_ledger().all() == [keep]


def test_current_positions_uses_cached_prices(repository) -> None:
    add_transaction(repository, "BTC", "buy", 1.0, 100.0)
    book = repository.load_price_book()
    book.update({"BTC": 150.0})
    repository.save_price_book(book)
    oracle = MagicMock()
    positions = current_positions(repository, oracle)
    oracle.get_prices.assert_not_called()
    assert positions["BTC"]["pnl"] == pytest.approx(50.0)


def test_current_positions_refreshes_stale_prices(repository) -> None:
    add_transaction(repository, "ETH", "buy", 2.0, 1000.0)
    oracle = MagicMock()
    oracle.get_prices.return_value = {"ETH": 1500.0}
    positions = current_positions(repository, oracle)
    assert positions["ETH"]["current_value"] == pytest.approx(3000.0)
    assert repository.load_price_book().get("ETH") == 1500.0


def test_import_exchange_transactions_skips_known_ids(repository) -> None:
    service = ExchangeService(repository, now=lambda: datetime(2024, 6, 1))
    service.connect("coinbase", ExchangeCredentials("k" * 16, "s" * 16, passphrase="p"))
    assert import_exchange_transactions(repository, service) == 3
    assert import_exchange_transactions(repository, service) == 0
    assert {t.source for t in repository.load_ledger()} == {"coinbase"}


def test_open_repository_uses_given_dir(tmp_path) -> None:
    repo = open_repository(str(tmp_path))
    repo.save_start_balance(10.0)
    assert open_repository(str(tmp_path)).load_start_balance() == 10.0


def test_cli_add_and_list(tmp_path, capsys) -> None:
    data_dir = str(tmp_path)
    assert main(["--data-dir", data_dir, "add", "btc", "buy", "0.5", "45000", "--fee", "2"]) == 0
    assert main(["--data-dir", data_dir, "transactions"]) == 0
    out = capsys.readouterr().out
    assert "Added buy of 0.5 BTC" in out
    assert "$45,000.00" in out
    assert open_repository(data_dir).load_ledger().all()[0].fee == 2.0


def test_cli_invalid_input_exit_code(tmp_path, capsys) -> None:
    assert main(["--data-dir", str(tmp_path), "add", "BTC", "buy", "0", "100"]) == 2
    assert "Amount must be a positive finite number" in capsys.readouterr().err
    assert main(["--data-dir", str(tmp_path), "connect", "base", "--api-key", "short"]) == 2
    assert main(["--data-dir", str(tmp_path), "add", "BTC", "buy", "1", "nan"]) == 2
    assert len(open_repository(str(tmp_path)).load_ledger()) == 0


def test_cli_settings_and_history(tmp_path, capsys) -> None:
    data_dir = str(tmp_path)
    assert main(["--data-dir", data_dir, "settings", "--daily-pnl", "on", "--price-threshold", "5"]) == 0
    settings = open_repository(data_dir).load_settings()
    assert settings.daily_pnl_enabled is True
    assert settings.price_change_threshold == 5.0
    assert settings.sync_notifications_enabled is False

    repo = open_repository(data_dir)
    tracker = repo.load_snapshots()
    tracker.sample(1200.0, "2024-01-02")
    repo.save_snapshots(tracker)
    capsys.readouterr()
    assert main(["--data-dir", data_dir, "history", "--limit", "5"]) == 0
    assert "2024-01-02" in capsys.readouterr().out


def test_manual_balance_add_and_remove(repository) -> None:
    kept = add_manual_balance(repository, "Kraken", "dot", 10.0, 6.5, notes="cold storage")
    gone = add_manual_balance(repository, "Binance", "ETH", 1.0)
    assert kept.id and kept.id != gone.id
    remove_manual_balance(repository, gone.id)
    remove_manual_balance(repository, "no-such-id")
    stored = repository.load_manual_balances()
    assert stored == [kept]
    assert (stored[0].source, stored[0].symbol, stored[0].notes) == ("Kraken", "DOT", "cold storage")


@pytest.mark.parametrize(
    "exchange,symbol,quantity,price",
    [
        ("", "BTC", 1.0, 0.0),
        ("Kraken", " ", 1.0, 0.0),
        ("Kraken", "BTC", 0.0, 0.0),
        ("Kraken", "BTC", float("nan"), 0.0),
        ("Kraken", "BTC", 1.0, -1.0),
        ("Kraken", "BTC", 1.0, float("inf")),
    ],
)
def test_manual_balance_rejects_invalid(repository, exchange, symbol, quantity, price) -> None:
    with pytest.raises(ValidationError):
        add_manual_balance(repository, exchange, symbol, quantity, price)
    assert repository.load_manual_balances() == []


def test_manual_balance_counts_in_refresh(repository) -> None:
    add_manual_balance(repository, "Kraken", "DOT", 10.0, 6.5)
    add_manual_balance(repository, "Kraken", "SOL", 2.0)
    oracle = MagicMock()
    oracle.get_prices.return_value = {"SOL": 150.0}
    result = PortfolioRefresher(repository, oracle=oracle, clock=lambda: datetime(2024, 6, 1, 12)).run_once()
    assert result.aggregation.holdings["DOT"]["by_source"]["Kraken"]["value"] == pytest.approx(65.0)
    assert result.aggregation.holdings["SOL"]["value"] == pytest.approx(300.0)


def test_cli_balance_commands(tmp_path, capsys) -> None:
    data_dir = str(tmp_path)
    assert main(["--data-dir", data_dir, "balance", "add", "Kraken", "dot", "10", "--price", "6.5",
                 "--notes", "staked"]) == 0
    balance_id = open_repository(data_dir).load_manual_balances()[0].id
    capsys.readouterr()
    assert main(["--data-dir", data_dir, "balance", "list"]) == 0
    out = capsys.readouterr().out
    assert balance_id in out and "Kraken" in out and "(staked)" in out
    assert main(["--data-dir", data_dir, "balance", "add", "Kraken", "DOT", "-1"]) == 2
    assert main(["--data-dir", data_dir, "balance", "remove", balance_id]) == 0
    assert open_repository(data_dir).load_manual_balances() == []
