"""Tests for the admin CLI."""

import json

import pytest

from signal_trader import cli


def test_parse_prints_signal_and_route(capsys):
    cli.parse("LONG BTC 45000 SL:44000 TP:47000")

    out = json.loads(capsys.readouterr().out)
    assert out["parsed"]["symbol"] == "BTC"
    assert out["parsed"]["confidence"] == 1.0
    assert out["route"] == {"exchange": "binance", "market": "futures", "symbol": "BTCUSDT", "confidence": 0.95}


def test_parse_rejects_noise(capsys):
    with pytest.raises(SystemExit):
        cli.parse("nothing to see here")
    assert "No signal recognized" in capsys.readouterr().out


def test_usage_without_arguments(monkeypatch):
    monkeypatch.setattr("sys.argv", ["signal_trader.cli"])
    with pytest.raises(SystemExit):
        cli.main()
