"""
Shared test fixtures for the market-data API.

Provides:
- A controllable clock for deterministic cache tests
- A fake upstream HTTP server (CoinGecko + Binance paths)
- Temporary config files
"""

import pytest
from pytest_httpserver import HTTPServer


class FakeClock:
    """Controllable clock for deterministic cache tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def fake_upstream():
    """
    A real HTTP server that impersonates CoinGecko and Binance.

    Tests register the responses they need with expect_request().
    """
    server = HTTPServer(host="127.0.0.1")
    server.start()
    yield server
    server.clear()
    if server.is_running():
        server.stop()


@pytest.fixture()
def config_file(tmp_path):
    """Write a minimal config.yaml and return its path."""
    content = """\
coingecko_base_url: "http://127.0.0.1:1/coingecko"
binance_base_url: "http://127.0.0.1:1/binance"

cache:
  default_ttl: 30
  stale_ttl: 1800

ttls:
  crypto_list: 90
"""
    p = tmp_path / "config.yaml"
    p.write_text(content)
    return str(p)
