"""
BTC exchange rates from CoinGecko.
"""

from __future__ import annotations

import requests

COINGECKO_API_URL = "https://api.coingecko.com"


class RatesClientError(RuntimeError):
    pass


class CoinGeckoRatesClient:
    def __init__(self, base_url: str = COINGECKO_API_URL, timeout: float = 5) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def exchange_rates(self) -> dict[str, float]:
        """
        Fetch the price of one BTC in every currency CoinGecko quotes.

        Returns a mapping of lower-case currency code to rate, e.g.
        {"usd": 67012.0, "eur": 61890.5}. Raises on HTTP or payload errors.
        """
        resp = requests.get(f"{self._base_url}/api/v3/exchange_rates", timeout=self._timeout)
        resp.raise_for_status()
        data = resp.json()
        rates = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(rates, dict):
            raise RatesClientError(f"Unexpected exchange_rates payload: {data!r}")

        out: dict[str, float] = {}
        for code, entry in rates.items():
            if not isinstance(entry, dict):
                continue
            try:
                out[str(code).lower()] = float(entry.get("value"))
            except (TypeError, ValueError):
                continue
        return out
