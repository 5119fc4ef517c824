"""
Esplora chain client: fee estimates, address UTXOs and explorer links.

Defaults point at mempool.space (and mutinynet for signet); every base URL can
be overridden per network.
"""

from __future__ import annotations

import os
from typing import Any

import requests

ESPLORA_URLS: dict[str, str] = {
    "bitcoin": "https://mempool.space/api",
    "testnet": "https://mempool.space/testnet/api",
    "testnet4": "https://mempool.space/testnet4/api",
    "signet": "https://mutinynet.com/api",
    "regtest": "http://localhost:8094/regtest/api",
}

EXPLORER_URLS: dict[str, str] = {
    "bitcoin": "https://mempool.space",
    "testnet": "https://mempool.space/testnet",
    "testnet4": "https://mempool.space/testnet4",
    "signet": "https://mutinynet.com",
    "regtest": "http://localhost:8094/regtest",
}

# Minutes between blocks, for "transaction speed" estimates.
BLOCK_TIME_MINUTES: dict[str, float] = {
    "bitcoin": 10,
    "testnet": 10,
    "testnet4": 10,
    "signet": 0.5,
    "regtest": 0.5,
}


class ChainClientError(RuntimeError):
    pass


class EsploraChainClient:
    def __init__(
        self,
        urls: dict[str, str] | None = None,
        explorer_urls: dict[str, str] | None = None,
        timeout: float = 5,
    ) -> None:
        self._urls = {**ESPLORA_URLS, **(urls or {})}
        self._explorer_urls = {**EXPLORER_URLS, **(explorer_urls or {})}
        self._timeout = timeout

    @classmethod
    def from_env(cls) -> EsploraChainClient:
        """
        Build a client honouring ESPLORA_URL_<NETWORK> and EXPLORER_URL_<NETWORK>
        overrides (e.g. ESPLORA_URL_SIGNET).
        """
        urls = {}
        explorers = {}
        for network in ESPLORA_URLS:
            url = os.getenv(f"ESPLORA_URL_{network.upper()}", "").strip()
            if url:
                urls[network] = url.rstrip("/")
            explorer = os.getenv(f"EXPLORER_URL_{network.upper()}", "").strip()
            if explorer:
                explorers[network] = explorer.rstrip("/")
        return cls(urls=urls, explorer_urls=explorers)

    def _base_url(self, network: str) -> str:
        try:
            return self._urls[network]
        except KeyError:
            raise ChainClientError(f"No Esplora endpoint configured for {network!r}.") from None

    def _get(self, network: str, path: str) -> Any:
        url = f"{self._base_url(network)}{path}"
        resp = requests.get(url, timeout=self._timeout)
        resp.raise_for_status()
        return resp.json()

    def fee_estimates(self, network: str) -> dict[int, float]:
        """
        Return fee estimates keyed by confirmation target (blocks), in sat/vB.
        """
        data = self._get(network, "/fee-estimates")
        if not isinstance(data, dict):
            raise ChainClientError(f"Unexpected fee-estimates payload: {data!r}")
        estimates: dict[int, float] = {}
        for target, rate in data.items():
            try:
                estimates[int(target)] = float(rate)
            except (TypeError, ValueError):
                continue
        return estimates

    def fetch_utxos(self, address: str, network: str) -> list[dict[str, Any]]:
        data = self._get(network, f"/address/{address}/utxo")
        if isinstance(data, list):
            return data
        raise ChainClientError(f"Unexpected UTXO payload for {address}: {data!r}")

    def explorer_url(self, network: str) -> str:
        return self._explorer_urls.get(network, "")
