# services/market/symbol_map.py
"""
Static symbol tables for the price sync.

Crypto assets are priced by CoinGecko id. Forex pairs need no provider id:
the rate API keys rates by ISO code, so each pair is described by its legs
and by how it is quoted against the USD bridge.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from models.tradeable_asset import ASSET_TYPE_CRYPTO, ASSET_TYPE_FOREX

BRIDGE_CURRENCY = "USD"

# Internal base symbol -> CoinGecko coin id
CRYPTO_ID_MAP: Dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT": "tether",
    "BNB": "binancecoin",
    "XRP": "ripple",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "SOL": "solana",
    "DOT": "polkadot",
    "MATIC": "matic-network",
    "LTC": "litecoin",
    "AVAX": "avalanche-2",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "ATOM": "cosmos",
    "TRX": "tron",
    "TON": "the-open-network",
    "SHIB": "shiba-inu",
}

PAIR_DIRECT = "direct"          # USD/X  -> R[X]
PAIR_RECIPROCAL = "reciprocal"  # X/USD  -> 1 / R[X]
PAIR_CROSS = "cross"            # A/B    -> R[B] / R[A]


@dataclass(frozen=True)
class ForexPairRule:
    kind: str
    base: str
    quote: str


FOREX_PAIRS: Dict[str, ForexPairRule] = {
    # quoted as "foreign per 1 USD"
    "USD/JPY": ForexPairRule(PAIR_DIRECT, "USD", "JPY"),
    "USD/CHF": ForexPairRule(PAIR_DIRECT, "USD", "CHF"),
    "USD/CAD": ForexPairRule(PAIR_DIRECT, "USD", "CAD"),
    "USD/SGD": ForexPairRule(PAIR_DIRECT, "USD", "SGD"),
    "USD/ZAR": ForexPairRule(PAIR_DIRECT, "USD", "ZAR"),
    # quoted as "USD per 1 foreign"
    "EUR/USD": ForexPairRule(PAIR_RECIPROCAL, "EUR", "USD"),
    "GBP/USD": ForexPairRule(PAIR_RECIPROCAL, "GBP", "USD"),
    "AUD/USD": ForexPairRule(PAIR_RECIPROCAL, "AUD", "USD"),
    "NZD/USD": ForexPairRule(PAIR_RECIPROCAL, "NZD", "USD"),
    # crosses through the USD bridge
    "EUR/GBP": ForexPairRule(PAIR_CROSS, "EUR", "GBP"),
    "EUR/JPY": ForexPairRule(PAIR_CROSS, "EUR", "JPY"),
    "GBP/JPY": ForexPairRule(PAIR_CROSS, "GBP", "JPY"),
    "EUR/CHF": ForexPairRule(PAIR_CROSS, "EUR", "CHF"),
    "AUD/JPY": ForexPairRule(PAIR_CROSS, "AUD", "JPY"),
    "GBP/CHF": ForexPairRule(PAIR_CROSS, "GBP", "CHF"),
    "EUR/AUD": ForexPairRule(PAIR_CROSS, "EUR", "AUD"),
    "NZD/JPY": ForexPairRule(PAIR_CROSS, "NZD", "JPY"),
    "GBP/AUD": ForexPairRule(PAIR_CROSS, "GBP", "AUD"),
    "EUR/CAD": ForexPairRule(PAIR_CROSS, "EUR", "CAD"),
}

# Approximate levels used when a price has never been fetched.
FOREX_BASELINE_PRICES: Dict[str, float] = {
    "EUR/USD": 1.0850,
    "GBP/USD": 1.2650,
    "USD/JPY": 148.50,
    "USD/CHF": 0.8750,
    "AUD/USD": 0.6550,
    "USD/CAD": 1.3450,
    "NZD/USD": 0.6150,
    "EUR/GBP": 0.8580,
    "EUR/JPY": 161.10,
    "GBP/JPY": 187.80,
    "EUR/CHF": 0.9495,
    "AUD/JPY": 97.25,
    "GBP/CHF": 1.1070,
    "EUR/AUD": 1.6565,
    "NZD/JPY": 91.35,
    "GBP/AUD": 1.9310,
    "EUR/CAD": 1.4710,
    "USD/SGD": 1.3450,
    "USD/ZAR": 18.50,
}

CRYPTO_BASELINE_PRICES: Dict[str, float] = {
    "BTC": 94500,
    "ETH": 3450,
    "USDT": 1.0,
    "BNB": 680,
    "SOL": 195,
    "XRP": 2.35,
    "ADA": 1.05,
    "DOGE": 0.38,
    "AVAX": 42,
    "DOT": 8.2,
    "LINK": 24,
    "UNI": 13.5,
    "ATOM": 6.8,
    "TRX": 0.26,
    "LTC": 115,
    "MATIC": 0.58,
    "TON": 6.2,
    "SHIB": 0.000024,
}


def base_symbol(symbol: str) -> str:
    """"BTC/USDT" -> "BTC"; a bare "BTC" is returned as is."""
    return (symbol or "").split("/", 1)[0].strip().upper()


def split_pair(symbol: str) -> Optional[Tuple[str, str]]:
    parts = [p.strip().upper() for p in (symbol or "").split("/")]
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


def normalize_pair(symbol: str) -> str:
    legs = split_pair(symbol)
    return f"{legs[0]}/{legs[1]}" if legs else (symbol or "").strip().upper()


def crypto_provider_id(symbol: str) -> Optional[str]:
    return CRYPTO_ID_MAP.get(base_symbol(symbol))


def forex_pair_rule(symbol: str) -> Optional[ForexPairRule]:
    return FOREX_PAIRS.get(normalize_pair(symbol))


def price_key(symbol: str, asset_type: str) -> str:
    """Key an asset's price is stored under in a snapshot or cache."""
    if asset_type == ASSET_TYPE_CRYPTO:
        return base_symbol(symbol)
    return normalize_pair(symbol)


def baseline_price(symbol: str, asset_type: str) -> Optional[float]:
    if asset_type == ASSET_TYPE_CRYPTO:
        return CRYPTO_BASELINE_PRICES.get(base_symbol(symbol))
    if asset_type == ASSET_TYPE_FOREX:
        return FOREX_BASELINE_PRICES.get(normalize_pair(symbol))
    return None
