from __future__ import annotations

"""Concrete rate sources and factory.

Both upstreams quote USD against the rest of the world. Each source gets a
single attempt with a hard timeout; failover is the aggregator's job, so no
retries happen here.
"""
import logging
from typing import Dict, List, Optional
from urllib.parse import urlencode

from saraf.core.config import Settings
from saraf.core.errors import ProviderUnavailable
from saraf.models.constants import RateOrigin, SUPPORTED_CURRENCIES
from saraf.services.http_client import HttpError, get_json
from .base import RateSource

logger = logging.getLogger("saraf.rates.providers")


class ExchangeRateApiSource(RateSource):
    """exchangerate-api.com ``/v4/latest/{base}`` -> ``{"rates": {...}}``."""

    name = RateOrigin.PRIMARY.value
    provider = "exchangerate-api"

    def __init__(self, base_url: str, timeout: float = 8.0, anchor: str = "USD"):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self.anchor = anchor

    def fetch_quotes(self) -> Dict[str, float]:  # type: ignore[override]
        url = f"{self._base_url}/{self.anchor}"
        try:
            data = get_json(url, timeout=self._timeout, retries=0)
        except HttpError as e:
            raise ProviderUnavailable(self.provider, str(e)) from e
        rates = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(rates, dict):
            raise ProviderUnavailable(self.provider, "invalid response format")
        return self._filter_quotes(rates)


class CurrencyLayerSource(RateSource):
    """apilayer ``/api/live`` -> ``{"success": true, "quotes": {"USDAFN": ...}}``."""

    name = RateOrigin.SECONDARY.value
    provider = "currencylayer"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        timeout: float = 8.0,
        anchor: str = "USD",
    ):
        self._base_url = base_url
        self._api_key = api_key
        self._timeout = timeout
        self.anchor = anchor

    def fetch_quotes(self) -> Dict[str, float]:  # type: ignore[override]
        if not self._api_key:
            raise ProviderUnavailable(self.provider, "API key not configured")
        query = urlencode(
            {
                "access_key": self._api_key,
                "currencies": ",".join(SUPPORTED_CURRENCIES),
                "source": self.anchor,
                "format": 1,
            }
        )
        try:
            data = get_json(f"{self._base_url}?{query}", timeout=self._timeout, retries=0)
        except HttpError as e:
            raise ProviderUnavailable(self.provider, str(e)) from e
        quotes = data.get("quotes") if isinstance(data, dict) else None
        if not isinstance(quotes, dict) or not data.get("success"):
            raise ProviderUnavailable(self.provider, "API request failed")
        prefix = self.anchor
        stripped = {
            pair[len(prefix):]: value
            for pair, value in quotes.items()
            if isinstance(pair, str) and pair.startswith(prefix)
        }
        return self._filter_quotes(stripped)


def make_rate_sources(settings: Settings) -> List[RateSource]:
    """Sources in priority order: primary first."""
    timeout = settings.http_timeout_seconds
    anchor = settings.anchor_currency
    sources: List[RateSource] = [
        ExchangeRateApiSource(str(settings.primary_rates_url), timeout, anchor),
        CurrencyLayerSource(
            str(settings.secondary_rates_url),
            settings.currencylayer_key,
            timeout,
            anchor,
        ),
    ]
    if not settings.currencylayer_key:
        logger.info("secondary rate source has no API key; it will always be skipped")
    return sources
