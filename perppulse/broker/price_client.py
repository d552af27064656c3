"""Token price API async client.

Resolves token symbols to mint addresses and fetches the current price with
a bounded request timeout.  Failures surface as ``PriceFetchError``; the
caller decides whether to retry on its next cycle.
"""

import logging
from typing import Optional

import httpx

from perppulse.broker.models import TOKEN_MINTS, PriceQuote
from perppulse.config import Config

logger = logging.getLogger("perppulse.price_client")

_DEFAULT_TIMEOUT = 10.0  # seconds


class PriceFetchError(Exception):
    """Raised when a price cannot be fetched or parsed."""


class PriceClient:
    """Async client wrapping the token price REST API."""

    def __init__(
        self,
        config: Optional[Config] = None,
        base_url: str = "https://api.jup.ag/price/v2",
        timeout: float = _DEFAULT_TIMEOUT,
        token_mints: Optional[dict[str, str]] = None,
    ) -> None:
        self._base_url = config.price_api_url if config else base_url
        self._timeout = config.request_timeout_seconds if config else timeout
        self._mints = dict(token_mints or TOKEN_MINTS)
        self._headers = {"Accept": "application/json"}

    def get_token_mint(self, symbol: str) -> str:
        """Return the mint address for *symbol*.

        Raises ``PriceFetchError`` for unknown tokens.
        """
        mint = self._mints.get(symbol.upper())
        if mint is None:
            raise PriceFetchError(f"Unknown token: {symbol}")
        return mint

    # ── Request helper ───────────────────────────────────────────────────

    async def _get(self, url: str, **kwargs) -> httpx.Response:
        """Execute a single GET.  No retry: callers poll again next cycle."""
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(
                    url,
                    headers=self._headers,
                    timeout=self._timeout,
                    **kwargs,
                )
        except httpx.TimeoutException as exc:
            raise PriceFetchError(f"Price request timed out after {self._timeout:.0f}s") from exc
        except httpx.TransportError as exc:
            raise PriceFetchError(f"Price request failed: {exc}") from exc

        if resp.status_code != 200:
            raise PriceFetchError(f"API error: {resp.status_code}")
        return resp

    # ── Prices ───────────────────────────────────────────────────────────

    async def fetch_price(self, symbol: str, quote_symbol: str = "USDC") -> PriceQuote:
        """Fetch the current price of *symbol* quoted in *quote_symbol*.

        Args:
            symbol: Base token, e.g. ``"SOL"``.
            quote_symbol: Quote token, default ``"USDC"``.

        Returns:
            ``PriceQuote`` with price and confidence (0.0 when the API
            does not report one).

        Raises:
            PriceFetchError: unknown token, transport failure, timeout,
                non-200 response, or a payload without a usable price.
        """
        base_mint = self.get_token_mint(symbol)
        quote_mint = self.get_token_mint(quote_symbol)

        resp = await self._get(self._base_url, params={"ids": base_mint, "vsToken": quote_mint})

        try:
            data = resp.json()
        except ValueError as exc:
            raise PriceFetchError(f"Failed to decode price data: {exc}") from exc

        entry = (data.get("data") or {}).get(base_mint) or {}
        raw_price = entry.get("price")
        if raw_price is None:
            raise PriceFetchError(f"No price returned for {symbol}")
        try:
            price = float(raw_price)
        except (TypeError, ValueError):
            raise PriceFetchError(f"Unparseable price for {symbol}: {raw_price!r}") from None

        confidence = entry.get("confidence")
        try:
            confidence = float(confidence) if confidence is not None else 0.0
        except (TypeError, ValueError):
            confidence = 0.0

        logger.debug("Fetched %s/%s price %.4f", symbol, quote_symbol, price)
        return PriceQuote(
            symbol=symbol.upper(),
            quote_symbol=quote_symbol.upper(),
            price=price,
            confidence=confidence,
        )
