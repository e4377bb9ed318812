import asyncio
import logging
from typing import Any, Optional

import httpx

from country_api.config import settings
from country_api.errors import SourceUnavailable

logger = logging.getLogger("country_api.gateway")

RESTCOUNTRIES = "restcountries"
EXCHANGERATES = "exchangerates"


class ExternalDataGateway:
    """Fetches the raw country list and the USD exchange-rate table.

    Every failure (transport error, non-2xx status, timeout, undecodable or
    wrongly shaped payload) is raised as SourceUnavailable naming the source.
    """

    def __init__(
        self,
        countries_url: str,
        rates_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.countries_url = countries_url
        self.rates_url = rates_url
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport)

    async def _get_json(self, client: Optional[httpx.AsyncClient], url: str, source: str) -> Any:
        if client is None:
            async with self._client() as owned:
                return await self._get_json(owned, url, source)
        try:
            resp = await asyncio.wait_for(client.get(url), timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except asyncio.TimeoutError as exc:
            logger.warning("%s timed out after %.1fs", source, self.timeout)
            raise SourceUnavailable(source, "timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("%s request failed: %s", source, exc)
            raise SourceUnavailable(source, str(exc)) from exc
        except ValueError as exc:
            logger.warning("%s returned invalid JSON: %s", source, exc)
            raise SourceUnavailable(source, "invalid JSON") from exc

    async def fetch_countries(self, client: Optional[httpx.AsyncClient] = None) -> list:
        payload = await self._get_json(client, self.countries_url, RESTCOUNTRIES)
        if not isinstance(payload, list):
            logger.warning("%s payload is not a list: %s", RESTCOUNTRIES, type(payload).__name__)
            raise SourceUnavailable(RESTCOUNTRIES, "Invalid countries data received")
        return payload

    async def fetch_exchange_rates(self, client: Optional[httpx.AsyncClient] = None) -> dict:
        payload = await self._get_json(client, self.rates_url, EXCHANGERATES)
        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            logger.warning("%s payload has no rates mapping", EXCHANGERATES)
            raise SourceUnavailable(EXCHANGERATES, "Invalid exchange rate data received")
        return rates

    async def fetch_all(self) -> tuple[list, dict]:
        """Run both fetches concurrently; the first failure cancels the other."""
        async with self._client() as client:
            tasks = [
                asyncio.ensure_future(self.fetch_countries(client)),
                asyncio.ensure_future(self.fetch_exchange_rates(client)),
            ]
            try:
                countries, rates = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
        logger.info("Fetched %d countries and %d exchange rates", len(countries), len(rates))
        return countries, rates


def get_gateway() -> ExternalDataGateway:
    return ExternalDataGateway(
        countries_url=settings.COUNTRY_API,
        rates_url=settings.EXCHANGE_API,
        timeout=settings.EXTERNAL_TIMEOUT_SECONDS,
    )
