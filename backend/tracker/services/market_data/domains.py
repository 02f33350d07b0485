# backend/tracker/services/market_data/domains.py
"""
Domain name valuation provider.

Estimates the market value of domain names with a hosted prediction model
on Replicate. One prediction call values a comma-separated batch of domains.
Predictions may still be running when the POST returns; the provider polls
until the prediction settles.

Uses httpx for async HTTP requests and tenacity for transient failures.
Without REPLICATE_API_TOKEN the provider is disabled and returns nothing.
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tracker.services.constants import DOMAIN_VALUATION_TIMEOUT_SECONDS
from tracker.services.exceptions import ProviderUnavailableError, RateLimitError

logger = logging.getLogger(__name__)

REPLICATE_PREDICTIONS_URL = "https://api.replicate.com/v1/predictions"
DOMAIN_MODEL_VERSION = (
    "humbleworth/price-predict-v1:"
    "a925db842c707850e4ca7b7e86b217692b0353a9ca05eb028802c4a85db93843"
)

# Replicate accepts at most this many domains per prediction input
MAX_DOMAINS_PER_PREDICTION = 2560
POLL_INTERVAL_SECONDS = 1.0
MAX_POLLS = 120


class DomainValuationProvider:
    """
    Replicate-backed domain valuation.

    Example:
        provider = DomainValuationProvider(api_token="r8_...")
        values = await provider.get_valuations(["example.com"])
        # {"example.com": Decimal("2500")}
    """

    name = "replicate"

    def __init__(
            self,
            api_token: str | None,
            timeout: float = DOMAIN_VALUATION_TIMEOUT_SECONDS,
            transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_token = api_token
        self._timeout = timeout
        self._transport = transport
        logger.info(f"DomainValuationProvider initialized (enabled={self.is_enabled})")

    @property
    def is_enabled(self) -> bool:
        return bool(self._api_token)

    async def get_valuations(self, domains: list[str]) -> dict[str, Decimal]:
        """
        Value each domain today.

        Domains the model could not value are omitted from the result.

        Raises:
            ProviderUnavailableError: Network or API error after retries
        """
        unique = sorted({d.strip().lower() for d in domains if d and d.strip()})
        if not unique or not self.is_enabled:
            return {}

        results: dict[str, Decimal] = {}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for start in range(0, len(unique), MAX_DOMAINS_PER_PREDICTION):
                batch = unique[start:start + MAX_DOMAINS_PER_PREDICTION]
                prediction = await self._create_prediction(client, batch)
                prediction = await self._wait_for(client, prediction)
                results.update(self._parse_valuations(prediction))

        logger.info(f"Valued {len(results)}/{len(unique)} domains")
        return results

    # =========================================================================
    # HTTP
    # =========================================================================

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_token}",
            "Content-Type": "application/json",
            "Prefer": "wait",
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((ProviderUnavailableError, RateLimitError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _create_prediction(self, client: httpx.AsyncClient, domains: list[str]) -> dict:
        try:
            response = await client.post(
                REPLICATE_PREDICTIONS_URL,
                headers=self._headers(),
                json={"version": DOMAIN_MODEL_VERSION, "input": {"domains": ",".join(domains)}},
            )
        except httpx.RequestError as e:
            raise ProviderUnavailableError(self.name, f"Network error: {e}")

        return self._check_response(response)

    async def _wait_for(self, client: httpx.AsyncClient, prediction: dict) -> dict:
        polls = 0
        while prediction.get("status") in ("starting", "processing"):
            if polls >= MAX_POLLS:
                raise ProviderUnavailableError(self.name, f"Prediction {prediction.get('id')} timed out")
            await asyncio.sleep(POLL_INTERVAL_SECONDS)
            try:
                response = await client.get(
                    f"{REPLICATE_PREDICTIONS_URL}/{prediction['id']}",
                    headers=self._headers(),
                )
            except httpx.RequestError as e:
                raise ProviderUnavailableError(self.name, f"Network error: {e}")
            prediction = self._check_response(response)
            polls += 1
        return prediction

    def _check_response(self, response: httpx.Response) -> dict:
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(self.name, int(retry_after) if retry_after and retry_after.isdigit() else None)
        if response.status_code >= 400:
            raise ProviderUnavailableError(self.name, f"HTTP {response.status_code}: {response.text[:200]}")
        return response.json()

    @staticmethod
    def _parse_valuations(prediction: dict) -> dict[str, Decimal]:
        if prediction.get("status") != "succeeded":
            logger.warning(f"Domain prediction ended with status {prediction.get('status')}")
            return {}

        values: dict[str, Decimal] = {}
        for valuation in (prediction.get("output") or {}).get("valuations", []):
            domain = valuation.get("domain")
            if not domain or valuation.get("error"):
                continue
            # Brokerage estimate first, then marketplace, then auction
            raw = valuation.get("brokerage") or valuation.get("marketplace") or valuation.get("auction")
            try:
                price = Decimal(str(raw)) if raw is not None else None
            except InvalidOperation:
                price = None
            if price is not None and price > 0:
                values[domain.lower()] = price
        return values
