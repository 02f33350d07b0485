# tests/services/test_dividends.py
"""
Tests for dividend frequency detection and DividendService.
"""

from datetime import date
from decimal import Decimal

from tracker.services.exceptions import TickerNotFoundError
from tracker.services.market_data.base import DividendEvent, DividendSummary
from tracker.services.market_data.dividends import DividendFrequency, DividendService, detect_frequency


def events(*dates: date) -> list[DividendEvent]:
    return [DividendEvent(date=d, amount=Decimal("0.5"), currency="USD") for d in dates]


class TestDetectFrequency:
    def test_monthly(self):
        assert detect_frequency(events(date(2024, 1, 15), date(2024, 2, 15), date(2024, 3, 14))) == DividendFrequency.MONTHLY

    def test_quarterly(self):
        dates = (date(2023, 3, 10), date(2023, 6, 9), date(2023, 9, 8), date(2023, 12, 8))
        assert detect_frequency(events(*dates)) == DividendFrequency.QUARTERLY

    def test_semiannual(self):
        assert detect_frequency(events(date(2023, 5, 1), date(2023, 11, 1))) == DividendFrequency.SEMIANNUAL

    def test_annual(self):
        assert detect_frequency(events(date(2022, 6, 1), date(2023, 6, 1))) == DividendFrequency.ANNUAL

    def test_input_order_does_not_matter(self):
        assert detect_frequency(events(date(2024, 3, 1), date(2024, 1, 1), date(2024, 2, 1))) == DividendFrequency.MONTHLY

    def test_single_event_is_irregular(self):
        assert detect_frequency(events(date(2024, 1, 1))) == DividendFrequency.IRREGULAR

    def test_long_gaps_are_irregular(self):
        assert detect_frequency(events(date(2020, 1, 1), date(2022, 1, 1))) == DividendFrequency.IRREGULAR


class TestDividendService:
    async def test_disabled_provider_returns_nothing(self):
        assert await DividendService(None).get_dividend_summaries(["AAPL"]) == {}

    async def test_failing_symbols_are_skipped(self, mock_provider):
        """Should return summaries for the symbols that worked, keyed upper-case."""
        mock_provider.add_dividends(DividendSummary(
            symbol="KO", currency="USD", trailing_annual_dividend=Decimal("1.94"),
        ))
        mock_provider.add_error("BROKEN", TickerNotFoundError(ticker="BROKEN", provider="mock"))
        service = DividendService(mock_provider)

        summaries = await service.get_dividend_summaries(["ko", "BROKEN", " "], today=date(2024, 6, 1))

        assert list(summaries) == ["KO"]
        assert summaries["KO"].trailing_annual_dividend == Decimal("1.94")
