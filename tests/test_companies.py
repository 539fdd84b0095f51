"""Tests for companies and stock price lookups."""

from __future__ import annotations

from decimal import Decimal

import pytest

from tradesim.core.exceptions import ConflictError, InvalidKeyError, NotFoundError


class TestGetStockPrice:
    """Tests for CompanyRepository.get_stock_price."""

    @pytest.mark.asyncio
    async def test_lookup_by_id_and_name(self, services, market):
        by_id = await services.companies.get_stock_price("id", market.company_id)
        by_name = await services.companies.get_stock_price("name", "Globex")

        assert by_id == {"stock_price": Decimal("10")}
        assert by_name == {"stock_price": Decimal("4.25")}

    @pytest.mark.asyncio
    async def test_unknown_key(self, services, market):
        with pytest.raises(InvalidKeyError):
            await services.companies.get_stock_price("ticker", "ACME")

    @pytest.mark.asyncio
    async def test_unknown_company(self, services):
        with pytest.raises(NotFoundError):
            await services.companies.get_stock_price("id", 404)
        assert await services.companies.resolve_price(404) is None


class TestCompanyWrites:
    @pytest.mark.asyncio
    async def test_set_stock_price(self, services, market):
        company = await services.companies.set_stock_price(market.company_id, "11.75")

        assert company.stock_price == Decimal("11.75")
        assert await services.companies.resolve_price(market.company_id) == Decimal("11.75")

    @pytest.mark.asyncio
    async def test_set_price_of_unknown_company(self, services):
        with pytest.raises(NotFoundError):
            await services.companies.set_stock_price(404, "1")

    @pytest.mark.asyncio
    async def test_duplicate_name(self, services, market):
        with pytest.raises(ConflictError):
            await services.companies.create_company("Acme", "1")
