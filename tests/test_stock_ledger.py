"""Tests for the share ownership ledger."""

from __future__ import annotations

import pytest

from tradesim.core.exceptions import (
    InvalidKeyError,
    InvalidQuantityError,
    NotFoundError,
    PartialReassignmentFailure,
)
from tradesim.repositories.stocks_orm import Holding, StockField, StockUnit


class TestStockField:
    """Filter fields are a closed set."""

    def test_snake_case_values(self):
        assert StockField("owner_id") is StockField.OWNER_ID
        assert StockField("company_id") is StockField.COMPANY_ID
        assert StockField("id") is StockField.ID

    def test_camel_case_aliases(self):
        assert StockField("ownerId") is StockField.OWNER_ID
        assert StockField("companyId") is StockField.COMPANY_ID

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            StockField("bogusField")
        with pytest.raises(ValueError):
            StockField("created_at")


class TestGetStocks:
    """Tests for StockLedger.get_stocks."""

    @pytest.mark.asyncio
    async def test_empty_ledger(self, services):
        assert await services.ledger.get_stocks() == []

    @pytest.mark.asyncio
    async def test_returns_every_unit_by_id(self, services, market):
        stocks = await services.ledger.get_stocks()

        assert len(stocks) == 11
        assert [s.id for s in stocks] == sorted(s.id for s in stocks)
        assert stocks[0] == StockUnit(
            id=market.seller_stock_ids[0],
            owner_id=market.seller_id,
            company_id=market.company_id,
        )

    @pytest.mark.asyncio
    async def test_repeated_reads_are_identical(self, services, market):
        first = await services.ledger.get_stocks()
        second = await services.ledger.get_stocks()
        assert first == second

        grouped_first = await services.ledger.get_stocks_by_owner()
        grouped_second = await services.ledger.get_stocks_by_owner()
        assert grouped_first == grouped_second


class TestGetStocksByAttribute:
    """Tests for StockLedger.get_stocks_by_attribute."""

    @pytest.mark.asyncio
    async def test_bogus_key_raises_invalid_key(self, services, market):
        with pytest.raises(InvalidKeyError) as exc_info:
            await services.ledger.get_stocks_by_attribute("bogusField", 1)
        assert exc_info.value.details == {"key": "bogusField"}

    @pytest.mark.asyncio
    async def test_invalid_key_checked_before_query(self, services):
        # Empty ledger: a NotFound here would mean the key was never validated
        with pytest.raises(InvalidKeyError):
            await services.ledger.get_stocks_by_attribute("owner_id; DROP TABLE stocks", 1)

    @pytest.mark.asyncio
    async def test_owner_without_stocks_raises_not_found(self, services, market):
        with pytest.raises(NotFoundError):
            await services.ledger.get_stocks_by_attribute("ownerId", market.buyer_id)

    @pytest.mark.asyncio
    async def test_filters_by_owner(self, services, market):
        stocks = await services.ledger.get_stocks_by_attribute(StockField.OWNER_ID, market.seller_id)

        assert len(stocks) == 7
        assert all(s.owner_id == market.seller_id for s in stocks)
        assert [s.id for s in stocks] == sorted(s.id for s in stocks)

    @pytest.mark.asyncio
    async def test_filters_by_company_with_alias(self, services, market):
        stocks = await services.ledger.get_stocks_by_attribute("companyId", market.other_company_id)

        assert len(stocks) == 6
        assert {s.owner_id for s in stocks} == {market.seller_id, market.other_buyer_id}

    @pytest.mark.asyncio
    async def test_filters_by_id(self, services, market):
        stock_id = market.seller_stock_ids[2]
        stocks = await services.ledger.get_stocks_by_attribute("id", stock_id)
        assert [s.id for s in stocks] == [stock_id]


class TestGroupedCounts:
    """Tests for grouped ownership counts and totals."""

    @pytest.mark.asyncio
    async def test_grouped_by_owner(self, services, market):
        holdings = await services.ledger.get_stocks_by_owner()

        assert holdings == sorted(holdings, key=lambda h: (h.owner_id, h.company_id))
        assert Holding(market.seller_id, market.company_id, 5) in holdings
        assert Holding(market.seller_id, market.other_company_id, 2) in holdings
        assert Holding(market.other_buyer_id, market.other_company_id, 4) in holdings
        assert len(holdings) == 3

    @pytest.mark.asyncio
    async def test_grouped_by_company(self, services, market):
        holdings = await services.ledger.get_stocks_by_company()

        assert holdings == sorted(holdings, key=lambda h: (h.company_id, h.owner_id))
        assert [h.company_id for h in holdings] == [
            market.company_id,
            market.other_company_id,
            market.other_company_id,
        ]

    @pytest.mark.asyncio
    async def test_from_owner(self, services, market):
        holdings = await services.ledger.get_stocks_from_owner(market.seller_id)
        assert holdings == [
            Holding(market.seller_id, market.company_id, 5),
            Holding(market.seller_id, market.other_company_id, 2),
        ]

    @pytest.mark.asyncio
    async def test_from_company(self, services, market):
        holdings = await services.ledger.get_stocks_from_company(market.other_company_id)
        assert holdings == [
            Holding(market.seller_id, market.other_company_id, 2),
            Holding(market.other_buyer_id, market.other_company_id, 4),
        ]

    @pytest.mark.asyncio
    async def test_totals(self, services, market):
        assert await services.ledger.get_total_stocks_from_owner(market.seller_id) == 7
        assert await services.ledger.get_total_stocks_from_company(market.other_company_id) == 6

    @pytest.mark.asyncio
    async def test_totals_are_zero_without_rows(self, services, market):
        assert await services.ledger.get_total_stocks_from_owner(market.buyer_id) == 0
        assert await services.ledger.get_total_stocks_from_company(9999) == 0
        assert await services.ledger.get_stocks_from_owner(market.buyer_id) == []


class TestIssueStocks:
    """Tests for StockLedger.issue_stocks."""

    @pytest.mark.asyncio
    async def test_issue_returns_new_ids(self, services, market):
        ids = await services.ledger.issue_stocks(market.company_id, market.buyer_id, 3)

        assert len(ids) == 3
        assert await services.ledger.get_total_stocks_from_owner(market.buyer_id) == 3
        assert await services.ledger.get_total_stocks_from_company(market.company_id) == 8

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -1, True])
    async def test_issue_rejects_bad_quantity(self, services, market, quantity):
        with pytest.raises(InvalidQuantityError):
            await services.ledger.issue_stocks(market.company_id, market.buyer_id, quantity)


class TestBulkReassign:
    """Tests for StockLedger.bulk_reassign."""

    @pytest.mark.asyncio
    async def test_empty_input(self, services):
        assert await services.ledger.bulk_reassign([], 1) == []

    @pytest.mark.asyncio
    async def test_moves_rows_and_keeps_company(self, services, market):
        ids = market.seller_stock_ids[:2]

        moved = await services.ledger.bulk_reassign(ids, market.buyer_id)

        assert moved == ids
        stocks = await services.ledger.get_stocks_by_attribute("owner_id", market.buyer_id)
        assert [s.id for s in stocks] == ids
        assert all(s.company_id == market.company_id for s in stocks)
        assert await services.ledger.get_total_stocks_from_company(market.company_id) == 5

    @pytest.mark.asyncio
    async def test_reassign_is_idempotent(self, services, market):
        ids = market.seller_stock_ids[:3]

        await services.ledger.bulk_reassign(ids, market.buyer_id)
        again = await services.ledger.bulk_reassign(ids, market.buyer_id)

        assert again == ids
        assert await services.ledger.get_total_stocks_from_owner(market.buyer_id) == 3

    @pytest.mark.asyncio
    async def test_rows_already_moved_to_new_owner_fail(self, services, market):
        ids = market.seller_stock_ids[:3]
        await services.ledger.bulk_reassign(ids, market.buyer_id, expected_owner_id=market.seller_id)

        with pytest.raises(PartialReassignmentFailure) as exc_info:
            await services.ledger.bulk_reassign(
                ids, market.buyer_id, expected_owner_id=market.seller_id
            )

        assert exc_info.value.succeeded == []
        assert sorted(exc_info.value.failed) == ids
        assert await services.ledger.get_total_stocks_from_owner(market.buyer_id) == 3

    @pytest.mark.asyncio
    async def test_rows_of_another_owner_fail(self, services, market):
        theirs = await services.ledger.get_stocks_by_attribute("owner_id", market.other_buyer_id)
        foreign_id = theirs[0].id
        ids = [market.seller_stock_ids[0], foreign_id]

        with pytest.raises(PartialReassignmentFailure) as exc_info:
            await services.ledger.bulk_reassign(
                ids, market.buyer_id, expected_owner_id=market.seller_id
            )

        error = exc_info.value
        assert error.succeeded == [market.seller_stock_ids[0]]
        assert list(error.failed) == [foreign_id]
        assert "not owned by user" in error.failed[foreign_id]
        assert error.details["succeeded"] == [market.seller_stock_ids[0]]

        # The foreign row keeps its owner
        holdings = await services.ledger.get_stocks_from_owner(market.other_buyer_id)
        assert holdings[0].owned == 4

    @pytest.mark.asyncio
    async def test_unknown_row_fails(self, services, market):
        with pytest.raises(PartialReassignmentFailure) as exc_info:
            await services.ledger.bulk_reassign([99999], market.buyer_id)

        assert exc_info.value.succeeded == []
        assert 99999 in exc_info.value.failed
