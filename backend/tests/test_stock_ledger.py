# Overview: Pytest coverage for the stock ledger.

"""
Stock Ledger Tests

Every stock change writes exactly one ledger row, rows chain per product,
and verify_ledger() catches tampering.
"""

from decimal import Decimal

import pytest

from posledger.errors import InsufficientStockError, NotFoundError, ValidationError
from posledger.models import Product, StockLedgerEntry
from posledger.services import stock_ledger_service


class TestPostStock:
    def test_post_writes_product_and_entry(self, app, db_session, tenant, product):
        after = stock_ledger_service.post_stock(
            tenant_id=tenant.id,
            product_id=product.id,
            delta=Decimal("-10"),
            transaction_type="sale",
            reference_id=1,
            reference_type="bill",
            note="Sale - Bill X",
            actor_id=3,
        )
        db_session.commit()

        assert after == Decimal("90")
        assert db_session.get(Product, product.id).stock_quantity == Decimal("90")

        entry = db_session.query(StockLedgerEntry).one()
        assert entry.quantity_before == Decimal("100")
        assert entry.quantity_change == Decimal("-10")
        assert entry.quantity_after == Decimal("90")
        assert entry.transaction_type == "sale"
        assert entry.created_by == 3

    def test_overdraw_rejected(self, app, db_session, tenant, product):
        with pytest.raises(InsufficientStockError) as exc_info:
            stock_ledger_service.post_stock(
                tenant_id=tenant.id, product_id=product.id, delta=-101, transaction_type="sale",
            )
        db_session.rollback()

        assert exc_info.value.details["available"] == "100.000"
        assert exc_info.value.details["requested"] == "101.000"
        assert db_session.query(StockLedgerEntry).count() == 0

    def test_overdraw_allowed_when_requested(self, app, db_session, tenant, product):
        after = stock_ledger_service.post_stock(
            tenant_id=tenant.id, product_id=product.id, delta=-105, transaction_type="sale", allow_negative=True,
        )
        assert after == Decimal("-5")

    def test_unknown_transaction_type(self, app, db_session, tenant, product):
        with pytest.raises(ValidationError):
            stock_ledger_service.post_stock(
                tenant_id=tenant.id, product_id=product.id, delta=1, transaction_type="gift",
            )

    def test_foreign_product_not_found(self, app, db_session, tenant, other_product):
        with pytest.raises(NotFoundError):
            stock_ledger_service.post_stock(
                tenant_id=tenant.id, product_id=other_product.id, delta=1, transaction_type="purchase",
            )


class TestAdjustStock:
    def test_adjustment_commits_one_entry(self, app, db_session, tenant, product):
        entry = stock_ledger_service.adjust_stock(
            tenant_id=tenant.id, product_id=product.id, quantity_change="-2.5", reason="Damaged in transit", actor_id=2,
        )
        assert entry.transaction_type == "adjustment"
        assert entry.quantity_after == Decimal("97.5")
        assert entry.notes == "Damaged in transit"
        assert db_session.get(Product, product.id).stock_quantity == Decimal("97.5")

    def test_reason_required(self, app, db_session, tenant, product):
        with pytest.raises(ValidationError):
            stock_ledger_service.adjust_stock(
                tenant_id=tenant.id, product_id=product.id, quantity_change=5, reason="  ",
            )

    def test_zero_change_rejected(self, app, db_session, tenant, product):
        with pytest.raises(ValidationError):
            stock_ledger_service.adjust_stock(
                tenant_id=tenant.id, product_id=product.id, quantity_change=0, reason="Count",
            )

    def test_negative_result_rejected(self, app, db_session, tenant, product):
        with pytest.raises(InsufficientStockError):
            stock_ledger_service.adjust_stock(
                tenant_id=tenant.id, product_id=product.id, quantity_change=-150, reason="Count",
            )
        assert db_session.get(Product, product.id).stock_quantity == Decimal("100")
        assert db_session.query(StockLedgerEntry).count() == 0


class TestVerifyLedger:
    def _adjust(self, tenant, product, change):
        return stock_ledger_service.adjust_stock(
            tenant_id=tenant.id, product_id=product.id, quantity_change=change, reason="Count",
        )

    def test_consistent_ledger(self, app, db_session, tenant, product, second_product):
        self._adjust(tenant, product, 5)
        self._adjust(tenant, product, -3)
        self._adjust(tenant, second_product, 10)

        report = stock_ledger_service.verify_ledger(tenant_id=tenant.id)
        assert report["ok"] is True
        assert report["products_checked"] == 2
        assert report["problems"] == []

    def test_products_without_entries_are_skipped(self, app, db_session, tenant, product):
        report = stock_ledger_service.verify_ledger(tenant_id=tenant.id)
        assert report == {"tenant_id": tenant.id, "products_checked": 0, "ok": True, "problems": []}

    def test_stock_mismatch_detected(self, app, db_session, tenant, product):
        self._adjust(tenant, product, 5)

        # Write stock behind the ledger's back
        row = db_session.get(Product, product.id)
        row.stock_quantity = Decimal("80")
        db_session.commit()

        report = stock_ledger_service.verify_ledger(tenant_id=tenant.id, product_id=product.id)
        assert report["ok"] is False
        assert [p["problem"] for p in report["problems"]] == ["stock_mismatch"]

    def test_broken_chain_detected(self, app, db_session, tenant, product):
        self._adjust(tenant, product, 5)
        self._adjust(tenant, product, 5)

        last = db_session.query(StockLedgerEntry).order_by(StockLedgerEntry.id.desc()).first()
        last.quantity_before = Decimal("200")
        last.quantity_after = Decimal("205")
        db_session.commit()

        report = stock_ledger_service.verify_ledger(tenant_id=tenant.id)
        problems = {p["problem"] for p in report["problems"]}
        assert "broken_chain" in problems
        assert "stock_mismatch" in problems


class TestListEntries:
    def test_filters_and_order(self, app, db_session, tenant, product, second_product):
        first = stock_ledger_service.adjust_stock(
            tenant_id=tenant.id, product_id=product.id, quantity_change=1, reason="Count",
        )
        stock_ledger_service.adjust_stock(
            tenant_id=tenant.id, product_id=second_product.id, quantity_change=1, reason="Count",
        )
        second = stock_ledger_service.adjust_stock(
            tenant_id=tenant.id, product_id=product.id, quantity_change=2, reason="Count",
        )

        entries = stock_ledger_service.list_ledger_entries(tenant_id=tenant.id, product_id=product.id)
        assert [e.id for e in entries] == [first.id, second.id]

    def test_tenant_scoped(self, app, db_session, tenant, other_tenant, other_product):
        stock_ledger_service.adjust_stock(
            tenant_id=other_tenant.id, product_id=other_product.id, quantity_change=1, reason="Count",
        )
        assert stock_ledger_service.list_ledger_entries(tenant_id=tenant.id) == []
