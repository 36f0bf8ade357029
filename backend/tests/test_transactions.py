# Overview: Pytest coverage for bill and purchase creation, cancellation and listing.

from datetime import timedelta
from decimal import Decimal

import pytest

from posledger.context import ActorContext
from posledger.errors import (
    EditabilityError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from posledger.models import Bill, Product, Purchase, StockLedgerEntry, Tenant
from posledger.services import edit_service, stock_ledger_service, transaction_service


def _stock(db_session, product_id):
    return db_session.get(Product, product_id).stock_quantity


def _entries(db_session, **filters):
    return db_session.query(StockLedgerEntry).filter_by(**filters).order_by(StockLedgerEntry.id).all()


class TestCreateBill:
    def test_bill_totals_and_stock(self, app, db_session, tenant, product, cashier):
        bill = transaction_service.create_bill(cashier, {
            "customer_name": "Asha",
            "payment_mode": "upi",
            "items": [{"product_id": product.id, "quantity": 10}],
        })

        assert bill.status == "completed"
        assert bill.subtotal == Decimal("500.00")
        assert bill.gst_amount == Decimal("90.00")
        assert bill.total_amount == Decimal("590.00")
        assert bill.round_off == Decimal("0.00")
        assert bill.customer_name == "Asha"
        assert bill.created_by == cashier.actor_id

        assert _stock(db_session, product.id) == Decimal("90")
        [entry] = _entries(db_session, reference_type="bill", reference_id=bill.id)
        assert entry.transaction_type == "sale"
        assert entry.quantity_change == Decimal("-10")
        assert entry.quantity_before == Decimal("100")
        assert entry.quantity_after == Decimal("90")

    def test_line_snapshot(self, app, db_session, tenant, product, cashier):
        bill = transaction_service.create_bill(cashier, {
            "items": [{"product_id": product.id, "quantity": 2, "discount_amount": "10"}],
        })
        [item] = bill.items
        assert item.product_name == "Basmati Rice 1kg"
        assert item.sku == "SKU-001"
        assert item.unit_price == Decimal("50.00")
        assert item.discount_amount == Decimal("10.00")
        assert item.gst_amount == Decimal("16.20")
        assert item.line_total == Decimal("106.20")

    def test_document_discount_and_rounding(self, app, db_session, tenant, product, second_product, cashier):
        bill = transaction_service.create_bill(cashier, {
            "discount_percent": "10",
            "items": [
                {"product_id": product.id, "quantity": 1},
                {"product_id": second_product.id, "quantity": 1},
            ],
        })
        # 170.00 subtotal, 17.00 discount, 9.00 + 6.00 GST -> 168.00
        assert bill.subtotal == Decimal("170.00")
        assert bill.discount_amount == Decimal("17.00")
        assert bill.gst_amount == Decimal("15.00")
        assert bill.total_amount == Decimal("168.00")

    def test_round_off_balances_total(self, app, db_session, tenant, product, cashier):
        bill = transaction_service.create_bill(cashier, {
            "items": [{"product_id": product.id, "quantity": "0.5"}],
        })
        # 25.00 + 4.50 = 29.50 -> 30
        assert bill.total_amount == Decimal("30.00")
        assert bill.round_off == Decimal("0.50")
        assert bill.subtotal - bill.discount_amount + bill.gst_amount + bill.round_off == bill.total_amount

    def test_insufficient_stock_writes_nothing(self, app, db_session, tenant, product, second_product, cashier):
        with pytest.raises(InsufficientStockError) as exc_info:
            transaction_service.create_bill(cashier, {
                "items": [
                    {"product_id": second_product.id, "quantity": 1},
                    {"product_id": product.id, "quantity": 101},
                ],
            })
        assert exc_info.value.details["product_id"] == product.id

        assert db_session.query(Bill).count() == 0
        assert db_session.query(StockLedgerEntry).count() == 0
        assert _stock(db_session, second_product.id) == Decimal("40")

    def test_same_product_on_two_lines_is_aggregated(self, app, db_session, tenant, product, cashier):
        with pytest.raises(InsufficientStockError):
            transaction_service.create_bill(cashier, {
                "items": [
                    {"product_id": product.id, "quantity": 60},
                    {"product_id": product.id, "quantity": 60},
                ],
            })

    def test_negative_stock_tenant(self, app, db_session, tenant, product, cashier):
        db_session.get(Tenant, tenant.id).allow_negative_stock = True
        db_session.commit()

        transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 120}]})
        assert _stock(db_session, product.id) == Decimal("-20")

    def test_unknown_product(self, app, db_session, tenant, product, cashier):
        with pytest.raises(NotFoundError):
            transaction_service.create_bill(cashier, {"items": [{"product_id": 99999, "quantity": 1}]})

    def test_cross_tenant_product(self, app, db_session, tenant, other_product, cashier):
        with pytest.raises(NotFoundError):
            transaction_service.create_bill(cashier, {"items": [{"product_id": other_product.id, "quantity": 1}]})

    @pytest.mark.parametrize("payload", [
        {"items": []},
        {"items": [{"product_id": 1, "quantity": 0}]},
        {"items": [{"product_id": 1, "quantity": "-2"}]},
        {"items": [{"product_id": 1, "quantity": "0.0004"}]},
        {"items": [{"quantity": 1}]},
        {"items": [{"product_id": 1, "quantity": 1}], "payment_mode": "cheque"},
        {"items": [{"product_id": 1, "quantity": 1}], "include_gst": "yes"},
    ])
    def test_invalid_payload(self, app, db_session, tenant, cashier, payload):
        with pytest.raises(ValidationError):
            transaction_service.create_bill(cashier, payload)


class TestCreatePurchase:
    def test_purchase_credits_stock(self, app, db_session, tenant, product, manager):
        purchase = transaction_service.create_purchase(manager, {
            "supplier_name": "Agro Traders",
            "supplier_invoice_number": "AT-991",
            "items": [{"product_id": product.id, "quantity": 20}],
        })
        assert purchase.status == "completed"
        assert purchase.document_number.startswith("PUR-")
        # Defaults to cost price
        assert purchase.items[0].unit_price == Decimal("30.00")
        assert purchase.total_amount == Decimal("708.00")

        assert _stock(db_session, product.id) == Decimal("120")
        [entry] = _entries(db_session, reference_type="purchase", reference_id=purchase.id)
        assert entry.transaction_type == "purchase"
        assert entry.quantity_change == Decimal("20")

    def test_price_override(self, app, db_session, tenant, product, manager):
        purchase = transaction_service.create_purchase(manager, {
            "include_gst": False,
            "items": [{"product_id": product.id, "quantity": 4, "unit_price": "27.50", "gst_rate": "12"}],
        })
        [item] = purchase.items
        assert item.unit_price == Decimal("27.50")
        assert item.gst_rate == Decimal("12")
        assert item.gst_amount == Decimal("0.00")
        assert purchase.total_amount == Decimal("110.00")

    def test_draft_does_not_touch_stock(self, app, db_session, tenant, product, manager):
        purchase = transaction_service.create_purchase(manager, {
            "status": "draft",
            "items": [{"product_id": product.id, "quantity": 20}],
        })
        assert purchase.status == "draft"
        assert _stock(db_session, product.id) == Decimal("100")
        assert db_session.query(StockLedgerEntry).count() == 0

    def test_invalid_status(self, app, db_session, tenant, product, manager):
        with pytest.raises(ValidationError):
            transaction_service.create_purchase(manager, {
                "status": "cancelled",
                "items": [{"product_id": product.id, "quantity": 1}],
            })


class TestCancel:
    def test_cancel_bill_restores_stock(self, app, db_session, tenant, product, cashier):
        bill = transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 10}]})
        cancelled = transaction_service.cancel_bill(cashier, bill.id, "Customer changed mind")

        assert cancelled.status == "cancelled"
        assert cancelled.cancel_reason == "Customer changed mind"
        assert cancelled.cancelled_by == cashier.actor_id
        assert _stock(db_session, product.id) == Decimal("100")

        sale, reversal = _entries(db_session, reference_type="bill", reference_id=bill.id)
        assert sale.quantity_change == Decimal("-10")
        assert reversal.transaction_type == "return"
        assert reversal.quantity_change == Decimal("10")
        assert reversal.quantity_before == Decimal("90")
        assert reversal.quantity_after == Decimal("100")
        assert stock_ledger_service.verify_ledger(tenant_id=tenant.id)["ok"]

    def test_cancel_twice(self, app, db_session, tenant, product, cashier):
        bill = transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 1}]})
        transaction_service.cancel_bill(cashier, bill.id)
        with pytest.raises(NotFoundError):
            transaction_service.cancel_bill(cashier, bill.id)
        assert _stock(db_session, product.id) == Decimal("100")

    def test_cancel_purchase_after_stock_sold(self, app, db_session, tenant, product, manager, cashier):
        purchase = transaction_service.create_purchase(manager, {
            "items": [{"product_id": product.id, "quantity": 20}],
        })
        transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 110}]})

        with pytest.raises(InsufficientStockError):
            transaction_service.cancel_purchase(manager, purchase.id)

        assert db_session.get(Purchase, purchase.id).status == "completed"
        assert _stock(db_session, product.id) == Decimal("10")

    def test_locked_bill_needs_admin(self, app, db_session, tenant, product, cashier, admin):
        bill = transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 1}]})
        edit_service.lock_document(admin, "bill", bill.id, "Filed")

        with pytest.raises(EditabilityError):
            transaction_service.cancel_bill(cashier, bill.id)

        transaction_service.cancel_bill(admin, bill.id)
        assert db_session.get(Bill, bill.id).status == "cancelled"

    def test_other_tenant_cannot_cancel(self, app, db_session, tenant, other_tenant, product, cashier):
        bill = transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 1}]})
        outsider = ActorContext(tenant_id=other_tenant.id, actor_id=50, actor_role="admin")
        with pytest.raises(NotFoundError):
            transaction_service.cancel_bill(outsider, bill.id)


class TestListing:
    def test_list_filters_and_pagination(self, app, db_session, tenant, product, cashier):
        for mode in ("cash", "upi", "cash"):
            transaction_service.create_bill(cashier, {
                "payment_mode": mode,
                "items": [{"product_id": product.id, "quantity": 1}],
            })

        bills, total = transaction_service.list_bills(cashier, payment_mode="cash")
        assert total == 2
        assert {b.payment_mode for b in bills} == {"cash"}

        page, total = transaction_service.list_bills(cashier, page="2", limit="2")
        assert total == 3
        assert len(page) == 1

    def test_bad_paging(self, app, db_session, tenant, cashier):
        with pytest.raises(ValidationError):
            transaction_service.list_bills(cashier, page="x")
        with pytest.raises(ValidationError):
            transaction_service.list_bills(cashier, limit="0")

    def test_sub_unit_quantity_rounds_to_three_places(self, app, db_session, tenant, product, cashier):
        bill = transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": "1.0006"}]})
        assert bill.items[0].quantity == Decimal("1.001")
        assert _stock(db_session, product.id) == Decimal("98.999")

    def test_date_only_end_covers_the_whole_day(self, app, db_session, tenant, product, cashier):
        bill = transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 1}]})
        today = bill.created_at.date().isoformat()

        bills, total = transaction_service.list_bills(cashier, start_date=today, end_date=today)
        assert total == 1
        assert [b.id for b in bills] == [bill.id]

        yesterday = (bill.created_at - timedelta(days=1)).date().isoformat()
        _, total = transaction_service.list_bills(cashier, end_date=yesterday)
        assert total == 0

    def test_timestamp_end_is_inclusive(self, app, db_session, tenant, product, cashier):
        bill = transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 1}]})
        before = (bill.created_at - timedelta(seconds=1)).isoformat()

        _, total = transaction_service.list_bills(cashier, end_date=before)
        assert total == 0
        _, total = transaction_service.list_bills(cashier, end_date=bill.created_at.isoformat())
        assert total == 1

    def test_bad_date_filter(self, app, db_session, tenant, cashier):
        with pytest.raises(ValidationError):
            transaction_service.list_bills(cashier, end_date="18/01/2026")
