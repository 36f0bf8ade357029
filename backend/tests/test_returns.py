# Overview: Pytest coverage for sales and purchase returns.

"""
Returns Tests

Partial returns move stock back through the ledger, never exceed what is
still returnable per line, and are counted when the parent is cancelled.
"""

from decimal import Decimal

import pytest

from posledger.context import ActorContext
from posledger.errors import InsufficientStockError, NotFoundError, OverReturnError, ValidationError
from posledger.models import Product, SalesReturn, StockLedgerEntry
from posledger.services import return_service, stock_ledger_service, transaction_service


@pytest.fixture
def bill(db_session, tenant, product, cashier):
    """Bill for 10 x product: 500.00 + 90.00 GST."""
    return transaction_service.create_bill(cashier, {
        "customer_name": "Asha",
        "customer_phone": "9800000000",
        "items": [{"product_id": product.id, "quantity": 10}],
    })


def _stock(db_session, product_id):
    return db_session.get(Product, product_id).stock_quantity


class TestSalesReturn:
    def test_partial_return(self, app, db_session, tenant, product, cashier, bill):
        item_id = bill.items[0].id
        sales_return = return_service.create_sales_return(cashier, {
            "bill_id": bill.id,
            "return_reason": "Damaged packet",
            "refund_mode": "cash",
            "items": [{"bill_item_id": item_id, "quantity": 4}],
        })

        assert sales_return.document_number.startswith("SR-RET-")
        assert sales_return.bill_id == bill.id
        assert sales_return.customer_name == "Asha"
        assert sales_return.subtotal == Decimal("200.00")
        assert sales_return.gst_amount == Decimal("36.00")
        assert sales_return.total_amount == Decimal("236.00")
        assert sales_return.items[0].bill_item_id == item_id
        assert _stock(db_session, product.id) == Decimal("94")

        entry = (
            db_session.query(StockLedgerEntry)
            .filter_by(reference_type="sales_return", reference_id=sales_return.id)
            .one()
        )
        assert entry.transaction_type == "return"
        assert entry.quantity_change == Decimal("4")
        assert entry.notes == f"Sales Return - {sales_return.document_number}"

    def test_over_return_rejected(self, app, db_session, tenant, product, cashier, bill):
        item_id = bill.items[0].id
        return_service.create_sales_return(cashier, {
            "bill_id": bill.id,
            "items": [{"bill_item_id": item_id, "quantity": 4}],
        })

        with pytest.raises(OverReturnError) as exc_info:
            return_service.create_sales_return(cashier, {
                "bill_id": bill.id,
                "items": [{"bill_item_id": item_id, "quantity": 7}],
            })
        assert exc_info.value.details["returnable"] == "6.000"
        assert exc_info.value.details["already_returned"] == "4.000"

        assert db_session.query(SalesReturn).count() == 1
        assert _stock(db_session, product.id) == Decimal("94")

        # The remaining 6 can still go back
        return_service.create_sales_return(cashier, {
            "bill_id": bill.id,
            "items": [{"bill_item_id": item_id, "quantity": 6}],
        })
        assert _stock(db_session, product.id) == Decimal("100")

    def test_proportional_line_discount(self, app, db_session, tenant, product, cashier):
        bill = transaction_service.create_bill(cashier, {
            "items": [{"product_id": product.id, "quantity": 4, "discount_amount": "20"}],
        })
        sales_return = return_service.create_sales_return(cashier, {
            "bill_id": bill.id,
            "items": [{"bill_item_id": bill.items[0].id, "quantity": 1}],
        })
        [item] = sales_return.items
        assert item.discount_amount == Decimal("5.00")
        # (50 - 5) * 18% = 8.10
        assert item.gst_amount == Decimal("8.10")
        assert item.line_total == Decimal("53.10")

    def test_foreign_line_rejected(self, app, db_session, tenant, product, cashier, bill):
        other = transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 1}]})
        with pytest.raises(NotFoundError):
            return_service.create_sales_return(cashier, {
                "bill_id": bill.id,
                "items": [{"bill_item_id": other.items[0].id, "quantity": 1}],
            })

    def test_one_bad_line_aborts_all(self, app, db_session, tenant, product, second_product, cashier):
        bill = transaction_service.create_bill(cashier, {
            "items": [
                {"product_id": product.id, "quantity": 2},
                {"product_id": second_product.id, "quantity": 1},
            ],
        })
        with pytest.raises(OverReturnError):
            return_service.create_sales_return(cashier, {
                "bill_id": bill.id,
                "items": [
                    {"bill_item_id": bill.items[0].id, "quantity": 1},
                    {"bill_item_id": bill.items[1].id, "quantity": 2},
                ],
            })
        assert db_session.query(SalesReturn).count() == 0
        assert _stock(db_session, product.id) == Decimal("98")

    def test_cancelled_bill_cannot_be_returned(self, app, db_session, tenant, cashier, bill):
        transaction_service.cancel_bill(cashier, bill.id)
        with pytest.raises(ValidationError):
            return_service.create_sales_return(cashier, {
                "bill_id": bill.id,
                "items": [{"bill_item_id": bill.items[0].id, "quantity": 1}],
            })

    def test_duplicate_line_rejected(self, app, db_session, tenant, cashier, bill):
        item_id = bill.items[0].id
        with pytest.raises(ValidationError):
            return_service.create_sales_return(cashier, {
                "bill_id": bill.id,
                "items": [{"bill_item_id": item_id, "quantity": 1}, {"bill_item_id": item_id, "quantity": 1}],
            })

    def test_invalid_refund_mode(self, app, db_session, tenant, cashier, bill):
        with pytest.raises(ValidationError):
            return_service.create_sales_return(cashier, {
                "bill_id": bill.id,
                "refund_mode": "mixed",
                "items": [{"bill_item_id": bill.items[0].id, "quantity": 1}],
            })

    def test_cancel_after_partial_return(self, app, db_session, tenant, product, cashier, bill):
        return_service.create_sales_return(cashier, {
            "bill_id": bill.id,
            "items": [{"bill_item_id": bill.items[0].id, "quantity": 4}],
        })
        transaction_service.cancel_bill(cashier, bill.id)

        # Only the 6 still out are credited back
        assert _stock(db_session, product.id) == Decimal("100")
        reversal = (
            db_session.query(StockLedgerEntry)
            .filter_by(reference_type="bill", reference_id=bill.id, transaction_type="return")
            .one()
        )
        assert reversal.quantity_change == Decimal("6")
        assert stock_ledger_service.verify_ledger(tenant_id=tenant.id)["ok"]

    def test_returnable_quantities(self, app, db_session, tenant, cashier, bill):
        return_service.create_sales_return(cashier, {
            "bill_id": bill.id,
            "items": [{"bill_item_id": bill.items[0].id, "quantity": "2.5"}],
        })
        [row] = return_service.get_returnable_quantities(cashier, "bill", bill.id)
        assert row["quantity"] == "10.000"
        assert row["returned"] == "2.500"
        assert row["returnable"] == "7.500"

        returns = return_service.list_returns_for_document(cashier, "bill", bill.id)
        assert len(returns) == 1


class TestPurchaseReturn:
    def test_purchase_return_debits_stock(self, app, db_session, tenant, product, manager):
        purchase = transaction_service.create_purchase(manager, {
            "supplier_name": "Agro Traders",
            "items": [{"product_id": product.id, "quantity": 20}],
        })
        purchase_return = return_service.create_purchase_return(manager, {
            "purchase_id": purchase.id,
            "return_reason": "Expired stock",
            "items": [{"purchase_item_id": purchase.items[0].id, "quantity": 5}],
        })

        assert purchase_return.document_number.startswith("PR-RET-")
        assert purchase_return.supplier_name == "Agro Traders"
        assert _stock(db_session, product.id) == Decimal("115")

        entry = (
            db_session.query(StockLedgerEntry)
            .filter_by(reference_type="purchase_return", reference_id=purchase_return.id)
            .one()
        )
        assert entry.quantity_change == Decimal("-5")
        assert entry.notes == f"Purchase Return - {purchase_return.document_number}"

    def test_purchase_return_cannot_go_negative(self, app, db_session, tenant, product, manager, cashier):
        purchase = transaction_service.create_purchase(manager, {
            "items": [{"product_id": product.id, "quantity": 20}],
        })
        transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 118}]})

        with pytest.raises(InsufficientStockError):
            return_service.create_purchase_return(manager, {
                "purchase_id": purchase.id,
                "items": [{"purchase_item_id": purchase.items[0].id, "quantity": 5}],
            })
        assert _stock(db_session, product.id) == Decimal("2")

    def test_draft_purchase_cannot_be_returned(self, app, db_session, tenant, product, manager):
        purchase = transaction_service.create_purchase(manager, {
            "status": "draft",
            "items": [{"product_id": product.id, "quantity": 20}],
        })
        with pytest.raises(ValidationError):
            return_service.create_purchase_return(manager, {
                "purchase_id": purchase.id,
                "items": [{"purchase_item_id": purchase.items[0].id, "quantity": 1}],
            })


class TestListReturns:
    def test_sales_returns_across_tenant(self, app, db_session, tenant, product, cashier, bill):
        other_bill = transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 3}]})
        first = return_service.create_sales_return(cashier, {
            "bill_id": bill.id,
            "items": [{"bill_item_id": bill.items[0].id, "quantity": 1}],
        })
        second = return_service.create_sales_return(cashier, {
            "bill_id": other_bill.id,
            "items": [{"bill_item_id": other_bill.items[0].id, "quantity": 1}],
        })

        returns, total = return_service.list_sales_returns(cashier)
        assert total == 2
        assert [r.id for r in returns] == [second.id, first.id]

        returns, total = return_service.list_sales_returns(cashier, bill_id=str(bill.id))
        assert total == 1
        assert returns[0].id == first.id

        page, total = return_service.list_sales_returns(cashier, page="2", limit="1")
        assert total == 2
        assert [r.id for r in page] == [first.id]

        today = first.created_at.date().isoformat()
        _, total = return_service.list_sales_returns(cashier, start_date=today, end_date=today, status="completed")
        assert total == 2

    def test_purchase_returns_filtered_by_purchase(self, app, db_session, tenant, product, manager):
        purchase = transaction_service.create_purchase(manager, {
            "items": [{"product_id": product.id, "quantity": 10}],
        })
        purchase_return = return_service.create_purchase_return(manager, {
            "purchase_id": purchase.id,
            "items": [{"purchase_item_id": purchase.items[0].id, "quantity": 2}],
        })

        returns, total = return_service.list_purchase_returns(manager, purchase_id=purchase.id)
        assert total == 1
        assert returns[0].id == purchase_return.id

        _, total = return_service.list_purchase_returns(manager, purchase_id=purchase.id + 1)
        assert total == 0

    def test_listing_is_tenant_scoped(self, app, db_session, tenant, other_tenant, cashier, bill):
        return_service.create_sales_return(cashier, {
            "bill_id": bill.id,
            "items": [{"bill_item_id": bill.items[0].id, "quantity": 1}],
        })
        outsider = ActorContext(tenant_id=other_tenant.id, actor_id=50, actor_role="admin")
        _, total = return_service.list_sales_returns(outsider)
        assert total == 0

    def test_bad_parent_filter(self, app, db_session, tenant, cashier):
        with pytest.raises(ValidationError):
            return_service.list_sales_returns(cashier, bill_id="abc")
