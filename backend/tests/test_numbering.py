# Overview: Pytest coverage for document numbering.

from datetime import datetime
from decimal import Decimal

import pytest

from posledger.errors import AllocationExhaustedError, ValidationError
from posledger.models import Bill, DocumentSequence, Product, StockLedgerEntry
from posledger.services import numbering_service, transaction_service
from posledger.services.numbering_service import TemplateError, render_pattern


ON = datetime(2026, 1, 18, 10, 30)


class TestRenderPattern:
    def test_default_pattern(self):
        assert render_pattern("{PREFIX}-{DATE}-{SEQUENCE4}", prefix="BILL", sequence=1, on=ON) == "BILL-20260118-0001"

    def test_date_parts_and_padding(self):
        rendered = render_pattern("{PREFIX}/{YEAR}/{MONTH}/{DAY}/{SEQUENCE2}", prefix="INV", sequence=7, on=ON)
        assert rendered == "INV/2026/01/18/07"

    def test_unpadded_sequence_grows_past_width(self):
        assert render_pattern("{PREFIX}{SEQUENCE3}", prefix="P", sequence=12345, on=ON) == "P12345"

    def test_unknown_token_rejected(self):
        with pytest.raises(TemplateError):
            render_pattern("{PREFIX}-{WEEK}-{SEQUENCE}", prefix="BILL", sequence=1, on=ON)

    def test_sequence_token_required(self):
        with pytest.raises(TemplateError):
            render_pattern("{PREFIX}-{DATE}", prefix="BILL", sequence=1, on=ON)


class TestAllocation:
    def test_numbers_are_sequential_and_unique(self, app, db_session, tenant):
        numbers = [
            numbering_service.allocate_document_number(tenant_id=tenant.id, document_type="bill", model=Bill, on=ON)
            for _ in range(3)
        ]
        assert numbers == ["BILL-20260118-0001", "BILL-20260118-0002", "BILL-20260118-0003"]

        seq = db_session.query(DocumentSequence).filter_by(tenant_id=tenant.id, document_type="bill").one()
        assert seq.next_sequence == 4

    def test_sequences_are_per_tenant(self, app, db_session, tenant, other_tenant):
        first = numbering_service.allocate_document_number(tenant_id=tenant.id, document_type="bill", model=Bill, on=ON)
        second = numbering_service.allocate_document_number(
            tenant_id=other_tenant.id, document_type="bill", model=Bill, on=ON
        )
        assert first == second == "BILL-20260118-0001"

    def test_existing_number_is_skipped(self, app, db_session, tenant, product, cashier):
        bill = transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 1}]})

        # Rewind the counter so the next candidate collides with the stored bill
        seq = db_session.query(DocumentSequence).filter_by(tenant_id=tenant.id, document_type="bill").one()
        seq.next_sequence = 1
        db_session.commit()

        number = numbering_service.allocate_document_number(tenant_id=tenant.id, document_type="bill", model=Bill)
        assert number != bill.document_number
        assert number.endswith("-0002")

    def test_broken_pattern_falls_back_to_default(self, app, db_session, tenant, product, cashier):
        db_session.add(DocumentSequence(
            tenant_id=tenant.id, document_type="bill", prefix="SHOP", pattern="{PREFIX}-{BOGUS}", next_sequence=1,
        ))
        db_session.commit()

        bill = transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 1}]})
        assert bill.document_number.startswith("SHOP-")
        assert bill.document_number.endswith("-0001")

    def test_documents_get_distinct_numbers(self, app, db_session, product, cashier):
        bills = [
            transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 1}]})
            for _ in range(5)
        ]
        numbers = {bill.document_number for bill in bills}
        assert len(numbers) == 5


class TestInsertConflict:
    """The unique constraint on (tenant_id, document_number) catches what the existence check misses."""

    @pytest.fixture
    def rewound(self, db_session, tenant, product, cashier):
        bill = transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 1}]})
        seq = db_session.query(DocumentSequence).filter_by(tenant_id=tenant.id, document_type="bill").one()
        seq.next_sequence = 1
        db_session.commit()
        return bill

    def test_conflict_reruns_with_fresh_number(self, app, db_session, tenant, product, cashier, rewound, monkeypatch):
        real_exists = numbering_service._number_exists
        calls = []

        def stale_once(model, tenant_id, document_number):
            calls.append(document_number)
            if len(calls) == 1:
                return False
            return real_exists(model, tenant_id, document_number)

        monkeypatch.setattr(numbering_service, "_number_exists", stale_once)

        bill = transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 2}]})
        assert calls[0] == rewound.document_number
        assert bill.document_number != rewound.document_number
        assert bill.document_number.endswith("-0002")
        assert db_session.query(Bill).count() == 2
        assert db_session.get(Product, product.id).stock_quantity == Decimal("97")

    def test_conflicts_exhaust_retries(self, app, db_session, tenant, product, cashier, rewound, monkeypatch):
        monkeypatch.setattr(numbering_service, "_number_exists", lambda model, tenant_id, document_number: False)

        with pytest.raises(AllocationExhaustedError):
            transaction_service.create_bill(cashier, {"items": [{"product_id": product.id, "quantity": 2}]})

        assert db_session.query(Bill).count() == 1
        assert db_session.query(StockLedgerEntry).count() == 1
        assert db_session.get(Product, product.id).stock_quantity == Decimal("99")


class TestConfigureSequence:
    def test_configure_changes_next_number(self, app, db_session, tenant):
        numbering_service.configure_sequence(
            tenant_id=tenant.id, document_type="purchase", prefix="GRN",
            pattern="{PREFIX}/{YEAR}/{SEQUENCE4}", next_sequence=42,
        )
        preview = numbering_service.preview_document_number(tenant_id=tenant.id, document_type="purchase", on=ON)
        assert preview == "GRN/2026/0042"

    def test_invalid_pattern_rejected(self, app, db_session, tenant):
        with pytest.raises(ValidationError):
            numbering_service.configure_sequence(tenant_id=tenant.id, document_type="bill", pattern="{PREFIX}")

    def test_unknown_document_type_rejected(self, app, db_session, tenant):
        with pytest.raises(ValidationError):
            numbering_service.configure_sequence(tenant_id=tenant.id, document_type="quote", prefix="Q")

    def test_next_sequence_must_be_positive(self, app, db_session, tenant):
        with pytest.raises(ValidationError):
            numbering_service.configure_sequence(tenant_id=tenant.id, document_type="bill", next_sequence=0)
