# Overview: Pytest coverage for invoice issuance, payments, voids and overdue handling.

"""
Invoice Lifecycle Tests

Covers numbering on creation, deterministic totals, the payment ceiling,
void immutability, derived overdue status, corrective invoices and
invoicing a point-of-sale ticket.
"""

from datetime import date

import pytest

from salon_ledger.models import Invoice, InvoicePayment
from salon_ledger.services import invoice_service
from salon_ledger.time_utils import utcnow
from salon_ledger.validation import (
    AlreadyVoid,
    InvalidAmount,
    InvoiceVoid,
    NotFoundError,
    OverPayment,
    ValidationError,
)


CUSTOMER = {"name": "Ana López", "tax_id": "12345678Z", "city": "Madrid"}
HAIRCUT_LINES = [{"description": "Corte y peinado", "quantity": 2, "unit_price": "50.00", "discount_pct": 10}]


def _issue(tenant_id, **overrides):
    params = {"customer": CUSTOMER, "lines": HAIRCUT_LINES, "tax_rate_code": "general"}
    params.update(overrides)
    return invoice_service.create_invoice(tenant_id, **params)


class TestCreation:
    def test_totals_and_number(self, db_session, tenant_a):
        invoice = _issue(tenant_a.id, issue_date=date(2026, 3, 1))

        assert invoice.number == "FAC-2026-000001"
        assert invoice.sequence_number == 1
        assert invoice.subtotal_cents == 9000
        assert invoice.taxable_base_cents == 9000
        assert invoice.tax_amount_cents == 1890
        assert invoice.total_cents == 10890
        assert invoice.amount_paid_cents == 0
        assert invoice.status == "issued"
        assert invoice.payment_status == "pending"
        assert invoice.due_date == date(2026, 3, 31)
        assert len(invoice.lines) == 1
        assert invoice.lines[0].base_cents == 9000

    def test_numbers_are_consecutive_per_series(self, db_session, tenant_a):
        numbers = [_issue(tenant_a.id, issue_date=date(2026, 1, 5)).number for _ in range(3)]
        proforma = _issue(tenant_a.id, issue_date=date(2026, 1, 5), invoice_type="proforma")

        assert numbers == ["FAC-2026-000001", "FAC-2026-000002", "FAC-2026-000003"]
        assert proforma.number == "PRO-2026-000001"

    def test_numbering_restarts_each_year(self, db_session, tenant_a):
        _issue(tenant_a.id, issue_date=date(2025, 12, 31))
        invoice = _issue(tenant_a.id, issue_date=date(2026, 1, 1))
        assert invoice.number == "FAC-2026-000001"

    def test_numbering_is_per_tenant(self, db_session, tenant_a, tenant_b):
        a = _issue(tenant_a.id, issue_date=date(2026, 2, 1))
        b = _issue(tenant_b.id, issue_date=date(2026, 2, 1))
        assert a.number == b.number == "FAC-2026-000001"

    def test_global_discount(self, db_session, tenant_a):
        invoice = _issue(
            tenant_a.id,
            lines=[{"description": "Tinte", "quantity": 1, "unit_price": "80.00"}],
            global_discount_pct=10,
            tax_rate_code="reduced",
        )
        assert invoice.subtotal_cents == 8000
        assert invoice.discount_amount_cents == 800
        assert invoice.taxable_base_cents == 7200
        assert invoice.tax_amount_cents == 720
        assert invoice.total_cents == 7920

    def test_failed_validation_consumes_no_number(self, db_session, tenant_a):
        with pytest.raises(ValidationError):
            _issue(tenant_a.id, customer={"name": ""})
        assert _issue(tenant_a.id).sequence_number == 1

    @pytest.mark.parametrize("overrides", [
        {"lines": []},
        {"lines": [{"description": "", "unit_price": "1.00"}]},
        {"lines": [{"description": "x", "quantity": 0, "unit_price": "1.00"}]},
        {"lines": [{"description": "x", "quantity": "1.0005", "unit_price": "1.00"}]},
        {"lines": [{"description": "x", "quantity": "1e20", "unit_price": "1.00"}]},
        {"lines": [{"description": "x", "quantity": 100001, "unit_price": "1.00"}]},
        {"lines": [{"description": "x", "unit_price": "-1.00"}]},
        {"global_discount_pct": 60},
        {"tax_rate_code": "luxury"},
        {"invoice_type": "receipt"},
        {"invoice_type": "corrective"},
        {"due_in_days": 400},
        {"customer": None},
    ])
    def test_rejects_invalid_input(self, db_session, tenant_a, overrides):
        with pytest.raises(ValidationError):
            _issue(tenant_a.id, **overrides)
        assert db_session.query(Invoice).count() == 0

    def test_total_beyond_limit_rejected_and_session_stays_usable(self, db_session, tenant_a):
        lines = [{"description": "Lote", "quantity": 100000, "unit_price": "9999999.99"}]

        with pytest.raises(InvalidAmount):
            _issue(tenant_a.id, lines=lines)

        assert tenant_a.code == "LOLA"
        assert db_session.query(Invoice).count() == 0
        assert _issue(tenant_a.id).sequence_number == 1

    def test_tax_pushing_total_over_limit_rejected(self, db_session, tenant_a):
        lines = [{"description": "Reforma", "quantity": 1, "unit_price": "9000000.00"}]

        with pytest.raises(InvalidAmount) as exc_info:
            _issue(tenant_a.id, lines=lines)
        assert exc_info.value.details["field"] == "total"

    def test_corrective_type_only_through_create_corrective(self, db_session, tenant_a):
        original = _issue(tenant_a.id)

        with pytest.raises(ValidationError):
            _issue(tenant_a.id, invoice_type="corrective", corrects_invoice_id=original.id)

        corrective = invoice_service.create_corrective(tenant_a.id, original.id, reason="Wrong price")
        assert corrective.sequence_number == 1

    def test_line_limit_from_config(self, app, db_session, tenant_a):
        lines = [{"description": f"Servicio {i}", "unit_price": "1.00"} for i in range(101)]
        with pytest.raises(ValidationError):
            _issue(tenant_a.id, lines=lines)

    def test_document_hash_is_stable(self, db_session, tenant_a):
        invoice = _issue(tenant_a.id, issue_date=date(2026, 3, 1))
        assert invoice.document_hash == invoice_service.document_hash(
            "FAC-2026-000001", date(2026, 3, 1), 10890,
        )


class TestPayments:
    def test_partial_then_full_payment(self, db_session, tenant_a):
        invoice = _issue(tenant_a.id)
        assert invoice.payment_status == "pending"

        invoice_service.apply_payment(tenant_a.id, invoice.id, "60.00", method="card")
        invoice = invoice_service.get_invoice(tenant_a.id, invoice.id)
        assert invoice.payment_status == "partial"
        assert invoice.amount_paid_cents == 6000
        assert invoice.status == "issued"

        invoice_service.apply_payment(tenant_a.id, invoice.id, "48.90", method="cash")
        invoice = invoice_service.get_invoice(tenant_a.id, invoice.id)
        assert invoice.payment_status == "paid"
        assert invoice.status == "paid"
        assert invoice.amount_paid_cents == 10890
        assert invoice.paid_at is not None
        assert len(invoice_service.get_payments(tenant_a.id, invoice.id)) == 2

    def test_overpayment_rejected_and_nothing_recorded(self, db_session, tenant_a):
        invoice = _issue(tenant_a.id)

        with pytest.raises(OverPayment) as exc_info:
            invoice_service.apply_payment(tenant_a.id, invoice.id, "200.00")

        assert exc_info.value.details["excess"] == "91.10"
        assert "91.10" in exc_info.value.message
        invoice = invoice_service.get_invoice(tenant_a.id, invoice.id)
        assert invoice.amount_paid_cents == 0
        assert invoice.to_dict()["amount_paid"] == "0.00"
        assert db_session.query(InvoicePayment).count() == 0

    def test_paid_invoice_accepts_no_more(self, db_session, tenant_a):
        invoice = _issue(tenant_a.id)
        invoice_service.apply_payment(tenant_a.id, invoice.id, "108.90")
        with pytest.raises(OverPayment):
            invoice_service.apply_payment(tenant_a.id, invoice.id, "0.01")

    @pytest.mark.parametrize("amount", ["0", "-10.00", "1.234"])
    def test_invalid_amounts(self, db_session, tenant_a, amount):
        invoice = _issue(tenant_a.id)
        with pytest.raises(InvalidAmount):
            invoice_service.apply_payment(tenant_a.id, invoice.id, amount)

    def test_payment_on_other_tenant_invoice_not_found(self, db_session, tenant_a, tenant_b):
        invoice = _issue(tenant_a.id)
        with pytest.raises(NotFoundError):
            invoice_service.apply_payment(tenant_b.id, invoice.id, "10.00")


class TestVoid:
    def test_void_keeps_totals_and_payments(self, db_session, tenant_a):
        invoice = _issue(tenant_a.id)
        invoice_service.apply_payment(tenant_a.id, invoice.id, "60.00")

        voided = invoice_service.void_invoice(tenant_a.id, invoice.id, reason="Duplicated", voided_by="ana")

        assert voided.status == "void"
        assert voided.void_reason == "Duplicated"
        assert voided.voided_at is not None
        assert voided.total_cents == 10890
        assert voided.amount_paid_cents == 6000
        assert len(voided.payments) == 1

    def test_void_is_terminal(self, db_session, tenant_a):
        invoice = _issue(tenant_a.id)
        invoice_service.void_invoice(tenant_a.id, invoice.id, reason="Error")

        with pytest.raises(AlreadyVoid):
            invoice_service.void_invoice(tenant_a.id, invoice.id, reason="Again")
        with pytest.raises(InvoiceVoid):
            invoice_service.apply_payment(tenant_a.id, invoice.id, "10.00")
        with pytest.raises(InvoiceVoid):
            invoice_service.create_corrective(tenant_a.id, invoice.id, reason="Fix")

        invoice = invoice_service.get_invoice(tenant_a.id, invoice.id)
        assert invoice.amount_paid_cents == 0
        assert invoice.effective_status() == "void"

    def test_void_requires_reason(self, db_session, tenant_a):
        invoice = _issue(tenant_a.id)
        with pytest.raises(ValidationError):
            invoice_service.void_invoice(tenant_a.id, invoice.id, reason="  ")

    def test_paid_invoice_can_be_voided(self, db_session, tenant_a):
        invoice = _issue(tenant_a.id)
        invoice_service.apply_payment(tenant_a.id, invoice.id, "108.90")
        voided = invoice_service.void_invoice(tenant_a.id, invoice.id, reason="Returned")
        assert voided.status == "void"
        assert voided.payment_status == "paid"


class TestOverdue:
    def test_effective_status_derived_from_due_date(self, db_session, tenant_a):
        invoice = _issue(tenant_a.id, issue_date=date(2026, 1, 1), due_in_days=30)

        assert invoice.effective_status(date(2026, 1, 31)) == "issued"
        assert invoice_service.effective_status(invoice, date(2026, 2, 1)) == "overdue"
        assert invoice.status == "issued"
        assert invoice.days_overdue(date(2026, 2, 11)) == 11

    def test_paid_or_void_never_overdue(self, db_session, tenant_a):
        paid = _issue(tenant_a.id, issue_date=date(2026, 1, 1))
        invoice_service.apply_payment(tenant_a.id, paid.id, "108.90")
        void = _issue(tenant_a.id, issue_date=date(2026, 1, 1))
        invoice_service.void_invoice(tenant_a.id, void.id, reason="Error")

        late = date(2026, 6, 1)
        assert invoice_service.get_invoice(tenant_a.id, paid.id).effective_status(late) == "paid"
        assert invoice_service.get_invoice(tenant_a.id, void.id).effective_status(late) == "void"

    def test_sweep_materializes_overdue(self, db_session, tenant_a, tenant_b):
        late = _issue(tenant_a.id, issue_date=date(2026, 1, 1))
        partial = _issue(tenant_a.id, issue_date=date(2026, 1, 1))
        invoice_service.apply_payment(tenant_a.id, partial.id, "10.00")
        current = _issue(tenant_a.id, issue_date=date(2026, 3, 1))
        other_tenant = _issue(tenant_b.id, issue_date=date(2026, 1, 1))

        count = invoice_service.sweep_overdue(tenant_a.id, as_of=date(2026, 3, 15))

        assert count == 2
        assert invoice_service.get_invoice(tenant_a.id, late.id).status == "overdue"
        assert invoice_service.get_invoice(tenant_a.id, partial.id).status == "overdue"
        assert invoice_service.get_invoice(tenant_a.id, current.id).status == "issued"
        assert invoice_service.get_invoice(tenant_b.id, other_tenant.id).status == "issued"

    def test_overdue_invoice_can_still_be_paid(self, db_session, tenant_a):
        invoice = _issue(tenant_a.id, issue_date=date(2026, 1, 1))
        invoice_service.sweep_overdue(tenant_a.id, as_of=date(2026, 3, 15))

        invoice_service.apply_payment(tenant_a.id, invoice.id, "108.90")
        invoice = invoice_service.get_invoice(tenant_a.id, invoice.id)
        assert invoice.status == "paid"

    def test_list_overdue_oldest_first(self, db_session, tenant_a):
        older = _issue(tenant_a.id, issue_date=date(2026, 1, 1))
        newer = _issue(tenant_a.id, issue_date=date(2026, 1, 20))
        _issue(tenant_a.id, issue_date=date(2026, 3, 1))

        overdue = invoice_service.list_overdue(tenant_a.id, as_of=date(2026, 3, 1))
        assert [i["id"] for i in overdue] == [older.id, newer.id]
        assert overdue[0]["days_overdue"] == 29
        assert overdue[0]["status"] == "overdue"


class TestCorrectiveAndSale:
    def test_corrective_invoice_uses_rec_series(self, db_session, tenant_a):
        original = _issue(tenant_a.id, issue_date=utcnow().date())

        corrective = invoice_service.create_corrective(
            tenant_a.id,
            original.id,
            reason="Wrong price",
            lines=[{"description": "Corte y peinado", "quantity": 2, "unit_price": "45.00"}],
        )

        assert corrective.series == "REC"
        assert corrective.number.startswith("REC-")
        assert corrective.invoice_type == "corrective"
        assert corrective.corrects_invoice_id == original.id
        assert corrective.correction_reason == "Wrong price"
        assert corrective.customer_name == original.customer_name
        assert corrective.total_cents == 10890
        assert original.corrections == [corrective]

    def test_corrective_defaults_to_original_lines(self, db_session, tenant_a):
        original = _issue(tenant_a.id)
        corrective = invoice_service.create_corrective(tenant_a.id, original.id, reason="Customer data")
        assert corrective.total_cents == original.total_cents
        assert corrective.lines[0].quantity_milli == 2000

    def test_corrective_requires_reason(self, db_session, tenant_a):
        original = _issue(tenant_a.id)
        with pytest.raises(ValidationError):
            invoice_service.create_corrective(tenant_a.id, original.id, reason="")

    def test_invoice_from_sale(self, db_session, tenant_a):
        sale = {
            "id": 1234,
            "items": [
                {"name": "Tinte", "quantity": 1, "price": "45.00"},
                {"name": "Champú", "quantity": 2, "price": "9.95", "discount": 10},
            ],
            "payment_method": "card",
        }

        invoice = invoice_service.create_from_sale(tenant_a.id, sale, {"name": "Ana López"}, created_by="ana")

        assert invoice.source_reference == "sale:1234"
        assert invoice.notes == "Generated from sale #1234"
        assert invoice.payment_method_hint == "card"
        assert [line.description for line in invoice.lines] == ["Tinte", "Champú"]
        # 45.00 + 17.91 = 62.91; IVA 21% = 13.21
        assert invoice.subtotal_cents == 6291
        assert invoice.tax_amount_cents == 1321
        assert invoice.total_cents == 7612

    def test_sale_without_items_rejected(self, db_session, tenant_a):
        with pytest.raises(ValidationError):
            invoice_service.create_from_sale(tenant_a.id, {"id": 1, "items": []}, {"name": "Ana"})


class TestListing:
    def test_filters(self, db_session, tenant_a, tenant_b):
        paid = _issue(tenant_a.id, issue_date=date(2026, 1, 10))
        invoice_service.apply_payment(tenant_a.id, paid.id, "108.90")
        pending = _issue(tenant_a.id, issue_date=date(2026, 3, 10), customer={"name": "Bea Ruiz"})
        void = _issue(tenant_a.id, issue_date=date(2026, 3, 11))
        invoice_service.void_invoice(tenant_a.id, void.id, reason="Error")
        _issue(tenant_b.id, issue_date=date(2026, 3, 10))

        as_of = date(2026, 3, 15)

        def ids(**filters):
            return [i.id for i in invoice_service.list_invoices(tenant_a.id, as_of=as_of, **filters)]

        assert ids() == [void.id, pending.id, paid.id]
        assert ids(status="paid") == [paid.id]
        assert ids(status="void") == [void.id]
        assert ids(status="issued") == [pending.id]
        assert ids(status="overdue") == []
        assert ids(customer_name="bea") == [pending.id]
        assert ids(start=date(2026, 3, 1), end=date(2026, 3, 10)) == [pending.id]
        assert ids(min_total="100.00", max_total="200.00") == [void.id, pending.id, paid.id]
        assert ids(limit=1, offset=1) == [pending.id]

    def test_invalid_status_filter(self, db_session, tenant_a):
        with pytest.raises(ValidationError):
            invoice_service.list_invoices(tenant_a.id, status="draft")


class TestTaxIds:
    @pytest.mark.parametrize("value", ["12345678Z", "x1234567l", " B12345678 ", "Y1234567X"])
    def test_valid(self, value):
        assert invoice_service.validate_tax_id(value) is True

    @pytest.mark.parametrize("value", ["12345678A", "X1234567A", "1234", "", None, "I1234567A"])
    def test_invalid(self, value):
        assert invoice_service.validate_tax_id(value) is False

    def test_tax_rates(self):
        rates = {r["code"]: r["rate"] for r in invoice_service.tax_rates()}
        assert rates == {"general": "21", "reduced": "10", "super_reduced": "4", "exempt": "0"}
