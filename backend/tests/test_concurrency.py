# Overview: Threaded races against a file database for the ledger's atomic operations.

"""
Concurrency Tests

Each worker runs in its own thread with its own app context (and therefore
its own SQLAlchemy session and connection). A barrier releases them
together so they contend for the same rows. The last test checks that
run_with_retry leaves a clean session behind whatever it raises.
"""

import threading

import pytest

from salon_ledger.extensions import db
from salon_ledger.models import CashMovement, CashSession, Invoice, Tenant
from salon_ledger.services import cash_service, invoice_service
from salon_ledger.services.concurrency import run_with_retry
from salon_ledger.validation import LedgerError, OverPayment, SessionAlreadyOpen, SessionClosed


def _race(app, workers: int, fn):
    """Run fn(index) in `workers` threads; returns (results, errors) by index."""
    barrier = threading.Barrier(workers)
    results, errors = {}, {}

    def _worker(index):
        with app.app_context():
            try:
                barrier.wait()
                results[index] = fn(index)
            except LedgerError as exc:
                errors[index] = exc
            finally:
                db.session.remove()

    threads = [threading.Thread(target=_worker, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=120)
    return results, errors


def test_concurrent_opens_yield_exactly_one_session(file_app):
    tenant_id = file_app.config['TEST_TENANT_ID']

    results, errors = _race(
        file_app, 8, lambda i: cash_service.open_session(tenant_id, "100.00", opened_by=f"terminal-{i}").id,
    )

    assert len(results) == 1
    assert len(errors) == 7
    assert all(isinstance(e, SessionAlreadyOpen) for e in errors.values())

    with file_app.app_context():
        assert db.session.query(CashSession).filter_by(tenant_id=tenant_id, status="open").count() == 1


def test_concurrent_invoice_numbers_are_gapless(file_app):
    tenant_id = file_app.config['TEST_TENANT_ID']
    workers = 8

    def _create(i):
        invoice = invoice_service.create_invoice(
            tenant_id,
            customer={"name": f"Cliente {i}"},
            lines=[{"description": "Corte", "quantity": 1, "unit_price": "20.00"}],
        )
        return invoice.sequence_number

    results, errors = _race(file_app, workers, _create)

    assert errors == {}
    assert sorted(results.values()) == list(range(1, workers + 1))

    with file_app.app_context():
        numbers = [n for (n,) in db.session.query(Invoice.number).filter_by(tenant_id=tenant_id)]
        assert len(set(numbers)) == workers


def test_concurrent_payments_never_exceed_total(file_app):
    tenant_id = file_app.config['TEST_TENANT_ID']

    with file_app.app_context():
        invoice = invoice_service.create_invoice(
            tenant_id,
            customer={"name": "Ana"},
            lines=[{"description": "Corte y peinado", "quantity": 2, "unit_price": "50.00", "discount_pct": 10}],
        )
        invoice_id = invoice.id
        db.session.remove()

    results, errors = _race(
        file_app, 10, lambda i: invoice_service.apply_payment(tenant_id, invoice_id, "20.00").amount_cents,
    )

    # 108.90 fits five payments of 20.00
    assert len(results) == 5
    assert all(isinstance(e, OverPayment) for e in errors.values())

    with file_app.app_context():
        invoice = db.session.get(Invoice, invoice_id)
        assert invoice.amount_paid_cents == sum(results.values()) == 10000
        assert invoice.amount_paid_cents <= invoice.total_cents
        assert invoice.payment_status == "partial"


def test_movements_racing_close_are_counted_or_rejected(file_app):
    tenant_id = file_app.config['TEST_TENANT_ID']

    with file_app.app_context():
        session_id = cash_service.open_session(tenant_id, "50.00").id
        db.session.remove()

    def _work(i):
        if i == 0:
            return cash_service.close_session(tenant_id, session_id, "0.00").id
        return cash_service.register_sale(tenant_id, session_id, "10.00").id

    results, errors = _race(file_app, 6, _work)

    assert 0 in results
    assert all(isinstance(e, SessionClosed) for e in errors.values())

    with file_app.app_context():
        session = db.session.get(CashSession, session_id)
        movements = db.session.query(CashMovement).filter_by(session_id=session_id).all()
        assert len(movements) == len(results) - 1
        assert session.expected_cash_cents == 5000 + sum(m.amount_cents for m in movements)


def test_unexpected_error_rolls_back_before_leaving(db_session, tenant_a):
    def _op():
        tenant = db.session.get(Tenant, tenant_a.id)
        tenant.name = "Renamed"
        db.session.flush()
        raise OverflowError("value does not fit")

    with pytest.raises(OverflowError):
        run_with_retry(_op)

    assert db_session.get(Tenant, tenant_a.id).name == "Salon A - Peluquería Lola"
