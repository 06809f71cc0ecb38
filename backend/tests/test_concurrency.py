# Overview: Pytest coverage for serialized ledger writes and the retry helper.

"""
Concurrency tests

Ledger postings for one customer run on separate threads against a
file-backed SQLite database; every entry must chain from the one before it.
"""

import threading

import pytest
from sqlalchemy.orm.exc import StaleDataError

from agrisupply import create_app
from agrisupply.extensions import db
from agrisupply.models import Customer, CustomerLedgerEntry, User
from agrisupply.services import concurrency, ledger_service


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'BCRYPT_ROUNDS': 4,
    })
    with app.app_context():
        db.create_all()

        user = User(username="depot", email="depot@example.com", password_hash="dummy")
        db.session.add(user)
        db.session.commit()
        customer = Customer(created_by_user_id=user.id, name="Vitthal Shinde", phone="9890011223")
        db.session.add(customer)
        db.session.commit()
        seeded = (user.id, customer.id)

    yield app, seeded

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


class TestSerializedLedgerWrites:
    def test_concurrent_charges_chain_balances(self, file_app):
        app, (owner_id, customer_id) = file_app
        errors = []
        lock = threading.Lock()

        def worker(transaction_type, amount_cents):
            with app.app_context():
                try:
                    for _ in range(8):
                        ledger_service.record_charge(
                            owner_id=owner_id, customer_id=customer_id,
                            transaction_type=transaction_type, amount_cents=amount_cents,
                            description=f"{transaction_type} run",
                        )
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [
            threading.Thread(target=worker, args=("interest", 100)),
            threading.Thread(target=worker, args=("penalty", 250)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors

        with app.app_context():
            entries = (
                db.session.query(CustomerLedgerEntry)
                .filter_by(customer_id=customer_id)
                .order_by(CustomerLedgerEntry.id.asc())
                .all()
            )
            assert len(entries) == 16
            assert entries[0].balance_cents == entries[0].amount_cents
            for previous, entry in zip(entries, entries[1:]):
                assert entry.balance_cents == previous.balance_cents + entry.amount_cents

            customer = db.session.get(Customer, customer_id)
            assert customer.current_balance_cents == entries[-1].balance_cents == 8 * 100 + 8 * 250
            db.session.remove()


class TestRunWithRetry:
    def test_retries_stale_data(self, db_session, monkeypatch):
        monkeypatch.setattr(concurrency.time, "sleep", lambda seconds: None)
        calls = []

        def op():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("version mismatch")
            return "committed"

        assert concurrency.run_with_retry(op) == "committed"
        assert len(calls) == 3

    def test_gives_up_after_attempts(self, db_session, monkeypatch):
        monkeypatch.setattr(concurrency.time, "sleep", lambda seconds: None)
        calls = []

        def op():
            calls.append(1)
            raise StaleDataError("version mismatch")

        with pytest.raises(StaleDataError):
            concurrency.run_with_retry(op, attempts=2)
        assert len(calls) == 2

    def test_business_errors_are_not_retried(self, db_session):
        calls = []

        def op():
            calls.append(1)
            raise ledger_service.LedgerError("Amount must be greater than 0")

        with pytest.raises(ledger_service.LedgerError):
            concurrency.run_with_retry(op)
        assert len(calls) == 1

    def test_begin_serialized_opens_a_transaction(self, db_session):
        assert not db.session().in_transaction()
        concurrency.begin_serialized()
        assert db.session().in_transaction()
        db.session.rollback()
