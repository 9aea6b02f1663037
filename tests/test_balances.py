from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

import services
from database import init_schema
from models import Account, AccountType, Transaction, TransactionType
from schemas import ManualBalanceIn, TransactionIn
from services import AccountService, TransactionService


def make_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_schema(engine)
    return engine


def _account(session: Session, name: str = "Checking", **kwargs) -> Account:
    account = Account(
        user_id=1,
        name=name,
        type=kwargs.pop("type", AccountType.checking),
        **kwargs,
    )
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


def _post(session: Session, account_id: int, kind: TransactionType, amount: int, **kw):
    return TransactionService(session, 1).create(
        TransactionIn(
            account_id=account_id,
            type=kind,
            amount_cents=amount,
            date=kw.pop("date", date(2024, 1, 5)),
            **kw,
        )
    )


def _boom(*_args, **_kwargs):
    raise OperationalError("SELECT", {}, Exception("database is locked"))


def test_ledger_balance_is_signed_sum() -> None:
    with Session(make_engine()) as session:
        account = _account(session)
        _post(session, account.id, TransactionType.income, 1000)
        _post(session, account.id, TransactionType.expense, 250)
        _post(session, account.id, TransactionType.expense, 50)

        result = AccountService(session, 1).resolve_balance(account.id)
        assert result["balance_cents"] == 700
        assert result["manual_override_active"] is False
        assert result["transaction_impact_cents"] == 700


def test_transfer_moves_money_between_accounts() -> None:
    with Session(make_engine()) as session:
        checking = _account(session)
        savings = _account(session, "Rainy day", type=AccountType.savings)
        _post(session, checking.id, TransactionType.income, 1000)
        _post(
            session,
            checking.id,
            TransactionType.transfer,
            200,
            transfer_account_id=savings.id,
        )

        service = AccountService(session, 1)
        assert service.resolve_balance(checking.id)["balance_cents"] == 800
        assert service.resolve_balance(savings.id)["balance_cents"] == 200

        worth = service.net_worth()
        assert worth["net_worth_cents"] == 1000
        assert worth["total_savings_cents"] == 200


def test_manual_override_takes_precedence() -> None:
    with Session(make_engine()) as session:
        account = _account(session)
        _post(session, account.id, TransactionType.income, 1000)
        _post(session, account.id, TransactionType.expense, 300)

        service = AccountService(session, 1)
        service.set_manual_balance(
            account.id,
            ManualBalanceIn(balance_cents=500, note="bank statement"),
            now=datetime(2024, 1, 6, 9, 0),
        )

        result = service.resolve_balance(account.id)
        assert result["balance_cents"] == 500
        assert result["manual_override_active"] is True
        assert result["transaction_impact_cents"] == 0
        assert result["last_manual_set"] == datetime(2024, 1, 6, 9, 0)
        assert session.get(Account, account.id).balance_cents is None


def test_clearing_override_restores_ledger_balance() -> None:
    with Session(make_engine()) as session:
        account = _account(session)
        _post(session, account.id, TransactionType.income, 1000)
        _post(session, account.id, TransactionType.expense, 250)
        _post(session, account.id, TransactionType.expense, 50)

        service = AccountService(session, 1)
        service.set_manual_balance(account.id, ManualBalanceIn(balance_cents=500))
        cleared = service.clear_manual_override(account.id)

        assert cleared.manual_override_active is False
        assert cleared.manual_balance_cents is None
        assert cleared.manual_balance_set_at is None
        assert cleared.balance_cents == 700
        assert service.resolve_balance(account.id)["balance_cents"] == 700


def test_clear_override_keeps_first_write_when_restore_fails(monkeypatch) -> None:
    with Session(make_engine()) as session:
        account = _account(session)
        service = AccountService(session, 1)
        service.set_manual_balance(account.id, ManualBalanceIn(balance_cents=500))

        monkeypatch.setattr(services, "ledger_balance", _boom)
        cleared = service.clear_manual_override(account.id)

        assert cleared.manual_override_active is False
        assert cleared.manual_balance_cents is None
        assert cleared.balance_cents is None


def test_ledger_failure_falls_back_to_stored_balance(monkeypatch) -> None:
    with Session(make_engine()) as session:
        account = _account(session, balance_cents=1234)
        monkeypatch.setattr(services, "ledger_balance", _boom)

        result = AccountService(session, 1).resolve_balance(account.id)
        assert result["balance_cents"] == 1234
        assert result["manual_override_active"] is False


def test_override_fallback_when_account_read_fails(monkeypatch) -> None:
    with Session(make_engine()) as session:
        account = _account(session)
        service = AccountService(session, 1)
        service.set_manual_balance(account.id, ManualBalanceIn(balance_cents=500))
        monkeypatch.setattr(services, "ledger_balance", _boom)
        assert service.resolve_balance(account.id)["balance_cents"] == 500

        monkeypatch.setattr(session, "get", _boom)
        result = service.resolve_balance(account.id)
        assert result["balance_cents"] == 0
        assert result["manual_override_active"] is False


def test_unknown_or_foreign_account_resolves_to_zero() -> None:
    with Session(make_engine()) as session:
        account = _account(session)
        _post(session, account.id, TransactionType.income, 1000)

        assert AccountService(session, 1).resolve_balance(999)["balance_cents"] == 0
        other_owner = AccountService(session, 2).resolve_balance(account.id)
        assert other_owner["balance_cents"] == 0


def test_other_owners_transactions_do_not_count() -> None:
    with Session(make_engine()) as session:
        account = _account(session)
        _post(session, account.id, TransactionType.income, 1000)
        session.add(
            Transaction(
                user_id=2,
                account_id=account.id,
                type=TransactionType.expense,
                amount_cents=400,
                date=date(2024, 1, 5),
            )
        )
        session.commit()

        assert AccountService(session, 1).resolve_balance(account.id)[
            "balance_cents"
        ] == 1000


def test_transfer_validation() -> None:
    with Session(make_engine()) as session:
        account = _account(session)
        with pytest.raises(ValueError, match="Transfer accounts must differ"):
            _post(
                session,
                account.id,
                TransactionType.transfer,
                100,
                transfer_account_id=account.id,
            )
        with pytest.raises(ValueError, match="Account not found"):
            _post(session, 999, TransactionType.expense, 100)
