"""
Salary payments: net pay arithmetic, the account debit, overdraft rule,
reference numbers and listing.
"""
from __future__ import annotations

import pytest

from pharmacy_pos.config import Policy
from pharmacy_pos.database.errors import ConflictError, NotFoundError, StateError, ValidationError
from pharmacy_pos.database.repositories import AccountsRepo, AuditLogRepo, SalaryPaymentsRepo
from pharmacy_pos.requests import SalaryPaymentRequest

DAY = "2025-03-31"


@pytest.fixture
def salaries(conn) -> SalaryPaymentsRepo:
    return SalaryPaymentsRepo(conn)


def _pay(name="Sana Iqbal", basic=500.0, **kw) -> SalaryPaymentRequest:
    kw.setdefault("payment_date", DAY)
    return SalaryPaymentRequest(employee_name=name, basic_amount=basic, **kw)


def test_net_pay_is_debited_from_account(salaries, fund, bank_account_id, balance) -> None:
    fund(bank_account_id, 2000)

    pay = salaries.record_payment(
        _pay(basic=800, allowances=100, bonuses=50, deductions=30, account_id=bank_account_id,
             payment_method="bank_transfer", pay_period_start="2025-03-01", pay_period_end="2025-03-31")
    )

    assert pay["total_amount"] == 920
    assert pay["reference_number"] == "SAL-20250331-0001"
    assert balance("accounts", bank_account_id) == 1080

    entries = list(AccountsRepo(salaries.conn).get_entries(bank_account_id))
    last = entries[-1]
    assert (last.entry_type, last.debit, last.balance) == ("payment", 920, 1080)
    assert (last.reference_type, last.reference_id) == ("salary_payment", pay["payment_id"])
    assert AccountsRepo(salaries.conn).reconcile(bank_account_id).ok


def test_defaults_to_cash_drawer(salaries, fund, cash_account_id, balance) -> None:
    fund(cash_account_id, 600)
    pay = salaries.record_payment(_pay())
    assert pay["account_id"] == cash_account_id
    assert balance("accounts", cash_account_id) == 100


def test_overdraft_rejected_and_nothing_written(salaries, conn, cash_account_id, balance) -> None:
    with pytest.raises(StateError, match="Insufficient balance"):
        salaries.record_payment(_pay(basic=50))

    assert balance("accounts", cash_account_id) == 0
    assert salaries.list_payments() == []
    assert conn.execute("SELECT COUNT(*) FROM salary_payments").fetchone()[0] == 0


def test_overdraft_allowed_by_policy(conn, cash_account_id, balance) -> None:
    repo = SalaryPaymentsRepo(conn, Policy(allow_overdraft=True))
    repo.record_payment(_pay(basic=50))
    assert balance("accounts", cash_account_id) == -50


@pytest.mark.parametrize(
    "kw,field",
    [
        ({"name": " "}, "employee_name"),
        ({"basic": -1}, "basic_amount"),
        ({"allowances": -5}, "allowances"),
        ({"basic": 100, "deductions": 100}, "deductions"),
        ({"payment_method": "barter"}, "payment_method"),
        ({"pay_period_start": "2025-03-31", "pay_period_end": "2025-03-01"}, "pay_period_end"),
    ],
)
def test_invalid_requests(salaries, kw, field) -> None:
    with pytest.raises(ValidationError) as ei:
        salaries.record_payment(_pay(**kw))
    assert ei.value.field == field


def test_unknown_account(salaries) -> None:
    with pytest.raises(NotFoundError):
        salaries.record_payment(_pay(account_id=999))


def test_reference_numbers_are_unique(salaries, fund, cash_account_id) -> None:
    fund(cash_account_id, 5000)
    first = salaries.record_payment(_pay(reference_number="CHQ-1001"))
    assert first["reference_number"] == "CHQ-1001"

    with pytest.raises(ConflictError) as ei:
        salaries.record_payment(_pay(reference_number="CHQ-1001"))
    assert ei.value.field == "reference_number"

    assert salaries.record_payment(_pay())["reference_number"] == "SAL-20250331-0001"


def test_list_by_employee_and_window(salaries, fund, cash_account_id) -> None:
    fund(cash_account_id, 5000)
    early = salaries.record_payment(_pay("Sana Iqbal", employee_id=1, payment_date="2025-03-05"))
    salaries.record_payment(_pay("Omar Khan", employee_id=2, payment_date="2025-03-05"))
    mar = salaries.record_payment(_pay("Sana Iqbal", employee_id=1))

    assert [p["payment_id"] for p in salaries.list_payments(employee_id=1)] == [
        mar["payment_id"], early["payment_id"],
    ]
    assert len(salaries.list_payments(date_from="2025-03-10", date_to="2025-03-31")) == 1


def test_payment_is_audited(salaries, conn, fund, cash_account_id) -> None:
    fund(cash_account_id, 600)
    pay = salaries.record_payment(_pay(paid_by=3))

    logs = AuditLogRepo(conn).list_logs("salary_payment", pay["payment_id"])
    assert logs[0]["action"] == "create"
    assert logs[0]["changes"]["total"] == 500


def test_from_payload_computes_net_pay() -> None:
    req = SalaryPaymentRequest.from_payload(
        {"employeeName": "Sana", "basicAmount": "400", "bonuses": 25, "deductions": "10.5",
         "transactionReference": "TRX-9"}
    )
    assert req.total_amount == 414.5
    assert req.reference_number == "TRX-9"
    assert req.payment_method == "cash"
