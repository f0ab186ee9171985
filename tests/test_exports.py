from __future__ import annotations

from decimal import Decimal

import pytest


def _approved_expense(session, owner, approver, *, amount="25.00", currency="USD", when):
    from spendtrail.modules.expenses.models import AttachmentKind
    from spendtrail.modules.expenses.service import attach_receipt, create_expense
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import transition_expense

    expense = create_expense(
        session,
        actor=owner,
        merchant_name="Uber",
        amount=amount,
        currency=currency,
        expense_date=when,
        category="transportation",
    )
    attach_receipt(
        session, expense_id=expense.id, actor=owner, reference="r", kind=AttachmentKind.IMAGE
    )
    transition_expense(session, expense_id=expense.id, event=ExpenseEvent.SUBMIT, actor=owner)
    return transition_expense(
        session, expense_id=expense.id, event=ExpenseEvent.APPROVE, actor=approver
    )


def test_export_moves_every_expense_and_records_totals(session, make_actor, receipt_date):
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.expenses.store import ExpenseStore
    from spendtrail.modules.exports.service import export_expenses, get_export_batch
    from spendtrail.modules.identity.models import UserRole

    employee = make_actor()
    manager = make_actor(UserRole.MANAGER)
    finance = make_actor(UserRole.FINANCE)
    a = _approved_expense(session, employee, manager, amount="25.00", when=receipt_date)
    b = _approved_expense(session, employee, manager, amount="10.50", when=receipt_date)
    c = _approved_expense(session, employee, manager, amount="7.00", currency="EUR", when=receipt_date)

    batch = export_expenses(
        session, expense_ids=[a.id, b.id, c.id, a.id], actor=finance, destination=" netsuite "
    )

    assert batch.expense_count == 3
    assert batch.totals_json == {"EUR": "7.00", "USD": "35.50"}
    assert batch.destination == "netsuite"
    assert batch.requested_by_user_id == finance.user_id

    store = ExpenseStore(session)
    for expense_id in (a.id, b.id, c.id):
        expense = store.load(expense_id)
        assert expense.status == ExpenseStatus.EXPORTED
        assert expense.export_batch_id == batch.id

    assert {e.id for e in get_export_batch(session, batch_id=batch.id).expenses} == {a.id, b.id, c.id}


def test_export_is_all_or_nothing(session, make_actor, receipt_date):
    from spendtrail.core.errors import IllegalTransition
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.expenses.service import create_expense
    from spendtrail.modules.expenses.store import ExpenseStore
    from spendtrail.modules.exports.models import ExportBatch
    from spendtrail.modules.exports.service import export_expenses
    from spendtrail.modules.identity.models import UserRole

    employee = make_actor()
    manager = make_actor(UserRole.MANAGER)
    finance = make_actor(UserRole.FINANCE)
    approved = _approved_expense(session, employee, manager, when=receipt_date)
    draft = create_expense(
        session, actor=employee, merchant_name="Lunch", amount="12.00", expense_date=receipt_date
    )

    with pytest.raises(IllegalTransition):
        export_expenses(session, expense_ids=[approved.id, draft.id], actor=finance)

    assert session.query(ExportBatch).count() == 0
    store = ExpenseStore(session)
    assert store.load(approved.id).status == ExpenseStatus.APPROVED
    assert store.load(approved.id).export_batch_id is None
    assert store.load(draft.id).status == ExpenseStatus.DRAFT


def test_exported_expense_cannot_be_exported_again(session, make_actor, receipt_date):
    from spendtrail.core.errors import IllegalTransition
    from spendtrail.modules.exports.service import export_expenses
    from spendtrail.modules.identity.models import UserRole

    employee = make_actor()
    manager = make_actor(UserRole.MANAGER)
    finance = make_actor(UserRole.FINANCE)
    expense = _approved_expense(session, employee, manager, when=receipt_date)
    export_expenses(session, expense_ids=[expense.id], actor=finance)

    with pytest.raises(IllegalTransition):
        export_expenses(session, expense_ids=[expense.id], actor=finance)


@pytest.mark.parametrize("role", ["EMPLOYEE", "MANAGER"])
def test_only_finance_can_export(session, make_actor, receipt_date, role):
    from spendtrail.core.errors import TransitionForbidden
    from spendtrail.modules.exports.service import export_expenses, mark_expenses_paid
    from spendtrail.modules.identity.models import UserRole

    employee = make_actor()
    manager = make_actor(UserRole.MANAGER)
    expense = _approved_expense(session, employee, manager, when=receipt_date)
    actor = make_actor(UserRole(role))

    with pytest.raises(TransitionForbidden):
        export_expenses(session, expense_ids=[expense.id], actor=actor)
    with pytest.raises(TransitionForbidden):
        mark_expenses_paid(session, expense_ids=[expense.id], actor=actor)


def test_empty_selection_is_rejected(session, make_actor):
    from spendtrail.core.errors import PolicyViolation
    from spendtrail.modules.exports.service import export_expenses
    from spendtrail.modules.identity.models import UserRole

    with pytest.raises(PolicyViolation):
        export_expenses(session, expense_ids=[], actor=make_actor(UserRole.ADMIN))


def test_mark_paid_in_bulk(session, make_actor, receipt_date):
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.exports.service import mark_expenses_paid
    from spendtrail.modules.identity.models import UserRole

    employee = make_actor()
    manager = make_actor(UserRole.MANAGER)
    finance = make_actor(UserRole.FINANCE)
    a = _approved_expense(session, employee, manager, when=receipt_date)
    b = _approved_expense(session, employee, manager, amount="3.20", when=receipt_date)

    paid = mark_expenses_paid(session, expense_ids=[a.id, b.id], actor=finance)

    assert [e.status for e in paid] == [ExpenseStatus.PAID, ExpenseStatus.PAID]
    assert all(e.paid_at is not None for e in paid)
    assert sum(Decimal(e.amount) for e in paid) == Decimal("28.20")


def test_single_export_needs_an_existing_batch(session, make_actor, receipt_date):
    import uuid

    from spendtrail.core.errors import PolicyViolation
    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.expenses.store import ExpenseStore
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.workflow.models import ExpenseEvent
    from spendtrail.modules.workflow.service import transition_expense

    employee = make_actor()
    finance = make_actor(UserRole.FINANCE)
    expense = _approved_expense(
        session, employee, make_actor(UserRole.MANAGER), when=receipt_date
    )

    with pytest.raises(PolicyViolation) as exc:
        transition_expense(
            session,
            expense_id=expense.id,
            event=ExpenseEvent.EXPORT,
            actor=finance,
            batch_id=uuid.uuid4(),
        )
    assert exc.value.requirements == ["Export batch not found"]

    expense = ExpenseStore(session).load(expense.id)
    assert expense.status == ExpenseStatus.APPROVED
    assert expense.export_batch_id is None

    paid = transition_expense(
        session, expense_id=expense.id, event=ExpenseEvent.MARK_PAID, actor=finance
    )
    assert paid.status == ExpenseStatus.PAID


def test_failed_batch_write_leaves_session_usable(session, make_actor, receipt_date):
    import uuid

    from sqlalchemy.exc import IntegrityError

    from spendtrail.modules.expenses.models import ExpenseStatus
    from spendtrail.modules.expenses.store import ExpenseStore
    from spendtrail.modules.identity.models import UserRole

    employee = make_actor()
    expense = _approved_expense(
        session, employee, make_actor(UserRole.MANAGER), when=receipt_date
    )
    store = ExpenseStore(session)

    with pytest.raises(IntegrityError):
        store.save(
            expense,
            expected_status=ExpenseStatus.APPROVED,
            values={"status": ExpenseStatus.EXPORTED, "export_batch_id": uuid.uuid4()},
        )

    expense = store.load(expense.id)
    assert expense.status == ExpenseStatus.APPROVED
    assert expense.export_batch_id is None
