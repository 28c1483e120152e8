import pytest

from stepforge.exceptions import (
    NotFoundException,
    OrderingConflictException,
    ParentMismatchException,
    ValidationException,
)
from stepforge.models import Fixture, ParentRef
from stepforge.schemas.step import StepCreate, StepUpdate
from stepforge.services.ordering import OrderingService
from stepforge.services.step_repository import StepRepository
from stepforge.services.version_ledger import VersionLedger


def add_step(session, tx, ref, action, **kwargs):
    kwargs.setdefault("generated_code_line", f"await page.getByText('{action}').click();")
    with tx():
        step = StepRepository(session).add_step(ref, StepCreate(action_description=action, **kwargs))
    return step


@pytest.fixture(name="ref")
def ref_fixture(test_case):
    return ParentRef.test_case(test_case.id)


def _actions(session, ref):
    return [s.action_description for s in StepRepository(session).list_steps(ref)]


def test_add_step_appends_and_snapshots(session, tx, ref, test_case):
    """追加のたびに末尾に並び、バージョンが1つ進む"""
    first = add_step(session, tx, ref, "Open login page")
    second = add_step(session, tx, ref, "Submit form")

    assert (first.order, second.order) == (0, 1)
    session.refresh(test_case)
    assert test_case.version == "1.0.2"

    history = VersionLedger(session).list_history(ref)
    assert [v.version for v in history] == ["1.0.2", "1.0.1"]
    assert len(VersionLedger(session).step_versions(history[0])) == 2
    assert len(VersionLedger(session).step_versions(history[1])) == 1


def test_add_step_records_user(session, ref):
    from stepforge.services.transaction import Transaction

    with Transaction(session, "qa@example.com", dispatcher=lambda refs: []):
        step = StepRepository(session).add_step(ref, StepCreate(action_description="Open"))
    assert step.created_by == "qa@example.com"
    latest = VersionLedger(session).find_latest(ref)
    assert latest.created_by == "qa@example.com"


def test_add_step_rejects_blank_action(session, tx, ref, test_case):
    with pytest.raises(ValidationException):
        add_step(session, tx, ref, "   ")
    session.refresh(test_case)
    assert test_case.version == "1.0"
    assert VersionLedger(session).list_history(ref) == []


def test_add_step_to_missing_parent(session, tx):
    with pytest.raises(NotFoundException):
        add_step(session, tx, ParentRef.test_case(999), "Open")


def test_failed_change_leaves_no_snapshot(session, tx, ref, test_case, monkeypatch):
    """途中で整合性エラーになった場合、ステップもスナップショットも残らない"""
    add_step(session, tx, ref, "Open")

    def broken(self, ref):
        raise OrderingConflictException("broken", details={})

    with monkeypatch.context() as m:
        m.setattr(OrderingService, "verify_dense", broken)
        with pytest.raises(OrderingConflictException):
            add_step(session, tx, ref, "Submit")

    session.refresh(test_case)
    assert test_case.version == "1.0.1"
    assert _actions(session, ref) == ["Open"]
    assert len(VersionLedger(session).list_history(ref)) == 1


def test_update_step_changes_only_given_fields(session, tx, ref, test_case):
    step = add_step(session, tx, ref, "Open", expected_result="Login form shown")
    with tx():
        StepRepository(session).update_step(ref, step.id, StepUpdate(disabled=True))

    updated = StepRepository(session).get_step(ref, step.id)
    assert updated.disabled is True
    assert updated.action_description == "Open"
    assert updated.expected_result == "Login form shown"
    session.refresh(test_case)
    assert test_case.version == "1.0.2"


def test_update_step_of_other_parent(session, tx, ref, fixture):
    fixture_step = add_step(session, tx, ParentRef.fixture(fixture.id), "Sign in")
    with pytest.raises(NotFoundException):
        with tx():
            StepRepository(session).update_step(ref, fixture_step.id, StepUpdate(disabled=True))


def test_delete_step_renumbers(session, tx, ref, test_case):
    """削除後のorderは0から連続する"""
    add_step(session, tx, ref, "A")
    middle = add_step(session, tx, ref, "B")
    add_step(session, tx, ref, "C")

    with tx():
        StepRepository(session).delete_step(ref, middle.id)

    steps = StepRepository(session).list_steps(ref)
    assert [s.order for s in steps] == [0, 1]
    assert [s.action_description for s in steps] == ["A", "C"]
    session.refresh(test_case)
    assert test_case.version == "1.0.4"

    latest = VersionLedger(session).find_latest(ref)
    assert [sv.action_description for sv in VersionLedger(session).step_versions(latest)] == ["A", "C"]


def test_duplicate_step_appends_copy(session, tx, ref):
    source = add_step(session, tx, ref, "Fill email", input_data="qa@example.com")
    add_step(session, tx, ref, "Submit")

    with tx():
        duplicate = StepRepository(session).duplicate_step(
            ref, source.id, StepUpdate(input_data="admin@example.com")
        )

    assert duplicate.id != source.id
    assert duplicate.order == 2
    assert duplicate.action_description == "Fill email"
    assert duplicate.input_data == "admin@example.com"
    assert StepRepository(session).get_step(ref, source.id).input_data == "qa@example.com"


def test_move_step(session, tx, ref):
    first = add_step(session, tx, ref, "A")
    add_step(session, tx, ref, "B")
    add_step(session, tx, ref, "C")

    with tx():
        StepRepository(session).move_step(ref, first.id, 2)

    assert _actions(session, ref) == ["B", "C", "A"]


def test_move_step_out_of_range(session, tx, ref, test_case):
    step = add_step(session, tx, ref, "A")
    with pytest.raises(ValidationException):
        with tx():
            StepRepository(session).move_step(ref, step.id, 5)
    session.refresh(test_case)
    assert test_case.version == "1.0.1"


def test_reorder_steps(session, tx, ref):
    a = add_step(session, tx, ref, "A")
    b = add_step(session, tx, ref, "B")
    c = add_step(session, tx, ref, "C")

    with tx():
        StepRepository(session).reorder_steps(ref, [c.id, a.id, b.id])

    assert _actions(session, ref) == ["C", "A", "B"]


def test_move_to_same_position_keeps_version(session, tx, ref, test_case):
    """位置が変わらない移動ではスナップショットを作らない"""
    first = add_step(session, tx, ref, "A")
    add_step(session, tx, ref, "B")

    with tx():
        StepRepository(session).move_step(ref, first.id, 0)

    session.refresh(test_case)
    assert test_case.version == "1.0.2"
    assert len(VersionLedger(session).list_history(ref)) == 2


def test_reorder_with_same_order_keeps_version(session, tx, ref, test_case):
    """現在と同じ並びの並べ替えではバージョンは進まない"""
    a = add_step(session, tx, ref, "A")
    b = add_step(session, tx, ref, "B")

    with tx():
        StepRepository(session).reorder_steps(ref, [a.id, b.id])

    session.refresh(test_case)
    assert test_case.version == "1.0.2"
    assert _actions(session, ref) == ["A", "B"]


def test_delegate_to_fixture(session, tx, ref, fixture):
    step = add_step(session, tx, ref, "Sign in", delegate_fixture_id=fixture.id)
    assert step.delegate_fixture_id == fixture.id


def test_delegate_to_missing_fixture(session, tx, ref):
    with pytest.raises(NotFoundException):
        add_step(session, tx, ref, "Sign in", delegate_fixture_id=999)


def test_delegate_to_fixture_of_other_project(session, tx, ref, other_project):
    foreign = Fixture(project_id=other_project.id, name="Foreign", export_identifier="foreign")
    session.add(foreign)
    session.commit()

    with pytest.raises(ParentMismatchException):
        add_step(session, tx, ref, "Sign in", delegate_fixture_id=foreign.id)


def test_fixture_steps_cannot_delegate(session, tx, project, fixture):
    other = Fixture(project_id=project.id, name="Seed Data", export_identifier="seedData")
    session.add(other)
    session.commit()

    with pytest.raises(ValidationException):
        add_step(session, tx, ParentRef.fixture(fixture.id), "Seed", delegate_fixture_id=other.id)


def test_step_change_enqueues_materialization(session, ref):
    from stepforge.services.transaction import Transaction

    dispatched = []
    with Transaction(session, dispatcher=lambda refs: dispatched.extend(refs) or []):
        StepRepository(session).add_step(ref, StepCreate(action_description="Open"))
    assert dispatched == [ref]
