import pytest
from sqlmodel import select

from stepforge.exceptions import CloneNameExhaustedException, NotFoundException
from stepforge.models import Fixture, ParentRef, TestCase
from stepforge.schemas.step import StepCreate, StepUpdate
from stepforge.services.clone import CloneOrchestrator
from stepforge.services.step_repository import StepRepository
from stepforge.services.version_ledger import VersionLedger


def _add(session, tx, ref, action, **kwargs):
    kwargs.setdefault("generated_code_line", f"await page.getByText('{action}').click();")
    with tx():
        return StepRepository(session).add_step(ref, StepCreate(action_description=action, **kwargs))


def _clone(session, tx, ref, **kwargs):
    with tx():
        clone = CloneOrchestrator(session, **kwargs).clone(ref)
    return clone


def test_clone_test_case(session, tx, test_case):
    """複製はバージョン1.0・履歴なしで、ステップの内容と順番を引き継ぐ"""
    ref = ParentRef.test_case(test_case.id)
    _add(session, tx, ref, "A", input_data="x")
    _add(session, tx, ref, "B", disabled=True)

    clone = _clone(session, tx, ref)

    assert clone.name == "Login - Copy"
    assert clone.version == "1.0"
    assert clone.tags == ["smoke"]
    clone_ref = ParentRef.test_case(clone.id)
    assert VersionLedger(session).list_history(clone_ref) == []
    source_steps = StepRepository(session).list_steps(ref)
    clone_steps = StepRepository(session).list_steps(clone_ref)
    assert [s.content() for s in clone_steps] == [s.content() for s in source_steps]
    assert {s.id for s in clone_steps}.isdisjoint({s.id for s in source_steps})


def test_clone_names_are_numbered(session, tx, test_case):
    ref = ParentRef.test_case(test_case.id)
    first = _clone(session, tx, ref)
    second = _clone(session, tx, ref)
    assert (first.name, second.name) == ("Login - Copy", "Login - Copy 1")


def test_clone_does_not_touch_source(session, tx, test_case):
    ref = ParentRef.test_case(test_case.id)
    _add(session, tx, ref, "A")
    clone = _clone(session, tx, ref)
    clone_ref = ParentRef.test_case(clone.id)

    clone_step = StepRepository(session).list_steps(clone_ref)[0]
    with tx():
        StepRepository(session).update_step(clone_ref, clone_step.id, StepUpdate(action_description="Changed"))

    session.refresh(test_case)
    assert test_case.version == "1.0.1"
    assert [s.action_description for s in StepRepository(session).list_steps(ref)] == ["A"]
    assert len(VersionLedger(session).list_history(ref)) == 1


def test_clone_copies_each_fixture_once(session, tx, project, test_case, fixture):
    """同じフィクスチャを参照する複数のステップは、1つの複製フィクスチャを共有する"""
    _add(session, tx, ParentRef.fixture(fixture.id), "Sign in")
    ref = ParentRef.test_case(test_case.id)
    _add(session, tx, ref, "Use user", delegate_fixture_id=fixture.id)
    _add(session, tx, ref, "Plain")
    _add(session, tx, ref, "Use user again", delegate_fixture_id=fixture.id)

    clone = _clone(session, tx, ref)

    fixtures = session.exec(select(Fixture).where(Fixture.project_id == project.id).order_by(Fixture.id)).all()
    assert [f.name for f in fixtures] == ["Logged In User", "Logged In User (1)"]
    fixture_clone = fixtures[1]
    assert fixture_clone.export_identifier == "loggedInUser1"
    assert fixture_clone.version == "1.0"
    assert [s.action_description for s in StepRepository(session).list_steps(ParentRef.fixture(fixture_clone.id))] == ["Sign in"]

    delegates = [s.delegate_fixture_id for s in StepRepository(session).list_steps(ParentRef.test_case(clone.id))]
    assert delegates == [fixture_clone.id, None, fixture_clone.id]


def test_clone_fixture(session, tx, fixture):
    fixture_ref = ParentRef.fixture(fixture.id)
    _add(session, tx, fixture_ref, "Sign in")
    first = _clone(session, tx, fixture_ref)
    second = _clone(session, tx, fixture_ref)

    assert (first.name, first.export_identifier) == ("Logged In User (1)", "loggedInUser1")
    assert (second.name, second.export_identifier) == ("Logged In User (2)", "loggedInUser2")
    assert first.filename is None
    assert VersionLedger(session).list_history(ParentRef.fixture(first.id)) == []


def test_clone_name_exhausted(session, tx, project, test_case):
    for name in ("Login - Copy", "Login - Copy 1"):
        session.add(TestCase(project_id=project.id, name=name))
    session.commit()

    with pytest.raises(CloneNameExhaustedException):
        _clone(session, tx, ParentRef.test_case(test_case.id), max_attempts=2)

    names = sorted(session.exec(select(TestCase.name)).all())
    assert names == ["Login", "Login - Copy", "Login - Copy 1"]


def test_clone_missing_source(session, tx):
    with pytest.raises(NotFoundException):
        _clone(session, tx, ParentRef.fixture(404))


def test_clone_enqueues_generated_files(session, test_case, fixture):
    from stepforge.services.transaction import Transaction

    ref = ParentRef.test_case(test_case.id)
    with Transaction(session, dispatcher=lambda refs: []):
        StepRepository(session).add_step(ref, StepCreate(action_description="Use", delegate_fixture_id=fixture.id))

    dispatched = []
    with Transaction(session, dispatcher=lambda refs: dispatched.extend(refs) or []):
        clone = CloneOrchestrator(session).clone(ref)

    kinds = sorted(r.kind.value for r in dispatched)
    assert kinds == ["fixture", "testcase"]
    assert ParentRef.test_case(clone.id) in dispatched
