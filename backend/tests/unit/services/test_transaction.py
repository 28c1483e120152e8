import pytest
from sqlmodel import select

from stepforge.exceptions import NotFoundException, ValidationException
from stepforge.models import ParentRef, TestCase
from stepforge.services.transaction import (
    Transaction,
    current_user,
    enqueue_materialization,
    load_parent,
    pending_materializations,
    ref_of,
)


def test_commit_dispatches_pending_refs(session, project):
    dispatched = []

    def dispatcher(refs):
        dispatched.append(list(refs))
        return ["fixture:9: could not write"]

    with Transaction(session, dispatcher=dispatcher) as tx:
        session.add(TestCase(project_id=project.id, name="Search"))
        enqueue_materialization(session, ParentRef.test_case(1))
        enqueue_materialization(session, ParentRef.test_case(1))
        enqueue_materialization(session, ParentRef.fixture(9))

    assert dispatched == [[ParentRef.test_case(1), ParentRef.fixture(9)]]
    assert tx.dispatched == [ParentRef.test_case(1), ParentRef.fixture(9)]
    assert tx.warnings == ["fixture:9: could not write"]
    assert pending_materializations(session) == []


def test_rollback_discards_pending_refs(session, project):
    """例外で抜けた場合はロールバックし、ファイル生成も行わない"""
    dispatched = []

    with pytest.raises(ValidationException):
        with Transaction(session, dispatcher=lambda refs: dispatched.extend(refs) or []):
            session.add(TestCase(project_id=project.id, name="Search"))
            session.flush()
            enqueue_materialization(session, ParentRef.test_case(1))
            raise ValidationException("rejected")

    assert dispatched == []
    assert pending_materializations(session) == []
    assert session.exec(select(TestCase)).all() == []


def test_no_dispatch_without_pending_refs(session):
    dispatched = []
    with Transaction(session, dispatcher=lambda refs: dispatched.extend(refs) or []) as tx:
        pass
    assert dispatched == []
    assert tx.warnings == []


def test_current_user(session):
    assert current_user(session) is None
    with Transaction(session, "qa@example.com", dispatcher=lambda refs: []):
        assert current_user(session) == "qa@example.com"


def test_load_parent(session, test_case, fixture):
    assert load_parent(session, ParentRef.test_case(test_case.id)).name == "Login"
    assert load_parent(session, ParentRef.fixture(fixture.id), lock=True).name == "Logged In User"
    with pytest.raises(NotFoundException) as exc_info:
        load_parent(session, ParentRef.fixture(404))
    assert exc_info.value.details == {"kind": "fixture", "id": 404}


def test_ref_of(test_case, fixture):
    assert ref_of(test_case) == ParentRef.test_case(test_case.id)
    assert str(ref_of(fixture)) == f"fixture:{fixture.id}"
