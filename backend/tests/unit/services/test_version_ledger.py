import pytest

from stepforge.exceptions import VersionNotFoundException
from stepforge.models import ParentRef, TestCase
from stepforge.schemas.step import StepCreate, StepUpdate
from stepforge.services.step_repository import StepRepository
from stepforge.services.version_ledger import VersionLedger


@pytest.fixture(name="ref")
def ref_fixture(test_case):
    return ParentRef.test_case(test_case.id)


def _add(session, tx, ref, action, **kwargs):
    kwargs.setdefault("generated_code_line", f"await page.getByText('{action}').click();")
    with tx():
        return StepRepository(session).add_step(ref, StepCreate(action_description=action, **kwargs))


def test_version_sequence(session, tx, ref, test_case):
    """1.0 -> 1.0.1 -> 1.0.2 と進み、各スナップショットはその時点の全ステップを持つ"""
    assert test_case.version == "1.0"
    _add(session, tx, ref, "A")
    session.refresh(test_case)
    assert test_case.version == "1.0.1"
    _add(session, tx, ref, "B")
    session.refresh(test_case)
    assert test_case.version == "1.0.2"

    ledger = VersionLedger(session)
    newest, oldest = ledger.list_history(ref)
    assert [sv.action_description for sv in ledger.step_versions(oldest)] == ["A"]
    assert [sv.action_description for sv in ledger.step_versions(newest)] == ["A", "B"]


def test_snapshot_includes_disabled_steps(session, tx, ref):
    step = _add(session, tx, ref, "A")
    _add(session, tx, ref, "B")
    with tx():
        StepRepository(session).update_step(ref, step.id, StepUpdate(disabled=True))

    ledger = VersionLedger(session)
    step_versions = ledger.step_versions(ledger.find_latest(ref))
    assert [(sv.action_description, sv.disabled) for sv in step_versions] == [("A", True), ("B", False)]


def test_snapshot_is_not_changed_by_later_edits(session, tx, ref):
    step = _add(session, tx, ref, "A", expected_result="before")
    ledger = VersionLedger(session)
    first = ledger.find_latest(ref)

    with tx():
        StepRepository(session).update_step(ref, step.id, StepUpdate(expected_result="after"))

    assert [sv.expected_result for sv in ledger.step_versions(first)] == ["before"]


def test_script_snapshot_rendered(session, tx, ref):
    _add(session, tx, ref, "Open login page", generated_code_line="await page.goto('/login');")
    snapshot = VersionLedger(session).find_latest(ref)
    assert "test('Login', { tag: ['@smoke'] }" in snapshot.script_snapshot
    assert "await page.goto('/login');" in snapshot.script_snapshot


def test_script_snapshot_skipped_when_render_fails(session, tx, ref):
    """コード行のない有効なステップは生成できないが、スナップショット自体は作られる"""
    _add(session, tx, ref, "Describe only", generated_code_line=None)
    snapshot = VersionLedger(session).find_latest(ref)
    assert snapshot.script_snapshot is None
    assert len(VersionLedger(session).step_versions(snapshot)) == 1


def test_manual_test_case_has_no_script(session, tx, project):
    manual = TestCase(project_id=project.id, name="Manual check", is_manual=True)
    session.add(manual)
    session.commit()
    ref = ParentRef.test_case(manual.id)

    _add(session, tx, ref, "Look at the page", generated_code_line=None)
    assert VersionLedger(session).find_latest(ref).script_snapshot is None


def test_delegate_pins_latest_fixture_version(session, tx, ref, fixture):
    fixture_ref = ParentRef.fixture(fixture.id)
    _add(session, tx, fixture_ref, "Sign in", generated_code_line="await page.fill('#email', 'qa');")
    _add(session, tx, fixture_ref, "Submit", generated_code_line="await page.click('#submit');")
    _add(session, tx, ref, "Use signed in user", delegate_fixture_id=fixture.id)

    ledger = VersionLedger(session)
    latest_fixture_version = ledger.find_latest(fixture_ref)
    step_version = ledger.step_versions(ledger.find_latest(ref))[0]
    assert step_version.delegate_fixture_version_id == latest_fixture_version.id
    assert step_version.delegate_fixture_id == fixture.id


def test_delegate_without_fixture_history(session, tx, ref, fixture):
    """履歴のないフィクスチャはIDだけを記録する"""
    _add(session, tx, ref, "Use signed in user", delegate_fixture_id=fixture.id)
    ledger = VersionLedger(session)
    step_version = ledger.step_versions(ledger.find_latest(ref))[0]
    assert step_version.delegate_fixture_version_id is None
    assert step_version.delegate_fixture_id == fixture.id


def test_get_snapshot_of_other_parent(session, tx, ref, project):
    other = TestCase(project_id=project.id, name="Checkout")
    session.add(other)
    session.commit()
    other_ref = ParentRef.test_case(other.id)
    _add(session, tx, other_ref, "A")
    other_snapshot = VersionLedger(session).find_latest(other_ref)

    with pytest.raises(VersionNotFoundException):
        VersionLedger(session).get_snapshot(ref, other_snapshot.id)
    with pytest.raises(VersionNotFoundException):
        VersionLedger(session).get_snapshot(ref, 12345)


def test_fixture_snapshot(session, tx, fixture):
    fixture_ref = ParentRef.fixture(fixture.id)
    _add(session, tx, fixture_ref, "Sign in")
    session.refresh(fixture)
    assert fixture.version == "1.0.1"

    snapshot, step_versions = VersionLedger(session).get_snapshot_with_steps(
        fixture_ref, VersionLedger(session).find_latest(fixture_ref).id
    )
    assert snapshot.fixture_id == fixture.id
    assert [sv.fixture_version_id for sv in step_versions] == [snapshot.id]


def test_count_live_steps(session, tx, ref):
    _add(session, tx, ref, "A")
    _add(session, tx, ref, "B")
    assert VersionLedger(session).count_live_steps(ref) == 2
