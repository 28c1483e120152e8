"""
過去のバージョンへの復元

復元は履歴を巻き戻さない。現在の状態をスナップショットとして残してから、
対象スナップショットと同じ内容のライブステップを作り直し、新しいバージョンとして進める。
"""
from typing import List, Optional

from sqlmodel import Session, delete

from stepforge.exceptions import EmptyHistorySnapshotException
from stepforge.logging_config import logger
from stepforge.models import Fixture, FixtureVersion, ParentKind, ParentRef, Step, StepVersion
from stepforge.services.ordering import OrderingService, owner_clause
from stepforge.services.transaction import Parent, current_user, enqueue_materialization, load_parent
from stepforge.services.version_ledger import VersionLedger, VersionSnapshot


class RevertOrchestrator:
    """親エンティティを過去のスナップショットの内容に戻す"""

    def __init__(self, session: Session, ledger: Optional[VersionLedger] = None):
        self.session = session
        self.ledger = ledger or VersionLedger(session)
        self.ordering = OrderingService(session)

    def revert(self, ref: ParentRef, version_id: int) -> Parent:
        """
        スナップショット ``version_id`` の内容に戻す

        1. 現在のライブ状態をスナップショットとして保存する（バージョンが1つ進む）
        2. ライブステップを削除し、対象スナップショットのステップから作り直す
        3. 親のバージョンは 1 で進めた値のまま（復元前のバージョンから1回だけ進む）

        Raises:
            VersionNotFoundException: スナップショットがこの親のものではない場合
            EmptyHistorySnapshotException: スナップショットにステップがない場合
        """
        parent = load_parent(self.session, ref, lock=True)
        target = self.ledger.get_snapshot(ref, version_id)
        step_versions = self._target_steps(ref, target)
        previous_version = parent.version

        preserved = self.ledger.snapshot(parent)

        self.session.exec(delete(Step).where(owner_clause(ref)))
        self.session.flush()
        self.session.expire_all()
        parent = load_parent(self.session, ref)

        user = current_user(self.session)
        detached = 0
        for step_version in step_versions:
            delegate_fixture_id = self._resolve_delegate(parent, step_version)
            had_delegate = (
                step_version.delegate_fixture_version_id is not None
                or step_version.delegate_fixture_id is not None
            )
            if had_delegate and delegate_fixture_id is None:
                detached += 1
            self.session.add(Step(
                test_case_id=ref.id if ref.kind == ParentKind.TESTCASE else None,
                fixture_id=ref.id if ref.kind == ParentKind.FIXTURE else None,
                delegate_fixture_id=delegate_fixture_id,
                order=step_version.order,
                action_description=step_version.action_description,
                input_data=step_version.input_data,
                expected_result=step_version.expected_result,
                generated_code_line=step_version.generated_code_line,
                disabled=step_version.disabled,
                created_by=user,
                updated_by=user,
            ))
        self.session.flush()
        self.ordering.verify_dense(ref)

        enqueue_materialization(self.session, ref)
        logger.info(
            f"Reverted {ref} to version {target.version} (snapshot {target.id}): "
            f"{previous_version} -> {parent.version}, preserved as snapshot {preserved.id}, "
            f"{len(step_versions)} step(s), {detached} fixture reference(s) dropped"
        )
        return parent

    def _target_steps(self, ref: ParentRef, target: VersionSnapshot) -> List[StepVersion]:
        step_versions = self.ledger.step_versions(target)
        if step_versions:
            return step_versions

        # 書き込み直後の読み取り漏れに備えて一度だけ読み直す
        logger.warning(f"Snapshot {target.id} of {ref} returned no steps; re-fetching once")
        self.session.expire(target)
        step_versions = self.ledger.step_versions(target)
        if not step_versions:
            raise EmptyHistorySnapshotException(
                f"Version {target.version} of {ref} has no steps",
                details={"parent": str(ref), "version_id": target.id}
            )
        return step_versions

    def _resolve_delegate(self, parent: Parent, step_version: StepVersion) -> Optional[int]:
        """スナップショットが参照していたフィクスチャの現在のIDを返す。削除済みならNone"""
        fixture_id = step_version.delegate_fixture_id
        if step_version.delegate_fixture_version_id is not None:
            fixture_version = self.session.get(FixtureVersion, step_version.delegate_fixture_version_id)
            if fixture_version is not None:
                fixture_id = fixture_version.fixture_id
        if fixture_id is None:
            return None
        fixture = self.session.get(Fixture, fixture_id)
        if fixture is None or fixture.project_id != parent.project_id:
            return None
        return fixture.id
