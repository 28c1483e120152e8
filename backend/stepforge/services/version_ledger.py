"""
バージョン台帳

親エンティティのライブステップ全体を、変更のたびに追記専用のスナップショットとして保存する。
各スナップショットはそれ単体で復元に使える完全なコピーで、作成後に変更されることはない。
"""
from typing import List, Optional, Tuple, Union

from sqlmodel import Session, select

from stepforge.exceptions import GenerationException, VersionNotFoundException
from stepforge.logging_config import logger
from stepforge.models import (
    FixtureVersion,
    ParentKind,
    ParentRef,
    Step,
    StepVersion,
    TestCase,
    TestCaseVersion,
)
from stepforge.models.base import utcnow
from stepforge.services.ordering import OrderingService, owner_clause
from stepforge.services.script_params import build_test_case_params
from stepforge.services.template_renderer import TemplateRenderer
from stepforge.services.transaction import Parent, current_user, ref_of
from stepforge.utils.version import increment_version

VersionSnapshot = Union[TestCaseVersion, FixtureVersion]


def version_model(kind: ParentKind):
    return TestCaseVersion if kind == ParentKind.TESTCASE else FixtureVersion


def _version_owner_clause(ref: ParentRef):
    if ref.kind == ParentKind.TESTCASE:
        return TestCaseVersion.test_case_id == ref.id
    return FixtureVersion.fixture_id == ref.id


def step_version_clause(snapshot: VersionSnapshot):
    if isinstance(snapshot, TestCaseVersion):
        return StepVersion.test_case_version_id == snapshot.id
    return StepVersion.fixture_version_id == snapshot.id


class VersionLedger:
    """親エンティティのバージョンスナップショットを管理する"""

    def __init__(self, session: Session, renderer: Optional[TemplateRenderer] = None):
        self.session = session
        self.renderer = renderer or TemplateRenderer()

    def snapshot(self, parent: Parent) -> VersionSnapshot:
        """
        ライブステップ全体のスナップショットを作成し、親のバージョンを進める

        無効化されたステップも含めて、すべてのライブステップを1行ずつ複製する。
        呼び出し側のトランザクション内で、ステップの変更直後に呼ぶこと。
        """
        ref = ref_of(parent)
        user = current_user(self.session)
        steps = OrderingService(self.session).list_steps(ref)

        parent.version = increment_version(parent.version)
        parent.updated_at = utcnow()
        parent.updated_by = user
        self.session.add(parent)

        if ref.kind == ParentKind.TESTCASE:
            snapshot: VersionSnapshot = TestCaseVersion(
                test_case_id=parent.id,
                version=parent.version,
                name=parent.name,
                script_snapshot=self._render_script(parent),
                created_by=user,
                updated_by=user,
            )
        else:
            snapshot = FixtureVersion(
                fixture_id=parent.id,
                version=parent.version,
                name=parent.name,
                created_by=user,
                updated_by=user,
            )
        self.session.add(snapshot)
        self.session.flush()

        latest_fixture_versions = {}
        for step in steps:
            delegate_version_id = None
            if step.delegate_fixture_id is not None:
                if step.delegate_fixture_id not in latest_fixture_versions:
                    latest = self.find_latest(ParentRef.fixture(step.delegate_fixture_id))
                    latest_fixture_versions[step.delegate_fixture_id] = latest.id if latest else None
                delegate_version_id = latest_fixture_versions[step.delegate_fixture_id]

            self.session.add(StepVersion(
                test_case_version_id=snapshot.id if ref.kind == ParentKind.TESTCASE else None,
                fixture_version_id=snapshot.id if ref.kind == ParentKind.FIXTURE else None,
                delegate_fixture_version_id=delegate_version_id,
                delegate_fixture_id=step.delegate_fixture_id,
                order=step.order,
                action_description=step.action_description,
                input_data=step.input_data,
                expected_result=step.expected_result,
                generated_code_line=step.generated_code_line,
                disabled=step.disabled,
                created_by=user,
                updated_by=user,
            ))
        self.session.flush()

        logger.info(
            f"Snapshot {ref} version={snapshot.version} steps={len(steps)} (snapshot id {snapshot.id})"
        )
        return snapshot

    def _render_script(self, test_case: TestCase) -> Optional[str]:
        """スナップショットに保存するスクリプト。生成できない場合はNone"""
        if test_case.is_manual:
            return None
        try:
            return self.renderer.render("test", build_test_case_params(self.session, test_case))
        except GenerationException as e:
            logger.warning(f"Script snapshot skipped for test case {test_case.id}: {e}")
            return None

    def find_latest(self, ref: ParentRef) -> Optional[VersionSnapshot]:
        """最も新しいスナップショットを返す（作成日時、同時刻ならIDの大きい方）"""
        model = version_model(ref.kind)
        query = (
            select(model)
            .where(_version_owner_clause(ref))
            .order_by(model.created_at.desc(), model.id.desc())
        )
        return self.session.exec(query).first()

    def list_history(self, ref: ParentRef) -> List[VersionSnapshot]:
        """スナップショットを新しい順に返す"""
        model = version_model(ref.kind)
        query = (
            select(model)
            .where(_version_owner_clause(ref))
            .order_by(model.created_at.desc(), model.id.desc())
        )
        return list(self.session.exec(query).all())

    def get_snapshot(self, ref: ParentRef, version_id: int) -> VersionSnapshot:
        """
        この親に属するスナップショットを取得する

        Raises:
            VersionNotFoundException: 存在しないか別の親のスナップショットの場合
        """
        model = version_model(ref.kind)
        snapshot = self.session.get(model, version_id)
        owner_id = None
        if snapshot is not None:
            owner_id = snapshot.test_case_id if ref.kind == ParentKind.TESTCASE else snapshot.fixture_id
        if snapshot is None or owner_id != ref.id:
            raise VersionNotFoundException(
                f"Version {version_id} does not belong to {ref}",
                details={"parent": str(ref), "version_id": version_id}
            )
        return snapshot

    def step_versions(self, snapshot: VersionSnapshot) -> List[StepVersion]:
        query = (
            select(StepVersion)
            .where(step_version_clause(snapshot))
            .order_by(StepVersion.order, StepVersion.id)
        )
        return list(self.session.exec(query).all())

    def get_snapshot_with_steps(
        self, ref: ParentRef, version_id: int
    ) -> Tuple[VersionSnapshot, List[StepVersion]]:
        snapshot = self.get_snapshot(ref, version_id)
        return snapshot, self.step_versions(snapshot)

    def count_live_steps(self, ref: ParentRef) -> int:
        return len(self.session.exec(select(Step.id).where(owner_clause(ref))).all())
