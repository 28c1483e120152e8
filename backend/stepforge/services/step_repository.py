"""
ライブステップのリポジトリ

ステップを変更する操作は、親の行ロックを取った上で変更し、
order の連続性を確認してからバージョンスナップショットを1つ追加する。
ファイル生成はコミット後に実行されるよう登録するだけで、ここでは行わない。
"""
from typing import List, Optional

from sqlmodel import Session

from stepforge.exceptions import (
    NotFoundException,
    ParentMismatchException,
    ValidationException,
)
from stepforge.logging_config import logger
from stepforge.models import Fixture, ParentKind, ParentRef, Step
from stepforge.models.base import utcnow
from stepforge.schemas.step import StepCreate, StepUpdate
from stepforge.services.ordering import OrderingService
from stepforge.services.transaction import (
    Parent,
    current_user,
    enqueue_materialization,
    load_parent,
)
from stepforge.services.version_ledger import VersionLedger

CONTENT_FIELDS = (
    "action_description",
    "input_data",
    "expected_result",
    "generated_code_line",
    "disabled",
)


class StepRepository:
    """親エンティティ（テストケース・フィクスチャ）のステップを操作する"""

    def __init__(self, session: Session, ledger: Optional[VersionLedger] = None):
        self.session = session
        self.ordering = OrderingService(session)
        self.ledger = ledger or VersionLedger(session)

    def list_steps(self, ref: ParentRef) -> List[Step]:
        load_parent(self.session, ref)
        return self.ordering.list_steps(ref)

    def get_step(self, ref: ParentRef, step_id: int) -> Step:
        """
        この親に属するステップを取得する

        Raises:
            NotFoundException: 存在しないか別の親のステップの場合
        """
        step = self.session.get(Step, step_id)
        if step is None or step.parent_ref != ref:
            raise NotFoundException(
                f"Step {step_id} not found in {ref}",
                details={"parent": str(ref), "step_id": step_id}
            )
        return step

    def add_step(self, ref: ParentRef, data: StepCreate) -> Step:
        """ステップを末尾に追加する"""
        parent = load_parent(self.session, ref, lock=True)
        self._check_content(data.action_description)
        self._check_delegate(parent, ref, data.delegate_fixture_id)

        user = current_user(self.session)
        step = Step(
            test_case_id=ref.id if ref.kind == ParentKind.TESTCASE else None,
            fixture_id=ref.id if ref.kind == ParentKind.FIXTURE else None,
            delegate_fixture_id=data.delegate_fixture_id,
            order=self.ordering.insert_at_end(ref),
            created_by=user,
            updated_by=user,
            **data.model_dump(include=set(CONTENT_FIELDS)),
        )
        self.session.add(step)
        self.session.flush()

        self._commit_change(parent, ref)
        logger.info(f"Added step {step.id} to {ref} at order {step.order}")
        return step

    def update_step(self, ref: ParentRef, step_id: int, data: StepUpdate) -> Step:
        """ステップの内容・無効化フラグ・委譲先フィクスチャを更新する"""
        parent = load_parent(self.session, ref, lock=True)
        step = self.get_step(ref, step_id)
        changes = data.model_dump(exclude_unset=True)

        if "action_description" in changes:
            self._check_content(changes["action_description"])
        if "delegate_fixture_id" in changes:
            self._check_delegate(parent, ref, changes["delegate_fixture_id"])
            step.delegate_fixture_id = changes["delegate_fixture_id"]

        for field in CONTENT_FIELDS:
            if field in changes:
                if field == "disabled" and changes[field] is None:
                    continue
                setattr(step, field, changes[field])
        step.updated_at = utcnow()
        step.updated_by = current_user(self.session)
        self.session.add(step)
        self.session.flush()

        self._commit_change(parent, ref)
        logger.info(f"Updated step {step.id} of {ref}: {sorted(changes)}")
        return step

    def duplicate_step(
        self, ref: ParentRef, step_id: int, overrides: Optional[StepUpdate] = None
    ) -> Step:
        """ステップの複製を末尾に追加する。overridesで指定した項目は置き換える"""
        parent = load_parent(self.session, ref, lock=True)
        source = self.get_step(ref, step_id)

        values = {field: getattr(source, field) for field in CONTENT_FIELDS}
        delegate_fixture_id = source.delegate_fixture_id
        if overrides is not None:
            changes = overrides.model_dump(exclude_unset=True)
            if "delegate_fixture_id" in changes:
                delegate_fixture_id = changes.pop("delegate_fixture_id")
                self._check_delegate(parent, ref, delegate_fixture_id)
            if changes.get("disabled", False) is None:
                changes.pop("disabled")
            values.update({k: v for k, v in changes.items() if k in CONTENT_FIELDS})
        self._check_content(values["action_description"])

        user = current_user(self.session)
        duplicate = Step(
            test_case_id=source.test_case_id,
            fixture_id=source.fixture_id,
            delegate_fixture_id=delegate_fixture_id,
            order=self.ordering.insert_at_end(ref),
            created_by=user,
            updated_by=user,
            **values,
        )
        self.session.add(duplicate)
        self.session.flush()

        self._commit_change(parent, ref)
        logger.info(f"Duplicated step {source.id} of {ref} as {duplicate.id}")
        return duplicate

    def move_step(self, ref: ParentRef, step_id: int, to_order: int) -> Step:
        """ステップを指定位置へ移動する"""
        parent = load_parent(self.session, ref, lock=True)
        step = self.get_step(ref, step_id)
        from_order = step.order
        moved = self.ordering.reorder(ref, from_order, to_order)
        if from_order == to_order:
            logger.info(f"Step {step.id} of {ref} is already at {to_order}; no new version")
            return moved

        self._commit_change(parent, ref)
        logger.info(f"Moved step {step.id} of {ref} from {from_order} to {to_order}")
        return moved

    def reorder_steps(self, ref: ParentRef, step_ids: List[int]) -> List[Step]:
        """全ステップのIDを新しい順番で受け取り、orderを振り直す"""
        parent = load_parent(self.session, ref, lock=True)
        current_ids = [s.id for s in self.list_steps(ref)]
        steps = self.ordering.apply_permutation(ref, step_ids)
        if list(step_ids) == current_ids:
            logger.info(f"Steps of {ref} are already in the requested order; no new version")
            return steps

        self._commit_change(parent, ref)
        logger.info(f"Reordered {len(steps)} step(s) of {ref}")
        return steps

    def delete_step(self, ref: ParentRef, step_id: int) -> None:
        """ステップを削除し、後ろのステップのorderを詰める"""
        parent = load_parent(self.session, ref, lock=True)
        step = self.get_step(ref, step_id)
        deleted_order = step.order
        self.session.delete(step)
        self.session.flush()
        self.ordering.compact_after_delete(ref, deleted_order)

        self._commit_change(parent, ref)
        logger.info(f"Deleted step {step_id} of {ref} (order {deleted_order})")

    def _commit_change(self, parent: Parent, ref: ParentRef) -> None:
        self.ordering.verify_dense(ref)
        self.ledger.snapshot(parent)
        enqueue_materialization(self.session, ref)

    def _check_content(self, action_description: Optional[str]) -> None:
        if action_description is None or not action_description.strip():
            raise ValidationException(
                "Step action description is required",
                details={"field": "action_description"}
            )

    def _check_delegate(
        self, parent: Parent, ref: ParentRef, fixture_id: Optional[int]
    ) -> None:
        """
        委譲先フィクスチャを検証する

        Raises:
            ValidationException: フィクスチャのステップが委譲しようとした場合
            NotFoundException: フィクスチャが存在しない場合
            ParentMismatchException: 別プロジェクトのフィクスチャの場合
        """
        if fixture_id is None:
            return
        if ref.kind != ParentKind.TESTCASE:
            raise ValidationException(
                "Only test case steps can delegate to a fixture",
                details={"parent": str(ref), "delegate_fixture_id": fixture_id}
            )
        fixture = self.session.get(Fixture, fixture_id)
        if fixture is None:
            raise NotFoundException(
                f"fixture not found: {fixture_id}",
                details={"kind": ParentKind.FIXTURE.value, "id": fixture_id}
            )
        if fixture.project_id != parent.project_id:
            raise ParentMismatchException(
                f"Fixture {fixture_id} belongs to another project",
                details={
                    "fixture_project_id": fixture.project_id,
                    "parent_project_id": parent.project_id,
                }
            )
