"""
テストケース・フィクスチャ共通のステップ・履歴・復元・複製エンドポイント
"""
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from stepforge.api.dependencies import (
    current_user_email,
    parent_in_project,
    require_permission,
    to_http_exception,
)
from stepforge.exceptions import StepforgeException
from stepforge.logging_config import logger
from stepforge.models import ParentKind, ParentRef, get_session
from stepforge.schemas.parent import (
    MaterializationResult,
    StepList,
    StepMutationResult,
    VersionDetail,
    VersionSummary,
)
from stepforge.schemas.step import Step as StepSchema
from stepforge.schemas.step import StepCreate, StepMove, StepReorder, StepUpdate
from stepforge.schemas.step import StepVersion as StepVersionSchema
from stepforge.services.clone import CloneOrchestrator
from stepforge.services.revert import RevertOrchestrator
from stepforge.services.step_repository import StepRepository
from stepforge.services.transaction import Transaction, load_parent
from stepforge.services.version_ledger import VersionLedger
from stepforge.workers.tasks import run_materialization


def register_step_routes(
    router: APIRouter,
    kind: ParentKind,
    parent_result: Callable
) -> None:
    """
    親エンティティ用ルーターにステップ操作のエンドポイントを追加する

    Args:
        router: 追加先のルーター（プレフィックスに ``{project_id}`` を含む）
        kind: 親エンティティの種類
        parent_result: 親エンティティと警告から応答モデルを作る関数
    """
    resource = kind.value
    base = "/{parent_id}"

    def parent_ref(parent_id: int) -> ParentRef:
        return ParentRef(kind=kind, id=parent_id)

    def mutation_result(session: Session, ref: ParentRef, step, warnings: List[str]) -> StepMutationResult:
        parent = load_parent(session, ref)
        return StepMutationResult(
            step=StepSchema.model_validate(step) if step is not None else None,
            version=parent.version,
            warnings=warnings,
        )

    def resolve_ref(project_id: int, parent_id: int, session: Session) -> ParentRef:
        ref = parent_ref(parent_id)
        parent_in_project(session, ref, project_id)
        return ref

    @router.get(base + "/steps", response_model=StepList, name=f"list_{resource}_steps")
    def list_steps(project_id: int, parent_id: int, session: Session = Depends(get_session)):
        try:
            ref = resolve_ref(project_id, parent_id, session)
            steps = StepRepository(session).list_steps(ref)
            parent = load_parent(session, ref)
            return StepList(version=parent.version, steps=[StepSchema.model_validate(s) for s in steps])
        except StepforgeException as e:
            raise to_http_exception(e)

    @router.post(
        base + "/steps",
        response_model=StepMutationResult,
        status_code=201,
        name=f"add_{resource}_step",
        dependencies=[Depends(require_permission(f"{resource}:update"))],
    )
    def add_step(
        project_id: int,
        data: StepCreate,
        parent_id: int,
        session: Session = Depends(get_session),
        user: Optional[str] = Depends(current_user_email)
    ):
        try:
            ref = resolve_ref(project_id, parent_id, session)
            with Transaction(session, user) as tx:
                step = StepRepository(session).add_step(ref, data)
            return mutation_result(session, ref, step, tx.warnings)
        except StepforgeException as e:
            raise to_http_exception(e)

    @router.put(
        base + "/steps/{step_id}",
        response_model=StepMutationResult,
        name=f"update_{resource}_step",
        dependencies=[Depends(require_permission(f"{resource}:update"))],
    )
    def update_step(
        project_id: int,
        step_id: int,
        data: StepUpdate,
        parent_id: int,
        session: Session = Depends(get_session),
        user: Optional[str] = Depends(current_user_email)
    ):
        try:
            ref = resolve_ref(project_id, parent_id, session)
            with Transaction(session, user) as tx:
                step = StepRepository(session).update_step(ref, step_id, data)
            return mutation_result(session, ref, step, tx.warnings)
        except StepforgeException as e:
            raise to_http_exception(e)

    @router.post(
        base + "/steps/{step_id}/duplicate",
        response_model=StepMutationResult,
        status_code=201,
        name=f"duplicate_{resource}_step",
        dependencies=[Depends(require_permission(f"{resource}:update"))],
    )
    def duplicate_step(
        project_id: int,
        step_id: int,
        parent_id: int,
        overrides: Optional[StepUpdate] = None,
        session: Session = Depends(get_session),
        user: Optional[str] = Depends(current_user_email)
    ):
        try:
            ref = resolve_ref(project_id, parent_id, session)
            with Transaction(session, user) as tx:
                step = StepRepository(session).duplicate_step(ref, step_id, overrides)
            return mutation_result(session, ref, step, tx.warnings)
        except StepforgeException as e:
            raise to_http_exception(e)

    @router.post(
        base + "/steps/{step_id}/move",
        response_model=StepMutationResult,
        name=f"move_{resource}_step",
        dependencies=[Depends(require_permission(f"{resource}:update"))],
    )
    def move_step(
        project_id: int,
        step_id: int,
        data: StepMove,
        parent_id: int,
        session: Session = Depends(get_session),
        user: Optional[str] = Depends(current_user_email)
    ):
        try:
            ref = resolve_ref(project_id, parent_id, session)
            with Transaction(session, user) as tx:
                step = StepRepository(session).move_step(ref, step_id, data.to_order)
            return mutation_result(session, ref, step, tx.warnings)
        except StepforgeException as e:
            raise to_http_exception(e)

    @router.post(
        base + "/steps/reorder",
        response_model=StepList,
        name=f"reorder_{resource}_steps",
        dependencies=[Depends(require_permission(f"{resource}:update"))],
    )
    def reorder_steps(
        project_id: int,
        data: StepReorder,
        parent_id: int,
        session: Session = Depends(get_session),
        user: Optional[str] = Depends(current_user_email)
    ):
        try:
            ref = resolve_ref(project_id, parent_id, session)
            with Transaction(session, user) as tx:
                StepRepository(session).reorder_steps(ref, data.step_ids)
            steps = StepRepository(session).list_steps(ref)
            parent = load_parent(session, ref)
            return StepList(
                version=parent.version,
                steps=[StepSchema.model_validate(s) for s in steps],
                warnings=tx.warnings,
            )
        except StepforgeException as e:
            raise to_http_exception(e)

    @router.delete(
        base + "/steps/{step_id}",
        response_model=StepMutationResult,
        name=f"delete_{resource}_step",
        dependencies=[Depends(require_permission(f"{resource}:update"))],
    )
    def delete_step(
        project_id: int,
        step_id: int,
        parent_id: int,
        session: Session = Depends(get_session),
        user: Optional[str] = Depends(current_user_email)
    ):
        try:
            ref = resolve_ref(project_id, parent_id, session)
            with Transaction(session, user) as tx:
                StepRepository(session).delete_step(ref, step_id)
            return mutation_result(session, ref, None, tx.warnings)
        except StepforgeException as e:
            raise to_http_exception(e)

    @router.get(base + "/versions", response_model=List[VersionSummary], name=f"list_{resource}_versions")
    def list_versions(project_id: int, parent_id: int, session: Session = Depends(get_session)):
        try:
            ref = resolve_ref(project_id, parent_id, session)
            return [VersionSummary.model_validate(v) for v in VersionLedger(session).list_history(ref)]
        except StepforgeException as e:
            raise to_http_exception(e)

    @router.get(base + "/versions/{version_id}", response_model=VersionDetail, name=f"get_{resource}_version")
    def get_version(
        project_id: int,
        version_id: int,
        parent_id: int,
        session: Session = Depends(get_session)
    ):
        try:
            ref = resolve_ref(project_id, parent_id, session)
            snapshot, step_versions = VersionLedger(session).get_snapshot_with_steps(ref, version_id)
            return VersionDetail(
                id=snapshot.id,
                version=snapshot.version,
                name=snapshot.name,
                created_at=snapshot.created_at,
                created_by=snapshot.created_by,
                script_snapshot=getattr(snapshot, "script_snapshot", None),
                steps=[StepVersionSchema.model_validate(sv) for sv in step_versions],
            )
        except StepforgeException as e:
            raise to_http_exception(e)

    @router.post(
        base + "/revert/{version_id}",
        name=f"revert_{resource}",
        dependencies=[Depends(require_permission(f"{resource}:update"))],
    )
    def revert(
        project_id: int,
        version_id: int,
        parent_id: int,
        session: Session = Depends(get_session),
        user: Optional[str] = Depends(current_user_email)
    ):
        try:
            ref = resolve_ref(project_id, parent_id, session)
            with Transaction(session, user) as tx:
                RevertOrchestrator(session).revert(ref, version_id)
            return parent_result(load_parent(session, ref), tx.warnings)
        except StepforgeException as e:
            raise to_http_exception(e)

    @router.post(
        base + "/clone",
        status_code=201,
        name=f"clone_{resource}",
        dependencies=[Depends(require_permission(f"{resource}:create"))],
    )
    def clone(
        project_id: int,
        parent_id: int,
        session: Session = Depends(get_session),
        user: Optional[str] = Depends(current_user_email)
    ):
        try:
            ref = resolve_ref(project_id, parent_id, session)
            with Transaction(session, user) as tx:
                cloned = CloneOrchestrator(session).clone(ref)
            return parent_result(cloned, tx.warnings)
        except StepforgeException as e:
            raise to_http_exception(e)

    @router.post(
        base + "/materialize",
        response_model=MaterializationResult,
        name=f"materialize_{resource}",
        dependencies=[Depends(require_permission(f"{resource}:update"))],
    )
    def materialize(project_id: int, parent_id: int, session: Session = Depends(get_session)):
        try:
            ref = resolve_ref(project_id, parent_id, session)
        except StepforgeException as e:
            raise to_http_exception(e)
        result = run_materialization(ref)
        logger.info(f"Materialization requested for {ref}: {result['status']}")
        return MaterializationResult(
            status=result["status"],
            path=result.get("path"),
            message=result.get("message"),
        )

