"""
APIの共通依存関係

権限チェックと利用者の識別は外部の仕組みに委ね、ここではそのインターフェースだけを持つ。
"""
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session

from stepforge.exceptions import (
    ConsistencyException,
    NotFoundException,
    PermissionDeniedException,
    StepforgeException,
    ValidationException,
    exception_to_response,
)
from stepforge.logging_config import logger
from stepforge.models import ParentRef
from stepforge.services.transaction import Parent, load_parent


class PermissionChecker:
    """操作の可否を判定する。既定ではすべて許可する"""

    def can_perform(self, action: str, resource_id: Optional[int] = None) -> bool:
        return True


_permission_checker = PermissionChecker()


def get_permission_checker() -> PermissionChecker:
    return _permission_checker


def current_user_email(x_user_email: Optional[str] = Header(default=None)) -> Optional[str]:
    """リクエストヘッダーから利用者のメールアドレスを取得する"""
    return x_user_email or None


def require_permission(action: str):
    """
    プロジェクトに対する操作の権限を確認する依存関係を作る

    Args:
        action: 操作名 (例: "testcase:update")
    """
    def dependency(
        project_id: int,
        checker: PermissionChecker = Depends(get_permission_checker)
    ) -> None:
        if not checker.can_perform(action, project_id):
            error = PermissionDeniedException(details={"action": action, "project_id": project_id})
            logger.warning(f"Permission denied: {action} on project {project_id}")
            raise HTTPException(status_code=403, detail=error.to_dict())
    return dependency


def status_code_for(error: StepforgeException) -> int:
    """アプリケーション例外をHTTPステータスに対応付ける"""
    if isinstance(error, PermissionDeniedException):
        status_code = 403
    elif isinstance(error, NotFoundException):
        status_code = 404
    elif isinstance(error, ValidationException):
        status_code = 400
    elif isinstance(error, ConsistencyException):
        status_code = 409
    else:
        status_code = 500
    return status_code


def to_http_exception(error: StepforgeException) -> HTTPException:
    return HTTPException(status_code=status_code_for(error), detail=error.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    """ルーターで処理されなかったアプリケーション例外をJSON応答にする"""

    @app.exception_handler(StepforgeException)
    async def stepforge_exception_handler(request: Request, exc: StepforgeException):
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=status_code, content=exception_to_response(exc))


def parent_in_project(session: Session, ref: ParentRef, project_id: int) -> Parent:
    """
    親エンティティを取得し、パスのプロジェクトに属することを確認する

    Raises:
        NotFoundException: 存在しないか別プロジェクトのものの場合
    """
    parent = load_parent(session, ref)
    if parent.project_id != project_id:
        raise NotFoundException(
            f"{ref.kind.value} not found: {ref.id}",
            details={"kind": ref.kind.value, "id": ref.id, "project_id": project_id}
        )
    return parent
