from fastapi import APIRouter, Depends
from sqlmodel import Session
from typing import List, Optional

from stepforge.api.dependencies import (
    current_user_email,
    parent_in_project,
    require_permission,
    to_http_exception,
)
from stepforge.api.steps import register_step_routes
from stepforge.exceptions import StepforgeException
from stepforge.logging_config import logger
from stepforge.models import ParentKind, ParentRef, get_session
from stepforge.schemas.parent import Fixture as FixtureSchema
from stepforge.schemas.parent import FixtureCreate, FixtureMutationResult, FixtureUpdate
from stepforge.services.parents import ParentService
from stepforge.services.transaction import Transaction

router = APIRouter(prefix="/api/projects/{project_id}/fixtures", tags=["fixtures"])


def wrap_fixture(fixture, warnings) -> FixtureMutationResult:
    return FixtureMutationResult(fixture=FixtureSchema.model_validate(fixture), warnings=warnings)


@router.get("/", response_model=List[FixtureSchema])
def list_fixtures(project_id: int, session: Session = Depends(get_session)):
    try:
        return [FixtureSchema.model_validate(f) for f in ParentService(session).list_fixtures(project_id)]
    except StepforgeException as e:
        raise to_http_exception(e)


@router.post(
    "/",
    response_model=FixtureMutationResult,
    status_code=201,
    dependencies=[Depends(require_permission("fixture:create"))],
)
def create_fixture(
    project_id: int,
    data: FixtureCreate,
    session: Session = Depends(get_session),
    user: Optional[str] = Depends(current_user_email)
):
    try:
        with Transaction(session, user) as tx:
            fixture = ParentService(session).create_fixture(project_id, data)
        return wrap_fixture(fixture, tx.warnings)
    except StepforgeException as e:
        logger.warning(f"Failed to create fixture in project {project_id}: {e}")
        raise to_http_exception(e)


@router.get("/{parent_id}", response_model=FixtureSchema)
def get_fixture(project_id: int, parent_id: int, session: Session = Depends(get_session)):
    try:
        return FixtureSchema.model_validate(
            parent_in_project(session, ParentRef.fixture(parent_id), project_id)
        )
    except StepforgeException as e:
        raise to_http_exception(e)


@router.put(
    "/{parent_id}",
    response_model=FixtureMutationResult,
    dependencies=[Depends(require_permission("fixture:update"))],
)
def update_fixture(
    project_id: int,
    parent_id: int,
    data: FixtureUpdate,
    session: Session = Depends(get_session),
    user: Optional[str] = Depends(current_user_email)
):
    try:
        parent_in_project(session, ParentRef.fixture(parent_id), project_id)
        with Transaction(session, user) as tx:
            fixture = ParentService(session).update_fixture(parent_id, data)
        return wrap_fixture(fixture, tx.warnings)
    except StepforgeException as e:
        raise to_http_exception(e)


@router.delete(
    "/{parent_id}",
    status_code=204,
    dependencies=[Depends(require_permission("fixture:delete"))],
)
def delete_fixture(
    project_id: int,
    parent_id: int,
    session: Session = Depends(get_session),
    user: Optional[str] = Depends(current_user_email)
):
    try:
        ref = ParentRef.fixture(parent_id)
        parent_in_project(session, ref, project_id)
        with Transaction(session, user):
            ParentService(session).delete(ref)
    except StepforgeException as e:
        raise to_http_exception(e)


register_step_routes(router, ParentKind.FIXTURE, wrap_fixture)
