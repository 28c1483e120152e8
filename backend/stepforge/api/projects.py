from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session
from typing import List, Optional

from stepforge.api.dependencies import (
    PermissionChecker,
    current_user_email,
    get_permission_checker,
    require_permission,
    to_http_exception,
)
from stepforge.exceptions import PermissionDeniedException, StepforgeException
from stepforge.models import get_session
from stepforge.schemas.project import Project as ProjectSchema
from stepforge.schemas.project import (
    ProjectCreate,
    Release as ReleaseSchema,
    ReleaseBinding,
    ReleaseBindingCreate,
    ReleaseCreate,
    ReleaseDetail,
)
from stepforge.services.releases import ProjectService, ReleaseService
from stepforge.services.transaction import Transaction

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("/", response_model=List[ProjectSchema])
def list_projects(session: Session = Depends(get_session)):
    return [ProjectSchema.model_validate(p) for p in ProjectService(session).list_projects()]


@router.post("/", response_model=ProjectSchema, status_code=201)
def create_project(
    data: ProjectCreate,
    session: Session = Depends(get_session),
    user: Optional[str] = Depends(current_user_email),
    checker: PermissionChecker = Depends(get_permission_checker)
):
    if not checker.can_perform("project:create"):
        raise HTTPException(status_code=403, detail=PermissionDeniedException().to_dict())
    try:
        with Transaction(session, user):
            project = ProjectService(session).create_project(data)
        return ProjectSchema.model_validate(project)
    except StepforgeException as e:
        raise to_http_exception(e)


@router.get("/{project_id}", response_model=ProjectSchema)
def get_project(project_id: int, session: Session = Depends(get_session)):
    try:
        return ProjectSchema.model_validate(ProjectService(session).get_project(project_id))
    except StepforgeException as e:
        raise to_http_exception(e)


@router.get("/{project_id}/releases", response_model=List[ReleaseSchema])
def list_releases(project_id: int, session: Session = Depends(get_session)):
    try:
        return [ReleaseSchema.model_validate(r) for r in ReleaseService(session).list_releases(project_id)]
    except StepforgeException as e:
        raise to_http_exception(e)


@router.post(
    "/{project_id}/releases",
    response_model=ReleaseSchema,
    status_code=201,
    dependencies=[Depends(require_permission("release:create"))],
)
def create_release(
    project_id: int,
    data: ReleaseCreate,
    session: Session = Depends(get_session),
    user: Optional[str] = Depends(current_user_email)
):
    try:
        with Transaction(session, user):
            release = ReleaseService(session).create_release(project_id, data)
        return ReleaseSchema.model_validate(release)
    except StepforgeException as e:
        raise to_http_exception(e)


@router.get("/{project_id}/releases/{release_id}", response_model=ReleaseDetail)
def get_release(project_id: int, release_id: int, session: Session = Depends(get_session)):
    try:
        service = ReleaseService(session)
        release = service.get_release(project_id, release_id)
        bindings = service.list_bindings(project_id, release_id)
        return ReleaseDetail(
            **ReleaseSchema.model_validate(release).model_dump(),
            bindings=[ReleaseBinding.model_validate(b) for b in bindings],
        )
    except StepforgeException as e:
        raise to_http_exception(e)


@router.post(
    "/{project_id}/releases/{release_id}/test-cases",
    response_model=ReleaseBinding,
    status_code=201,
    dependencies=[Depends(require_permission("release:update"))],
)
def bind_test_case(
    project_id: int,
    release_id: int,
    data: ReleaseBindingCreate,
    session: Session = Depends(get_session),
    user: Optional[str] = Depends(current_user_email)
):
    try:
        with Transaction(session, user):
            binding = ReleaseService(session).bind_test_case(
                project_id, release_id, data.test_case_id, data.version
            )
        return ReleaseBinding.model_validate(binding)
    except StepforgeException as e:
        raise to_http_exception(e)


@router.delete(
    "/{project_id}/releases/{release_id}/test-cases/{test_case_id}",
    status_code=204,
    dependencies=[Depends(require_permission("release:update"))],
)
def unbind_test_case(
    project_id: int,
    release_id: int,
    test_case_id: int,
    session: Session = Depends(get_session),
    user: Optional[str] = Depends(current_user_email)
):
    try:
        with Transaction(session, user):
            ReleaseService(session).unbind(project_id, release_id, test_case_id)
    except StepforgeException as e:
        raise to_http_exception(e)
