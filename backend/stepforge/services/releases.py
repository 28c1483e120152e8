"""
プロジェクトとリリースの管理

リリースへのテストケースの紐付けは、紐付けた時点のテストケースのバージョンを固定する。
"""
from typing import List, Optional

from sqlmodel import Session, select

from stepforge.exceptions import (
    ConsistencyException,
    NotFoundException,
    ParentMismatchException,
    ValidationException,
    VersionNotFoundException,
)
from stepforge.logging_config import logger
from stepforge.models import Project, Release, ReleaseTestCase, TestCase, TestCaseVersion
from stepforge.schemas.project import ProjectCreate, ReleaseCreate
from stepforge.services.parents import get_project
from stepforge.services.transaction import current_user
from stepforge.utils.version import validate_version


class ProjectService:
    """プロジェクトの作成と参照"""

    def __init__(self, session: Session):
        self.session = session

    def create_project(self, data: ProjectCreate) -> Project:
        name = data.name.strip()
        if not name:
            raise ValidationException("Name is required", details={"field": "name"})
        if self.session.exec(select(Project.id).where(Project.name == name)).first() is not None:
            raise ValidationException(
                f"Project name already exists: {name}",
                details={"field": "name", "name": name}
            )
        user = current_user(self.session)
        project = Project(
            name=name,
            description=data.description,
            generated_root=data.generated_root,
            created_by=user,
            updated_by=user,
        )
        self.session.add(project)
        self.session.flush()
        logger.info(f"Created project {project.id} '{name}'")
        return project

    def get_project(self, project_id: int) -> Project:
        return get_project(self.session, project_id)

    def list_projects(self) -> List[Project]:
        return list(self.session.exec(select(Project).order_by(Project.id)).all())


class ReleaseService:
    """リリースとテストケースの紐付けを管理する"""

    def __init__(self, session: Session):
        self.session = session

    def create_release(self, project_id: int, data: ReleaseCreate) -> Release:
        get_project(self.session, project_id)
        user = current_user(self.session)
        release = Release(
            project_id=project_id,
            name=data.name,
            version_label=data.version_label,
            created_by=user,
            updated_by=user,
        )
        self.session.add(release)
        self.session.flush()
        logger.info(f"Created release {release.id} '{release.name}' in project {project_id}")
        return release

    def get_release(self, project_id: int, release_id: int) -> Release:
        release = self.session.get(Release, release_id)
        if release is None or release.project_id != project_id:
            raise NotFoundException(
                f"release not found: {release_id}",
                details={"kind": "release", "id": release_id}
            )
        return release

    def list_releases(self, project_id: int) -> List[Release]:
        get_project(self.session, project_id)
        query = select(Release).where(Release.project_id == project_id).order_by(Release.id)
        return list(self.session.exec(query).all())

    def bind_test_case(
        self,
        project_id: int,
        release_id: int,
        test_case_id: int,
        version: Optional[str] = None
    ) -> ReleaseTestCase:
        """
        テストケースをリリースに紐付け、バージョンを固定する

        ``version`` を省略した場合は現在のバージョン、指定した場合は履歴にあるそのバージョンを固定する。

        Raises:
            VersionFormatException: バージョン文字列の形式が不正な場合
            VersionNotFoundException: 指定したバージョンが履歴にない場合
            ParentMismatchException: テストケースが別プロジェクトのものの場合
            ConsistencyException: すでに紐付いている場合
        """
        release = self.get_release(project_id, release_id)
        test_case = self.session.get(TestCase, test_case_id)
        if test_case is None:
            raise NotFoundException(
                f"testcase not found: {test_case_id}",
                details={"kind": "testcase", "id": test_case_id}
            )
        if test_case.project_id != release.project_id:
            raise ParentMismatchException(
                f"Test case {test_case_id} belongs to another project",
                details={"release_id": release_id, "test_case_id": test_case_id}
            )
        if self._find_binding(release_id, test_case_id) is not None:
            raise ConsistencyException(
                f"Test case {test_case_id} is already bound to release {release_id}",
                details={"release_id": release_id, "test_case_id": test_case_id}
            )

        user = current_user(self.session)
        binding = ReleaseTestCase(
            release_id=release_id,
            test_case_id=test_case_id,
            version=self._pinned_version(test_case, version),
            created_by=user,
            updated_by=user,
        )
        self.session.add(binding)
        self.session.flush()
        logger.info(f"Bound test case {test_case_id}@{binding.version} to release {release_id}")
        return binding

    def unbind(self, project_id: int, release_id: int, test_case_id: int) -> None:
        self.get_release(project_id, release_id)
        binding = self._find_binding(release_id, test_case_id)
        if binding is None:
            raise NotFoundException(
                f"Test case {test_case_id} is not bound to release {release_id}",
                details={"release_id": release_id, "test_case_id": test_case_id}
            )
        self.session.delete(binding)
        self.session.flush()
        logger.info(f"Unbound test case {test_case_id} from release {release_id}")

    def list_bindings(self, project_id: int, release_id: int) -> List[ReleaseTestCase]:
        self.get_release(project_id, release_id)
        query = (
            select(ReleaseTestCase)
            .where(ReleaseTestCase.release_id == release_id)
            .order_by(ReleaseTestCase.id)
        )
        return list(self.session.exec(query).all())

    def _pinned_version(self, test_case: TestCase, version: Optional[str]) -> str:
        if version is None:
            return test_case.version
        validate_version(version)
        if version == test_case.version:
            return version
        query = select(TestCaseVersion.id).where(
            TestCaseVersion.test_case_id == test_case.id,
            TestCaseVersion.version == version,
        )
        if self.session.exec(query).first() is None:
            raise VersionNotFoundException(
                f"Test case {test_case.id} has no version {version}",
                details={"test_case_id": test_case.id, "version": version}
            )
        return version

    def _find_binding(self, release_id: int, test_case_id: int) -> Optional[ReleaseTestCase]:
        query = select(ReleaseTestCase).where(
            ReleaseTestCase.release_id == release_id,
            ReleaseTestCase.test_case_id == test_case_id,
        )
        return self.session.exec(query).first()
