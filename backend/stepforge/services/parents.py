"""
親エンティティ（テストケース・フィクスチャ）の作成・更新・削除
"""
import re
from itertools import count
from typing import List, Optional

from sqlmodel import Session, delete, select, update

from stepforge.config import settings
from stepforge.exceptions import NotFoundException, ValidationException
from stepforge.logging_config import logger
from stepforge.models import (
    Fixture,
    FixtureKind,
    FixtureVersion,
    ParentKind,
    ParentRef,
    Project,
    ReleaseTestCase,
    Step,
    StepVersion,
    TestCase,
    TestCaseVersion,
)
from stepforge.models.base import utcnow
from stepforge.schemas.parent import FixtureCreate, FixtureUpdate, TestCaseCreate, TestCaseUpdate
from stepforge.services.transaction import (
    Parent,
    current_user,
    enqueue_materialization,
    load_parent,
)
from stepforge.services.version_ledger import VersionLedger
from stepforge.utils.naming import find_unique_name, is_valid_identifier, to_camel_case
from stepforge.utils.version import INITIAL_VERSION


def get_project(session: Session, project_id: int) -> Project:
    project = session.get(Project, project_id)
    if project is None:
        raise NotFoundException(
            f"project not found: {project_id}",
            details={"kind": "project", "id": project_id}
        )
    return project


def name_taken(session: Session, model, project_id: int, name: str, exclude_id: Optional[int] = None) -> bool:
    """プロジェクト内で同じ名前の親エンティティが存在するか"""
    query = select(model.id).where(model.project_id == project_id, model.name == name)
    if exclude_id is not None:
        query = query.where(model.id != exclude_id)
    return session.exec(query).first() is not None


def export_identifier_taken(session: Session, project_id: int, identifier: str, exclude_id: Optional[int] = None) -> bool:
    query = select(Fixture.id).where(
        Fixture.project_id == project_id, Fixture.export_identifier == identifier
    )
    if exclude_id is not None:
        query = query.where(Fixture.id != exclude_id)
    return session.exec(query).first() is not None


def unique_export_identifier(session: Session, project_id: int, base: str) -> str:
    """
    プロジェクト内で未使用のエクスポート名を決める

    ``base`` が使われていれば末尾の数字を付け替えて ``base1``, ``base2``, ... を試す。
    """
    stem = re.sub(r"\d+$", "", base) or base

    def candidates():
        yield base
        for n in count(1):
            yield f"{stem}{n}"

    return find_unique_name(
        candidates(),
        lambda c: export_identifier_taken(session, project_id, c),
        settings.CLONE_NAME_MAX_ATTEMPTS,
    )


class ParentService:
    """テストケース・フィクスチャのライフサイクルを扱う"""

    def __init__(self, session: Session, ledger: Optional[VersionLedger] = None):
        self.session = session
        self.ledger = ledger or VersionLedger(session)

    def get(self, ref: ParentRef) -> Parent:
        return load_parent(self.session, ref)

    def list_test_cases(self, project_id: int) -> List[TestCase]:
        get_project(self.session, project_id)
        query = select(TestCase).where(TestCase.project_id == project_id).order_by(TestCase.id)
        return list(self.session.exec(query).all())

    def list_fixtures(self, project_id: int) -> List[Fixture]:
        get_project(self.session, project_id)
        query = select(Fixture).where(Fixture.project_id == project_id).order_by(Fixture.id)
        return list(self.session.exec(query).all())

    def create_test_case(self, project_id: int, data: TestCaseCreate) -> TestCase:
        """バージョン1.0・ステップなしのテストケースを作成する"""
        get_project(self.session, project_id)
        name = self._clean_name(data.name)
        if name_taken(self.session, TestCase, project_id, name):
            raise ValidationException(
                f"Test case name already exists: {name}",
                details={"field": "name", "name": name}
            )

        user = current_user(self.session)
        test_case = TestCase(
            project_id=project_id,
            name=name,
            description=data.description,
            is_manual=data.is_manual,
            tags=list(data.tags),
            status=data.status,
            priority=data.priority,
            version=INITIAL_VERSION,
            created_by=user,
            updated_by=user,
        )
        self.session.add(test_case)
        self.session.flush()

        if not test_case.is_manual:
            enqueue_materialization(self.session, ParentRef.test_case(test_case.id))
        logger.info(f"Created test case {test_case.id} '{name}' in project {project_id}")
        return test_case

    def create_fixture(self, project_id: int, data: FixtureCreate) -> Fixture:
        """
        バージョン1.0・ステップなしのフィクスチャを作成する

        エクスポート名が指定されなければ名前から導出し、衝突する場合は番号を付ける。
        """
        get_project(self.session, project_id)
        name = self._clean_name(data.name)
        if name_taken(self.session, Fixture, project_id, name):
            raise ValidationException(
                f"Fixture name already exists: {name}",
                details={"field": "name", "name": name}
            )

        if data.export_identifier:
            export_identifier = self._check_identifier(project_id, data.export_identifier)
        else:
            export_identifier = unique_export_identifier(self.session, project_id, to_camel_case(name))

        user = current_user(self.session)
        fixture = Fixture(
            project_id=project_id,
            name=name,
            description=data.description,
            kind=FixtureKind(data.kind).value,
            export_identifier=export_identifier,
            filename=data.filename,
            version=INITIAL_VERSION,
            created_by=user,
            updated_by=user,
        )
        self.session.add(fixture)
        self.session.flush()

        enqueue_materialization(self.session, ParentRef.fixture(fixture.id))
        logger.info(f"Created fixture {fixture.id} '{name}' ({fixture.kind}) in project {project_id}")
        return fixture

    def update_test_case(self, test_case_id: int, data: TestCaseUpdate) -> TestCase:
        """
        名前・タグ・状態などを更新する

        ステップの変更ではないためスナップショットは作らない。
        """
        ref = ParentRef.test_case(test_case_id)
        test_case = load_parent(self.session, ref, lock=True)
        changes = data.model_dump(exclude_unset=True)

        if changes.get("name") is not None:
            name = self._clean_name(changes["name"])
            if name_taken(self.session, TestCase, test_case.project_id, name, exclude_id=test_case.id):
                raise ValidationException(
                    f"Test case name already exists: {name}",
                    details={"field": "name", "name": name}
                )
            changes["name"] = name

        for field, value in changes.items():
            if value is None and field != "description":
                continue
            setattr(test_case, field, list(value) if field == "tags" else value)
        test_case.updated_at = utcnow()
        test_case.updated_by = current_user(self.session)
        self.session.add(test_case)
        self.session.flush()

        if not test_case.is_manual:
            enqueue_materialization(self.session, ref)
        logger.info(f"Updated test case {test_case.id}: {sorted(changes)}")
        return test_case

    def update_fixture(self, fixture_id: int, data: FixtureUpdate) -> Fixture:
        """フィクスチャの名前・エクスポート名・ファイル名を更新する"""
        ref = ParentRef.fixture(fixture_id)
        fixture = load_parent(self.session, ref, lock=True)
        changes = data.model_dump(exclude_unset=True)

        if changes.get("name") is not None:
            name = self._clean_name(changes["name"])
            if name_taken(self.session, Fixture, fixture.project_id, name, exclude_id=fixture.id):
                raise ValidationException(
                    f"Fixture name already exists: {name}",
                    details={"field": "name", "name": name}
                )
            changes["name"] = name
        if changes.get("export_identifier") is not None:
            changes["export_identifier"] = self._check_identifier(
                fixture.project_id, changes["export_identifier"], exclude_id=fixture.id
            )

        for field, value in changes.items():
            if value is None and field not in ("description", "filename"):
                continue
            setattr(fixture, field, value)
        fixture.updated_at = utcnow()
        fixture.updated_by = current_user(self.session)
        self.session.add(fixture)
        self.session.flush()

        enqueue_materialization(self.session, ref)
        for test_case_id in self._delegating_test_case_ids(fixture.id):
            enqueue_materialization(self.session, ParentRef.test_case(test_case_id))
        logger.info(f"Updated fixture {fixture.id}: {sorted(changes)}")
        return fixture

    def rename(self, ref: ParentRef, new_name: str) -> Parent:
        """名前だけを変更する（スナップショットは作らない）"""
        name = self._clean_name(new_name)
        if ref.kind == ParentKind.TESTCASE:
            return self.update_test_case(ref.id, TestCaseUpdate(name=name))
        return self.update_fixture(ref.id, FixtureUpdate(name=name))

    def delete(self, ref: ParentRef) -> None:
        """
        親エンティティとそのステップ・全スナップショットを削除する

        フィクスチャを削除した場合、委譲していたステップの参照を外し、
        影響を受けたテストケースごとにスナップショットを1つ追加する。
        """
        parent = load_parent(self.session, ref, lock=True)

        if ref.kind == ParentKind.TESTCASE:
            version_ids = select(TestCaseVersion.id).where(TestCaseVersion.test_case_id == parent.id)
            self.session.exec(delete(StepVersion).where(StepVersion.test_case_version_id.in_(version_ids)))
            self.session.exec(delete(TestCaseVersion).where(TestCaseVersion.test_case_id == parent.id))
            self.session.exec(delete(Step).where(Step.test_case_id == parent.id))
            self.session.exec(delete(ReleaseTestCase).where(ReleaseTestCase.test_case_id == parent.id))
            self.session.delete(parent)
            self.session.flush()
            logger.info(f"Deleted test case {ref.id} with its history")
            return

        affected = self._delegating_test_case_ids(parent.id)
        version_ids = select(FixtureVersion.id).where(FixtureVersion.fixture_id == parent.id)
        self.session.exec(
            update(StepVersion)
            .where(StepVersion.delegate_fixture_version_id.in_(version_ids))
            .values(delegate_fixture_version_id=None)
        )
        self.session.exec(
            update(StepVersion)
            .where(StepVersion.delegate_fixture_id == parent.id)
            .values(delegate_fixture_id=None)
        )
        self.session.exec(
            update(Step).where(Step.delegate_fixture_id == parent.id).values(delegate_fixture_id=None)
        )
        self.session.exec(delete(StepVersion).where(StepVersion.fixture_version_id.in_(version_ids)))
        self.session.exec(delete(FixtureVersion).where(FixtureVersion.fixture_id == parent.id))
        self.session.exec(delete(Step).where(Step.fixture_id == parent.id))
        self.session.delete(parent)
        self.session.flush()
        self.session.expire_all()

        for test_case_id in affected:
            test_case = load_parent(self.session, ParentRef.test_case(test_case_id), lock=True)
            self.ledger.snapshot(test_case)
            if not test_case.is_manual:
                enqueue_materialization(self.session, ParentRef.test_case(test_case_id))
        logger.info(f"Deleted fixture {ref.id}; detached from {len(affected)} test case(s)")

    def _delegating_test_case_ids(self, fixture_id: int) -> List[int]:
        query = (
            select(Step.test_case_id)
            .where(Step.delegate_fixture_id == fixture_id, Step.test_case_id.is_not(None))
            .distinct()
        )
        return sorted(self.session.exec(query).all())

    def _clean_name(self, name: Optional[str]) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationException("Name is required", details={"field": "name"})
        return cleaned

    def _check_identifier(self, project_id: int, identifier: str, exclude_id: Optional[int] = None) -> str:
        if not is_valid_identifier(identifier):
            raise ValidationException(
                f"Invalid export identifier: {identifier}",
                details={"field": "export_identifier", "value": identifier}
            )
        if export_identifier_taken(self.session, project_id, identifier, exclude_id=exclude_id):
            raise ValidationException(
                f"Export identifier already exists: {identifier}",
                details={"field": "export_identifier", "value": identifier}
            )
        return identifier
