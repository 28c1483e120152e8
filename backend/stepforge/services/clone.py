"""
テストケース・フィクスチャの複製

複製はバージョン1.0・履歴なしの独立したエンティティとして作られ、複製元とその履歴は変更しない。
テストケースの複製では、委譲先のフィクスチャも複製元1つにつき1回だけ複製する。
"""
import re
from itertools import count
from typing import Dict, Iterator, Optional

from sqlmodel import Session

from stepforge.config import settings
from stepforge.logging_config import logger
from stepforge.models import Fixture, ParentKind, ParentRef, Step, TestCase
from stepforge.services.ordering import OrderingService
from stepforge.services.parents import export_identifier_taken, name_taken
from stepforge.services.transaction import Parent, current_user, enqueue_materialization, load_parent
from stepforge.utils.naming import copy_name_candidates, find_unique_name, numbered_name_candidates
from stepforge.utils.version import INITIAL_VERSION


def _export_identifier_candidates(base: str) -> Iterator[str]:
    stem = re.sub(r"\d+$", "", base) or base
    for n in count(1):
        yield f"{stem}{n}"


class CloneOrchestrator:
    """親エンティティを新しい一意な名前で複製する"""

    def __init__(self, session: Session, max_attempts: Optional[int] = None):
        self.session = session
        self.ordering = OrderingService(session)
        self.max_attempts = max_attempts or settings.CLONE_NAME_MAX_ATTEMPTS

    def clone(self, ref: ParentRef) -> Parent:
        """
        複製を作成する

        Raises:
            NotFoundException: 複製元が存在しない場合
            CloneNameExhaustedException: 試行回数内に一意な名前が見つからない場合
        """
        source = load_parent(self.session, ref)
        if ref.kind == ParentKind.TESTCASE:
            return self._clone_test_case(source)
        return self._clone_fixture(source)

    def _clone_test_case(self, source: TestCase) -> TestCase:
        name = find_unique_name(
            copy_name_candidates(source.name),
            lambda candidate: name_taken(self.session, TestCase, source.project_id, candidate),
            self.max_attempts,
        )
        user = current_user(self.session)
        clone = TestCase(
            project_id=source.project_id,
            name=name,
            description=source.description,
            is_manual=source.is_manual,
            tags=list(source.tags or []),
            status=source.status,
            priority=source.priority,
            version=INITIAL_VERSION,
            created_by=user,
            updated_by=user,
        )
        self.session.add(clone)
        self.session.flush()

        # 複製元フィクスチャID -> 複製したフィクスチャID
        fixture_clones: Dict[int, int] = {}
        steps = self.ordering.list_steps(ParentRef.test_case(source.id))
        for step in steps:
            delegate_fixture_id = step.delegate_fixture_id
            if delegate_fixture_id is not None:
                if delegate_fixture_id not in fixture_clones:
                    fixture = self.session.get(Fixture, delegate_fixture_id)
                    fixture_clones[delegate_fixture_id] = self._clone_fixture(fixture).id
                delegate_fixture_id = fixture_clones[delegate_fixture_id]
            self.session.add(self._copy_step(step, test_case_id=clone.id, delegate_fixture_id=delegate_fixture_id))
        self.session.flush()
        self.ordering.verify_dense(ParentRef.test_case(clone.id))

        if not clone.is_manual:
            enqueue_materialization(self.session, ParentRef.test_case(clone.id))
        logger.info(
            f"Cloned test case {source.id} as {clone.id} '{name}' "
            f"with {len(steps)} step(s) and {len(fixture_clones)} fixture clone(s)"
        )
        return clone

    def _clone_fixture(self, source: Fixture) -> Fixture:
        name = find_unique_name(
            numbered_name_candidates(source.name),
            lambda candidate: name_taken(self.session, Fixture, source.project_id, candidate),
            self.max_attempts,
        )
        export_identifier = find_unique_name(
            _export_identifier_candidates(source.export_identifier),
            lambda candidate: export_identifier_taken(self.session, source.project_id, candidate),
            self.max_attempts,
        )
        user = current_user(self.session)
        clone = Fixture(
            project_id=source.project_id,
            name=name,
            description=source.description,
            kind=source.kind,
            export_identifier=export_identifier,
            # ファイル名は新しい名前から導出する
            filename=None,
            version=INITIAL_VERSION,
            created_by=user,
            updated_by=user,
        )
        self.session.add(clone)
        self.session.flush()

        steps = self.ordering.list_steps(ParentRef.fixture(source.id))
        for step in steps:
            self.session.add(self._copy_step(step, fixture_id=clone.id))
        self.session.flush()
        self.ordering.verify_dense(ParentRef.fixture(clone.id))

        enqueue_materialization(self.session, ParentRef.fixture(clone.id))
        logger.info(f"Cloned fixture {source.id} as {clone.id} '{name}' ({export_identifier})")
        return clone

    def _copy_step(
        self,
        step: Step,
        test_case_id: Optional[int] = None,
        fixture_id: Optional[int] = None,
        delegate_fixture_id: Optional[int] = None
    ) -> Step:
        user = current_user(self.session)
        return Step(
            test_case_id=test_case_id,
            fixture_id=fixture_id,
            delegate_fixture_id=delegate_fixture_id,
            order=step.order,
            action_description=step.action_description,
            input_data=step.input_data,
            expected_result=step.expected_result,
            generated_code_line=step.generated_code_line,
            disabled=step.disabled,
            created_by=user,
            updated_by=user,
        )
