"""
生成ファイルの書き出し

コミット済みのライブ状態をテンプレートでレンダリングし、プロジェクトの出力ディレクトリに書き出す。
トランザクションの外で実行され、失敗してもデータの変更は取り消されない。
同じ状態から何度実行しても同じ内容のファイルになる。
"""
from functools import partial
from itertools import chain, count
from pathlib import Path, PurePosixPath
from typing import Callable, Optional

from sqlmodel import Session, select

from stepforge.config import settings
from stepforge.exceptions import GenerationException, MaterializationException
from stepforge.logging_config import logger
from stepforge.models import Fixture, FixtureKind, ParentKind, ParentRef, Project, TestCase
from stepforge.services.ordering import OrderingService
from stepforge.services.script_params import (
    build_fixture_params,
    build_test_case_params,
    delegated_fixtures,
)
from stepforge.services.template_renderer import TemplateRenderer
from stepforge.services.transaction import load_parent
from stepforge.utils.naming import fixture_file_base, slugify
from stepforge.utils.path_manager import (
    FIXTURES_SUBDIR,
    TESTS_SUBDIR,
    PathManager,
    get_path_manager,
)

FIXTURE_INDEX_HEADER = "// Fixtures export file\n"


class FileMaterializer:
    """親エンティティの現在の状態をソースファイルとして書き出す"""

    def __init__(
        self,
        session: Session,
        renderer: Optional[TemplateRenderer] = None,
        path_manager: Optional[PathManager] = None
    ):
        self.session = session
        self.renderer = renderer or TemplateRenderer()
        self.path_manager = path_manager or get_path_manager()

    def materialize(self, ref: ParentRef) -> Optional[Path]:
        """
        生成ファイルを書き出してパスを返す

        手動テストケースはファイルを生成しないためNoneを返す。

        Raises:
            NotFoundException: 親エンティティが存在しない場合
            GenerationException: レンダリング・書き込みに失敗した場合
        """
        parent = load_parent(self.session, ref)
        if ref.kind == ParentKind.TESTCASE:
            return self.materialize_test_case(parent)
        return self.materialize_fixture(parent)

    def project_dir(self, project_id: int) -> Path:
        project = self.session.get(Project, project_id)
        return self.path_manager.get_project_dir(project.name, project.generated_root)

    def materialize_test_case(self, test_case: TestCase) -> Optional[Path]:
        if test_case.is_manual:
            logger.info(f"Test case {test_case.id} is manual; skipping file generation")
            return None

        project_dir = self.project_dir(test_case.project_id)
        steps = OrderingService(self.session).list_steps(ParentRef.test_case(test_case.id))
        for fixture in delegated_fixtures(self.session, steps):
            if not fixture.fixture_file_path:
                try:
                    self.materialize_fixture(fixture)
                except GenerationException as e:
                    raise MaterializationException(
                        f"Delegated fixture {fixture.id} could not be generated: {e.message}",
                        details={"test_case_id": test_case.id, "fixture_id": fixture.id}
                    ) from e

        content = self.renderer.render("test", build_test_case_params(self.session, test_case))

        base = str(test_case.id) if settings.USE_ID_AS_FILENAME else slugify(test_case.name)
        owned_by_other = partial(self._test_path_owned_by_other, test_case)
        relative = self._free_path(TESTS_SUBDIR, base, ".spec.ts", test_case.id, owned_by_other)

        target = project_dir / relative
        self._write(target, content)
        self._remove_previous(project_dir, test_case.test_file_path, relative, owned_by_other)

        if test_case.test_file_path != relative:
            test_case.test_file_path = relative
            self.session.add(test_case)
            self.session.commit()

        logger.info(f"Materialized test case {test_case.id} to {target}")
        return target

    def materialize_fixture(self, fixture: Fixture) -> Path:
        project_dir = self.project_dir(fixture.project_id)
        content = self.renderer.render("fixture", build_fixture_params(self.session, fixture))

        base = fixture_file_base(fixture.filename, fixture.name)
        owned_by_other = partial(self._fixture_path_owned_by_other, fixture)
        relative = self._free_path(FIXTURES_SUBDIR, base, ".fixture.ts", fixture.id, owned_by_other)

        target = project_dir / relative
        self._write(target, content)
        self._remove_previous(project_dir, fixture.fixture_file_path, relative, owned_by_other)

        if fixture.fixture_file_path != relative:
            fixture.fixture_file_path = relative
            self.session.add(fixture)
            self.session.commit()

        self.rebuild_fixture_index(fixture.project_id, project_dir)
        logger.info(f"Materialized fixture {fixture.id} to {target}")
        return target

    def _free_path(
        self,
        subdir: str,
        base: str,
        extension: str,
        parent_id: int,
        owned_by_other: Callable[[str], bool]
    ) -> str:
        """
        他の親エンティティが使っていない相対パスを決める

        ``base``、``base-<id>``、``base-<id>-2``、... の順に試す。
        """
        candidates = chain([base, f"{base}-{parent_id}"], (f"{base}-{parent_id}-{n}" for n in count(2)))
        for candidate in candidates:
            relative = f"{subdir}/{candidate}{extension}"
            if not owned_by_other(relative):
                return relative

    def _test_path_owned_by_other(self, test_case: TestCase, relative: str) -> bool:
        query = select(TestCase.id).where(
            TestCase.project_id == test_case.project_id,
            TestCase.test_file_path == relative,
            TestCase.id != test_case.id,
        )
        return self.session.exec(query).first() is not None

    def _fixture_path_owned_by_other(self, fixture: Fixture, relative: str) -> bool:
        query = select(Fixture.id).where(
            Fixture.project_id == fixture.project_id,
            Fixture.fixture_file_path == relative,
            Fixture.id != fixture.id,
        )
        return self.session.exec(query).first() is not None

    def _write(self, target: Path, content: str) -> None:
        try:
            self.path_manager.ensure_file_dir(target)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to write {target}: {e}", exc_info=True)
            raise MaterializationException(
                f"Failed to write {target}: {e}",
                details={"path": str(target)}
            ) from e

    def _remove_previous(
        self,
        project_dir: Path,
        previous: Optional[str],
        current: str,
        owned_by_other: Callable[[str], bool]
    ) -> None:
        """名前の変更などで出力先が変わった場合に古いファイルを消す"""
        if not previous or previous == current or owned_by_other(previous):
            return
        try:
            self.path_manager.remove_file(project_dir / previous)
        except OSError as e:
            logger.warning(f"Could not remove previous file {previous}: {e}")

    def rebuild_fixture_index(self, project_id: int, project_dir: Path) -> None:
        """
        fixtures/index.ts をプロジェクトの extend 型フィクスチャから作り直す

        フィクスチャID順に1行ずつエクスポートする。名前やエクスポート名が変わった場合も
        古い行は残らない。
        """
        query = (
            select(Fixture)
            .where(
                Fixture.project_id == project_id,
                Fixture.kind == FixtureKind.EXTEND.value,
                Fixture.fixture_file_path.is_not(None),
            )
            .order_by(Fixture.id)
        )
        lines = []
        for fixture in self.session.exec(query).all():
            module = "./" + PurePosixPath(fixture.fixture_file_path).name[:-len(".ts")]
            lines.append(f"export {{ test as {fixture.export_identifier} }} from '{module}';\n")

        index_path = self.path_manager.get_fixture_index(project_dir)
        if not lines and not index_path.exists():
            return
        try:
            self.path_manager.ensure_file_dir(index_path)
            index_path.write_text(FIXTURE_INDEX_HEADER + "".join(lines), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not update {index_path}: {e}")
