"""
ライブ状態からテンプレートパラメータを組み立てる
"""
from typing import Any, Dict, List

from sqlmodel import Session, select

from stepforge.models import Fixture, ParentRef, Step, TestCase
from stepforge.services.ordering import OrderingService
from stepforge.services.template_renderer import (
    EMPTY_FIXTURE_BODY,
    RenderStep,
    render_step_body,
)
from stepforge.utils.naming import fixture_file_base
from stepforge.utils.path_manager import FIXTURES_SUBDIR


def _render_steps(steps: List[Step]) -> List[RenderStep]:
    return [
        RenderStep(
            order=s.order,
            action_description=s.action_description,
            generated_code_line=s.generated_code_line,
            expected_result=s.expected_result,
            disabled=s.disabled,
        )
        for s in steps
    ]


def fixture_relative_path(fixture: Fixture) -> str:
    """フィクスチャファイルの生成ルートからの相対パス（未生成なら既定の位置）"""
    if fixture.fixture_file_path:
        return fixture.fixture_file_path
    return f"{FIXTURES_SUBDIR}/{fixture_file_base(fixture.filename, fixture.name)}.fixture.ts"


def fixture_module_path(fixture: Fixture) -> str:
    """テストファイルから見たフィクスチャのimportパス"""
    relative = fixture_relative_path(fixture)
    if relative.endswith(".ts"):
        relative = relative[:-3]
    return f"../{relative}"


def delegated_fixtures(session: Session, steps: List[Step]) -> List[Fixture]:
    """有効なステップが委譲するフィクスチャを初出順に重複なく返す"""
    fixture_ids: List[int] = []
    for step in steps:
        if step.disabled or step.delegate_fixture_id is None:
            continue
        if step.delegate_fixture_id not in fixture_ids:
            fixture_ids.append(step.delegate_fixture_id)
    if not fixture_ids:
        return []
    found = {
        f.id: f for f in session.exec(select(Fixture).where(Fixture.id.in_(fixture_ids))).all()
    }
    return [found[i] for i in fixture_ids if i in found]


def build_test_case_params(session: Session, test_case: TestCase) -> Dict[str, Any]:
    """テストファイル用のパラメータ（検証はレンダリング時に行う）"""
    steps = OrderingService(session).list_steps(ParentRef.test_case(test_case.id))
    fixtures = delegated_fixtures(session, steps)
    return {
        "test_name": test_case.name,
        "steps": _render_steps(steps),
        "fixtures": [
            {
                "export_identifier": f.export_identifier,
                "module_path": fixture_module_path(f),
                "kind": f.kind,
            }
            for f in fixtures
        ],
        "tags": list(test_case.tags or []),
        "is_manual": test_case.is_manual,
    }


def build_fixture_params(session: Session, fixture: Fixture) -> Dict[str, Any]:
    """
    フィクスチャファイル用のパラメータ

    Raises:
        RenderException: 有効なステップにコード行がない場合
    """
    steps = OrderingService(session).list_steps(ParentRef.fixture(fixture.id))
    body = render_step_body(
        _render_steps(steps), indent="", require_code=True, empty_body=EMPTY_FIXTURE_BODY
    )
    return {
        "name": fixture.name,
        "export_identifier": fixture.export_identifier,
        "kind": fixture.kind,
        "description": fixture.description,
        "body": body,
    }
