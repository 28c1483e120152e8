"""
コードテンプレート管理とレンダリングモジュール

ステップの構造化データからPlaywrightのテストファイル・フィクスチャファイルの
ソースコードを生成します。レンダリングは入出力を持たない純粋な処理で、
同じパラメータからは常にバイト単位で同一のテキストを返します。
"""

from typing import Dict, Any, List, Optional, Union
import json
import yaml
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from stepforge.config import settings
from stepforge.exceptions import (
    GenerationException,
    RenderException,
    TemplateNotFoundException,
    convert_exception,
)
from stepforge.logging_config import logger
from stepforge.models.fixture import FixtureKind
from stepforge.utils.naming import is_valid_identifier

TEST_TEMPLATE = "test"
FIXTURE_TEMPLATE = "fixture"
TEMPLATE_KINDS = (TEST_TEMPLATE, FIXTURE_TEMPLATE)

EMPTY_TEST_BODY = "// No steps defined"
EMPTY_FIXTURE_BODY = "// Add your fixture implementation here"


class RenderStep(BaseModel):
    """レンダリング対象の1ステップ"""
    order: int
    action_description: str
    generated_code_line: Optional[str] = None
    expected_result: Optional[str] = None
    disabled: bool = False


class FixtureImport(BaseModel):
    """テストファイルが読み込む委譲先フィクスチャ"""
    export_identifier: str
    module_path: str
    kind: FixtureKind = FixtureKind.EXTEND

    @field_validator("export_identifier")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        if not is_valid_identifier(value):
            raise ValueError(f"invalid export identifier: {value!r}")
        return value


class TestTemplateParams(BaseModel):
    """テストファイルのテンプレートパラメータ"""
    __test__ = False
    test_name: str = Field(min_length=1)
    steps: List[RenderStep] = Field(default_factory=list)
    fixtures: List[FixtureImport] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    is_manual: bool = False


class FixtureTemplateParams(BaseModel):
    """フィクスチャファイルのテンプレートパラメータ"""
    name: str = Field(min_length=1)
    export_identifier: str
    kind: FixtureKind = FixtureKind.EXTEND
    description: Optional[str] = None
    body: str = ""

    @field_validator("export_identifier")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        if not is_valid_identifier(value):
            raise ValueError(f"invalid export identifier: {value!r}")
        return value


class CodeTemplate:
    """コードテンプレートクラス"""

    def __init__(self, template: str, metadata: Optional[Dict[str, Any]] = None):
        """
        コードテンプレートの初期化

        Args:
            template: ``str.format`` 形式のテンプレート文字列
            metadata: テンプレートに関するメタデータ
        """
        self.template = template
        self.metadata = metadata or {}

    def format(self, **kwargs) -> str:
        return self.template.format(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template": self.template,
            "metadata": self.metadata
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CodeTemplate':
        return cls(
            template=data["template"],
            metadata=data.get("metadata", {})
        )


class TemplateRegistry:
    """コードテンプレートレジストリ"""

    def __init__(self, templates_dir: Optional[str] = None):
        self._templates: Dict[str, CodeTemplate] = {}
        self._loaded = False
        self._templates_dir = templates_dir

    def register(self, name: str, template: CodeTemplate) -> None:
        self._templates[name] = template

    def names(self) -> List[str]:
        if not self._loaded:
            self.load_default_templates()
        return sorted(self._templates)

    def get(self, name: str) -> CodeTemplate:
        """
        テンプレートを取得

        Raises:
            TemplateNotFoundException: テンプレートが見つからない場合
        """
        if not self._loaded:
            self.load_default_templates()

        if name not in self._templates:
            raise TemplateNotFoundException(
                f"Template not found: {name}",
                details={"template": name}
            )

        return self._templates[name]

    @convert_exception(GenerationException)
    def load_from_file(self, path: str) -> None:
        """
        ファイルからテンプレートを読み込む

        Args:
            path: テンプレートファイルのパス (.yaml, .yml, .json)

        Raises:
            GenerationException: ファイルを読み込めない場合
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                if path.endswith((".yaml", ".yml")):
                    templates_data = yaml.safe_load(f) or {}
                elif path.endswith(".json"):
                    templates_data = json.load(f)
                else:
                    raise ValueError("Unsupported file format. Must be .yaml, .yml, or .json")

            for name, data in templates_data.items():
                if isinstance(data, str):
                    self.register(name, CodeTemplate(data))
                elif isinstance(data, dict):
                    self.register(name, CodeTemplate.from_dict(data))
                else:
                    logger.warning(f"Invalid template data for {name}: {data}")

        except Exception as e:
            logger.error(f"Error loading templates from {path}: {e}", exc_info=True)
            raise

    def load_from_directory(self, directory: str) -> None:
        """ディレクトリ内のテンプレートファイルをファイル名順に読み込む"""
        files = sorted(
            p for p in Path(directory).iterdir()
            if p.is_file() and p.suffix in (".yaml", ".yml", ".json")
        )
        for file_path in files:
            self.load_from_file(str(file_path))

    def load_default_templates(self) -> None:
        """デフォルトのテンプレートを読み込む"""
        self._loaded = True

        self.register("test", CodeTemplate(
            template="""{header}

test('{test_name}'{tag_annotation}, async ({{ {test_args} }}) => {{
{body}
}});
""",
            metadata={"description": "Playwrightテストファイル"}
        ))

        self.register("fixture_extend", CodeTemplate(
            template="""import {{ test as base }} from '@playwright/test';
{description_comment}
export const test = base.extend<{{ {export_identifier}: void }}>({{
  {export_identifier}: async ({{ page }}, use) => {{
{body}
    await use();
  }},
}});

export {{ expect }} from '@playwright/test';
""",
            metadata={"description": "base.extend 形式のフィクスチャ"}
        ))

        self.register("fixture_inline", CodeTemplate(
            template="""import {{ Page, expect }} from '@playwright/test';
{description_comment}
export async function {export_identifier}(page: Page): Promise<void> {{
{body}
}}
""",
            metadata={"description": "関数として呼び出すフィクスチャ"}
        ))

        templates_dir = self._templates_dir if self._templates_dir is not None else settings.TEMPLATES_DIR
        if templates_dir and Path(templates_dir).is_dir():
            self.load_from_directory(templates_dir)


def _js_string(value: str) -> str:
    """シングルクォートのJavaScript文字列リテラルの中身としてエスケープする"""
    return (
        value.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("\r", "")
        .replace("\n", " ")
    )


def _single_line(value: Optional[str]) -> str:
    return " ".join((value or "").split())


def _close_safe(value: str) -> str:
    """ブロックコメント内に置けるよう終端記号を崩す"""
    return value.replace("*/", "* /")


def _indent(lines: List[str], indent: str) -> List[str]:
    return [f"{indent}{line}" if line else "" for line in lines]


def render_step_body(
    steps: List[RenderStep],
    indent: str = "  ",
    require_code: bool = True,
    empty_body: str = EMPTY_TEST_BODY
) -> str:
    """
    ステップ列をコード本体に変換する

    Args:
        steps: ステップ列（orderで並べ替えてから出力する）
        indent: 各行のインデント
        require_code: 有効なステップにコード行が必須かどうか
        empty_body: ステップがない場合に出力するコメント

    Raises:
        RenderException: 必須のコード行が欠けている場合
    """
    ordered = sorted(steps, key=lambda s: s.order)
    if not ordered:
        return f"{indent}{empty_body}"

    blocks: List[str] = []
    for number, step in enumerate(ordered, start=1):
        action = _single_line(step.action_description)
        code_lines = (step.generated_code_line or "").strip().splitlines()

        if step.disabled:
            lines = [f"/* DISABLED STEP {number}: {_close_safe(action)}"]
            lines.extend(_close_safe(line) for line in code_lines)
            if step.expected_result:
                lines.append(f"Expected: {_close_safe(_single_line(step.expected_result))}")
            lines.append("*/")
        else:
            if not code_lines and require_code:
                raise RenderException(
                    f"Step {number} has no generated code line",
                    details={"order": step.order, "action": action}
                )
            lines = [f"// Step {number}: {action}"]
            lines.extend(code_lines)
            if step.expected_result:
                lines.append(f"// Expected: {_single_line(step.expected_result)}")

        blocks.append("\n".join(_indent(lines, indent)))

    return "\n\n".join(blocks)


def _normalize(text: str) -> str:
    """行末の空白を除き、末尾を改行1つにそろえる"""
    lines = [line.rstrip() for line in text.splitlines()]
    return "\n".join(lines).rstrip("\n") + "\n"


def _test_header(fixtures: List[FixtureImport]) -> str:
    extend_imports = [f for f in fixtures if f.kind == FixtureKind.EXTEND]
    inline_imports = [f for f in fixtures if f.kind == FixtureKind.INLINE]

    lines: List[str] = []
    if extend_imports:
        lines.append("import { expect, mergeTests } from '@playwright/test';")
    else:
        lines.append("import { test, expect } from '@playwright/test';")

    for fixture in extend_imports:
        lines.append(f"import {{ test as {fixture.export_identifier}Test }} from '{fixture.module_path}';")
    for fixture in inline_imports:
        lines.append(f"import {{ {fixture.export_identifier} }} from '{fixture.module_path}';")

    if extend_imports:
        merged = ", ".join(f"{f.export_identifier}Test" for f in extend_imports)
        lines.append("")
        lines.append(f"const test = mergeTests({merged});")

    return "\n".join(lines)


def _tag_annotation(tags: List[str]) -> str:
    cleaned = [t.strip() for t in tags if t and t.strip()]
    if not cleaned:
        return ""
    rendered = ", ".join(
        f"'{_js_string(t if t.startswith('@') else '@' + t)}'" for t in cleaned
    )
    return f", {{ tag: [{rendered}] }}"


def _validate(model: type, params: Union[BaseModel, Dict[str, Any]]) -> Any:
    if isinstance(params, model):
        return params
    try:
        if isinstance(params, BaseModel):
            params = params.model_dump()
        return model.model_validate(params)
    except ValidationError as e:
        raise RenderException(
            f"Invalid template parameters: {e.error_count()} error(s)",
            details={"errors": json.loads(e.json())}
        ) from e


def _format(template: CodeTemplate, name: str, **kwargs) -> str:
    try:
        return template.format(**kwargs)
    except (KeyError, IndexError, ValueError) as e:
        raise RenderException(
            f"Template {name} could not be formatted: {e}",
            details={"template": name}
        ) from e


class TemplateRenderer:
    """テンプレート種別とパラメータからソースコードを生成する"""

    def __init__(self, registry: Optional[TemplateRegistry] = None):
        self.registry = registry or template_registry

    def render(self, template_kind: str, params: Union[BaseModel, Dict[str, Any]]) -> str:
        """
        テンプレートをレンダリングする

        Args:
            template_kind: "test" または "fixture"
            params: TestTemplateParams / FixtureTemplateParams またはその辞書表現

        Raises:
            TemplateNotFoundException: 未知のテンプレート種別
            RenderException: パラメータが不正
        """
        if template_kind == TEST_TEMPLATE:
            return self._render_test(_validate(TestTemplateParams, params))
        if template_kind == FIXTURE_TEMPLATE:
            return self._render_fixture(_validate(FixtureTemplateParams, params))
        raise TemplateNotFoundException(
            f"Unknown template kind: {template_kind}",
            details={"template": template_kind, "available": list(TEMPLATE_KINDS)}
        )

    def _render_test(self, params: TestTemplateParams) -> str:
        template = self.registry.get(TEST_TEMPLATE)
        body = render_step_body(params.steps, indent="  ", require_code=not params.is_manual)

        test_args = ["page"]
        for fixture in params.fixtures:
            if fixture.kind == FixtureKind.EXTEND and fixture.export_identifier not in test_args:
                test_args.append(fixture.export_identifier)

        text = _format(
            template, TEST_TEMPLATE,
            header=_test_header(params.fixtures),
            test_name=_js_string(params.test_name),
            tag_annotation=_tag_annotation(params.tags),
            test_args=", ".join(test_args),
            body=body,
        )
        return _normalize(text)

    def _render_fixture(self, params: FixtureTemplateParams) -> str:
        name = f"{FIXTURE_TEMPLATE}_{params.kind.value}"
        template = self.registry.get(name)
        description = _single_line(params.description or params.name)
        indent = "    " if params.kind == FixtureKind.EXTEND else "  "
        body_lines = params.body.splitlines() or [EMPTY_FIXTURE_BODY]

        text = _format(
            template, name,
            description_comment=f"\n// {description}\n" if description else "",
            export_identifier=params.export_identifier,
            body="\n".join(_indent(body_lines, indent)),
        )
        return _normalize(text)


template_registry = TemplateRegistry()


def render(template_kind: str, params: Union[BaseModel, Dict[str, Any]]) -> str:
    """
    既定のレジストリでテンプレートをレンダリングする
    """
    return TemplateRenderer().render(template_kind, params)
