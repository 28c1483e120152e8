import pytest

from stepforge.exceptions import GenerationException, RenderException, TemplateNotFoundException
from stepforge.models import FixtureKind
from stepforge.services.template_renderer import (
    FixtureImport,
    FixtureTemplateParams,
    RenderStep,
    TemplateRegistry,
    TemplateRenderer,
    TestTemplateParams,
    render,
    render_step_body,
)


def _step(order, action, code=None, **kwargs):
    return RenderStep(order=order, action_description=action, generated_code_line=code, **kwargs)


def test_render_test_file():
    params = TestTemplateParams(
        test_name="Login",
        steps=[_step(0, "Open login page", "await page.goto('/login');", expected_result="Form shown")],
    )
    assert render("test", params) == (
        "import { test, expect } from '@playwright/test';\n"
        "\n"
        "test('Login', async ({ page }) => {\n"
        "  // Step 1: Open login page\n"
        "  await page.goto('/login');\n"
        "  // Expected: Form shown\n"
        "});\n"
    )


def test_render_is_deterministic():
    """同じパラメータからは常に同じテキストを生成する"""
    params = {
        "test_name": "Checkout",
        "steps": [
            {"order": 1, "action_description": "Pay", "generated_code_line": "await page.click('#pay');"},
            {"order": 0, "action_description": "Add item", "generated_code_line": "await page.click('#add');"},
        ],
        "tags": ["smoke", "@regression"],
    }
    first = render("test", params)
    assert first == render("test", params)
    assert first.index("// Step 1: Add item") < first.index("// Step 2: Pay")
    assert first.endswith("});\n")
    assert not first.endswith("\n\n")


def test_render_tags():
    text = render("test", {"test_name": "Login", "tags": ["smoke", "@regression", " "]})
    assert "test('Login', { tag: ['@smoke', '@regression'] }, async ({ page }) => {" in text


def test_render_empty_test():
    text = render("test", {"test_name": "Empty"})
    assert "  // No steps defined\n" in text


def test_disabled_step_is_commented_out():
    params = TestTemplateParams(
        test_name="Login",
        steps=[
            _step(0, "Open", "await page.goto('/');"),
            _step(1, "Click */ banner", "await page.click('#banner');", disabled=True, expected_result="Gone"),
        ],
    )
    text = render("test", params)
    assert "  /* DISABLED STEP 2: Click * / banner\n" in text
    assert "  await page.click('#banner');\n  Expected: Gone\n  */\n" in text
    assert "// Step 2" not in text


def test_test_name_is_escaped():
    text = render("test", {"test_name": "User's\ncart"})
    assert "test('User\\'s cart', async" in text


def test_enabled_step_without_code_fails():
    with pytest.raises(RenderException) as exc_info:
        render("test", {"test_name": "Login", "steps": [{"order": 0, "action_description": "Open"}]})
    assert exc_info.value.details["order"] == 0


def test_manual_test_allows_steps_without_code():
    text = render("test", {
        "test_name": "Manual",
        "is_manual": True,
        "steps": [{"order": 0, "action_description": "Look at the page"}],
    })
    assert "  // Step 1: Look at the page\n});" in text


def test_extend_fixtures_are_merged():
    params = TestTemplateParams(
        test_name="Profile",
        steps=[_step(0, "Open profile", "await page.goto('/me');")],
        fixtures=[
            FixtureImport(export_identifier="loggedInUser", module_path="../fixtures/logged-in-user.fixture"),
            FixtureImport(export_identifier="seedData", module_path="../fixtures/seed-data.fixture"),
        ],
    )
    text = render("test", params)
    assert text.startswith(
        "import { expect, mergeTests } from '@playwright/test';\n"
        "import { test as loggedInUserTest } from '../fixtures/logged-in-user.fixture';\n"
        "import { test as seedDataTest } from '../fixtures/seed-data.fixture';\n"
        "\n"
        "const test = mergeTests(loggedInUserTest, seedDataTest);\n"
    )
    assert "async ({ page, loggedInUser, seedData }) => {" in text


def test_inline_fixture_is_imported_by_name():
    params = TestTemplateParams(
        test_name="Profile",
        fixtures=[FixtureImport(
            export_identifier="acceptCookies",
            module_path="../fixtures/accept-cookies.fixture",
            kind=FixtureKind.INLINE,
        )],
    )
    text = render("test", params)
    assert "import { test, expect } from '@playwright/test';\n" in text
    assert "import { acceptCookies } from '../fixtures/accept-cookies.fixture';\n" in text
    assert "async ({ page }) => {" in text


def test_render_extend_fixture():
    text = render("fixture", FixtureTemplateParams(
        name="Logged In User",
        export_identifier="loggedInUser",
        body="// Step 1: Sign in\nawait page.goto('/login');",
    ))
    assert "import { test as base } from '@playwright/test';\n\n// Logged In User\n" in text
    assert "export const test = base.extend<{ loggedInUser: void }>({\n" in text
    assert "    // Step 1: Sign in\n    await page.goto('/login');\n    await use();\n" in text
    assert text.endswith("export { expect } from '@playwright/test';\n")


def test_render_inline_fixture():
    text = render("fixture", {
        "name": "Accept cookies",
        "export_identifier": "acceptCookies",
        "kind": "inline",
        "description": "Closes the cookie banner",
    })
    assert "// Closes the cookie banner\n" in text
    assert "export async function acceptCookies(page: Page): Promise<void> {\n" in text
    assert "  // Add your fixture implementation here\n}\n" in text


def test_unknown_template_kind():
    with pytest.raises(TemplateNotFoundException):
        render("page_object", {"test_name": "Login"})


@pytest.mark.parametrize("kind,params", [
    ("test", {"test_name": ""}),
    ("test", {"test_name": "Login", "fixtures": [{"export_identifier": "bad-name", "module_path": "../x"}]}),
    ("fixture", {"name": "Auth", "export_identifier": "1auth"}),
    ("fixture", {"name": "Auth"}),
])
def test_invalid_params(kind, params):
    with pytest.raises(RenderException):
        render(kind, params)


def test_render_step_body_for_fixture():
    body = render_step_body(
        [_step(0, "Sign in", "await page.fill('#email', 'qa');\nawait page.click('#submit');")],
        indent="",
    )
    assert body == "// Step 1: Sign in\nawait page.fill('#email', 'qa');\nawait page.click('#submit');"


def test_templates_dir_overrides(tmp_path):
    """テンプレートディレクトリのファイルで既定のテンプレートを置き換えられる"""
    (tmp_path / "custom.yaml").write_text(
        'test:\n  template: "// custom {test_name}\\n{body}\\n"\n  metadata:\n    description: custom\n',
        encoding="utf-8",
    )
    registry = TemplateRegistry(templates_dir=str(tmp_path))
    text = TemplateRenderer(registry).render("test", {"test_name": "Login"})
    assert text == "// custom Login\n  // No steps defined\n"
    assert registry.names() == ["fixture_extend", "fixture_inline", "test"]


def test_broken_template_raises_render_error(tmp_path):
    (tmp_path / "broken.json").write_text('{"test": "{missing_field}"}', encoding="utf-8")
    registry = TemplateRegistry(templates_dir=str(tmp_path))
    with pytest.raises(RenderException):
        TemplateRenderer(registry).render("test", {"test_name": "Login"})


def test_unreadable_template_file(tmp_path):
    """読み込めないテンプレート定義はコード生成のエラーになる"""
    (tmp_path / "broken.yaml").write_text("test: [unclosed", encoding="utf-8")
    registry = TemplateRegistry(templates_dir=str(tmp_path))
    with pytest.raises(GenerationException) as exc_info:
        TemplateRenderer(registry).render("test", {"test_name": "Login"})
    assert exc_info.value.details["exception_type"] in ("ParserError", "ScannerError")
