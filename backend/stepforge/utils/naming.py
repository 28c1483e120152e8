"""
名前の一意化とファイル名・識別子への変換ユーティリティ
"""
import re
from itertools import count
from typing import Callable, Iterator, Optional

from stepforge.exceptions import CloneNameExhaustedException

DEFAULT_EXPORT_IDENTIFIER = "myFixture"


def copy_name_candidates(base_name: str) -> Iterator[str]:
    """
    テストケース複製時の名前候補を順に返す

    "<name> - Copy", "<name> - Copy 1", "<name> - Copy 2", ...
    """
    yield f"{base_name} - Copy"
    for n in count(1):
        yield f"{base_name} - Copy {n}"


def numbered_name_candidates(base_name: str) -> Iterator[str]:
    """
    フィクスチャ複製時の名前候補を順に返す

    "<name> (1)", "<name> (2)", ...
    """
    for n in count(1):
        yield f"{base_name} ({n})"


def find_unique_name(
    candidates: Iterator[str],
    is_taken: Callable[[str], bool],
    max_attempts: int
) -> str:
    """
    候補を順に試し、使われていない最初の名前を返す

    Args:
        candidates: 名前候補のイテレータ
        is_taken: 名前が使用済みかどうかを判定する関数
        max_attempts: 試行回数の上限

    Raises:
        CloneNameExhaustedException: 上限回数内に空き名が見つからない場合
    """
    tried = 0
    for candidate in candidates:
        if tried >= max_attempts:
            break
        tried += 1
        if not is_taken(candidate):
            return candidate
    raise CloneNameExhaustedException(
        f"No free name found after {tried} attempts",
        details={"attempts": tried}
    )


def to_camel_case(value: Optional[str]) -> str:
    """
    文字列をエクスポート名として使えるcamelCaseに変換する

    先頭は英小文字になるよう補正し、末尾の数字は取り除く。
    """
    if not value:
        return DEFAULT_EXPORT_IDENTIFIER

    cleaned = re.sub(r"[^\w\s]", " ", value).strip()
    cleaned = re.sub(r"\s+", " ", cleaned)

    words = [w for w in cleaned.split(" ") if w]
    result = "".join(
        word.lower() if i == 0 else word[:1].upper() + word[1:].lower()
        for i, word in enumerate(words)
    )

    if not re.match(r"^[a-z]", result):
        result = "my" + result[:1].upper() + result[1:]

    result = re.sub(r"\d+$", "", result)
    return result or DEFAULT_EXPORT_IDENTIFIER


def is_valid_identifier(value: str) -> bool:
    """JavaScriptの識別子として使えるかどうか"""
    return bool(value) and re.match(r"^[A-Za-z_$][\w$]*$", value) is not None


def slugify(name: str, fallback: str = "test") -> str:
    """ファイル名用に小文字英数字とハイフンだけの文字列にする"""
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug or fallback


def sanitize_folder_name(name: str) -> str:
    """プロジェクト名からディレクトリ名を作る"""
    folder = re.sub(r"[^a-z0-9-]", "-", (name or "").lower())
    folder = re.sub(r"-+", "-", folder).strip("-")
    return folder or "project"


def to_kebab_case(value: str) -> str:
    """camelCase や空白区切りの文字列を kebab-case に変換する"""
    value = re.sub(r"([a-z])([A-Z])", r"\1-\2", value or "")
    value = re.sub(r"[\s_]+", "-", value)
    value = re.sub(r"[^\w-]", "", value)
    return value.lower()


def fixture_file_base(filename: Optional[str], name: str) -> str:
    """
    フィクスチャファイルのベース名（拡張子なし）を決める

    明示的なファイル名があれば既知の拡張子を取り除いて使い、
    なければフィクスチャ名から作る。
    """
    if filename:
        base = filename.lower()
        for suffix in (".fixture.ts", ".fixture.js", ".fixture", ".ts", ".js"):
            if base.endswith(suffix):
                base = base[: -len(suffix)]
                break
        base = slugify(base, fallback="")
        if base:
            return base
    return slugify(to_kebab_case(name), fallback="fixture")
