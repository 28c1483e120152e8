"""
バージョン文字列の演算ユーティリティ

親エンティティ（テストケース・フィクスチャ）のバージョンは ``major.minor[.patch]`` 形式の文字列で
管理される。ステップを変更するたびに ``increment_version`` で次のバージョンを求める。

注意: 2要素のバージョン（"1.0"）はパッチ要素を「追加」して "1.0.1" になり、
3要素のバージョン（"1.0.1"）は最後の要素を増やして "1.0.2" になる。
この非対称な振る舞いは既存データとの互換のためそのまま維持している。
"""
import re
from typing import Tuple

from stepforge.exceptions import VersionFormatException

INITIAL_VERSION = "1.0"

_VERSION_PATTERN = re.compile(r"^\d+\.\d+(\.\d+)?$")
_LEADING_INT = re.compile(r"^\s*[+-]?\d+")
_LEADING_FLOAT = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def _to_int(part: str) -> int:
    """先頭の整数部分だけを読み取る。読めない場合は0"""
    match = _LEADING_INT.match(part)
    return int(match.group()) if match else 0


def _format_number(value: float) -> str:
    """整数値の浮動小数は小数点なしで表記する"""
    if value == int(value):
        return str(int(value))
    return repr(value)


def increment_version(current_version: str) -> str:
    """
    ステップ変更時の次のバージョンを求める

    Args:
        current_version: 現在のバージョン (例: "1.0", "1.0.1")

    Returns:
        次のバージョン文字列
    """
    parts = (current_version or "").split('.')

    if len(parts) == 3:
        major, minor, patch = (_to_int(p) for p in parts)
        return f"{major}.{minor}.{patch + 1}"
    if len(parts) == 2:
        major, minor = (_to_int(p) for p in parts)
        return f"{major}.{minor}.1"

    # 想定外の形式は数値として読める部分を使う
    match = _LEADING_FLOAT.match(current_version or "")
    number = float(match.group()) if match else 0.0
    if not number:
        number = 1.0
    return f"{_format_number(number)}.0.1"


def increment_major_version(current_version: str) -> str:
    """メジャーバージョンを上げる (例: 1.0 -> 2.0)"""
    parts = (current_version or "").split('.')
    return f"{_to_int(parts[0]) + 1}.0"


def increment_minor_version(current_version: str) -> str:
    """マイナーバージョンを上げる (例: 1.0 -> 1.1)"""
    parts = (current_version or "").split('.')
    major = _to_int(parts[0])
    minor = _to_int(parts[1]) if len(parts) > 1 else 0
    return f"{major}.{minor + 1}"


def validate_version(version: str) -> str:
    """
    呼び出し側から渡されたバージョン文字列を検証する

    Raises:
        VersionFormatException: ``major.minor[.patch]`` 形式でない場合
    """
    if not isinstance(version, str) or not _VERSION_PATTERN.match(version):
        raise VersionFormatException(
            f"Malformed version string: {version!r}",
            details={"version": version}
        )
    return version


def parse_version(version: str) -> Tuple[int, int, int]:
    """
    バージョン文字列を比較可能なタプルに変換する

    パッチ要素がない場合は0として扱う。

    Raises:
        VersionFormatException: 形式が不正な場合
    """
    validate_version(version)
    parts = [int(p) for p in version.split('.')]
    if len(parts) == 2:
        parts.append(0)
    return parts[0], parts[1], parts[2]
