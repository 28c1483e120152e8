"""
Stepforgeアプリケーションの例外クラス階層

このモジュールは、アプリケーション全体で使用される例外クラスの階層を定義します。
ステップ台帳の操作で発生するエラーは大きく次の系統に分かれます。

- 検証エラー: 書き込み前に拒否され、部分的な状態は残らない
- 整合性エラー: 操作全体が中断され、トランザクションはロールバックされる
- ファイル生成エラー: ログに記録され警告として返される。コミット済みの変更は残る

各例外クラスには適切なエラーコードが割り当てられ、エラーの種類を明確に区別できます。
"""
from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(Enum):
    """エラーコード定義"""
    # 一般的なエラー (1000-1999)
    GENERAL_ERROR = 1000
    CONFIGURATION_ERROR = 1001
    PERMISSION_ERROR = 1002

    # 検証関連エラー (2000-2999)
    VALIDATION_ERROR = 2000
    VERSION_FORMAT_ERROR = 2001
    NOT_FOUND_ERROR = 2002

    # 整合性関連エラー (3000-3999)
    CONSISTENCY_ERROR = 3000
    ORDERING_CONFLICT = 3001
    VERSION_NOT_FOUND = 3002
    EMPTY_HISTORY_SNAPSHOT = 3003
    PARENT_MISMATCH = 3004
    CLONE_NAME_EXHAUSTED = 3005

    # コード生成関連エラー (4000-4999)
    GENERATION_ERROR = 4000
    TEMPLATE_NOT_FOUND = 4001
    RENDER_ERROR = 4002
    MATERIALIZATION_ERROR = 4003


class StepforgeException(Exception):
    """Stepforgeの基底例外クラス"""
    def __init__(
        self,
        message: str = "Stepforgeアプリケーションエラーが発生しました",
        error_code: ErrorCode = ErrorCode.GENERAL_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.error_code.name}:{self.error_code.value}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """例外情報を辞書形式で返す"""
        return {
            "error_code": self.error_code.value,
            "error_name": self.error_code.name,
            "message": self.message,
            "details": self.details
        }


class PermissionDeniedException(StepforgeException):
    """権限エラー"""
    def __init__(
        self,
        message: str = "この操作を行う権限がありません",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.PERMISSION_ERROR, details)


# 検証関連の例外クラス
class ValidationException(StepforgeException):
    """入力データの検証エラー"""
    def __init__(
        self,
        message: str = "入力データの検証に失敗しました",
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class VersionFormatException(ValidationException):
    """バージョン文字列の形式エラー"""
    def __init__(
        self,
        message: str = "バージョン文字列の形式が不正です",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.VERSION_FORMAT_ERROR, details)


class NotFoundException(StepforgeException):
    """対象のエンティティが存在しない"""
    def __init__(
        self,
        message: str = "対象のデータが見つかりません",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.NOT_FOUND_ERROR, details)


# 整合性関連の例外クラス
class ConsistencyException(StepforgeException):
    """整合性関連の基底例外クラス"""
    def __init__(
        self,
        message: str = "データの整合性が保てないため操作を中断しました",
        error_code: ErrorCode = ErrorCode.CONSISTENCY_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class OrderingConflictException(ConsistencyException):
    """ステップ順序の連続性が崩れた"""
    def __init__(
        self,
        message: str = "ステップの順序が0から連続していません",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.ORDERING_CONFLICT, details)


class VersionNotFoundException(ConsistencyException):
    """指定されたバージョンがこの親に属していない"""
    def __init__(
        self,
        message: str = "指定されたバージョンが見つかりません",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.VERSION_NOT_FOUND, details)


class EmptyHistorySnapshotException(ConsistencyException):
    """ステップを含まない履歴スナップショットへの復元"""
    def __init__(
        self,
        message: str = "このバージョンにはステップが含まれていません",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.EMPTY_HISTORY_SNAPSHOT, details)


class ParentMismatchException(ConsistencyException):
    """親子関係の不一致（別プロジェクトのフィクスチャ参照など）"""
    def __init__(
        self,
        message: str = "親エンティティとの関係が一致しません",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.PARENT_MISMATCH, details)


class CloneNameExhaustedException(ConsistencyException):
    """複製用の一意な名前が上限回数内に見つからない"""
    def __init__(
        self,
        message: str = "複製用の一意な名前を決定できませんでした",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.CLONE_NAME_EXHAUSTED, details)


# コード生成関連の例外クラス
class GenerationException(StepforgeException):
    """コード生成関連の基底例外クラス"""
    def __init__(
        self,
        message: str = "コード生成中にエラーが発生しました",
        error_code: ErrorCode = ErrorCode.GENERATION_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class TemplateNotFoundException(GenerationException):
    """テンプレートが登録されていない"""
    def __init__(
        self,
        message: str = "テンプレートが見つかりません",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.TEMPLATE_NOT_FOUND, details)


class RenderException(GenerationException):
    """テンプレートパラメータが不正"""
    def __init__(
        self,
        message: str = "テンプレートのレンダリングに失敗しました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.RENDER_ERROR, details)


class MaterializationException(GenerationException):
    """生成ファイルの書き込みエラー"""
    def __init__(
        self,
        message: str = "生成ファイルの書き込みに失敗しました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.MATERIALIZATION_ERROR, details)


# 例外処理ヘルパー関数
import functools
from typing import Type, Callable, TypeVar, cast

# 型変数の定義
F = TypeVar('F', bound=Callable[..., Any])


def exception_to_response(exception: StepforgeException) -> Dict[str, Any]:
    """
    例外をAPIレスポンス形式に変換する

    Args:
        exception: 変換する例外

    Returns:
        APIレスポンス形式の辞書
    """
    return {
        "success": False,
        "error": exception.to_dict()
    }


def convert_exception(
    exception_type: Type[StepforgeException],
    message: Optional[str] = None
) -> Callable[[F], F]:
    """
    一般的な例外を特定のStepforge例外に変換するデコレータ

    Args:
        exception_type: 変換先の例外タイプ
        message: 例外メッセージ（Noneの場合は元の例外のメッセージを使用）

    Returns:
        デコレータ関数
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except StepforgeException:
                # すでにStepforge例外の場合はそのまま再送出
                raise
            except Exception as e:
                # 一般的な例外をStepforge例外に変換
                error_message = message if message is not None else str(e)
                details = {"original_exception": str(e), "exception_type": type(e).__name__}
                raise exception_type(error_message, details=details) from e
        return cast(F, wrapper)
    return decorator
