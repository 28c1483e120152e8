import logging
import os
import json
import yaml
from typing import Any, Dict, Optional, TypeVar, Generic, cast
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# 型変数の定義
T = TypeVar('T')

class ConfigValue(Generic[T]):
    """設定値を表すクラス。環境変数、設定ファイル、デフォルト値の優先順位を管理する"""

    def __init__(
        self,
        default: T,
        env_var: Optional[str] = None,
        config_path: Optional[str] = None,
        description: str = ""
    ):
        self.default = default
        self.env_var = env_var
        self.config_path = config_path
        self.description = description
        self._value: Optional[T] = None
        self._is_cached = False

    def get_value(self, config_data: Dict[str, Any] = None) -> T:
        """設定値を取得する。キャッシュがある場合はキャッシュから取得する"""
        if self._is_cached:
            return cast(T, self._value)

        # 環境変数から取得
        if self.env_var and self.env_var in os.environ:
            env_value = os.environ[self.env_var]
            self._value = self._convert_value(env_value)
            self._is_cached = True
            return cast(T, self._value)

        # 設定ファイルから取得
        if config_data and self.config_path:
            try:
                # ドット記法でネストした設定値にアクセス
                paths = self.config_path.split('.')
                value = config_data
                for path in paths:
                    value = value[path]
                self._value = self._convert_value(value)
                self._is_cached = True
                return cast(T, self._value)
            except (KeyError, TypeError):
                # 設定ファイルに該当のパスがない場合は無視
                pass

        # デフォルト値を返す
        self._value = self.default
        self._is_cached = True
        return self.default

    def _convert_value(self, value: Any) -> T:
        """値を適切な型に変換する"""
        if isinstance(self.default, bool) and isinstance(value, str):
            return cast(T, value.lower() == "true")
        elif isinstance(self.default, int) and isinstance(value, str):
            return cast(T, int(value))
        else:
            return cast(T, value)

    def clear_cache(self) -> None:
        """キャッシュをクリアする"""
        self._is_cached = False
        self._value = None


class AppConfig:
    """アプリケーション設定"""
    NAME = ConfigValue[str](
        default="Stepforge",
        env_var="APP_NAME",
        config_path="app.name",
        description="アプリケーション名"
    )
    DEBUG = ConfigValue[bool](
        default=False,
        env_var="DEBUG",
        config_path="app.debug",
        description="デバッグモードの有効/無効"
    )


class PathConfig:
    """ファイルパス設定"""
    GENERATED_ROOT = ConfigValue[str](
        default="/code/data/playwright-projects",
        env_var="GENERATED_ROOT",
        config_path="paths.generated_root",
        description="生成されたテスト・フィクスチャファイルのルートディレクトリ"
    )
    TEMPLATES_DIR = ConfigValue[str](
        default="",
        env_var="TEMPLATES_DIR",
        config_path="paths.templates_dir",
        description="コードテンプレートの上書き定義を置くディレクトリ"
    )


class DatabaseConfig:
    """データベース設定"""
    URL = ConfigValue[str](
        default="postgresql://stepforge:stepforge@db:5432/stepforge",
        env_var="DATABASE_URL",
        config_path="database.url",
        description="データベースURL"
    )


class RedisConfig:
    """Redis設定"""
    URL = ConfigValue[str](
        default="redis://redis:6379/0",
        env_var="REDIS_URL",
        config_path="redis.url",
        description="Redis URL"
    )


class LedgerConfig:
    """ステップ台帳とファイル生成の設定"""
    USE_ID_AS_FILENAME = ConfigValue[bool](
        default=False,
        env_var="USE_ID_AS_FILENAME",
        config_path="ledger.use_id_as_filename",
        description="テストファイル名にテストケースIDを使うかどうか"
    )
    MATERIALIZE_EAGER = ConfigValue[bool](
        default=False,
        env_var="MATERIALIZE_EAGER",
        config_path="ledger.materialize_eager",
        description="コミット後のファイル生成をワーカーに送らずその場で実行するかどうか"
    )
    CLONE_NAME_MAX_ATTEMPTS = ConfigValue[int](
        default=100,
        env_var="CLONE_NAME_MAX_ATTEMPTS",
        config_path="ledger.clone_name_max_attempts",
        description="複製時に一意な名前を探索する最大回数"
    )


class Config:
    """設定クラス"""
    def __init__(self, config_file: Optional[str] = None):
        self.config_file = config_file
        self.config_data: Dict[str, Any] = {}
        self._load_config_file()

        # 設定カテゴリの初期化
        self.app = AppConfig()
        self.paths = PathConfig()
        self.database = DatabaseConfig()
        self.redis = RedisConfig()
        self.ledger = LedgerConfig()

        # ConfigValueはクラス属性のため、別の設定ファイルで読んだ値を持ち越さない
        self.clear_cache()

    def _categories(self):
        return [
            ('app', self.app),
            ('paths', self.paths),
            ('database', self.database),
            ('redis', self.redis),
            ('ledger', self.ledger)
        ]

    def _load_config_file(self) -> None:
        """設定ファイルを読み込む"""
        if not self.config_file:
            # 環境変数から設定ファイルのパスを取得
            self.config_file = os.environ.get("CONFIG_FILE", "config.yaml")

        self.config_data = {}
        # 設定ファイルが存在する場合は読み込む
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, 'r') as f:
                    if self.config_file.endswith(('.yaml', '.yml')):
                        self.config_data = yaml.safe_load(f) or {}
                    elif self.config_file.endswith('.json'):
                        self.config_data = json.load(f)
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config file {self.config_file}: {e}")

    def get(self, category: str, name: str) -> Any:
        """カテゴリ名と設定名から値を取得する"""
        return getattr(getattr(self, category), name).get_value(self.config_data)

    def reload(self) -> None:
        """設定を再読み込みする"""
        self._load_config_file()
        self.clear_cache()

    def clear_cache(self) -> None:
        """すべての設定値のキャッシュをクリアする"""
        for _, category in self._categories():
            for attr_name in dir(category):
                if not attr_name.startswith('_'):
                    attr = getattr(category, attr_name)
                    if isinstance(attr, ConfigValue):
                        attr.clear_cache()


# シングルトンインスタンスの作成
@lru_cache()
def get_config() -> Config:
    """設定のシングルトンインスタンスを取得する"""
    return Config()


config = get_config()


class Settings(BaseSettings):
    """
    属性アクセス用の設定

    既定値は ``config`` (環境変数 -> 設定ファイル -> デフォルト) から解決し、
    ``.env`` の値があればそちらを優先する。
    """
    # アプリケーション設定
    APP_NAME: str = config.get("app", "NAME")
    DEBUG: bool = config.get("app", "DEBUG")

    # 生成ファイル設定
    GENERATED_ROOT: str = config.get("paths", "GENERATED_ROOT")
    TEMPLATES_DIR: str = config.get("paths", "TEMPLATES_DIR")
    USE_ID_AS_FILENAME: bool = config.get("ledger", "USE_ID_AS_FILENAME")
    MATERIALIZE_EAGER: bool = config.get("ledger", "MATERIALIZE_EAGER")

    # 複製時の名前探索の上限
    CLONE_NAME_MAX_ATTEMPTS: int = config.get("ledger", "CLONE_NAME_MAX_ATTEMPTS")

    # Redis設定
    REDIS_URL: str = config.get("redis", "URL")

    # データベース設定
    DATABASE_URL: str = config.get("database", "URL")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
