import os
from pathlib import Path
from typing import Optional, Union
import logging
from functools import lru_cache

from stepforge.config import settings
from stepforge.utils.naming import sanitize_folder_name

logger = logging.getLogger(__name__)

TESTS_SUBDIR = "tests"
FIXTURES_SUBDIR = "fixtures"
FIXTURE_INDEX_FILE = "index.ts"


class PathManager:
    """
    生成ファイルのパス管理クラス

    プロジェクトごとの出力ルート、テスト・フィクスチャのディレクトリの解決と
    ディレクトリ作成を一元化する。
    """

    def __init__(self, generated_root: Optional[Union[str, Path]] = None):
        self._generated_root = Path(generated_root) if generated_root else None

    def get_generated_root(self) -> Path:
        """
        生成ファイルのルートパスを取得する

        インスタンス生成時に指定がなければ、その時点の設定値を使う。
        """
        if self._generated_root is not None:
            return self._generated_root
        return Path(settings.GENERATED_ROOT)

    def get_project_dir(self, project_name: str, override: Optional[str] = None) -> Path:
        """
        プロジェクトの出力ディレクトリを取得する

        Args:
            project_name: プロジェクト名（ディレクトリ名に変換される）
            override: プロジェクト固有の出力ルート。指定があればそれを使う
        """
        if override:
            return Path(override)
        return self.get_generated_root() / sanitize_folder_name(project_name)

    def get_fixtures_dir(self, project_dir: Path) -> Path:
        return project_dir / FIXTURES_SUBDIR

    def get_fixture_index(self, project_dir: Path) -> Path:
        return self.get_fixtures_dir(project_dir) / FIXTURE_INDEX_FILE

    def ensure_dir(self, path: Union[str, Path]) -> Path:
        """
        ディレクトリが存在することを確認し、存在しない場合は作成する

        Returns:
            Path: 作成または確認したディレクトリのパス
        """
        path_obj = Path(path)
        os.makedirs(path_obj, exist_ok=True)
        return path_obj

    def ensure_file_dir(self, file_path: Union[str, Path]) -> Path:
        """ファイルの親ディレクトリを作成する"""
        path_obj = Path(file_path)
        self.ensure_dir(path_obj.parent)
        return path_obj

    def remove_file(self, path: Union[str, Path]) -> bool:
        """
        ファイルが存在すれば削除する

        Returns:
            bool: 削除した場合はTrue
        """
        path_obj = Path(path)
        if path_obj.is_file():
            path_obj.unlink()
            logger.info(f"Removed stale generated file: {path_obj}")
            return True
        return False


@lru_cache(maxsize=1)
def get_path_manager() -> PathManager:
    """
    PathManagerのシングルトンインスタンスを取得する
    """
    return PathManager()
