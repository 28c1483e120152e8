"""
生成ファイルの書き出しタスク

ステップ台帳のトランザクションがコミットされた後に実行される。
失敗はログに記録して警告として返し、例外として呼び出し元に伝えない。
"""
import logging
from typing import Dict, List, Sequence

from sqlmodel import Session

from stepforge.config import settings
from stepforge.exceptions import StepforgeException
from stepforge.models import ParentKind, ParentRef
from stepforge.models import base as db
from stepforge.services.materializer import FileMaterializer
from stepforge.workers import celery_app

logger = logging.getLogger(__name__)


def run_materialization(ref: ParentRef) -> Dict:
    """
    1つの親エンティティのファイルを書き出す

    Returns:
        dict: 実行結果 (status は completed / skipped / warning)
    """
    try:
        with Session(db.engine) as session:
            path = FileMaterializer(session).materialize(ref)
        if path is None:
            return {"status": "skipped", "parent": str(ref)}
        return {"status": "completed", "parent": str(ref), "path": str(path)}
    except StepforgeException as e:
        logger.warning(f"Materialization of {ref} failed: {e}")
        return {"status": "warning", "parent": str(ref), "message": e.message}
    except Exception as e:
        logger.error(f"Unexpected error while materializing {ref}: {e}", exc_info=True)
        return {"status": "warning", "parent": str(ref), "message": str(e)}


@celery_app.task
def materialize_test_case_task(test_case_id: int) -> Dict:
    """テストケースのテストファイルを書き出すCeleryタスク"""
    return run_materialization(ParentRef.test_case(test_case_id))


@celery_app.task
def materialize_fixture_task(fixture_id: int) -> Dict:
    """フィクスチャファイルを書き出すCeleryタスク"""
    return run_materialization(ParentRef.fixture(fixture_id))


def dispatch_materializations(refs: Sequence[ParentRef]) -> List[str]:
    """
    コミット後のファイル生成を実行する

    MATERIALIZE_EAGER が有効ならその場で順に実行し、失敗を警告メッセージとして返す。
    無効ならCeleryタスクとして送信する。送信自体の失敗も警告として返す。
    """
    warnings: List[str] = []
    for ref in refs:
        if settings.MATERIALIZE_EAGER:
            result = run_materialization(ref)
            if result["status"] == "warning":
                warnings.append(f"{ref}: {result['message']}")
            continue

        task = materialize_test_case_task if ref.kind == ParentKind.TESTCASE else materialize_fixture_task
        try:
            task.delay(ref.id)
        except Exception as e:
            logger.error(f"Failed to enqueue materialization of {ref}: {e}", exc_info=True)
            warnings.append(f"{ref}: materialization could not be scheduled")
    return warnings
