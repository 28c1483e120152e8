"""
トランザクション境界と親エンティティのロック

ステップ台帳を変更する操作はすべて ``Transaction`` の中で実行する。
コミットに成功した場合だけ、操作中に登録されたファイル生成を実行（またはワーカーに送信）する。
ロールバックした場合、登録済みのファイル生成は破棄される。
"""
from typing import Callable, List, Optional, Sequence, Union

from sqlmodel import Session, select

from stepforge.exceptions import NotFoundException
from stepforge.logging_config import logger
from stepforge.models import Fixture, ParentKind, ParentRef, TestCase

PENDING_MATERIALIZATIONS_KEY = "stepforge.pending_materializations"
CURRENT_USER_KEY = "stepforge.current_user"

Parent = Union[TestCase, Fixture]
Dispatcher = Callable[[Sequence[ParentRef]], List[str]]


def enqueue_materialization(session: Session, ref: ParentRef) -> None:
    """コミット後に生成するファイルの親を登録する（重複は1つにまとめる）"""
    pending: List[ParentRef] = session.info.setdefault(PENDING_MATERIALIZATIONS_KEY, [])
    if ref not in pending:
        pending.append(ref)


def pending_materializations(session: Session) -> List[ParentRef]:
    return list(session.info.get(PENDING_MATERIALIZATIONS_KEY, []))


def set_current_user(session: Session, email: Optional[str]) -> None:
    """作成者・更新者として記録するユーザーを設定する"""
    session.info[CURRENT_USER_KEY] = email


def current_user(session: Session) -> Optional[str]:
    return session.info.get(CURRENT_USER_KEY)


def parent_model(kind: ParentKind):
    return TestCase if kind == ParentKind.TESTCASE else Fixture


def load_parent(session: Session, ref: ParentRef, lock: bool = False) -> Parent:
    """
    親エンティティを取得する

    Args:
        session: DBセッション
        ref: 親エンティティへの参照
        lock: Trueの場合は行ロック（SELECT ... FOR UPDATE）を取得し、
            同じ親への変更をトランザクション終了まで直列化する

    Raises:
        NotFoundException: 親エンティティが存在しない場合
    """
    model = parent_model(ref.kind)
    query = select(model).where(model.id == ref.id)
    if lock:
        query = query.with_for_update()
    parent = session.exec(query).first()
    if parent is None:
        raise NotFoundException(
            f"{ref.kind.value} not found: {ref.id}",
            details={"kind": ref.kind.value, "id": ref.id}
        )
    return parent


def ref_of(parent: Parent) -> ParentRef:
    if isinstance(parent, TestCase):
        return ParentRef.test_case(parent.id)
    return ParentRef.fixture(parent.id)


def _default_dispatcher(refs: Sequence[ParentRef]) -> List[str]:
    from stepforge.workers.tasks import dispatch_materializations
    return dispatch_materializations(refs)


class Transaction:
    """
    1操作分のトランザクション

    ``with Transaction(session) as tx:`` のブロックを正常に抜けるとコミットし、
    例外が発生した場合はロールバックして例外をそのまま送出する。
    コミット後のファイル生成で発生した警告は ``tx.warnings`` に入る。
    """

    def __init__(
        self,
        session: Session,
        user_email: Optional[str] = None,
        dispatcher: Optional[Dispatcher] = None
    ):
        self.session = session
        self.user_email = user_email
        self.dispatcher = dispatcher or _default_dispatcher
        self.warnings: List[str] = []
        self.dispatched: List[ParentRef] = []

    def __enter__(self) -> "Transaction":
        self.session.info.pop(PENDING_MATERIALIZATIONS_KEY, None)
        if self.user_email is not None:
            set_current_user(self.session, self.user_email)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self._rollback()
            logger.info(f"Transaction rolled back: {exc_type.__name__}: {exc}")
            return False

        try:
            self.session.commit()
        except Exception:
            self._rollback()
            raise

        refs = self.session.info.pop(PENDING_MATERIALIZATIONS_KEY, [])
        if refs:
            self.dispatched = list(refs)
            self.warnings = self.dispatcher(self.dispatched)
        return False

    def _rollback(self) -> None:
        self.session.rollback()
        self.session.info.pop(PENDING_MATERIALIZATIONS_KEY, None)
