"""
ステップ順序の管理

親ごとのステップの ``order`` を0から隙間なく連続した値に保つ。
すべての操作は呼び出し側のトランザクション内で実行される。
"""
from typing import List, Sequence

from sqlalchemy import func
from sqlmodel import Session, select

from stepforge.exceptions import OrderingConflictException, ValidationException
from stepforge.models import ParentKind, ParentRef, Step


def owner_clause(ref: ParentRef):
    """親エンティティに属するステップを絞り込む条件"""
    if ref.kind == ParentKind.TESTCASE:
        return Step.test_case_id == ref.id
    return Step.fixture_id == ref.id


class OrderingService:
    """親ごとのステップ順序を維持するサービス"""

    def __init__(self, session: Session):
        self.session = session

    def list_steps(self, ref: ParentRef) -> List[Step]:
        """ライブステップをorder順に取得する"""
        query = select(Step).where(owner_clause(ref)).order_by(Step.order, Step.id)
        return list(self.session.exec(query).all())

    def insert_at_end(self, ref: ParentRef) -> int:
        """末尾に追加するステップのorderを返す（ステップがなければ0）"""
        self.session.flush()
        current_max = self.session.exec(
            select(func.max(Step.order)).where(owner_clause(ref))
        ).one()
        return 0 if current_max is None else current_max + 1

    def reorder(self, ref: ParentRef, from_order: int, to_order: int) -> Step:
        """
        ステップを ``from_order`` から ``to_order`` へ移動する

        間にあるステップは移動方向と逆に1つずつずらす。

        Raises:
            ValidationException: 位置が範囲外の場合
        """
        steps = self.list_steps(ref)
        count = len(steps)
        for position in (from_order, to_order):
            if position < 0 or position >= count:
                raise ValidationException(
                    f"Order {position} is out of range for {count} step(s)",
                    details={"order": position, "count": count}
                )

        moved = next(s for s in steps if s.order == from_order)
        if from_order == to_order:
            return moved

        for step in steps:
            if step is moved:
                continue
            if from_order < to_order and from_order < step.order <= to_order:
                step.order -= 1
                self.session.add(step)
            elif to_order < from_order and to_order <= step.order < from_order:
                step.order += 1
                self.session.add(step)

        moved.order = to_order
        self.session.add(moved)
        self.session.flush()
        return moved

    def compact_after_delete(self, ref: ParentRef, deleted_order: int) -> None:
        """削除されたステップより後ろのorderを1つずつ詰める"""
        for step in self.list_steps(ref):
            if step.order > deleted_order:
                step.order -= 1
                self.session.add(step)
        self.session.flush()

    def apply_permutation(self, ref: ParentRef, step_ids: Sequence[int]) -> List[Step]:
        """
        ステップIDの並びどおりにorderを振り直す

        Raises:
            ValidationException: IDの集合がライブステップと一致しない場合
        """
        steps = self.list_steps(ref)
        by_id = {s.id: s for s in steps}
        if len(step_ids) != len(set(step_ids)) or set(step_ids) != set(by_id):
            raise ValidationException(
                "Reorder request must list every step of the parent exactly once",
                details={"expected": sorted(by_id), "received": list(step_ids)}
            )

        for position, step_id in enumerate(step_ids):
            step = by_id[step_id]
            if step.order != position:
                step.order = position
                self.session.add(step)
        self.session.flush()
        return [by_id[step_id] for step_id in step_ids]

    def verify_dense(self, ref: ParentRef) -> None:
        """
        orderが0からn-1まで重複なく並んでいることを確認する

        Raises:
            OrderingConflictException: 連続性が崩れている場合
        """
        self.session.flush()
        orders = list(self.session.exec(
            select(Step.order).where(owner_clause(ref)).order_by(Step.order)
        ).all())
        if orders != list(range(len(orders))):
            raise OrderingConflictException(
                f"Step order of {ref} is not dense: {orders}",
                details={"parent": str(ref), "orders": orders}
            )
