from enum import Enum
from sqlmodel import Field
from sqlalchemy import CheckConstraint, Column, Text
from pydantic import BaseModel, ConfigDict
from typing import Optional
from .base import TimestampModel


class ParentKind(str, Enum):
    """ステップを所有する親エンティティの種類"""
    TESTCASE = "testcase"
    FIXTURE = "fixture"


class ParentRef(BaseModel):
    """
    ステップの親エンティティへの参照

    テストケースかフィクスチャのどちらか一方を種類付きで指す。
    """
    model_config = ConfigDict(frozen=True)

    kind: ParentKind
    id: int

    @classmethod
    def test_case(cls, test_case_id: int) -> "ParentRef":
        return cls(kind=ParentKind.TESTCASE, id=test_case_id)

    @classmethod
    def fixture(cls, fixture_id: int) -> "ParentRef":
        return cls(kind=ParentKind.FIXTURE, id=fixture_id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


class StepContent(BaseModel):
    """ステップとステップスナップショットに共通する内容"""
    action_description: str
    input_data: Optional[str] = None
    expected_result: Optional[str] = None
    generated_code_line: Optional[str] = None
    disabled: bool = False


class Step(TimestampModel, table=True):
    __tablename__ = "step"
    """ライブステップ。テストケースかフィクスチャのどちらか一方に属する"""
    __table_args__ = (
        CheckConstraint(
            "(test_case_id IS NULL) <> (fixture_id IS NULL)",
            name="ck_step_single_owner",
        ),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    test_case_id: Optional[int] = Field(default=None, foreign_key="testcase.id", ondelete="CASCADE", index=True)
    fixture_id: Optional[int] = Field(default=None, foreign_key="fixture.id", ondelete="CASCADE", index=True)
    # テストケースのステップが委譲するフィクスチャ
    delegate_fixture_id: Optional[int] = Field(default=None, foreign_key="fixture.id", ondelete="SET NULL", index=True)
    order: int
    action_description: str = Field(sa_column=Column(Text, nullable=False))
    input_data: Optional[str] = Field(default=None, sa_column=Column(Text))
    expected_result: Optional[str] = Field(default=None, sa_column=Column(Text))
    generated_code_line: Optional[str] = Field(default=None, sa_column=Column(Text))
    disabled: bool = False

    @property
    def parent_ref(self) -> ParentRef:
        if self.test_case_id is not None:
            return ParentRef.test_case(self.test_case_id)
        return ParentRef.fixture(self.fixture_id)

    def content(self) -> StepContent:
        return StepContent(
            action_description=self.action_description,
            input_data=self.input_data,
            expected_result=self.expected_result,
            generated_code_line=self.generated_code_line,
            disabled=self.disabled,
        )


class StepVersion(TimestampModel, table=True):
    __tablename__ = "stepversion"
    """ステップのスナップショット。ちょうど1つのバージョンスナップショットに属する"""
    __table_args__ = (
        CheckConstraint(
            "(test_case_version_id IS NULL) <> (fixture_version_id IS NULL)",
            name="ck_stepversion_single_owner",
        ),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    test_case_version_id: Optional[int] = Field(default=None, foreign_key="testcaseversion.id", ondelete="CASCADE", index=True)
    fixture_version_id: Optional[int] = Field(default=None, foreign_key="fixtureversion.id", ondelete="CASCADE", index=True)
    # スナップショット時点で最新だった委譲先フィクスチャのバージョン
    delegate_fixture_version_id: Optional[int] = Field(default=None, foreign_key="fixtureversion.id", ondelete="SET NULL")
    # 委譲先フィクスチャにまだバージョンがない場合に備えてフィクスチャ自体も記録する
    delegate_fixture_id: Optional[int] = Field(default=None, foreign_key="fixture.id", ondelete="SET NULL")
    order: int
    action_description: str = Field(sa_column=Column(Text, nullable=False))
    input_data: Optional[str] = Field(default=None, sa_column=Column(Text))
    expected_result: Optional[str] = Field(default=None, sa_column=Column(Text))
    generated_code_line: Optional[str] = Field(default=None, sa_column=Column(Text))
    disabled: bool = False

    def content(self) -> StepContent:
        return StepContent(
            action_description=self.action_description,
            input_data=self.input_data,
            expected_result=self.expected_result,
            generated_code_line=self.generated_code_line,
            disabled=self.disabled,
        )
