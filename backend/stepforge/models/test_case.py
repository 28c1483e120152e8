from sqlmodel import Field, Relationship
from sqlalchemy import Column, Text, UniqueConstraint
from typing import Optional, List
from .base import TimestampModel
from .project import Project
from .json_encode_list import JSONEncodedList
from stepforge.utils.version import INITIAL_VERSION


class TestCase(TimestampModel, table=True):
    __test__ = False
    __tablename__ = "testcase"
    """テストケースモデル（順序付きステップを持つ親エンティティ）"""
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_testcase_project_name"),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id", ondelete="CASCADE", index=True)
    name: str
    description: Optional[str] = None
    is_manual: bool = False  # 手動テストはファイルを生成しない
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSONEncodedList))
    status: str = "draft"
    priority: str = "medium"
    version: str = INITIAL_VERSION
    # 生成ルートからの相対パス
    test_file_path: Optional[str] = None

    # リレーションシップ
    project: Project = Relationship(back_populates="test_cases")


class TestCaseVersion(TimestampModel, table=True):
    __test__ = False
    __tablename__ = "testcaseversion"
    """テストケースのバージョンスナップショット（作成後は変更しない）"""
    id: Optional[int] = Field(default=None, primary_key=True)
    test_case_id: int = Field(foreign_key="testcase.id", ondelete="CASCADE", index=True)
    version: str
    name: str
    script_snapshot: Optional[str] = Field(default=None, sa_column=Column(Text))
