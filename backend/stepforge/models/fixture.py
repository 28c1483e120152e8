from enum import Enum
from sqlmodel import Field, Relationship
from sqlalchemy import UniqueConstraint
from typing import Optional
from .base import TimestampModel
from .project import Project
from stepforge.utils.version import INITIAL_VERSION


class FixtureKind(str, Enum):
    """生成されるフィクスチャコードの形"""
    EXTEND = "extend"
    INLINE = "inline"


class Fixture(TimestampModel, table=True):
    __tablename__ = "fixture"
    """フィクスチャモデル（テストケースのステップから委譲される再利用可能なステップ列）"""
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_fixture_project_name"),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id", ondelete="CASCADE", index=True)
    name: str
    description: Optional[str] = None
    kind: str = FixtureKind.EXTEND.value
    export_identifier: str
    filename: Optional[str] = None
    version: str = INITIAL_VERSION
    # 生成ルートからの相対パス
    fixture_file_path: Optional[str] = None

    # リレーションシップ
    project: Project = Relationship(back_populates="fixtures")


class FixtureVersion(TimestampModel, table=True):
    __tablename__ = "fixtureversion"
    """フィクスチャのバージョンスナップショット（作成後は変更しない）"""
    id: Optional[int] = Field(default=None, primary_key=True)
    fixture_id: int = Field(foreign_key="fixture.id", ondelete="CASCADE", index=True)
    version: str
    name: str
