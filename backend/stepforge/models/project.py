from sqlmodel import Field, Relationship
from sqlalchemy import UniqueConstraint
from typing import Optional, List
from .base import TimestampModel


class Project(TimestampModel, table=True):
    __tablename__ = "project"
    """プロジェクトモデル（テストケース・フィクスチャの名前空間）"""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    description: Optional[str] = None
    # 生成ファイルの出力ルート。未指定ならGENERATED_ROOT配下に作る
    generated_root: Optional[str] = None

    # リレーションシップ
    test_cases: List["TestCase"] = Relationship(back_populates="project", sa_relationship_kwargs={"passive_deletes": True})
    fixtures: List["Fixture"] = Relationship(back_populates="project", sa_relationship_kwargs={"passive_deletes": True})
    releases: List["Release"] = Relationship(back_populates="project", sa_relationship_kwargs={"passive_deletes": True})


class Release(TimestampModel, table=True):
    __tablename__ = "release"
    """リリースモデル"""
    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id", ondelete="CASCADE", index=True)
    name: str
    version_label: Optional[str] = None

    # リレーションシップ
    project: Project = Relationship(back_populates="releases")
    bindings: List["ReleaseTestCase"] = Relationship(back_populates="release", sa_relationship_kwargs={"passive_deletes": True})


class ReleaseTestCase(TimestampModel, table=True):
    __tablename__ = "releasetestcase"
    """リリースとテストケースの紐付け。紐付け時点のバージョンを固定する"""
    __table_args__ = (
        UniqueConstraint("release_id", "test_case_id", name="uq_release_test_case"),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    release_id: int = Field(foreign_key="release.id", ondelete="CASCADE", index=True)
    test_case_id: int = Field(foreign_key="testcase.id", ondelete="CASCADE", index=True)
    version: str

    # リレーションシップ
    release: Release = Relationship(back_populates="bindings")
