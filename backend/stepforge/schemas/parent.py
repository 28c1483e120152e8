from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime

from stepforge.models.fixture import FixtureKind
from stepforge.schemas.step import Step, StepVersion


class TestCaseBase(BaseModel):
    __test__ = False
    name: str = Field(min_length=1)
    description: Optional[str] = None
    is_manual: bool = False
    tags: List[str] = Field(default_factory=list)
    status: str = "draft"
    priority: str = "medium"


class TestCaseCreate(TestCaseBase):
    __test__ = False


class TestCaseUpdate(BaseModel):
    __test__ = False
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    is_manual: Optional[bool] = None
    tags: Optional[List[str]] = None
    status: Optional[str] = None
    priority: Optional[str] = None


class TestCase(TestCaseBase):
    __test__ = False
    id: int
    project_id: int
    version: str
    test_file_path: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class FixtureBase(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    kind: FixtureKind = FixtureKind.EXTEND
    filename: Optional[str] = None


class FixtureCreate(FixtureBase):
    export_identifier: Optional[str] = None


class FixtureUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    export_identifier: Optional[str] = None
    filename: Optional[str] = None


class Fixture(FixtureBase):
    id: int
    project_id: int
    export_identifier: str
    version: str
    fixture_file_path: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class VersionSummary(BaseModel):
    id: int
    version: str
    name: str
    created_at: datetime
    created_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class VersionDetail(VersionSummary):
    script_snapshot: Optional[str] = None
    steps: List[StepVersion] = Field(default_factory=list)


class StepList(BaseModel):
    version: str
    steps: List[Step]
    warnings: List[str] = Field(default_factory=list)


class StepMutationResult(BaseModel):
    """ステップ変更の結果。コミット後のファイル生成の警告を含む"""
    step: Optional[Step] = None
    version: str
    warnings: List[str] = Field(default_factory=list)


class TestCaseMutationResult(BaseModel):
    __test__ = False
    test_case: TestCase
    warnings: List[str] = Field(default_factory=list)


class FixtureMutationResult(BaseModel):
    fixture: Fixture
    warnings: List[str] = Field(default_factory=list)


class MaterializationResult(BaseModel):
    status: str
    path: Optional[str] = None
    message: Optional[str] = None
