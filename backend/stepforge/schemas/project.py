from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime


class ProjectBase(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    generated_root: Optional[str] = None


class ProjectCreate(ProjectBase):
    pass


class Project(ProjectBase):
    id: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReleaseCreate(BaseModel):
    name: str = Field(min_length=1)
    version_label: Optional[str] = None


class Release(ReleaseCreate):
    id: int
    project_id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReleaseBindingCreate(BaseModel):
    test_case_id: int
    # 省略時はテストケースの現在のバージョンを固定する
    version: Optional[str] = None


class ReleaseBinding(BaseModel):
    id: int
    release_id: int
    test_case_id: int
    version: str
    created_at: datetime
    created_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ReleaseDetail(Release):
    bindings: List[ReleaseBinding] = Field(default_factory=list)
