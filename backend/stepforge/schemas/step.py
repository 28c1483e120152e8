from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime


class StepBase(BaseModel):
    action_description: str = Field(min_length=1)
    input_data: Optional[str] = None
    expected_result: Optional[str] = None
    generated_code_line: Optional[str] = None
    disabled: bool = False


class StepCreate(StepBase):
    # テストケースのステップだけがフィクスチャに委譲できる
    delegate_fixture_id: Optional[int] = None


class StepUpdate(BaseModel):
    """部分更新。送られたフィールドだけを反映する"""
    action_description: Optional[str] = Field(default=None, min_length=1)
    input_data: Optional[str] = None
    expected_result: Optional[str] = None
    generated_code_line: Optional[str] = None
    disabled: Optional[bool] = None
    delegate_fixture_id: Optional[int] = None


class StepMove(BaseModel):
    to_order: int = Field(ge=0)


class StepReorder(BaseModel):
    step_ids: List[int]


class Step(StepBase):
    id: int
    order: int
    test_case_id: Optional[int] = None
    fixture_id: Optional[int] = None
    delegate_fixture_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class StepVersion(StepBase):
    id: int
    order: int
    test_case_version_id: Optional[int] = None
    fixture_version_id: Optional[int] = None
    delegate_fixture_version_id: Optional[int] = None
    delegate_fixture_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
