from .base import TimestampModel, get_session, engine
from .project import Project, Release, ReleaseTestCase
from .test_case import TestCase, TestCaseVersion
from .fixture import Fixture, FixtureVersion, FixtureKind
from .step import Step, StepVersion, StepContent, ParentKind, ParentRef

__all__ = [
    "TimestampModel", "get_session", "engine",
    "Project", "Release", "ReleaseTestCase",
    "TestCase", "TestCaseVersion",
    "Fixture", "FixtureVersion", "FixtureKind",
    "Step", "StepVersion", "StepContent",
    "ParentKind", "ParentRef",
]


def init_db(bind=None):
    """データベーススキーマを初期化する"""
    from sqlmodel import SQLModel
    from . import base

    with (bind or base.engine).begin() as conn:
        SQLModel.metadata.create_all(bind=conn)
