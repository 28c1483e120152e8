import os

os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["MATERIALIZE_EAGER"] = "true"
os.environ["GENERATED_ROOT"] = "/tmp/test_stepforge/generated"

import pytest
from sqlmodel import SQLModel, Session

import stepforge.models.base
from stepforge.config import settings
from stepforge.models import Fixture, Project, TestCase
from stepforge.models.base import make_engine
from stepforge.services.transaction import Transaction


@pytest.fixture(name="engine")
def engine_fixture(monkeypatch):
    """テストごとのインメモリSQLiteエンジン（外部キー制約あり）"""
    engine = make_engine("sqlite://")
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(stepforge.models.base, "engine", engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="generated_root", autouse=True)
def generated_root_fixture(tmp_path, monkeypatch):
    """生成ファイルの出力先を一時ディレクトリにし、ファイル生成をその場で実行する"""
    root = tmp_path / "generated"
    monkeypatch.setattr(settings, "GENERATED_ROOT", str(root))
    monkeypatch.setattr(settings, "MATERIALIZE_EAGER", True)
    monkeypatch.setattr(settings, "USE_ID_AS_FILENAME", False)
    return root


@pytest.fixture(name="tx")
def tx_fixture(session):
    """ファイル生成を行わないトランザクションを作る"""
    def factory(user_email=None):
        return Transaction(session, user_email, dispatcher=lambda refs: [])
    return factory


@pytest.fixture(name="project")
def project_fixture(session):
    project = Project(name="Demo Shop")
    session.add(project)
    session.commit()
    session.refresh(project)
    return project


@pytest.fixture(name="other_project")
def other_project_fixture(session):
    project = Project(name="Other Shop")
    session.add(project)
    session.commit()
    session.refresh(project)
    return project


@pytest.fixture(name="test_case")
def test_case_fixture(session, project):
    test_case = TestCase(project_id=project.id, name="Login", tags=["smoke"])
    session.add(test_case)
    session.commit()
    session.refresh(test_case)
    return test_case


@pytest.fixture(name="fixture")
def fixture_fixture(session, project):
    fixture = Fixture(project_id=project.id, name="Logged In User", export_identifier="loggedInUser")
    session.add(fixture)
    session.commit()
    session.refresh(fixture)
    return fixture
