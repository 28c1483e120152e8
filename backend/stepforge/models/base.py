from sqlmodel import Field, SQLModel, create_engine, Session
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from datetime import datetime, UTC
from typing import Optional
from stepforge.config import settings


def make_engine(database_url: str) -> Engine:
    """
    データベースエンジンを作成する

    SQLiteの場合は外部キー制約を有効にし、インメモリDBは接続を共有する。
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    sqlite_engine = create_engine(database_url, **kwargs)

    @event.listens_for(sqlite_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


DATABASE_URL = settings.DATABASE_URL

engine = make_engine(DATABASE_URL)


def get_session():
    with Session(engine) as session:
        yield session


def utcnow() -> datetime:
    return datetime.now(UTC)


# ベースモデル
class TimestampModel(SQLModel):
    """タイムスタンプと作成者・更新者を持つ全モデルの基底クラス"""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
