"""
サービス層のモジュール
"""
from .transaction import Transaction, enqueue_materialization, load_parent, set_current_user
from .ordering import OrderingService
from .template_renderer import (
    TemplateRegistry, TemplateRenderer, CodeTemplate,
    TestTemplateParams, FixtureTemplateParams, render
)
from .version_ledger import VersionLedger
from .step_repository import StepRepository
from .parents import ParentService
from .revert import RevertOrchestrator
from .clone import CloneOrchestrator
from .releases import ProjectService, ReleaseService
from .materializer import FileMaterializer

__all__ = [
    # トランザクション
    "Transaction", "enqueue_materialization", "load_parent", "set_current_user",

    # ステップ台帳
    "OrderingService", "VersionLedger", "StepRepository",
    "ParentService", "RevertOrchestrator", "CloneOrchestrator",
    "ProjectService", "ReleaseService",

    # コード生成
    "TemplateRegistry", "TemplateRenderer", "CodeTemplate",
    "TestTemplateParams", "FixtureTemplateParams", "render",
    "FileMaterializer",
]
