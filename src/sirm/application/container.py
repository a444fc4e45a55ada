from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from sirm.config import Settings
from sirm.domain.models import SessionContext
from sirm.repositories.contracts import CatalogRepository
from sirm.repositories.rest_repo import RestRepository
from sirm.repositories.sqlite_repo import SqliteRepository
from sirm.services.auth_service import AuthService
from sirm.services.catalog_service import CatalogService
from sirm.services.import_service import ImportService
from sirm.services.reconciliation_service import ReconciliationService
from sirm.services.returns_board import ReturnsBoard
from sirm.services.returns_ledger import ReturnsLedger
from sirm.services.returns_locator import ReturnsLocator


@dataclass(frozen=True)
class AppContainer:
    repo: CatalogRepository
    auth: AuthService
    catalog: CatalogService
    importer: ImportService
    locator: ReturnsLocator
    ledger: ReturnsLedger
    stats: ReconciliationService

    def returns_board(self, ctx: SessionContext) -> ReturnsBoard:
        return ReturnsBoard(ctx, self.ledger, self.stats)


def _build_repo(target: Settings | Path | str) -> CatalogRepository:
    if not isinstance(target, Settings):
        repo = SqliteRepository(target)
        repo.init_db()
        return repo
    if target.backend == "rest":
        return RestRepository(target.rest_url or "", target.rest_key or "", timeout=target.rest_timeout)
    if target.db_path is None:
        raise ValueError("A database path is required for the sqlite backend.")
    repo = SqliteRepository(target.db_path)
    repo.init_db()
    return repo


def build_container(target: Settings | Path | str) -> AppContainer:
    repo = _build_repo(target)

    auth = AuthService()
    catalog = CatalogService(repo, auth)
    importer = ImportService(catalog)
    locator = ReturnsLocator(repo)
    ledger = ReturnsLedger(repo, auth)
    stats = ReconciliationService()

    return AppContainer(
        repo=repo,
        auth=auth,
        catalog=catalog,
        importer=importer,
        locator=locator,
        ledger=ledger,
        stats=stats,
    )
