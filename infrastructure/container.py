from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

import aiohttp

from application.account_checks import AccountChecker
from application.credentials import CredentialManager
from application.orchestrator import RetryOrchestrator
from application.placement import AccountPlacer
from application.services import WagerContext
from application.settlement import SettlementReconciler
from domain.models import Platform
from domain.repositories import PlatformClient
from infrastructure.config import Settings
from infrastructure.db.account_repository_sqlite import SqliteAccountRepository
from infrastructure.db.bet_record_repository_sqlite import SqliteBetRecordRepository
from infrastructure.http.relay import AiohttpRelayChecker
from infrastructure.platforms.one789 import One789Client
from infrastructure.platforms.sgd666 import Sgd666Client


@dataclass
class Container:
    """Everything an interface needs, built once per process."""

    context: WagerContext
    checker: AccountChecker
    session: aiohttp.ClientSession

    async def close(self) -> None:
        await self.session.close()


def build_clients(settings: Settings, session: aiohttp.ClientSession) -> Dict[Platform, PlatformClient]:
    return {
        Platform.SGD666: Sgd666Client(session, settings.sgd666_secret),
        Platform.ONE789: One789Client(session, settings.one789_secret),
    }


def build_container(settings: Settings) -> Container:
    """
    Wire repositories, platform clients and application services.

    Must be called from inside a running event loop, since it opens the
    shared aiohttp session.
    """

    session = aiohttp.ClientSession()
    account_repo = SqliteAccountRepository(settings.db_path)
    bet_repo = SqliteBetRecordRepository(settings.db_path)
    relay_checker = AiohttpRelayChecker(session, probe_url=settings.relay_probe_url)
    clients = build_clients(settings, session)

    credentials = CredentialManager(clients, account_repo, relay_checker)
    placer = AccountPlacer(credentials, relay_checker, account_repo)
    reconciler = SettlementReconciler(bet_repo, account_repo, credentials, relay_checker)

    context = WagerContext(
        account_repo=account_repo,
        bet_repo=bet_repo,
        clients=clients,
        orchestrator=RetryOrchestrator(placer),
        reconciler=reconciler,
    )
    checker = AccountChecker(credentials, relay_checker, account_repo)
    return Container(context=context, checker=checker, session=session)
