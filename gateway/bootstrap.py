"""Builds the service graph from configuration."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from conversion.providers import CloudConvertProvider, CobaltProvider, RapidApiProvider
from conversion.quota_pool import QuotaPool
from conversion.service import FallbackOrchestrator, Strategy
from conversion.usage_gate import DailyUsageGate, PoolGate
from shared.config import ServiceConfig
from shared.constants import (
    APP_NAME,
    APP_VERSION,
    CLOUDCONVERT_API_BASE,
    CLOUDCONVERT_SANDBOX_API_BASE,
    RAPIDAPI_ENDPOINTS,
    STRATEGY_CLOUDCONVERT_PRODUCTION,
    STRATEGY_CLOUDCONVERT_SANDBOX,
)
from shared.database import DatabaseManager
from shared.models import EndpointSpec
from storage.artifact_store import ArtifactStore
from storage.provider_factory import StorageProviderFactory
from storage.storage_provider import ObjectStore
from .streaming import StreamingGateway

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: ServiceConfig
    database: DatabaseManager
    pool: QuotaPool
    orchestrator: FallbackOrchestrator
    artifacts: ArtifactStore
    gateway: StreamingGateway

    def status(self) -> Dict[str, Any]:
        """Snapshot for /api/status and the status command."""
        pool_status = self.pool.status()
        return {
            "service": APP_NAME,
            "version": APP_VERSION,
            "pool": pool_status,
            "strategies": self.orchestrator.stats(),
            "artifacts": self.database.count_artifacts(),
            "summary": {
                "total_apis": pool_status["total_apis"],
                "active_apis": pool_status["active_apis"],
                "total_requests_used": pool_status["total_requests_used"],
                "total_requests_remaining": pool_status["total_requests_remaining"],
                "has_unlimited": pool_status["has_unlimited"],
            },
        }

    def shutdown(self) -> None:
        self.gateway.shutdown()


def build_strategies(config: ServiceConfig, database: DatabaseManager, pool: QuotaPool,
                     session: requests.Session) -> List[Strategy]:
    """Default cascade: RapidAPI pool, CloudConvert production, CloudConvert sandbox, Cobalt."""
    rapidapi = RapidApiProvider(pool, session=session, timeout=config.provider_timeout,
                                max_attempts=config.pool_attempts_per_call)
    cloudconvert_options = dict(
        session=session,
        source_url_template=config.source_url_template,
        timeout=config.provider_timeout,
        poll_interval=config.poll_interval,
        job_timeout=config.job_timeout,
    )
    production = CloudConvertProvider(
        config.cloudconvert_api_key, name=STRATEGY_CLOUDCONVERT_PRODUCTION,
        api_base=CLOUDCONVERT_API_BASE, **cloudconvert_options,
    )
    sandbox = CloudConvertProvider(
        config.cloudconvert_sandbox_api_key, name=STRATEGY_CLOUDCONVERT_SANDBOX,
        api_base=CLOUDCONVERT_SANDBOX_API_BASE, **cloudconvert_options,
    )
    cobalt = CobaltProvider(config.cobalt_api_url, session=session,
                            source_url_template=config.source_url_template,
                            timeout=config.provider_timeout)
    return [
        Strategy(rapidapi.name, rapidapi, PoolGate(pool)),
        Strategy(production.name, production,
                 DailyUsageGate(database, production.name, config.cloudconvert_daily_limit)),
        Strategy(sandbox.name, sandbox),
        Strategy(cobalt.name, cobalt),
    ]


def build_services(config: Optional[ServiceConfig] = None,
                   object_store: Optional[ObjectStore] = None,
                   session: Optional[requests.Session] = None) -> Services:
    config = config or ServiceConfig.from_env()
    session = session or requests.Session()

    database = DatabaseManager(config.database_path)
    pool = QuotaPool(database, config.rapidapi_keys,
                     [EndpointSpec.from_dict(e) for e in RAPIDAPI_ENDPOINTS])
    orchestrator = FallbackOrchestrator(build_strategies(config, database, pool, session))

    if object_store is None:
        object_store = StorageProviderFactory.from_config(config)
    artifacts = ArtifactStore(database, object_store, session=session,
                              download_timeout=config.download_timeout,
                              max_download_mb=config.max_download_mb)
    gateway = StreamingGateway(artifacts, orchestrator,
                               redirect_first=config.redirect_first,
                               persist_workers=config.persist_workers,
                               request_deadline=config.request_deadline)
    logger.info(f"{APP_NAME} {APP_VERSION} services ready "
                f"({len(orchestrator.strategies)} strategies, {len(pool.entries)} pool entries)")
    return Services(config, database, pool, orchestrator, artifacts, gateway)
