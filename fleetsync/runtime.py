"""Process-wide service instances shared by the API and the scheduler."""

from __future__ import annotations

from fleetsync.core.config import load_config
from fleetsync.providers.gateway import ProviderGateway
from fleetsync.providers.geocoding import GoogleGeocoder
from fleetsync.storage.repository import SqlAlchemyRepository
from fleetsync.sync.notifications import NotificationHub
from fleetsync.sync.orchestrator import SyncOrchestrator
from fleetsync.sync.rate_limiter import RateLimiter
from fleetsync.sync.scheduler import RefreshScheduler

_config = load_config()

repository = SqlAlchemyRepository()
notifications = NotificationHub()
geocoder = GoogleGeocoder(_config.geocoding)
gateway = ProviderGateway(_config)
limiter = RateLimiter(
    poll_interval=_config.sync.poll_interval,
    operation_delay=_config.sync.between_operations,
    max_wait=_config.sync.max_wait,
)
orchestrator = SyncOrchestrator(
    repository,
    gateway,
    geocoder,
    notifications,
    settings=_config.sync,
)
scheduler = RefreshScheduler(orchestrator, repository, limiter, _config.sync)
