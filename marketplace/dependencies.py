"""
FastAPI dependencies that build the storage, cache and workflow objects from
settings. Tests replace `get_storage` and `get_cache` through
`app.dependency_overrides`.
"""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from marketplace.cache.invalidation import CacheInvalidationCoordinator
from marketplace.cache.redis_cache import RedisCache
from marketplace.core.config import Settings, get_settings
from marketplace.db.firebase_ops import get_firestore_storage
from marketplace.db.storage import InMemoryStorage, Storage
from marketplace.workflows.applications import ApplicationWorkflow
from marketplace.workflows.meetings import MeetingRequestWorkflow
from marketplace.workflows.profiles import FreelancerProfiles
from marketplace.workflows.projects import ProjectLifecycle
from marketplace.workflows.queries import MarketplaceQueries
from marketplace.workflows.ratings import RatingAggregator

logger = logging.getLogger(__name__)


@lru_cache
def get_storage() -> Storage:
    """One storage backend per process, chosen by `storage_backend`."""
    settings = get_settings()
    if settings.storage_backend == "memory":
        logger.info("Using in-memory storage")
        return InMemoryStorage()
    return get_firestore_storage(settings)


@lru_cache
def get_cache() -> RedisCache:
    settings = get_settings()
    return RedisCache.from_url(
        settings.redis_url,
        prefix=settings.cache_prefix,
        default_ttl=settings.cache_default_ttl,
        tag_ttl=settings.cache_tag_ttl,
    )


def get_invalidator(cache: Annotated[RedisCache, Depends(get_cache)]) -> CacheInvalidationCoordinator:
    return CacheInvalidationCoordinator(cache)


StorageDep = Annotated[Storage, Depends(get_storage)]
InvalidatorDep = Annotated[CacheInvalidationCoordinator, Depends(get_invalidator)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_project_lifecycle(storage: StorageDep, invalidator: InvalidatorDep, settings: SettingsDep) -> ProjectLifecycle:
    return ProjectLifecycle(storage, invalidator, settings.transaction_timeout_seconds)


def get_application_workflow(storage: StorageDep, invalidator: InvalidatorDep, settings: SettingsDep) -> ApplicationWorkflow:
    return ApplicationWorkflow(storage, invalidator, settings.transaction_timeout_seconds)


def get_meeting_workflow(storage: StorageDep, invalidator: InvalidatorDep, settings: SettingsDep) -> MeetingRequestWorkflow:
    return MeetingRequestWorkflow(storage, invalidator, settings.transaction_timeout_seconds)


def get_rating_aggregator(storage: StorageDep, invalidator: InvalidatorDep, settings: SettingsDep) -> RatingAggregator:
    return RatingAggregator(storage, invalidator, settings.transaction_timeout_seconds)


def get_freelancer_profiles(storage: StorageDep, invalidator: InvalidatorDep, settings: SettingsDep) -> FreelancerProfiles:
    return FreelancerProfiles(storage, invalidator, settings.transaction_timeout_seconds)


def get_queries(storage: StorageDep, cache: Annotated[RedisCache, Depends(get_cache)]) -> MarketplaceQueries:
    return MarketplaceQueries(storage, cache)


ProjectLifecycleDep = Annotated[ProjectLifecycle, Depends(get_project_lifecycle)]
ApplicationWorkflowDep = Annotated[ApplicationWorkflow, Depends(get_application_workflow)]
MeetingWorkflowDep = Annotated[MeetingRequestWorkflow, Depends(get_meeting_workflow)]
RatingAggregatorDep = Annotated[RatingAggregator, Depends(get_rating_aggregator)]
FreelancerProfilesDep = Annotated[FreelancerProfiles, Depends(get_freelancer_profiles)]
QueriesDep = Annotated[MarketplaceQueries, Depends(get_queries)]
