import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Set

logger = logging.getLogger(__name__)


# Public listing tags
PUBLIC_JOBS = "public:jobs"
PUBLIC_FREELANCERS = "public:freelancers"
PUBLIC_FEATURED_PROJECTS = "public:featured:projects"
PUBLIC_FEATURED_FREELANCERS = "public:featured:freelancers"
PUBLIC_STATS = "public:stats"


def project_tag(project_id: str) -> str:
    return f"project:{project_id}"

def client_tag(client_id: str) -> str:
    return f"client:{client_id}"

def freelancer_tag(freelancer_id: str) -> str:
    return f"freelancer:{freelancer_id}"

def user_tag(user_id: str) -> str:
    return f"user:{user_id}"

def meeting_request_tag(request_id: str) -> str:
    return f"meeting_request:{request_id}"

def meeting_tag(meeting_id: str) -> str:
    return f"meeting:{meeting_id}"


class Mutation(str, Enum):
    PROJECT_SUBMITTED = "project_submitted"
    PROJECT_APPROVED = "project_approved"
    PROJECT_REJECTED = "project_rejected"
    PROJECT_CANCELLED = "project_cancelled"
    PROJECT_ASSIGNED = "project_assigned"
    PROJECT_CLOSED = "project_closed"
    COMPLETION_REQUESTED = "completion_requested"
    COMPLETION_APPROVED = "completion_approved"
    COMPLETION_REJECTED = "completion_rejected"
    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REJECTED = "application_rejected"
    MEETING_REQUESTED = "meeting_requested"
    MEETING_REQUEST_APPROVED = "meeting_request_approved"
    MEETING_REQUEST_REJECTED = "meeting_request_rejected"
    MEETING_REQUEST_CANCELLED = "meeting_request_cancelled"
    MEETING_UPDATED = "meeting_updated"
    RATING_SUBMITTED = "rating_submitted"
    RATING_UPDATED = "rating_updated"
    AVAILABILITY_CHANGED = "availability_changed"


_OPEN_LISTINGS = frozenset({PUBLIC_JOBS, PUBLIC_FEATURED_PROJECTS, PUBLIC_STATS})
_RATED_LISTINGS = frozenset({PUBLIC_FREELANCERS, PUBLIC_FEATURED_FREELANCERS, PUBLIC_JOBS, PUBLIC_FEATURED_PROJECTS})

# Public listings whose content each mutation can change. Entity tags are
# derived from the affected ids on top of these.
PUBLIC_TAGS: Dict[Mutation, FrozenSet[str]] = {
    Mutation.PROJECT_SUBMITTED: frozenset({PUBLIC_STATS}),
    Mutation.PROJECT_APPROVED: _OPEN_LISTINGS,
    Mutation.PROJECT_REJECTED: frozenset({PUBLIC_STATS}),
    Mutation.PROJECT_CANCELLED: _OPEN_LISTINGS,
    Mutation.PROJECT_ASSIGNED: _OPEN_LISTINGS,
    Mutation.PROJECT_CLOSED: frozenset({PUBLIC_STATS}),
    Mutation.COMPLETION_REQUESTED: frozenset(),
    Mutation.COMPLETION_APPROVED: frozenset({PUBLIC_FREELANCERS, PUBLIC_FEATURED_FREELANCERS, PUBLIC_STATS}),
    Mutation.COMPLETION_REJECTED: frozenset(),
    Mutation.APPLICATION_SUBMITTED: frozenset({PUBLIC_JOBS, PUBLIC_FEATURED_PROJECTS}),
    Mutation.APPLICATION_APPROVED: _OPEN_LISTINGS,
    Mutation.APPLICATION_REJECTED: frozenset(),
    Mutation.MEETING_REQUESTED: frozenset(),
    Mutation.MEETING_REQUEST_APPROVED: frozenset(),
    Mutation.MEETING_REQUEST_REJECTED: frozenset(),
    Mutation.MEETING_REQUEST_CANCELLED: frozenset(),
    Mutation.MEETING_UPDATED: frozenset(),
    Mutation.RATING_SUBMITTED: _RATED_LISTINGS,
    Mutation.RATING_UPDATED: _RATED_LISTINGS,
    Mutation.AVAILABILITY_CHANGED: frozenset({PUBLIC_FREELANCERS, PUBLIC_FEATURED_FREELANCERS}),
}


@dataclass
class Affected:
    """Ids of the entities a committed mutation touched."""
    project_id: Optional[str] = None
    client_id: Optional[str] = None
    freelancer_ids: Set[str] = field(default_factory=set)
    user_ids: Set[str] = field(default_factory=set)
    meeting_request_id: Optional[str] = None
    meeting_id: Optional[str] = None


class CacheInvalidationCoordinator:
    """
    Purges cache tags after a workflow transaction has committed.
    Never raises: a failed purge leaves stale entries that expire by TTL.
    """

    def __init__(self, cache):
        self._cache = cache

    @staticmethod
    def tags_for(mutation: Mutation, affected: Affected) -> Set[str]:
        tags = set(PUBLIC_TAGS[mutation])
        if affected.project_id:
            tags.add(project_tag(affected.project_id))
        if affected.client_id:
            tags.add(client_tag(affected.client_id))
        tags.update(freelancer_tag(f) for f in affected.freelancer_ids if f)
        tags.update(user_tag(u) for u in affected.user_ids if u)
        if affected.meeting_request_id:
            tags.add(meeting_request_tag(affected.meeting_request_id))
        if affected.meeting_id:
            tags.add(meeting_tag(affected.meeting_id))
        return tags

    def invalidate(self, mutation: Mutation, affected: Affected) -> Set[str]:
        tags = self.tags_for(mutation, affected)
        try:
            removed = self._cache.invalidate_tags(tags)
            logger.debug("Invalidated %s cache entries for %s (%s)", removed, mutation.value, sorted(tags))
        except Exception:
            logger.exception("Cache invalidation failed for %s", mutation.value)
        return tags
