"""Helpers shared by the workflow classes: loaders, role checks and the transaction wrapper."""

from typing import Callable, Optional, TypeVar

from marketplace.cache.invalidation import Affected, CacheInvalidationCoordinator, Mutation
from marketplace.core.errors import ForbiddenError, NotFoundError
from marketplace.db import storage as collections
from marketplace.db.storage import Storage, Transaction
from marketplace.models.schemas import (
    Actor,
    Application,
    Client,
    Freelancer,
    MeetingRequest,
    Meeting,
    Project,
    Rating,
    Role,
)

T = TypeVar("T")


class Workflow:
    """
    Base for the workflow classes. Holds the injected storage and cache
    coordinator; `_commit` runs one transaction and only then purges the
    cache tags the mutation affected.
    """

    def __init__(self, storage: Storage, invalidator: CacheInvalidationCoordinator, timeout: Optional[float] = None):
        self.storage = storage
        self.invalidator = invalidator
        self.timeout = timeout

    def _transact(self, fn: Callable[[Transaction], T], timeout: Optional[float] = None) -> T:
        return self.storage.run_in_transaction(fn, timeout=timeout if timeout is not None else self.timeout)

    def _commit(
        self,
        fn: Callable[[Transaction], T],
        mutation: Mutation,
        affected: Callable[[T], Affected],
        timeout: Optional[float] = None,
    ) -> T:
        result = self._transact(fn, timeout)
        self.invalidator.invalidate(mutation, affected(result))
        return result


def require_role(actor: Actor, *roles: Role) -> None:
    if actor.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        raise ForbiddenError(f"Only {allowed} users can perform this action")


def load_project(tx: Transaction, project_id: str) -> Project:
    data = tx.get(collections.PROJECTS, project_id)
    if not data:
        raise NotFoundError("Project not found")
    return Project.model_validate(data)


def load_application(tx: Transaction, application_id: str) -> Application:
    data = tx.get(collections.APPLICATIONS, application_id)
    if not data:
        raise NotFoundError("Application not found")
    return Application.model_validate(data)


def load_freelancer(tx: Transaction, freelancer_id: str) -> Freelancer:
    data = tx.get(collections.FREELANCERS, freelancer_id)
    if not data:
        raise NotFoundError("Freelancer not found")
    return Freelancer.model_validate(data)


def load_client(tx: Transaction, client_id: str) -> Client:
    data = tx.get(collections.CLIENTS, client_id)
    if not data:
        raise NotFoundError("Client not found")
    return Client.model_validate(data)


def load_meeting_request(tx: Transaction, request_id: str) -> MeetingRequest:
    data = tx.get(collections.MEETING_REQUESTS, request_id)
    if not data:
        raise NotFoundError("Meeting request not found")
    return MeetingRequest.model_validate(data)


def load_meeting(tx: Transaction, meeting_id: str) -> Meeting:
    data = tx.get(collections.MEETINGS, meeting_id)
    if not data:
        raise NotFoundError("Meeting not found")
    return Meeting.model_validate(data)


def load_rating(tx: Transaction, rating_id: str) -> Rating:
    data = tx.get(collections.RATINGS, rating_id)
    if not data:
        raise NotFoundError("Rating not found")
    return Rating.model_validate(data)


def freelancer_for_user(tx: Transaction, user_id: str) -> Freelancer:
    found = tx.query(collections.FREELANCERS, [("user_id", "==", user_id)])
    if not found:
        raise NotFoundError("Freelancer not found")
    return Freelancer.model_validate(found[0])


def client_for_user(tx: Transaction, user_id: str) -> Client:
    found = tx.query(collections.CLIENTS, [("user_id", "==", user_id)])
    if not found:
        raise NotFoundError("Client not found")
    return Client.model_validate(found[0])


def require_project_owner(project: Project, client: Client) -> None:
    if project.client_id != client.id:
        raise ForbiddenError("You do not have permission to modify this project")
