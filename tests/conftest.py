import pytest
from fastapi.testclient import TestClient
from jose import jwt
from unittest.mock import MagicMock

from marketplace.cache.invalidation import CacheInvalidationCoordinator
from marketplace.core.config import get_settings
from marketplace.db import storage as collections
from marketplace.db.storage import InMemoryStorage
from marketplace.dependencies import get_cache, get_storage
from marketplace.main import app
from marketplace.models.schemas import (
    Actor,
    Application,
    Client,
    Freelancer,
    Project,
    ProjectStatus,
    Role,
    User,
)
from marketplace.workflows.applications import ApplicationWorkflow
from marketplace.workflows.meetings import MeetingRequestWorkflow
from marketplace.workflows.profiles import FreelancerProfiles
from marketplace.workflows.projects import ProjectLifecycle
from marketplace.workflows.queries import MarketplaceQueries
from marketplace.workflows.ratings import RatingAggregator

ADMIN = Actor(user_id="admin-user", role=Role.ADMIN)


class Seeder:
    """Writes fixture documents straight into storage, bypassing the workflows."""

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def _put(self, collection, document):
        self.storage.run_in_transaction(lambda tx: tx.set(collection, document.id, document.to_document()))
        return document

    def client(self, user_id="client-user", **fields) -> Client:
        self._put(collections.USERS, User(id=user_id, role=Role.CLIENT))
        return self._put(collections.CLIENTS, Client(user_id=user_id, **fields))

    def freelancer(self, user_id="freelancer-user", **fields) -> Freelancer:
        self._put(collections.USERS, User(id=user_id, role=Role.FREELANCER))
        return self._put(collections.FREELANCERS, Freelancer(user_id=user_id, **fields))

    def project(self, client: Client, status=ProjectStatus.OPEN, **fields) -> Project:
        fields.setdefault("title", "Landing page redesign")
        return self._put(collections.PROJECTS, Project(client_id=client.id, status=status, **fields))

    def assigned_project(self, client: Client, freelancer: Freelancer, status=ProjectStatus.ASSIGNED, **fields) -> Project:
        return self.project(client, status=status, assigned_to=freelancer.id, **fields)

    def application(self, project: Project, freelancer: Freelancer, **fields) -> Application:
        fields.setdefault("proposal", "I can build this in two weeks")
        return self._put(
            collections.APPLICATIONS,
            Application(project_id=project.id, freelancer_id=freelancer.id, **fields),
        )

    def get(self, collection, document_id):
        return self.storage.get(collection, document_id)


def actor_for(profile) -> Actor:
    role = Role.FREELANCER if isinstance(profile, Freelancer) else Role.CLIENT
    return Actor(user_id=profile.user_id, role=role)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def cache():
    """A MagicMock standing in for RedisCache; `remember` always calls the loader."""
    mock_cache = MagicMock()
    mock_cache.invalidate_tags.return_value = 0
    mock_cache.get.return_value = None
    mock_cache.remember.side_effect = lambda key, ttl, tags, loader: loader()
    return mock_cache


@pytest.fixture
def invalidator(cache):
    return CacheInvalidationCoordinator(cache)


@pytest.fixture
def seed(storage):
    return Seeder(storage)


@pytest.fixture
def lifecycle(storage, invalidator):
    return ProjectLifecycle(storage, invalidator)


@pytest.fixture
def applications(storage, invalidator):
    return ApplicationWorkflow(storage, invalidator)


@pytest.fixture
def meetings(storage, invalidator):
    return MeetingRequestWorkflow(storage, invalidator)


@pytest.fixture
def ratings(storage, invalidator):
    return RatingAggregator(storage, invalidator)


@pytest.fixture
def profiles(storage, invalidator):
    return FreelancerProfiles(storage, invalidator)


@pytest.fixture
def queries(storage, cache):
    return MarketplaceQueries(storage, cache)


def invalidated_tags(cache) -> set:
    """Union of every tag set passed to cache.invalidate_tags."""
    tags = set()
    for call in cache.invalidate_tags.call_args_list:
        tags.update(call.args[0])
    return tags


@pytest.fixture
def api(storage, cache):
    """TestClient wired to in-memory storage and the mock cache."""
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_cache] = lambda: cache
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(actor: Actor) -> dict:
    settings = get_settings()
    token = jwt.encode({"sub": actor.user_id, "role": actor.role.value}, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return {"Authorization": f"Bearer {token}"}
