import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import ADMIN, actor_for
from marketplace.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotAvailableError,
    NotFoundError,
)
from marketplace.db import storage as collections
from marketplace.models.schemas import ApplicationCreate, ApplicationStatus, ProjectStatus

PROPOSAL = ApplicationCreate(proposal="Five years of FastAPI work", cover_letter="Happy to chat")


def _run_together(*calls):
    """Start every call at the same moment; return (results, errors)."""
    barrier = threading.Barrier(len(calls))
    results, errors = [], []

    def run(call):
        barrier.wait()
        try:
            results.append(call())
        except Exception as e:
            errors.append(e)

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        for call in calls:
            pool.submit(run, call)
    return results, errors


def test_apply_creates_pending_application(applications, seed, storage):
    project = seed.project(seed.client())
    freelancer = seed.freelancer()

    application = applications.apply(actor_for(freelancer), project.id, PROPOSAL)

    stored = storage.get(collections.APPLICATIONS, application.id)
    assert stored["status"] == ApplicationStatus.PENDING.value
    assert stored["freelancer_id"] == freelancer.id
    assert stored["cover_letter"] == "Happy to chat"


def test_apply_twice_conflicts(applications, seed, storage):
    project = seed.project(seed.client())
    freelancer = seed.freelancer()
    applications.apply(actor_for(freelancer), project.id, PROPOSAL)

    with pytest.raises(ConflictError):
        applications.apply(actor_for(freelancer), project.id, PROPOSAL)
    assert len(storage.query(collections.APPLICATIONS, [("project_id", "==", project.id)])) == 1


def test_apply_while_unavailable(applications, seed):
    project = seed.project(seed.client())
    with pytest.raises(NotAvailableError):
        applications.apply(actor_for(seed.freelancer(availability=False)), project.id, PROPOSAL)


@pytest.mark.parametrize("status", [ProjectStatus.ADMIN_VERIFICATION, ProjectStatus.CANCELLED])
def test_apply_to_project_not_open(applications, seed, status):
    project = seed.project(seed.client(), status=status)
    with pytest.raises(InvalidStateError):
        applications.apply(actor_for(seed.freelancer()), project.id, PROPOSAL)


def test_apply_requires_freelancer(applications, seed):
    client = seed.client()
    project = seed.project(client)
    with pytest.raises(ForbiddenError):
        applications.apply(actor_for(client), project.id, PROPOSAL)


def test_approve_assigns_and_rejects_competitors(applications, seed, storage):
    client = seed.client()
    project = seed.project(client)
    winner = seed.freelancer("f1")
    chosen = seed.application(project, winner)
    others = [seed.application(project, seed.freelancer(f"f{i}")) for i in range(2, 5)]

    approved = applications.approve(actor_for(client), project.id, chosen.id)

    assert approved.status == ApplicationStatus.APPROVED.value
    stored_project = storage.get(collections.PROJECTS, project.id)
    assert stored_project["status"] == ProjectStatus.ASSIGNED.value
    assert stored_project["assigned_to"] == winner.id
    for other in others:
        assert storage.get(collections.APPLICATIONS, other.id)["status"] == ApplicationStatus.REJECTED.value
    pending = storage.query(collections.APPLICATIONS, [("status", "==", ApplicationStatus.PENDING.value)])
    assert pending == []


def test_approve_after_assignment_conflicts(applications, seed):
    client = seed.client()
    project = seed.project(client)
    first = seed.application(project, seed.freelancer("f1"))
    second = seed.application(project, seed.freelancer("f2"))
    applications.approve(actor_for(client), project.id, first.id)

    with pytest.raises(ConflictError):
        applications.approve(actor_for(client), project.id, second.id)


def test_approve_application_of_another_project(applications, seed):
    client = seed.client()
    project = seed.project(client)
    elsewhere = seed.application(seed.project(client), seed.freelancer())
    with pytest.raises(NotFoundError):
        applications.approve(actor_for(client), project.id, elsewhere.id)


def test_approve_by_non_owner_is_forbidden(applications, seed):
    project = seed.project(seed.client())
    application = seed.application(project, seed.freelancer())
    with pytest.raises(ForbiddenError):
        applications.approve(actor_for(seed.client("other-client")), project.id, application.id)


def test_approve_rejected_application_is_invalid(applications, seed):
    client = seed.client()
    project = seed.project(client)
    application = seed.application(project, seed.freelancer(), status=ApplicationStatus.REJECTED)
    with pytest.raises(InvalidStateError):
        applications.approve(actor_for(client), project.id, application.id)


def test_approve_unavailable_freelancer(applications, seed, storage):
    client = seed.client()
    project = seed.project(client)
    application = seed.application(project, seed.freelancer(availability=False))

    with pytest.raises(NotAvailableError):
        applications.approve(actor_for(client), project.id, application.id)
    assert storage.get(collections.APPLICATIONS, application.id)["status"] == ApplicationStatus.PENDING.value


def test_reject_does_not_cascade(applications, seed, storage):
    client = seed.client()
    project = seed.project(client)
    rejected = seed.application(project, seed.freelancer("f1"))
    kept = seed.application(project, seed.freelancer("f2"))

    applications.reject(actor_for(client), project.id, rejected.id)

    assert storage.get(collections.APPLICATIONS, rejected.id)["status"] == ApplicationStatus.REJECTED.value
    assert storage.get(collections.APPLICATIONS, kept.id)["status"] == ApplicationStatus.PENDING.value
    assert storage.get(collections.PROJECTS, project.id)["status"] == ProjectStatus.OPEN.value


def test_concurrent_duplicate_apply_leaves_one_application(applications, seed, storage):
    project = seed.project(seed.client())
    actor = actor_for(seed.freelancer())

    results, errors = _run_together(
        lambda: applications.apply(actor, project.id, PROPOSAL),
        lambda: applications.apply(actor, project.id, PROPOSAL),
    )

    assert len(results) == 1
    assert len(errors) == 1 and isinstance(errors[0], ConflictError)
    assert len(storage.query(collections.APPLICATIONS, [("project_id", "==", project.id)])) == 1


def test_concurrent_approvals_have_one_winner(applications, seed, storage):
    client = seed.client()
    project = seed.project(client)
    first = seed.application(project, seed.freelancer("f1"))
    second = seed.application(project, seed.freelancer("f2"))
    actor = actor_for(client)

    results, errors = _run_together(
        lambda: applications.approve(actor, project.id, first.id),
        lambda: applications.approve(actor, project.id, second.id),
    )

    assert len(results) == 1
    assert len(errors) == 1 and isinstance(errors[0], ConflictError)
    statuses = sorted(storage.get(collections.APPLICATIONS, a.id)["status"] for a in (first, second))
    assert statuses == [ApplicationStatus.APPROVED.value, ApplicationStatus.REJECTED.value]
    assert storage.get(collections.PROJECTS, project.id)["assigned_to"] == results[0].freelancer_id


def test_list_for_project_is_owner_only(applications, seed):
    client = seed.client()
    project = seed.project(client)
    seed.application(project, seed.freelancer("f1"))
    seed.application(project, seed.freelancer("f2"))

    assert len(applications.list_for_project(actor_for(client), project.id)) == 2
    assert len(applications.list_for_project(ADMIN, project.id)) == 2
    with pytest.raises(ForbiddenError):
        applications.list_for_project(actor_for(seed.client("other-client")), project.id)


def test_list_for_freelancer_filters_by_status(applications, seed):
    client = seed.client()
    freelancer = seed.freelancer()
    seed.application(seed.project(client), freelancer)
    seed.application(seed.project(client), freelancer, status=ApplicationStatus.REJECTED)

    assert len(applications.list_for_freelancer(actor_for(freelancer))) == 2
    pending = applications.list_for_freelancer(actor_for(freelancer), ApplicationStatus.PENDING)
    assert [a.status for a in pending] == [ApplicationStatus.PENDING.value]


def test_get_application_visibility(applications, seed):
    client = seed.client()
    owner = seed.freelancer("f1")
    application = seed.application(seed.project(client), owner)

    assert applications.get_application(actor_for(owner), application.id).id == application.id
    assert applications.get_application(actor_for(client), application.id).id == application.id
    with pytest.raises(ForbiddenError):
        applications.get_application(actor_for(seed.freelancer("f2")), application.id)
