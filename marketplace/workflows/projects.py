"""
Project lifecycle.

    ADMIN_VERIFICATION -> OPEN -> ASSIGNED -> PENDING_COMPLETION -> COMPLETED
            |              |                     |     |
            v              v                     |     +--> REJECTED_COMPLETION
        CANCELLED      CANCELLED        ASSIGNED <+

`assigned_to` is set exactly when the project is ASSIGNED or later, and every
status change writes a ProjectTransition audit record in the same transaction.
"""

import logging
from typing import Dict, FrozenSet, List, Optional

from marketplace.cache.invalidation import Affected, Mutation
from marketplace.core.errors import ForbiddenError, InvalidStateError, NotAvailableError, NotFoundError
from marketplace.db import storage as collections
from marketplace.db.storage import Transaction
from marketplace.models.schemas import (
    Actor,
    Application,
    ApplicationStatus,
    Freelancer,
    Project,
    ProjectCreate,
    ProjectStatus,
    ProjectTransition,
    Role,
    TERMINAL_PROJECT_STATUSES,
    utc_now,
)
from marketplace.workflows.common import (
    Workflow,
    client_for_user,
    freelancer_for_user,
    load_freelancer,
    load_project,
    require_project_owner,
    require_role,
)

logger = logging.getLogger(__name__)


VALID_PROJECT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    ProjectStatus.ADMIN_VERIFICATION.value: frozenset({ProjectStatus.OPEN.value, ProjectStatus.CANCELLED.value}),
    ProjectStatus.OPEN.value: frozenset({ProjectStatus.ASSIGNED.value, ProjectStatus.CANCELLED.value}),
    ProjectStatus.ASSIGNED.value: frozenset({ProjectStatus.PENDING_COMPLETION.value}),
    ProjectStatus.PENDING_COMPLETION.value: frozenset({
        ProjectStatus.COMPLETED.value,
        ProjectStatus.ASSIGNED.value,
        ProjectStatus.REJECTED_COMPLETION.value,
    }),
    ProjectStatus.COMPLETED.value: frozenset(),
    ProjectStatus.REJECTED_COMPLETION.value: frozenset(),
    ProjectStatus.CANCELLED.value: frozenset(),
}


def ensure_transition(project: Project, target: ProjectStatus) -> None:
    if project.status in TERMINAL_PROJECT_STATUSES:
        raise InvalidStateError(f"Project is {project.status} and can no longer change status")
    if target.value not in VALID_PROJECT_TRANSITIONS[project.status]:
        raise InvalidStateError(f"Cannot move project from {project.status} to {target.value}")


def write_transition(
    tx: Transaction,
    project: Project,
    target: ProjectStatus,
    actor: Actor,
    reason: Optional[str] = None,
    **updates,
) -> Project:
    """Write the status change plus its audit record. Call only after every read of the transaction."""
    now = utc_now()
    changes = {"status": target.value, "updated_at": now, **updates}
    tx.update(collections.PROJECTS, project.id, changes)
    record = ProjectTransition(
        project_id=project.id,
        from_status=project.status,
        to_status=target,
        actor_id=actor.user_id,
        reason=reason,
        created_at=now,
    )
    tx.create(collections.PROJECT_TRANSITIONS, record.id, record.to_document())
    return project.model_copy(update=changes)


def write_assignment(
    tx: Transaction,
    project: Project,
    freelancer: Freelancer,
    actor: Actor,
    pending: List[Application],
) -> Project:
    """
    OPEN -> ASSIGNED for `freelancer`. The freelancer's pending application (if
    any) becomes APPROVED and every other pending application REJECTED.
    """
    if project.status != ProjectStatus.OPEN or project.assigned_to:
        raise InvalidStateError("Project is not available for assignment")
    if not freelancer.availability:
        raise NotAvailableError("Freelancer is not available for new projects")

    now = utc_now()
    for application in pending:
        decision = ApplicationStatus.APPROVED if application.freelancer_id == freelancer.id else ApplicationStatus.REJECTED
        tx.update(collections.APPLICATIONS, application.id, {"status": decision.value, "updated_at": now})
    return write_transition(tx, project, ProjectStatus.ASSIGNED, actor, assigned_to=freelancer.id)


def pending_applications(tx: Transaction, project_id: str) -> List[Application]:
    found = tx.query(collections.APPLICATIONS, [
        ("project_id", "==", project_id),
        ("status", "==", ApplicationStatus.PENDING.value),
    ])
    return [Application.model_validate(doc) for doc in found]


def _project_affected(project: Project, *freelancer_ids: str) -> Affected:
    ids = {f for f in (project.assigned_to, *freelancer_ids) if f}
    return Affected(project_id=project.id, client_id=project.client_id, freelancer_ids=ids)


class ProjectLifecycle(Workflow):

    def submit(self, actor: Actor, project_in: ProjectCreate) -> Project:
        require_role(actor, Role.CLIENT)

        def _submit(tx: Transaction) -> Project:
            client = client_for_user(tx, actor.user_id)
            project = Project(client_id=client.id, **project_in.model_dump())
            tx.create(collections.PROJECTS, project.id, project.to_document())
            tx.update(collections.CLIENTS, client.id, {"projects_posted": client.projects_posted + 1})
            record = ProjectTransition(
                project_id=project.id,
                to_status=ProjectStatus.ADMIN_VERIFICATION,
                actor_id=actor.user_id,
                created_at=project.created_at,
            )
            tx.create(collections.PROJECT_TRANSITIONS, record.id, record.to_document())
            return project

        project = self._commit(_submit, Mutation.PROJECT_SUBMITTED, _project_affected)
        logger.info("Project %s submitted by client %s", project.id, project.client_id)
        return project

    def _admin_transition(self, actor: Actor, project_id: str, target: ProjectStatus, note: Optional[str], mutation: Mutation) -> Project:
        require_role(actor, Role.ADMIN)

        def _run(tx: Transaction) -> Project:
            project = load_project(tx, project_id)
            ensure_transition(project, target)
            if target == ProjectStatus.REJECTED_COMPLETION:
                if project.status != ProjectStatus.PENDING_COMPLETION:
                    raise InvalidStateError("Only projects awaiting completion approval can be closed")
            elif project.status != ProjectStatus.ADMIN_VERIFICATION:
                raise InvalidStateError("Project is not awaiting admin verification")
            return write_transition(tx, project, target, actor, reason=note, admin_note=note)

        project = self._commit(_run, mutation, _project_affected)
        logger.info("Admin %s moved project %s to %s", actor.user_id, project.id, project.status)
        return project

    def admin_approve(self, actor: Actor, project_id: str, note: Optional[str] = None) -> Project:
        return self._admin_transition(actor, project_id, ProjectStatus.OPEN, note, Mutation.PROJECT_APPROVED)

    def admin_reject(self, actor: Actor, project_id: str, note: Optional[str] = None) -> Project:
        return self._admin_transition(actor, project_id, ProjectStatus.CANCELLED, note, Mutation.PROJECT_REJECTED)

    def admin_close(self, actor: Actor, project_id: str, note: Optional[str] = None) -> Project:
        return self._admin_transition(actor, project_id, ProjectStatus.REJECTED_COMPLETION, note, Mutation.PROJECT_CLOSED)

    def cancel(self, actor: Actor, project_id: str, reason: Optional[str] = None) -> Project:
        require_role(actor, Role.CLIENT)
        rejected: List[str] = []

        def _cancel(tx: Transaction) -> Project:
            project = load_project(tx, project_id)
            client = client_for_user(tx, actor.user_id)
            pending = pending_applications(tx, project.id)
            require_project_owner(project, client)
            ensure_transition(project, ProjectStatus.CANCELLED)
            now = utc_now()
            rejected[:] = [a.freelancer_id for a in pending]
            for application in pending:
                tx.update(collections.APPLICATIONS, application.id, {"status": ApplicationStatus.REJECTED.value, "updated_at": now})
            return write_transition(tx, project, ProjectStatus.CANCELLED, actor, reason=reason)

        project = self._commit(_cancel, Mutation.PROJECT_CANCELLED, lambda p: _project_affected(p, *rejected))
        logger.info("Project %s cancelled by client %s", project.id, project.client_id)
        return project

    def assign(self, actor: Actor, project_id: str, freelancer_id: str) -> Project:
        require_role(actor, Role.CLIENT)
        losers: List[str] = []

        def _assign(tx: Transaction) -> Project:
            project = load_project(tx, project_id)
            client = client_for_user(tx, actor.user_id)
            freelancer = load_freelancer(tx, freelancer_id)
            pending = pending_applications(tx, project.id)
            require_project_owner(project, client)
            losers[:] = [a.freelancer_id for a in pending]
            return write_assignment(tx, project, freelancer, actor, pending)

        project = self._commit(_assign, Mutation.PROJECT_ASSIGNED, lambda p: _project_affected(p, *losers))
        logger.info("Project %s assigned to freelancer %s", project.id, project.assigned_to)
        return project

    def request_completion(self, actor: Actor, project_id: str, note: Optional[str] = None) -> Project:
        require_role(actor, Role.FREELANCER)

        def _request(tx: Transaction) -> Project:
            project = load_project(tx, project_id)
            freelancer = freelancer_for_user(tx, actor.user_id)
            if project.assigned_to != freelancer.id:
                raise ForbiddenError("Only the assigned freelancer can request completion")
            ensure_transition(project, ProjectStatus.PENDING_COMPLETION)
            return write_transition(tx, project, ProjectStatus.PENDING_COMPLETION, actor, reason=note, completion_note=note)

        project = self._commit(_request, Mutation.COMPLETION_REQUESTED, _project_affected)
        logger.info("Completion requested for project %s", project.id)
        return project

    def approve_completion(self, actor: Actor, project_id: str) -> Project:
        require_role(actor, Role.CLIENT)

        def _approve(tx: Transaction) -> Project:
            project = load_project(tx, project_id)
            client = client_for_user(tx, actor.user_id)
            require_project_owner(project, client)
            ensure_transition(project, ProjectStatus.COMPLETED)
            freelancer = load_freelancer(tx, project.assigned_to)
            tx.update(collections.FREELANCERS, freelancer.id, {"projects_completed": freelancer.projects_completed + 1})
            return write_transition(tx, project, ProjectStatus.COMPLETED, actor, completed_at=utc_now())

        project = self._commit(_approve, Mutation.COMPLETION_APPROVED, _project_affected)
        logger.info("Project %s completed", project.id)
        return project

    def reject_completion(self, actor: Actor, project_id: str, reason: Optional[str] = None) -> Project:
        require_role(actor, Role.CLIENT)

        def _reject(tx: Transaction) -> Project:
            project = load_project(tx, project_id)
            client = client_for_user(tx, actor.user_id)
            require_project_owner(project, client)
            ensure_transition(project, ProjectStatus.ASSIGNED)
            if project.status != ProjectStatus.PENDING_COMPLETION:
                raise InvalidStateError("Project has no pending completion request")
            return write_transition(tx, project, ProjectStatus.ASSIGNED, actor, reason=reason, completion_rejection_reason=reason)

        project = self._commit(_reject, Mutation.COMPLETION_REJECTED, _project_affected)
        logger.info("Completion rejected for project %s; work resumes", project.id)
        return project

    def get_project(self, project_id: str) -> Project:
        data = self.storage.get(collections.PROJECTS, project_id)
        if not data:
            raise NotFoundError("Project not found")
        return Project.model_validate(data)

    def list_transitions(self, actor: Actor, project_id: str) -> List[ProjectTransition]:
        def _list(tx: Transaction) -> List[ProjectTransition]:
            project = load_project(tx, project_id)
            if actor.role == Role.CLIENT:
                require_project_owner(project, client_for_user(tx, actor.user_id))
            elif actor.role == Role.FREELANCER:
                if project.assigned_to != freelancer_for_user(tx, actor.user_id).id:
                    raise ForbiddenError("Not authorized to view this project's history")
            found = tx.query(collections.PROJECT_TRANSITIONS, [("project_id", "==", project_id)])
            return sorted((ProjectTransition.model_validate(d) for d in found), key=lambda t: t.created_at)

        return self._transact(_list)
