import logging
from typing import List, Optional

from marketplace.cache.invalidation import Affected, Mutation
from marketplace.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotAvailableError,
    NotFoundError,
)
from marketplace.db import storage as collections
from marketplace.db.storage import Transaction, unique_key
from marketplace.models.schemas import (
    Actor,
    Application,
    ApplicationCreate,
    ApplicationStatus,
    ProjectStatus,
    Role,
    utc_now,
)
from marketplace.workflows.common import (
    Workflow,
    client_for_user,
    freelancer_for_user,
    load_application,
    load_freelancer,
    load_project,
    require_project_owner,
    require_role,
)
from marketplace.workflows.projects import pending_applications, write_assignment

logger = logging.getLogger(__name__)

APPLICATION_CONSTRAINT = "applications.project_freelancer"


class ApplicationWorkflow(Workflow):
    """
    Applications are created PENDING and end APPROVED or REJECTED. Approving
    one application assigns the project and rejects every competing pending
    application in the same transaction.
    """

    def apply(self, actor: Actor, project_id: str, application_in: ApplicationCreate) -> Application:
        require_role(actor, Role.FREELANCER)

        def _apply(tx: Transaction) -> Application:
            freelancer = freelancer_for_user(tx, actor.user_id)
            project = load_project(tx, project_id)
            guard_id = unique_key(APPLICATION_CONSTRAINT, project.id, freelancer.id)
            if tx.get(collections.UNIQUE_KEYS, guard_id):
                raise ConflictError("You have already applied for this project")
            if not freelancer.availability:
                raise NotAvailableError("You must be available to apply for projects")
            if project.status != ProjectStatus.OPEN:
                raise InvalidStateError("Project is not available for applications")
            if project.assigned_to:
                raise InvalidStateError("Project is already assigned")

            application = Application(
                project_id=project.id,
                freelancer_id=freelancer.id,
                **application_in.model_dump(),
            )
            # The guard document makes a concurrent duplicate fail on commit
            tx.create(collections.UNIQUE_KEYS, guard_id, {"target": application.id})
            tx.create(collections.APPLICATIONS, application.id, application.to_document())
            return application

        application = self._commit(
            _apply,
            Mutation.APPLICATION_SUBMITTED,
            lambda a: Affected(project_id=a.project_id, freelancer_ids={a.freelancer_id}),
        )
        logger.info("Freelancer %s applied to project %s", application.freelancer_id, application.project_id)
        return application

    def approve(self, actor: Actor, project_id: str, application_id: str) -> Application:
        require_role(actor, Role.CLIENT)
        affected = Affected()

        def _approve(tx: Transaction) -> Application:
            project = load_project(tx, project_id)
            application = load_application(tx, application_id)
            if application.project_id != project.id:
                raise NotFoundError("Application not found for this project")
            client = client_for_user(tx, actor.user_id)
            pending = pending_applications(tx, project.id)
            freelancer = load_freelancer(tx, application.freelancer_id)
            require_project_owner(project, client)

            # A competing approval that committed first leaves the project ASSIGNED
            if project.status != ProjectStatus.OPEN or project.assigned_to:
                raise ConflictError("Project is no longer open for assignment")
            if application.status != ApplicationStatus.PENDING:
                raise InvalidStateError(f"Application is already {application.status}")

            assigned = write_assignment(tx, project, freelancer, actor, pending)
            affected.project_id = assigned.id
            affected.client_id = assigned.client_id
            affected.freelancer_ids = {a.freelancer_id for a in pending}
            return application.model_copy(update={"status": ApplicationStatus.APPROVED.value})

        approved = self._commit(_approve, Mutation.APPLICATION_APPROVED, lambda _: affected)
        logger.info("Application %s approved; project %s assigned", approved.id, approved.project_id)
        return approved

    def reject(self, actor: Actor, project_id: str, application_id: str) -> Application:
        require_role(actor, Role.CLIENT)

        def _reject(tx: Transaction) -> Application:
            project = load_project(tx, project_id)
            application = load_application(tx, application_id)
            if application.project_id != project.id:
                raise NotFoundError("Application not found for this project")
            client = client_for_user(tx, actor.user_id)
            require_project_owner(project, client)
            if application.status != ApplicationStatus.PENDING:
                raise InvalidStateError(f"Application is already {application.status}")

            changes = {"status": ApplicationStatus.REJECTED.value, "updated_at": utc_now()}
            tx.update(collections.APPLICATIONS, application.id, changes)
            return application.model_copy(update=changes)

        rejected = self._commit(
            _reject,
            Mutation.APPLICATION_REJECTED,
            lambda a: Affected(project_id=a.project_id, freelancer_ids={a.freelancer_id}),
        )
        logger.info("Application %s rejected", rejected.id)
        return rejected

    def list_for_project(self, actor: Actor, project_id: str) -> List[Application]:
        require_role(actor, Role.CLIENT, Role.ADMIN)

        def _list(tx: Transaction) -> List[Application]:
            project = load_project(tx, project_id)
            if actor.role == Role.CLIENT:
                require_project_owner(project, client_for_user(tx, actor.user_id))
            found = tx.query(collections.APPLICATIONS, [("project_id", "==", project.id)])
            return [Application.model_validate(doc) for doc in found]

        applications = self._transact(_list)
        applications.sort(key=lambda a: a.created_at, reverse=True)
        return applications

    def list_for_freelancer(self, actor: Actor, status: Optional[ApplicationStatus] = None) -> List[Application]:
        require_role(actor, Role.FREELANCER)

        def _list(tx: Transaction) -> List[Application]:
            freelancer = freelancer_for_user(tx, actor.user_id)
            filters = [("freelancer_id", "==", freelancer.id)]
            if status is not None:
                filters.append(("status", "==", ApplicationStatus(status).value))
            return [Application.model_validate(doc) for doc in tx.query(collections.APPLICATIONS, filters)]

        applications = self._transact(_list)
        applications.sort(key=lambda a: a.created_at, reverse=True)
        return applications

    def get_application(self, actor: Actor, application_id: str) -> Application:
        def _get(tx: Transaction) -> Application:
            application = load_application(tx, application_id)
            if actor.role == Role.ADMIN:
                return application
            if actor.role == Role.FREELANCER:
                if freelancer_for_user(tx, actor.user_id).id != application.freelancer_id:
                    raise ForbiddenError("Not authorized to view this application")
                return application
            project = load_project(tx, application.project_id)
            require_project_owner(project, client_for_user(tx, actor.user_id))
            return application

        return self._transact(_get)
