import logging
from typing import Dict, FrozenSet, List, Optional

from marketplace.cache.invalidation import Affected, Mutation
from marketplace.core.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from marketplace.db import storage as collections
from marketplace.db.storage import Transaction
from marketplace.models.schemas import (
    Actor,
    Application,
    ApplicationStatus,
    Meeting,
    MeetingApproval,
    MeetingRequest,
    MeetingRequestCreate,
    MeetingRequestStatus,
    MeetingStatus,
    MeetingUpdate,
    Project,
    ProjectStatus,
    RequesterType,
    Role,
    utc_now,
)
from marketplace.workflows.common import (
    Workflow,
    load_application,
    load_client,
    load_freelancer,
    load_meeting,
    load_meeting_request,
    load_project,
)

logger = logging.getLogger(__name__)

MEETABLE_PROJECT_STATUSES = frozenset({
    ProjectStatus.OPEN.value,
    ProjectStatus.ASSIGNED.value,
    ProjectStatus.PENDING_COMPLETION.value,
})

VALID_MEETING_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    MeetingStatus.SCHEDULED.value: frozenset({
        MeetingStatus.RESCHEDULED.value,
        MeetingStatus.COMPLETED.value,
        MeetingStatus.CANCELLED.value,
        MeetingStatus.NO_SHOW.value,
    }),
    MeetingStatus.RESCHEDULED.value: frozenset({
        MeetingStatus.RESCHEDULED.value,
        MeetingStatus.COMPLETED.value,
        MeetingStatus.CANCELLED.value,
        MeetingStatus.NO_SHOW.value,
    }),
    MeetingStatus.COMPLETED.value: frozenset(),
    MeetingStatus.CANCELLED.value: frozenset(),
    MeetingStatus.NO_SHOW.value: frozenset(),
}


class _Parties:
    """Client and freelancer user ids on either side of an application."""

    def __init__(self, tx: Transaction, project: Project, application: Application):
        self.client = load_client(tx, project.client_id)
        self.freelancer = load_freelancer(tx, application.freelancer_id)

    def user_for(self, requester_type: str) -> str:
        if requester_type == RequesterType.CLIENT:
            return self.client.user_id
        return self.freelancer.user_id

    def counterpart_of(self, requester_type: str) -> str:
        if requester_type == RequesterType.CLIENT:
            return self.freelancer.user_id
        return self.client.user_id

    def affected(self, project_id: str, **ids) -> Affected:
        return Affected(
            project_id=project_id,
            client_id=self.client.id,
            freelancer_ids={self.freelancer.id},
            **ids,
        )


def _load_context(tx: Transaction, project_id: str, application_id: str):
    project = load_project(tx, project_id)
    application = load_application(tx, application_id)
    if application.project_id != project.id:
        raise NotFoundError("Application not found for this project")
    return project, application, _Parties(tx, project, application)


class MeetingRequestWorkflow(Workflow):
    """
    Meeting requests are raised by either side of an application and answered
    by the other side. Approval creates exactly one Meeting in the same
    transaction and links it back through `created_meeting_id`.
    """

    def request(self, actor: Actor, project_id: str, request_in: MeetingRequestCreate) -> MeetingRequest:
        affected: List[Affected] = []

        def _request(tx: Transaction) -> MeetingRequest:
            project, application, parties = _load_context(tx, project_id, request_in.application_id)
            requester_type = RequesterType(request_in.requester_type)
            if actor.role.value != requester_type.value or parties.user_for(requester_type) != actor.user_id:
                raise ForbiddenError("Requester type does not match your role on this application")
            if project.status not in MEETABLE_PROJECT_STATUSES:
                raise InvalidStateError(f"Meetings cannot be requested for a {project.status} project")
            if application.status == ApplicationStatus.REJECTED:
                raise InvalidStateError("Meetings cannot be requested for a rejected application")

            meeting_request = MeetingRequest(
                project_id=project.id,
                application_id=application.id,
                requester_id=actor.user_id,
                requester_type=requester_type,
                reason=request_in.reason,
                suggested_dates=request_in.suggested_dates,
            )
            tx.create(collections.MEETING_REQUESTS, meeting_request.id, meeting_request.to_document())
            affected[:] = [parties.affected(project.id, meeting_request_id=meeting_request.id)]
            return meeting_request

        meeting_request = self._commit(_request, Mutation.MEETING_REQUESTED, lambda _: affected[0])
        logger.info("Meeting request %s raised by %s", meeting_request.id, meeting_request.requester_type)
        return meeting_request

    def _respond(self, tx: Transaction, actor: Actor, request_id: str):
        meeting_request = load_meeting_request(tx, request_id)
        _, application, parties = _load_context(tx, meeting_request.project_id, meeting_request.application_id)
        if parties.counterpart_of(meeting_request.requester_type) != actor.user_id:
            raise ForbiddenError("Only the other party can respond to this meeting request")
        if meeting_request.status != MeetingRequestStatus.PENDING:
            raise InvalidStateError(f"Meeting request is already {meeting_request.status}")
        return meeting_request, application, parties

    def approve(self, actor: Actor, request_id: str, approval: MeetingApproval) -> Meeting:
        affected: List[Affected] = []

        def _approve(tx: Transaction) -> Meeting:
            meeting_request, application, parties = self._respond(tx, actor, request_id)
            meeting = Meeting(
                project_id=meeting_request.project_id,
                application_id=application.id,
                meeting_request_id=meeting_request.id,
                client_id=parties.client.id,
                freelancer_id=parties.freelancer.id,
                **approval.model_dump(),
            )
            tx.create(collections.MEETINGS, meeting.id, meeting.to_document())
            tx.update(collections.MEETING_REQUESTS, meeting_request.id, {
                "status": MeetingRequestStatus.APPROVED.value,
                "created_meeting_id": meeting.id,
                "responded_at": utc_now(),
            })
            affected[:] = [parties.affected(
                meeting_request.project_id,
                meeting_request_id=meeting_request.id,
                meeting_id=meeting.id,
            )]
            return meeting

        meeting = self._commit(_approve, Mutation.MEETING_REQUEST_APPROVED, lambda _: affected[0])
        logger.info("Meeting request %s approved; meeting %s scheduled", request_id, meeting.id)
        return meeting

    def reject(self, actor: Actor, request_id: str, response_note: Optional[str] = None) -> MeetingRequest:
        affected: List[Affected] = []

        def _reject(tx: Transaction) -> MeetingRequest:
            meeting_request, _, parties = self._respond(tx, actor, request_id)
            changes = {
                "status": MeetingRequestStatus.REJECTED.value,
                "response_note": response_note,
                "responded_at": utc_now(),
            }
            tx.update(collections.MEETING_REQUESTS, meeting_request.id, changes)
            affected[:] = [parties.affected(meeting_request.project_id, meeting_request_id=meeting_request.id)]
            return meeting_request.model_copy(update=changes)

        meeting_request = self._commit(_reject, Mutation.MEETING_REQUEST_REJECTED, lambda _: affected[0])
        logger.info("Meeting request %s rejected", meeting_request.id)
        return meeting_request

    def cancel(self, actor: Actor, request_id: str) -> MeetingRequest:
        affected: List[Affected] = []

        def _cancel(tx: Transaction) -> MeetingRequest:
            meeting_request = load_meeting_request(tx, request_id)
            _, _, parties = _load_context(tx, meeting_request.project_id, meeting_request.application_id)
            if meeting_request.requester_id != actor.user_id:
                raise ForbiddenError("Only the requester can cancel this meeting request")
            if meeting_request.status != MeetingRequestStatus.PENDING:
                raise InvalidStateError(f"Meeting request is already {meeting_request.status}")
            changes = {"status": MeetingRequestStatus.CANCELLED.value, "responded_at": utc_now()}
            tx.update(collections.MEETING_REQUESTS, meeting_request.id, changes)
            affected[:] = [parties.affected(meeting_request.project_id, meeting_request_id=meeting_request.id)]
            return meeting_request.model_copy(update=changes)

        meeting_request = self._commit(_cancel, Mutation.MEETING_REQUEST_CANCELLED, lambda _: affected[0])
        logger.info("Meeting request %s cancelled by requester", meeting_request.id)
        return meeting_request

    def update_meeting(self, actor: Actor, meeting_id: str, update: MeetingUpdate) -> Meeting:
        target = MeetingStatus(update.status)
        if target == MeetingStatus.RESCHEDULED and not (update.scheduled_date and update.scheduled_time):
            raise ValidationError("Rescheduling requires a new date and time")
        affected: List[Affected] = []

        def _update(tx: Transaction) -> Meeting:
            meeting = load_meeting(tx, meeting_id)
            client = load_client(tx, meeting.client_id)
            freelancer = load_freelancer(tx, meeting.freelancer_id)
            if actor.user_id not in (client.user_id, freelancer.user_id):
                raise ForbiddenError("Only meeting participants can update this meeting")
            if target.value not in VALID_MEETING_TRANSITIONS[meeting.status]:
                raise InvalidStateError(f"Cannot move meeting from {meeting.status} to {target.value}")

            changes = {"status": target.value, "updated_at": utc_now()}
            if target == MeetingStatus.RESCHEDULED:
                changes.update(scheduled_date=update.scheduled_date, scheduled_time=update.scheduled_time)
            tx.update(collections.MEETINGS, meeting.id, changes)
            affected[:] = [Affected(
                project_id=meeting.project_id,
                client_id=client.id,
                freelancer_ids={freelancer.id},
                meeting_id=meeting.id,
            )]
            return meeting.model_copy(update=changes)

        meeting = self._commit(_update, Mutation.MEETING_UPDATED, lambda _: affected[0])
        logger.info("Meeting %s moved to %s", meeting.id, meeting.status)
        return meeting

    def list_for_project(self, actor: Actor, project_id: str) -> List[MeetingRequest]:
        def _list(tx: Transaction) -> List[MeetingRequest]:
            project = load_project(tx, project_id)
            requests = [
                MeetingRequest.model_validate(doc)
                for doc in tx.query(collections.MEETING_REQUESTS, [("project_id", "==", project.id)])
            ]
            if actor.role == Role.ADMIN:
                return requests
            client = load_client(tx, project.client_id)
            if actor.user_id == client.user_id:
                return requests
            # Freelancers only see requests on their own applications
            visible = []
            for meeting_request in requests:
                application = load_application(tx, meeting_request.application_id)
                if load_freelancer(tx, application.freelancer_id).user_id == actor.user_id:
                    visible.append(meeting_request)
            return visible

        requests = self._transact(_list)
        requests.sort(key=lambda r: r.created_at, reverse=True)
        return requests
