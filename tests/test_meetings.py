import pytest

from conftest import ADMIN, actor_for, invalidated_tags
from marketplace.cache.invalidation import meeting_request_tag, meeting_tag
from marketplace.core.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from marketplace.db import storage as collections
from marketplace.models.schemas import (
    ApplicationStatus,
    MeetingApproval,
    MeetingRequestCreate,
    MeetingRequestStatus,
    MeetingStatus,
    MeetingUpdate,
    ProjectStatus,
)

APPROVAL = MeetingApproval(
    scheduled_date="2024-05-02",
    scheduled_time="15:00",
    google_meet_link="https://meet.google.com/abc-defg-hij",
    duration_minutes=45,
    agenda="Scope walkthrough",
)


@pytest.fixture
def parties(seed):
    client = seed.client()
    freelancer = seed.freelancer()
    project = seed.project(client)
    application = seed.application(project, freelancer)
    return client, freelancer, project, application


def _request_from_freelancer(meetings, parties):
    client, freelancer, project, application = parties
    body = MeetingRequestCreate(
        application_id=application.id,
        requester_type="FREELANCER",
        reason="Clarify the deliverables",
        suggested_dates=["2024-05-01", "2024-05-02"],
    )
    return meetings.request(actor_for(freelancer), project.id, body)


def test_request_creates_pending(meetings, parties):
    request = _request_from_freelancer(meetings, parties)
    assert request.status == MeetingRequestStatus.PENDING.value
    assert request.requester_id == parties[1].user_id
    assert request.created_meeting_id is None


def test_requester_type_must_match_caller(meetings, parties):
    client, freelancer, project, application = parties
    body = MeetingRequestCreate(application_id=application.id, requester_type="CLIENT", reason="Kickoff")
    with pytest.raises(ForbiddenError):
        meetings.request(actor_for(freelancer), project.id, body)


def test_client_can_request(meetings, parties):
    client, freelancer, project, application = parties
    body = MeetingRequestCreate(application_id=application.id, requester_type="CLIENT", reason="Interview")
    request = meetings.request(actor_for(client), project.id, body)
    assert request.requester_type == "CLIENT"


def test_request_for_rejected_application(meetings, seed):
    client = seed.client()
    freelancer = seed.freelancer()
    project = seed.project(client)
    application = seed.application(project, freelancer, status=ApplicationStatus.REJECTED)
    body = MeetingRequestCreate(application_id=application.id, requester_type="FREELANCER", reason="Please reconsider")
    with pytest.raises(InvalidStateError):
        meetings.request(actor_for(freelancer), project.id, body)


def test_request_on_cancelled_project(meetings, seed):
    client = seed.client()
    freelancer = seed.freelancer()
    project = seed.project(client, status=ProjectStatus.CANCELLED)
    application = seed.application(project, freelancer)
    body = MeetingRequestCreate(application_id=application.id, requester_type="FREELANCER", reason="Follow up")
    with pytest.raises(InvalidStateError):
        meetings.request(actor_for(freelancer), project.id, body)


def test_request_with_application_of_other_project(meetings, parties, seed):
    client, freelancer, project, application = parties
    other_project = seed.project(client)
    body = MeetingRequestCreate(application_id=application.id, requester_type="FREELANCER", reason="Wrong project")
    with pytest.raises(NotFoundError):
        meetings.request(actor_for(freelancer), other_project.id, body)


def test_approve_creates_exactly_one_meeting(meetings, parties, storage, cache):
    client, freelancer, project, application = parties
    request = _request_from_freelancer(meetings, parties)

    meeting = meetings.approve(actor_for(client), request.id, APPROVAL)

    stored_request = storage.get(collections.MEETING_REQUESTS, request.id)
    assert stored_request["status"] == MeetingRequestStatus.APPROVED.value
    assert stored_request["created_meeting_id"] == meeting.id
    assert stored_request["responded_at"] is not None
    assert meeting.status == MeetingStatus.SCHEDULED.value
    assert meeting.client_id == client.id
    assert meeting.freelancer_id == freelancer.id
    assert meeting.duration_minutes == 45
    assert {meeting_request_tag(request.id), meeting_tag(meeting.id)} <= invalidated_tags(cache)

    with pytest.raises(InvalidStateError):
        meetings.approve(actor_for(client), request.id, APPROVAL)
    found = storage.query(collections.MEETINGS, [("meeting_request_id", "==", request.id)])
    assert len(found) == 1


def test_requester_cannot_approve_own_request(meetings, parties):
    request = _request_from_freelancer(meetings, parties)
    with pytest.raises(ForbiddenError):
        meetings.approve(actor_for(parties[1]), request.id, APPROVAL)


def test_reject_stores_response_note(meetings, parties, storage):
    client = parties[0]
    request = _request_from_freelancer(meetings, parties)

    rejected = meetings.reject(actor_for(client), request.id, "Not needed yet")

    assert rejected.status == MeetingRequestStatus.REJECTED.value
    assert storage.get(collections.MEETING_REQUESTS, request.id)["response_note"] == "Not needed yet"
    assert storage.query(collections.MEETINGS) == []


def test_cancel_by_requester_only(meetings, parties):
    client, freelancer = parties[0], parties[1]
    request = _request_from_freelancer(meetings, parties)

    with pytest.raises(ForbiddenError):
        meetings.cancel(actor_for(client), request.id)
    cancelled = meetings.cancel(actor_for(freelancer), request.id)

    assert cancelled.status == MeetingRequestStatus.CANCELLED.value
    with pytest.raises(InvalidStateError):
        meetings.approve(actor_for(client), request.id, APPROVAL)


def test_reschedule_requires_new_date(meetings, parties):
    client = parties[0]
    meeting = meetings.approve(actor_for(client), _request_from_freelancer(meetings, parties).id, APPROVAL)
    with pytest.raises(ValidationError):
        meetings.update_meeting(actor_for(client), meeting.id, MeetingUpdate(status="RESCHEDULED"))


def test_meeting_status_flow(meetings, parties):
    client, freelancer = parties[0], parties[1]
    meeting = meetings.approve(actor_for(client), _request_from_freelancer(meetings, parties).id, APPROVAL)

    moved = meetings.update_meeting(
        actor_for(freelancer),
        meeting.id,
        MeetingUpdate(status="RESCHEDULED", scheduled_date="2024-05-03", scheduled_time="10:00"),
    )
    assert moved.status == MeetingStatus.RESCHEDULED.value
    assert moved.scheduled_date == "2024-05-03"

    done = meetings.update_meeting(actor_for(client), meeting.id, MeetingUpdate(status="COMPLETED"))
    assert done.status == MeetingStatus.COMPLETED.value

    with pytest.raises(InvalidStateError):
        meetings.update_meeting(actor_for(client), meeting.id, MeetingUpdate(status="CANCELLED"))


def test_meeting_update_by_outsider(meetings, parties, seed):
    meeting = meetings.approve(actor_for(parties[0]), _request_from_freelancer(meetings, parties).id, APPROVAL)
    with pytest.raises(ForbiddenError):
        meetings.update_meeting(actor_for(seed.freelancer("outsider")), meeting.id, MeetingUpdate(status="NO_SHOW"))


def test_list_for_project_scopes_freelancers(meetings, parties, seed):
    client, freelancer, project, _ = parties
    _request_from_freelancer(meetings, parties)
    other = seed.freelancer("f2")
    other_application = seed.application(project, other)
    meetings.request(
        actor_for(other),
        project.id,
        MeetingRequestCreate(application_id=other_application.id, requester_type="FREELANCER", reason="Intro"),
    )

    assert len(meetings.list_for_project(actor_for(client), project.id)) == 2
    assert len(meetings.list_for_project(ADMIN, project.id)) == 2
    own = meetings.list_for_project(actor_for(freelancer), project.id)
    assert [r.requester_id for r in own] == [freelancer.user_id]
