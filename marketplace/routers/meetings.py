from typing import List

from fastapi import APIRouter, status

from marketplace.core.security import CurrentActor
from marketplace.dependencies import MeetingWorkflowDep
from marketplace.models.schemas import (
    Meeting,
    MeetingApproval,
    MeetingRequest,
    MeetingRequestCreate,
    MeetingResponse,
    MeetingUpdate,
)

router = APIRouter(tags=["Meetings"])


@router.post(
    "/projects/{project_id}/meeting-requests",
    response_model=MeetingRequest,
    status_code=status.HTTP_201_CREATED,
)
def request_meeting(
    project_id: str,
    request_in: MeetingRequestCreate,
    actor: CurrentActor,
    workflow: MeetingWorkflowDep,
):
    return workflow.request(actor, project_id, request_in)


@router.get("/projects/{project_id}/meeting-requests", response_model=List[MeetingRequest])
def list_meeting_requests(project_id: str, actor: CurrentActor, workflow: MeetingWorkflowDep):
    return workflow.list_for_project(actor, project_id)


@router.post(
    "/meeting-requests/{request_id}/approve",
    response_model=Meeting,
    status_code=status.HTTP_201_CREATED,
)
def approve_meeting_request(
    request_id: str,
    approval: MeetingApproval,
    actor: CurrentActor,
    workflow: MeetingWorkflowDep,
):
    return workflow.approve(actor, request_id, approval)


@router.post("/meeting-requests/{request_id}/reject", response_model=MeetingRequest)
def reject_meeting_request(
    request_id: str,
    response: MeetingResponse,
    actor: CurrentActor,
    workflow: MeetingWorkflowDep,
):
    return workflow.reject(actor, request_id, response.response_note)


@router.post("/meeting-requests/{request_id}/cancel", response_model=MeetingRequest)
def cancel_meeting_request(request_id: str, actor: CurrentActor, workflow: MeetingWorkflowDep):
    return workflow.cancel(actor, request_id)


@router.patch("/meetings/{meeting_id}", response_model=Meeting)
def update_meeting(meeting_id: str, update: MeetingUpdate, actor: CurrentActor, workflow: MeetingWorkflowDep):
    return workflow.update_meeting(actor, meeting_id, update)
