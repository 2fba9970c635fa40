from typing import List, Optional

from fastapi import APIRouter, Query, status

from marketplace.core.security import CurrentActor
from marketplace.dependencies import ApplicationWorkflowDep
from marketplace.models.schemas import Application, ApplicationCreate, ApplicationStatus

router = APIRouter(tags=["Applications"])


@router.post(
    "/projects/{project_id}/applications",
    response_model=Application,
    status_code=status.HTTP_201_CREATED,
)
def apply_for_project(
    project_id: str,
    application_in: ApplicationCreate,
    actor: CurrentActor,
    workflow: ApplicationWorkflowDep,
):
    return workflow.apply(actor, project_id, application_in)


@router.get("/projects/{project_id}/applications", response_model=List[Application])
def list_project_applications(project_id: str, actor: CurrentActor, workflow: ApplicationWorkflowDep):
    return workflow.list_for_project(actor, project_id)


@router.post("/projects/{project_id}/applications/{application_id}/approve", response_model=Application)
def approve_application(project_id: str, application_id: str, actor: CurrentActor, workflow: ApplicationWorkflowDep):
    """Approve one application: the project is assigned and competing applications are rejected."""
    return workflow.approve(actor, project_id, application_id)


@router.post("/projects/{project_id}/applications/{application_id}/reject", response_model=Application)
def reject_application(project_id: str, application_id: str, actor: CurrentActor, workflow: ApplicationWorkflowDep):
    return workflow.reject(actor, project_id, application_id)


@router.get("/applications/me", response_model=List[Application])
def list_my_applications(
    actor: CurrentActor,
    workflow: ApplicationWorkflowDep,
    status_filter: Optional[ApplicationStatus] = Query(default=None, alias="status"),
):
    return workflow.list_for_freelancer(actor, status_filter)


@router.get("/applications/{application_id}", response_model=Application)
def get_application(application_id: str, actor: CurrentActor, workflow: ApplicationWorkflowDep):
    return workflow.get_application(actor, application_id)
