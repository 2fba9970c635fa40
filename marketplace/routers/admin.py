from fastapi import APIRouter

from marketplace.core.security import CurrentActor
from marketplace.dependencies import ProjectLifecycleDep
from marketplace.models.schemas import NoteIn, Project

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/projects/{project_id}/approve", response_model=Project)
def approve_project(project_id: str, body: NoteIn, actor: CurrentActor, lifecycle: ProjectLifecycleDep):
    return lifecycle.admin_approve(actor, project_id, body.note)


@router.post("/projects/{project_id}/reject", response_model=Project)
def reject_project(project_id: str, body: NoteIn, actor: CurrentActor, lifecycle: ProjectLifecycleDep):
    return lifecycle.admin_reject(actor, project_id, body.note)


@router.post("/projects/{project_id}/close", response_model=Project)
def close_project(project_id: str, body: NoteIn, actor: CurrentActor, lifecycle: ProjectLifecycleDep):
    """Close a disputed completion request against the freelancer."""
    return lifecycle.admin_close(actor, project_id, body.note)
