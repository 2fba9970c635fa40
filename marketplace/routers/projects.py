from typing import Any, Dict, List

from fastapi import APIRouter, status

from marketplace.core.security import CurrentActor
from marketplace.dependencies import ProjectLifecycleDep, QueriesDep
from marketplace.models.schemas import NoteIn, Project, ProjectCreate, ProjectTransition

router = APIRouter(prefix="/projects", tags=["Projects"])


@router.post("/", response_model=Project, status_code=status.HTTP_201_CREATED)
def submit_project(project_in: ProjectCreate, actor: CurrentActor, lifecycle: ProjectLifecycleDep):
    # New projects wait in ADMIN_VERIFICATION until an admin opens them
    return lifecycle.submit(actor, project_in)


@router.get("/{project_id}")
def get_project(project_id: str, actor: CurrentActor, queries: QueriesDep) -> Dict[str, Any]:
    return queries.project_detail(project_id)


@router.post("/{project_id}/cancel", response_model=Project)
def cancel_project(project_id: str, body: NoteIn, actor: CurrentActor, lifecycle: ProjectLifecycleDep):
    return lifecycle.cancel(actor, project_id, body.note)


@router.post("/{project_id}/assign/{freelancer_id}", response_model=Project)
def assign_project(project_id: str, freelancer_id: str, actor: CurrentActor, lifecycle: ProjectLifecycleDep):
    return lifecycle.assign(actor, project_id, freelancer_id)


@router.post("/{project_id}/request-completion", response_model=Project)
def request_completion(project_id: str, body: NoteIn, actor: CurrentActor, lifecycle: ProjectLifecycleDep):
    return lifecycle.request_completion(actor, project_id, body.note)


@router.post("/{project_id}/approve-completion", response_model=Project)
def approve_completion(project_id: str, actor: CurrentActor, lifecycle: ProjectLifecycleDep):
    return lifecycle.approve_completion(actor, project_id)


@router.post("/{project_id}/reject-completion", response_model=Project)
def reject_completion(project_id: str, body: NoteIn, actor: CurrentActor, lifecycle: ProjectLifecycleDep):
    return lifecycle.reject_completion(actor, project_id, body.note)


@router.get("/{project_id}/transitions", response_model=List[ProjectTransition])
def list_transitions(project_id: str, actor: CurrentActor, lifecycle: ProjectLifecycleDep):
    return lifecycle.list_transitions(actor, project_id)
