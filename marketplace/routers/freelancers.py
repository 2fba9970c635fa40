from typing import Any, Dict

from fastapi import APIRouter

from marketplace.core.security import CurrentActor
from marketplace.dependencies import FreelancerProfilesDep, QueriesDep
from marketplace.models.schemas import AvailabilityUpdate, Freelancer, Role
from marketplace.workflows.common import require_role

router = APIRouter(prefix="/freelancers", tags=["Freelancers"])


@router.put("/me/availability", response_model=Freelancer)
def set_availability(body: AvailabilityUpdate, actor: CurrentActor, profiles: FreelancerProfilesDep):
    return profiles.set_availability(actor, body.availability)


@router.get("/me/dashboard")
def freelancer_dashboard(actor: CurrentActor, queries: QueriesDep) -> Dict[str, Any]:
    require_role(actor, Role.FREELANCER)
    return queries.freelancer_dashboard(actor.user_id)
