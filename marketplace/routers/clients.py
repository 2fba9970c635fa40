from typing import Any, Dict

from fastapi import APIRouter

from marketplace.core.security import CurrentActor
from marketplace.dependencies import QueriesDep
from marketplace.models.schemas import Role
from marketplace.workflows.common import require_role

router = APIRouter(prefix="/clients", tags=["Clients"])


@router.get("/me/dashboard")
def client_dashboard(actor: CurrentActor, queries: QueriesDep) -> Dict[str, Any]:
    require_role(actor, Role.CLIENT)
    return queries.client_dashboard(actor.user_id)
