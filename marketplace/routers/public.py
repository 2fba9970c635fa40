from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query

from marketplace.dependencies import QueriesDep

router = APIRouter(prefix="/public", tags=["Public"])


def _split_skills(skills: Optional[str]) -> Optional[List[str]]:
    # Comma separated: ?skills=python,react
    if not skills:
        return None
    return [s.strip() for s in skills.split(",") if s.strip()] or None


@router.get("/jobs")
def list_jobs(
    queries: QueriesDep,
    skills: Optional[str] = None,
    min_budget: Optional[float] = None,
    max_budget: Optional[float] = None,
    limit: int = Query(default=20, ge=1, le=100),
) -> Dict[str, Any]:
    return queries.public_jobs(_split_skills(skills), min_budget, max_budget, limit)


@router.get("/freelancers")
def list_freelancers(
    queries: QueriesDep,
    skills: Optional[str] = None,
    min_rating: Optional[float] = None,
    availability: Optional[bool] = None,
    limit: int = Query(default=12, ge=1, le=100),
) -> Dict[str, Any]:
    return queries.public_freelancers(_split_skills(skills), min_rating, availability, limit)


@router.get("/featured/projects")
def featured_projects(queries: QueriesDep) -> List[Dict[str, Any]]:
    return queries.featured_projects()


@router.get("/featured/freelancers")
def featured_freelancers(queries: QueriesDep) -> List[Dict[str, Any]]:
    return queries.featured_freelancers()


@router.get("/stats")
def platform_stats(queries: QueriesDep) -> Dict[str, Any]:
    return queries.platform_stats()
