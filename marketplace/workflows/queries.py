"""
Cached read side: public listings, platform stats, dashboards and project detail.

Every view goes through `RedisCache.remember` and is stored with the tags of
the entities it was built from, so the invalidation coordinator can evict it
after any mutation that touches one of them.
"""

import json
from typing import Any, Dict, List, Optional

from marketplace.cache.invalidation import (
    PUBLIC_FEATURED_FREELANCERS,
    PUBLIC_FEATURED_PROJECTS,
    PUBLIC_FREELANCERS,
    PUBLIC_JOBS,
    PUBLIC_STATS,
    client_tag,
    freelancer_tag,
    project_tag,
)
from marketplace.core.errors import NotFoundError
from marketplace.db import storage as collections
from marketplace.models.schemas import (
    ApplicationStatus,
    Client,
    Freelancer,
    Project,
    ProjectStatus,
)

PUBLIC_JOBS_TTL = 300
PUBLIC_FREELANCERS_TTL = 600
FEATURED_TTL = 900
STATS_TTL = 1800
DASHBOARD_TTL = 300
PROJECT_DETAIL_TTL = 300

FEATURED_LIMIT = 3


def _params_key(prefix: str, **params) -> str:
    present = {k: v for k, v in params.items() if v is not None}
    return f"{prefix}:{json.dumps(present, sort_keys=True, default=str)}"


class MarketplaceQueries:
    def __init__(self, storage, cache):
        self.storage = storage
        self.cache = cache

    def _application_count(self, project_id: str) -> int:
        return len(self.storage.query(collections.APPLICATIONS, [("project_id", "==", project_id)]))

    def _client_rating(self, client_id: str) -> float:
        client = self.storage.get(collections.CLIENTS, client_id)
        return client.get("ratings", 0.0) if client else 0.0

    def _job_card(self, project: Project) -> Dict[str, Any]:
        card = project.model_dump(mode="json", exclude={"admin_note", "completion_note", "completion_rejection_reason"})
        card["application_count"] = self._application_count(project.id)
        card["client_rating"] = self._client_rating(project.client_id)
        return card

    def _open_projects(self, skills: Optional[List[str]] = None) -> List[Project]:
        filters = [("status", "==", ProjectStatus.OPEN.value)]
        if skills:
            filters.append(("skills_required", "array_contains_any", skills))
        found = self.storage.query(collections.PROJECTS, filters, order_by="created_at", descending=True)
        return [Project.model_validate(doc) for doc in found]

    def public_jobs(
        self,
        skills: Optional[List[str]] = None,
        min_budget: Optional[float] = None,
        max_budget: Optional[float] = None,
        limit: int = 20,
    ) -> Dict[str, Any]:
        key = _params_key("public:jobs", skills=skills, min_budget=min_budget, max_budget=max_budget, limit=limit)

        def load() -> Dict[str, Any]:
            projects = self._open_projects(skills)
            if min_budget is not None:
                projects = [p for p in projects if (p.budget_max or 0) >= min_budget]
            if max_budget is not None:
                projects = [p for p in projects if p.budget_min is None or p.budget_min <= max_budget]
            return {
                "projects": [self._job_card(p) for p in projects[:limit]],
                "total": len(projects),
            }

        return self.cache.remember(key, PUBLIC_JOBS_TTL, [PUBLIC_JOBS], load)

    def public_freelancers(
        self,
        skills: Optional[List[str]] = None,
        min_rating: Optional[float] = None,
        availability: Optional[bool] = None,
        limit: int = 12,
    ) -> Dict[str, Any]:
        key = _params_key("public:freelancers", skills=skills, min_rating=min_rating, availability=availability, limit=limit)

        def load() -> Dict[str, Any]:
            filters = []
            if availability is not None:
                filters.append(("availability", "==", availability))
            if min_rating is not None:
                filters.append(("ratings", ">=", min_rating))
            if skills:
                filters.append(("skills", "array_contains_any", skills))
            freelancers = [Freelancer.model_validate(d) for d in self.storage.query(collections.FREELANCERS, filters)]
            freelancers.sort(key=lambda f: (f.ratings, f.projects_completed), reverse=True)
            return {
                "freelancers": [f.model_dump(mode="json") for f in freelancers[:limit]],
                "total": len(freelancers),
            }

        return self.cache.remember(key, PUBLIC_FREELANCERS_TTL, [PUBLIC_FREELANCERS], load)

    def featured_projects(self) -> List[Dict[str, Any]]:
        def load() -> List[Dict[str, Any]]:
            cards = [self._job_card(p) for p in self._open_projects()]
            cards.sort(key=lambda c: c["application_count"], reverse=True)
            return cards[:FEATURED_LIMIT]

        return self.cache.remember("public:featured:projects", FEATURED_TTL, [PUBLIC_FEATURED_PROJECTS], load)

    def featured_freelancers(self) -> List[Dict[str, Any]]:
        def load() -> List[Dict[str, Any]]:
            found = self.storage.query(collections.FREELANCERS, [("availability", "==", True)])
            freelancers = [Freelancer.model_validate(d) for d in found]
            freelancers.sort(key=lambda f: (f.projects_completed, f.ratings), reverse=True)
            return [f.model_dump(mode="json") for f in freelancers[:FEATURED_LIMIT]]

        return self.cache.remember("public:featured:freelancers", FEATURED_TTL, [PUBLIC_FEATURED_FREELANCERS], load)

    def platform_stats(self) -> Dict[str, Any]:
        def load() -> Dict[str, Any]:
            projects = self.storage.query(collections.PROJECTS)
            total = len(projects)
            completed = sum(1 for p in projects if p.get("status") == ProjectStatus.COMPLETED.value)
            return {
                "total_freelancers": len(self.storage.query(collections.FREELANCERS)),
                "total_clients": len(self.storage.query(collections.CLIENTS)),
                "total_projects": total,
                "completed_projects": completed,
                "open_projects": sum(1 for p in projects if p.get("status") == ProjectStatus.OPEN.value),
                "success_rate": round(completed / total * 100, 1) if total else 0.0,
            }

        return self.cache.remember("public:stats", STATS_TTL, [PUBLIC_STATS], load)

    def project_detail(self, project_id: str) -> Dict[str, Any]:
        def load() -> Dict[str, Any]:
            data = self.storage.get(collections.PROJECTS, project_id)
            if not data:
                raise NotFoundError("Project not found")
            return self._job_card(Project.model_validate(data))

        return self.cache.remember(f"project:detail:{project_id}", PROJECT_DETAIL_TTL, [project_tag(project_id)], load)

    def freelancer_dashboard(self, user_id: str) -> Dict[str, Any]:
        found = self.storage.query(collections.FREELANCERS, [("user_id", "==", user_id)])
        if not found:
            raise NotFoundError("Freelancer not found")
        freelancer = Freelancer.model_validate(found[0])

        def load() -> Dict[str, Any]:
            projects = self.storage.query(collections.PROJECTS, [("assigned_to", "==", freelancer.id)])
            applications = self.storage.query(collections.APPLICATIONS, [("freelancer_id", "==", freelancer.id)])
            statuses = [p.get("status") for p in projects]
            return {
                "freelancer": freelancer.model_dump(mode="json"),
                "stats": {
                    "total_projects": freelancer.projects_completed,
                    "active_projects": statuses.count(ProjectStatus.ASSIGNED.value)
                    + statuses.count(ProjectStatus.PENDING_COMPLETION.value),
                    "completed_projects": statuses.count(ProjectStatus.COMPLETED.value),
                    "pending_applications": sum(
                        1 for a in applications if a.get("status") == ApplicationStatus.PENDING.value
                    ),
                },
            }

        return self.cache.remember(
            f"freelancer:dashboard:{freelancer.id}", DASHBOARD_TTL, [freelancer_tag(freelancer.id)], load
        )

    def client_dashboard(self, user_id: str) -> Dict[str, Any]:
        found = self.storage.query(collections.CLIENTS, [("user_id", "==", user_id)])
        if not found:
            raise NotFoundError("Client not found")
        client = Client.model_validate(found[0])

        def load() -> Dict[str, Any]:
            projects = self.storage.query(
                collections.PROJECTS, [("client_id", "==", client.id)], order_by="created_at", descending=True
            )
            by_status: Dict[str, int] = {s.value: 0 for s in ProjectStatus}
            for project in projects:
                by_status[project["status"]] += 1
            return {
                "client": client.model_dump(mode="json"),
                "projects": [Project.model_validate(p).model_dump(mode="json") for p in projects],
                "stats": {
                    "total_projects": client.projects_posted,
                    "projects_by_status": by_status,
                    "rating": client.ratings,
                },
            }

        return self.cache.remember(f"client:dashboard:{client.id}", DASHBOARD_TTL, [client_tag(client.id)], load)
