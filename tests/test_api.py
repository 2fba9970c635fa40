from conftest import actor_for, auth_headers
from marketplace.core.errors import TransactionAborted
from marketplace.models.schemas import ProjectStatus


def test_apply_and_approve_flow(api, seed):
    client = seed.client()
    project = seed.project(client)
    first = seed.freelancer("f1")
    second = seed.freelancer("f2")

    applied = api.post(
        f"/projects/{project.id}/applications",
        json={"proposal": "Let me help", "cover_letter": "Portfolio attached"},
        headers=auth_headers(actor_for(first)),
    )
    assert applied.status_code == 201
    other = api.post(
        f"/projects/{project.id}/applications",
        json={"proposal": "Me too"},
        headers=auth_headers(actor_for(second)),
    )

    listed = api.get(f"/projects/{project.id}/applications", headers=auth_headers(actor_for(client)))
    assert len(listed.json()) == 2

    approved = api.post(
        f"/projects/{project.id}/applications/{applied.json()['id']}/approve",
        headers=auth_headers(actor_for(client)),
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "APPROVED"

    mine = api.get("/applications/me", params={"status": "REJECTED"}, headers=auth_headers(actor_for(second)))
    assert [a["id"] for a in mine.json()] == [other.json()["id"]]

    late = api.post(
        f"/projects/{project.id}/applications/{other.json()['id']}/approve",
        headers=auth_headers(actor_for(client)),
    )
    assert late.status_code == 409


def test_duplicate_application_is_conflict(api, seed):
    project = seed.project(seed.client())
    headers = auth_headers(actor_for(seed.freelancer()))
    api.post(f"/projects/{project.id}/applications", json={"proposal": "Hi"}, headers=headers)

    response = api.post(f"/projects/{project.id}/applications", json={"proposal": "Hi again"}, headers=headers)

    assert response.status_code == 409
    assert response.json() == {"detail": "You have already applied for this project"}


def test_meeting_request_flow(api, seed):
    client = seed.client()
    freelancer = seed.freelancer()
    project = seed.project(client)
    application = seed.application(project, freelancer)

    requested = api.post(
        f"/projects/{project.id}/meeting-requests",
        json={"application_id": application.id, "requester_type": "FREELANCER", "reason": "Discuss scope"},
        headers=auth_headers(actor_for(freelancer)),
    )
    assert requested.status_code == 201

    meeting = api.post(
        f"/meeting-requests/{requested.json()['id']}/approve",
        json={"scheduled_date": "2024-06-01", "scheduled_time": "09:30", "duration_minutes": 30},
        headers=auth_headers(actor_for(client)),
    )
    assert meeting.status_code == 201
    assert meeting.json()["status"] == "SCHEDULED"

    again = api.post(
        f"/meeting-requests/{requested.json()['id']}/approve",
        json={"scheduled_date": "2024-06-01", "scheduled_time": "09:30"},
        headers=auth_headers(actor_for(client)),
    )
    assert again.status_code == 400

    no_show = api.patch(
        f"/meetings/{meeting.json()['id']}",
        json={"status": "NO_SHOW"},
        headers=auth_headers(actor_for(freelancer)),
    )
    assert no_show.json()["status"] == "NO_SHOW"


def test_meeting_approval_rejects_bad_duration(api, seed):
    response = api.post(
        "/meeting-requests/any/approve",
        json={"scheduled_date": "2024-06-01", "scheduled_time": "09:30", "duration_minutes": 0},
        headers=auth_headers(actor_for(seed.client())),
    )
    assert response.status_code == 422


def test_rating_flow(api, seed):
    client = seed.client()
    freelancer = seed.freelancer()
    project = seed.assigned_project(client, freelancer, status=ProjectStatus.COMPLETED)

    created = api.post(
        f"/projects/{project.id}/ratings",
        json={"rated_id": freelancer.user_id, "rating": 4, "review": "Solid work"},
        headers=auth_headers(actor_for(client)),
    )
    assert created.status_code == 201
    assert created.json()["rating_type"] == "CLIENT_TO_FREELANCER"

    out_of_range = api.put(
        f"/ratings/{created.json()['id']}",
        json={"rating": 9},
        headers=auth_headers(actor_for(client)),
    )
    assert out_of_range.status_code == 422

    listed = api.get(f"/users/{freelancer.user_id}/ratings")
    assert [r["rating"] for r in listed.json()] == [4]


def test_availability_and_dashboard(api, seed):
    freelancer = seed.freelancer()
    headers = auth_headers(actor_for(freelancer))

    toggled = api.put("/freelancers/me/availability", json={"availability": False}, headers=headers)
    assert toggled.json()["availability"] is False

    dashboard = api.get("/freelancers/me/dashboard", headers=headers)
    assert dashboard.status_code == 200
    assert dashboard.json()["freelancer"]["availability"] is False


def test_client_dashboard_requires_client(api, seed):
    response = api.get("/clients/me/dashboard", headers=auth_headers(actor_for(seed.freelancer())))
    assert response.status_code == 403


def test_public_listings(api, seed):
    client = seed.client()
    seed.project(client, title="Scraper", skills_required=["python", "scrapy"])
    seed.project(client, title="Dashboard", skills_required=["react"])
    seed.freelancer("f1", skills=["python"])

    jobs = api.get("/public/jobs", params={"skills": "python, go"})
    assert [p["title"] for p in jobs.json()["projects"]] == ["Scraper"]
    assert api.get("/public/freelancers").json()["total"] == 1
    assert len(api.get("/public/featured/projects").json()) == 2
    assert api.get("/public/stats").json()["open_projects"] == 2


def test_transaction_abort_maps_to_503(api, seed, monkeypatch):
    client = seed.client()

    def abort(*args, **kwargs):
        raise TransactionAborted("Timed out waiting for a concurrent transaction")

    monkeypatch.setattr("marketplace.db.storage.InMemoryStorage.run_in_transaction", abort)
    response = api.post("/projects/", json={"title": "Anything"}, headers=auth_headers(actor_for(client)))

    assert response.status_code == 503
