"""
HTTP surface tests.

Verifies:
- Unidentified requests return 401
- Error responses carry a stable `code` discriminant and status
- Tree, move, timesheet and lock endpoints round-trip through the services
"""

from datetime import date

import pytest

from planner.extensions import db
from planner.models import Task, TimesheetEntry


# =============================================================================
# IDENTITY — 401
# =============================================================================


class TestIdentity:
    def test_health_is_public(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/projects/1/tree"),
            ("POST", "/api/projects/1/tasks"),
            ("POST", "/api/projects/1/move"),
            ("GET", "/api/timesheets?year=2026&month=3"),
            ("PUT", "/api/timesheets/entries"),
            ("GET", "/api/timesheets/locks"),
        ],
    )
    def test_requires_identity(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401

    def test_unknown_user_rejected(self, client, db_session):
        resp = client.get("/api/timesheets/viewable-users", headers={"X-User-Id": "424242"})
        assert resp.status_code == 401

    def test_inactive_user_rejected(self, client, db_session, actor):
        actor.is_active = False
        db_session.commit()

        resp = client.get("/api/timesheets/viewable-users", headers={"X-User-Id": str(actor.id)})
        assert resp.status_code == 401


# =============================================================================
# PROJECT TREE
# =============================================================================


class TestTreeRoutes:
    def test_build_and_read_tree(self, client, project, actor_headers):
        resp = client.post(f"/api/projects/{project.id}/stages", json={"name": "Design"}, headers=actor_headers)
        assert resp.status_code == 201
        stage_id = resp.get_json()["stage"]["id"]

        resp = client.post(
            f"/api/projects/{project.id}/tasks",
            json={"name": "Mockups", "stage_id": stage_id, "sold_days": 4},
            headers=actor_headers,
        )
        assert resp.status_code == 201
        parent_id = resp.get_json()["task"]["id"]

        resp = client.post(
            f"/api/projects/{project.id}/tasks",
            json={"name": "Home page", "parent_task_id": parent_id, "sold_days": 1.5},
            headers=actor_headers,
        )
        assert resp.status_code == 201

        resp = client.get(f"/api/projects/{project.id}/tree", headers=actor_headers)
        assert resp.status_code == 200
        tree = resp.get_json()
        assert tree["stages"][0]["name"] == "Design"
        node = tree["stages"][0]["tasks"][0]
        assert node["name"] == "Mockups"
        assert node["figures"]["estimated_days"] == 1.5
        assert node["subtasks"][0]["name"] == "Home page"

    def test_outsider_forbidden(self, client, project, outsider_headers):
        resp = client.get(f"/api/projects/{project.id}/tree", headers=outsider_headers)
        assert resp.status_code == 403
        assert resp.get_json()["code"] == "forbidden"

    def test_unknown_project(self, client, actor_headers):
        resp = client.get("/api/projects/9999/tree", headers=actor_headers)
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "not_found"

    def test_validation_error_code(self, client, project, actor_headers):
        resp = client.post(f"/api/projects/{project.id}/tasks", json={"name": "X", "priority": "asap"},
                           headers=actor_headers)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "validation_error"

    def test_patch_task(self, client, make_task, actor_headers, actor):
        task = make_task("Draft")

        resp = client.patch(f"/api/tasks/{task.id}", json={"status": "in_progress", "responsible_id": actor.id},
                            headers=actor_headers)

        assert resp.status_code == 200
        body = resp.get_json()["task"]
        assert body["status"] == "in_progress"
        assert body["responsible_id"] == actor.id
        assert body["name"] == "Draft"

    def test_delete_non_empty_stage_conflicts(self, client, make_stage, make_task, actor_headers):
        stage = make_stage("Design", 0)
        make_task("Task", stage=stage)

        resp = client.delete(f"/api/stages/{stage.id}", headers=actor_headers)

        assert resp.status_code == 409
        assert resp.get_json()["code"] == "conflict"

    def test_delete_task_compacts_siblings(self, client, project, make_stage, make_task, actor_headers):
        stage = make_stage("Design", 0)
        a = make_task("A", stage=stage, order=0)
        b = make_task("B", stage=stage, order=1)
        c = make_task("C", stage=stage, order=2)
        make_task("A1", parent=a)

        resp = client.delete(f"/api/tasks/{b.id}", headers=actor_headers)

        assert resp.status_code == 200
        assert resp.get_json()["sibling_order"] == [a.id, c.id]
        db.session.expire_all()
        assert db.session.get(Task, c.id).display_order == 1

    def test_remaining_hours(self, client, make_task, actor, actor_headers, log_hours):
        task = make_task("Task")
        log_hours(actor, task, date(2026, 3, 2), 5)

        resp = client.put(f"/api/tasks/{task.id}/remaining-hours", json={"remaining_hours": 6},
                          headers=actor_headers)

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["task"]["remaining_hours"] == 6.0
        assert body["task"]["last_remaining_update_total"] == 5.0
        assert body["remaining_stale"] is False

    def test_remaining_hours_requires_field(self, client, make_task, actor_headers):
        task = make_task("Task")
        resp = client.put(f"/api/tasks/{task.id}/remaining-hours", json={}, headers=actor_headers)
        assert resp.status_code == 400


class TestMoveRoute:
    def test_move_task_between_stages(self, client, project, make_stage, make_task, actor_headers):
        s1 = make_stage("One", 0)
        s2 = make_stage("Two", 1)
        a = make_task("A", stage=s1, order=0)
        b = make_task("B", stage=s1, order=1)

        resp = client.post(
            f"/api/projects/{project.id}/move",
            json={"item_type": "task", "item_id": a.id, "target_container": f"stage:{s2.id}"},
            headers=actor_headers,
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["item"]["stage_id"] == s2.id
        assert body["source_order"] == [b.id]
        assert body["destination_order"] == [a.id]

    def test_cycle_returns_invalid_move(self, client, project, make_task, actor_headers):
        parent = make_task("Parent")
        child = make_task("Child", parent=parent)

        resp = client.post(
            f"/api/projects/{project.id}/move",
            json={"item_type": "task", "item_id": parent.id, "target_container": f"task:{child.id}"},
            headers=actor_headers,
        )

        assert resp.status_code == 409
        assert resp.get_json()["code"] == "invalid_move"

    def test_item_from_other_project(self, client, project, other_project, make_task, actor_headers):
        foreign = make_task("Foreign", project_id=other_project.id)

        resp = client.post(
            f"/api/projects/{project.id}/move",
            json={"item_type": "task", "item_id": foreign.id, "target_container": "unstaged"},
            headers=actor_headers,
        )

        assert resp.status_code == 404

    def test_bad_item_type(self, client, project, actor_headers):
        resp = client.post(
            f"/api/projects/{project.id}/move",
            json={"item_type": "epic", "item_id": 1, "target_container": "unstaged"},
            headers=actor_headers,
        )
        assert resp.status_code == 400


# =============================================================================
# TIMESHEETS AND LOCKS
# =============================================================================


class TestTimesheetRoutes:
    def test_put_then_clear_entry(self, client, make_task, actor_headers):
        task = make_task("Task")

        resp = client.put("/api/timesheets/entries", json={"task_id": task.id, "date": "2026-03-02", "hours": 7.5},
                          headers=actor_headers)
        assert resp.status_code == 200
        assert resp.get_json()["entry"]["hours"] == 7.5

        resp = client.put("/api/timesheets/entries", json={"task_id": task.id, "date": "2026-03-02", "hours": 0},
                          headers=actor_headers)
        assert resp.status_code == 200
        assert resp.get_json()["deleted"] is True
        assert db.session.query(TimesheetEntry).count() == 0

    def test_write_for_other_user_forbidden(self, client, make_task, other_actor, actor_headers):
        task = make_task("Task")

        resp = client.put(
            "/api/timesheets/entries",
            json={"user_id": other_actor.id, "task_id": task.id, "date": "2026-03-02", "hours": 1},
            headers=actor_headers,
        )

        assert resp.status_code == 403
        assert resp.get_json()["code"] == "forbidden"

    def test_locked_month_returns_423(self, client, project, make_task, actor_headers, manager_headers):
        task = make_task("Task")

        resp = client.post("/api/timesheets/locks", json={"project_id": project.id, "year": 2026, "month": 3},
                           headers=manager_headers)
        assert resp.status_code == 201

        resp = client.put("/api/timesheets/entries", json={"task_id": task.id, "date": "2026-03-02", "hours": 2},
                          headers=actor_headers)
        assert resp.status_code == 423
        assert resp.get_json()["code"] == "locked"

        resp = client.delete("/api/timesheets/locks", json={"project_id": project.id, "year": 2026, "month": 3},
                             headers=manager_headers)
        assert resp.status_code == 200

        resp = client.put("/api/timesheets/entries", json={"task_id": task.id, "date": "2026-03-02", "hours": 2},
                          headers=actor_headers)
        assert resp.status_code == 200

    def test_global_lock_admin_only(self, client, db_session, admin_headers, manager_headers):
        resp = client.post("/api/timesheets/locks", json={"year": 2026, "month": 3}, headers=manager_headers)
        assert resp.status_code == 403

        resp = client.post("/api/timesheets/locks", json={"year": 2026, "month": 3}, headers=admin_headers)
        assert resp.status_code == 201

        resp = client.post("/api/timesheets/locks", json={"year": 2026, "month": 3}, headers=admin_headers)
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "conflict"

    def test_list_locks(self, client, project, admin_headers, actor_headers):
        client.post("/api/timesheets/locks", json={"project_id": project.id, "year": 2026, "month": 3},
                    headers=admin_headers)

        resp = client.get("/api/timesheets/locks?year=2026&month=3", headers=actor_headers)

        assert resp.status_code == 200
        assert [lock["project_id"] for lock in resp.get_json()["locks"]] == [project.id]

    def test_grid_and_viewable_users(self, client, make_task, actor, manager, log_hours, manager_headers):
        task = make_task("Task")
        log_hours(actor, task, date(2026, 3, 2), 3)

        resp = client.get("/api/timesheets/viewable-users", headers=manager_headers)
        assert resp.status_code == 200
        assert {u["id"] for u in resp.get_json()["users"]} == {manager.id, actor.id}

        resp = client.get(f"/api/timesheets?year=2026&month=3&user_id={actor.id}", headers=manager_headers)
        assert resp.status_code == 200
        grid = resp.get_json()
        assert grid["user"]["id"] == actor.id
        assert [e["hours"] for e in grid["entries"]] == [3.0]

    def test_grid_requires_period(self, client, actor_headers):
        resp = client.get("/api/timesheets", headers=actor_headers)
        assert resp.status_code == 400
