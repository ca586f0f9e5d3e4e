from __future__ import annotations

from fastapi.testclient import TestClient

from watchpost.main import app


def test_queue_admin_api_round_trip() -> None:
    with TestClient(app) as client:
        health = client.get("/health")
        assert health.status_code == 200
        assert health.json()["scheduler_running"] is True

        created = client.post("/api/monitors", json={
            "type": "https",
            "name": "paused site",
            "target": "https://example.com",
            "is_active": False,
        })
        assert created.status_code == 201
        monitor_id = created.json()["id"]
        # Inactive monitors get no queue
        assert client.get("/api/queues/subjects").json() == []
        assert client.get(f"/api/queues/monitor/{monitor_id}").status_code == 404

        domain = client.post("/api/domains", json={"name": "Example-Watch.com"})
        assert domain.status_code == 201
        assert domain.json()["name"] == "example-watch.com"
        assert client.post("/api/domains", json={"name": "example-watch.com"}).status_code == 409

        subjects = client.get("/api/queues/subjects").json()
        assert subjects == [{"kind": "domain", "key": "example-watch.com", "job_key": "domain-expiry-example-watch.com"}]

        queue = client.get("/api/queues/domain/example-watch.com").json()
        assert [r["key"] for r in queue["repeating"]] == ["domain-expiry-example-watch.com"]
        assert queue["delayed"] == 1
        assert [job["state"] for job in queue["delayed_jobs"]] == ["delayed"]
        assert queue["delayed_jobs"][0]["run_at"] is not None
        assert queue["active_jobs"] == []

        assert client.post("/api/queues/domain/example-watch.com/pause").status_code == 200
        cleared = client.post("/api/queues/domain/example-watch.com/clear").json()
        assert cleared["count"] == 1

        stats = client.get("/api/queues/stats").json()
        assert stats["queue_count"] == 1
        assert stats["repeating"] == 1
        assert stats["paused_queues"] == 1

        assert client.delete("/api/domains/example-watch.com").status_code == 204
        assert client.get("/api/queues/subjects").json() == []
        assert client.delete(f"/api/monitors/{monitor_id}").status_code == 204


def test_description_can_be_cleared_but_required_fields_cannot() -> None:
    with TestClient(app) as client:
        created = client.post("/api/monitors", json={
            "type": "tcp",
            "name": "database",
            "description": "primary cluster",
            "target": "db.internal:5432",
        })
        assert created.status_code == 201
        monitor_id = created.json()["id"]

        updated = client.put(f"/api/monitors/{monitor_id}", json={"description": None, "name": None})
        assert updated.status_code == 200
        assert updated.json()["description"] is None
        assert updated.json()["name"] == "database"

        stats = client.get(f"/api/monitors/{monitor_id}/stats").json()
        assert stats["total_checks"] == 0
        assert stats["average_response_time_ms"] == 0
        assert stats["recent_logs"] == []
        assert client.get("/api/monitors/9999/stats").status_code == 404

        domain = client.post("/api/domains", json={"name": "cleared.example", "description": "old note"})
        assert domain.status_code == 201
        cleared = client.put("/api/domains/cleared.example", json={"description": None})
        assert cleared.json()["description"] is None

        assert client.delete("/api/domains/cleared.example").status_code == 204
        assert client.delete(f"/api/monitors/{monitor_id}").status_code == 204
