from unittest.mock import patch

from app.models import Memory


class TestPaywall:
    """Gated features answer 402 with a paywall redirect once access is gone."""

    def test_expired_account_gets_paywall(self, client, signed_in, make_account):
        signed_in["user"] = make_account(trial_ended_days_ago=1)
        for path in ("/memories", "/tasks"):
            response = client.get(path)
            assert response.status_code == 402
            assert response.json()["detail"]["redirect"] == "/subscription"

    def test_entitlement_error_gets_paywall(self, client):
        with patch("app.dependencies.entitlement.get_entitlement", side_effect=RuntimeError("db down")):
            response = client.post("/memories", json={"title": "x"})
        assert response.status_code == 402
        assert response.json()["detail"]["redirect"] == "/subscription"


class TestMemories:

    def test_crud(self, client):
        created = client.post("/memories", json={
            "title": "Road trip",
            "content": "Drove to the coast",
            "tags": ["travel", "summer"],
            "emotion": "happy",
            "metadata": {"location": "Big Sur"},
        })
        assert created.status_code == 201
        memory = created.json()
        assert memory["metadata"] == {"location": "Big Sur"}

        assert [m["id"] for m in client.get("/memories").json()] == [memory["id"]]
        assert client.get("/memories", params={"tag": "travel"}).json()[0]["title"] == "Road trip"
        assert client.get("/memories", params={"tag": "winter"}).json() == []

        updated = client.put(f"/memories/{memory['id']}", json={"title": "Coast trip", "metadata": None})
        assert updated.json()["title"] == "Coast trip"
        assert updated.json()["metadata"] is None
        assert updated.json()["tags"] == ["travel", "summer"]

        assert client.delete(f"/memories/{memory['id']}").status_code == 204
        assert client.get(f"/memories/{memory['id']}").status_code == 404

    def test_other_accounts_memories_are_invisible(self, client, db, make_account):
        other = make_account()
        memory = Memory(user_id=other.id, title="Private")
        db.add(memory)
        db.commit()

        assert client.get("/memories").json() == []
        assert client.get(f"/memories/{memory.id}").status_code == 404
        assert client.delete(f"/memories/{memory.id}").status_code == 404


class TestTasks:

    def test_crud(self, client):
        created = client.post("/tasks", json={"title": "Water plants", "priority": "high", "due_date": "2026-07-01"})
        assert created.status_code == 201
        task = created.json()
        assert task["priority"] == "high"
        assert task["completed"] is False

        done = client.put(f"/tasks/{task['id']}", json={"completed": True})
        assert done.json()["completed"] is True
        assert client.get("/tasks", params={"completed": False}).json() == []
        assert len(client.get("/tasks", params={"completed": True}).json()) == 1

        assert client.delete(f"/tasks/{task['id']}").status_code == 204
        assert client.get("/tasks").json() == []

    def test_invalid_priority(self, client):
        assert client.post("/tasks", json={"title": "x", "priority": "urgent"}).status_code == 422
