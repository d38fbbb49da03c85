"""
Integration tests for the SRS HTTP API.

The router's service dependency is overridden with one bound to the
in-memory test database.
"""
import pytest
from fastapi.testclient import TestClient

from creditflow.api.main import app
from creditflow.api.routers.srs_router import get_srs_service
from creditflow.srs.service import SRSService

HEADERS = {"X-User-Id": "1"}


@pytest.fixture
def client(session_factory):
    app.dependency_overrides[get_srs_service] = lambda: SRSService(session_factory)
    yield TestClient(app)
    app.dependency_overrides.clear()


def grasp(client, node_id, node_type="definition"):
    response = client.put(
        "/api/srs/status",
        json={"node_id": node_id, "node_type": node_type, "status": "grasped"},
        headers=HEADERS,
    )
    assert response.status_code == 200
    return response.json()


class TestHealth:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "creditflow"


class TestReviews:
    """POST /api/srs/reviews"""

    def test_review_of_fresh_item_conflicts(self, client, seeded):
        response = client.post(
            "/api/srs/reviews",
            json={"node_id": seeded.c, "node_type": "definition", "success": True, "quality": 4},
            headers=HEADERS,
        )
        assert response.status_code == 409

    def test_review_returns_credit_flow(self, client, seeded):
        grasp(client, seeded.c)

        response = client.post(
            "/api/srs/reviews",
            json={
                "node_id": seeded.c,
                "node_type": "definition",
                "success": True,
                "quality": 5,
                "time_taken": 6,
            },
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert [c["type"] for c in body["credit_flow"]] == ["explicit", "implicit", "implicit"]
        assert body["credit_flow"][1]["credit"] == pytest.approx(0.25)
        assert len(body["updated_nodes"]) == 3
        assert body["updated_nodes"][0]["repetitions"] == 1

    def test_quality_out_of_range(self, client, seeded):
        response = client.post(
            "/api/srs/reviews",
            json={"node_id": seeded.c, "node_type": "definition", "success": True, "quality": 9},
            headers=HEADERS,
        )
        assert response.status_code == 422

    def test_bad_node_type(self, client, seeded):
        response = client.post(
            "/api/srs/reviews",
            json={"node_id": seeded.c, "node_type": "lemma", "success": True, "quality": 4},
            headers=HEADERS,
        )
        assert response.status_code == 400

    def test_unknown_item(self, client, seeded):
        response = client.post(
            "/api/srs/reviews",
            json={"node_id": 999, "node_type": "exercise", "success": False, "quality": 0},
            headers=HEADERS,
        )
        assert response.status_code == 404

    def test_user_header_required(self, client, seeded):
        response = client.post(
            "/api/srs/reviews",
            json={"node_id": seeded.c, "node_type": "definition", "success": True, "quality": 4},
        )
        assert response.status_code == 422


class TestCreditPreview:
    """POST /api/srs/credit-preview"""

    def test_preview_does_not_record(self, client, seeded):
        response = client.post(
            "/api/srs/credit-preview",
            json={"domain_id": seeded.domain, "node_id": seeded.e, "node_type": "exercise", "success": True},
        )

        assert response.status_code == 200
        credits = response.json()["credits"]
        assert [c["type"] for c in credits] == ["explicit", "implicit", "implicit", "implicit"]
        assert credits[1]["credit"] == pytest.approx(0.5)

        history = client.get("/api/srs/history", headers=HEADERS).json()
        assert history == []

    def test_unknown_domain(self, client, seeded):
        response = client.post(
            "/api/srs/credit-preview",
            json={"domain_id": 999, "node_id": seeded.a, "node_type": "definition"},
        )
        assert response.status_code == 404

    def test_bad_node_type(self, client, seeded):
        response = client.post(
            "/api/srs/credit-preview",
            json={"domain_id": seeded.domain, "node_id": seeded.a, "node_type": "lemma"},
        )
        assert response.status_code == 400


class TestStatus:
    def test_cascade_in_response(self, client, seeded):
        body = grasp(client, seeded.c)

        assert body["message"] == "Status updated successfully"
        assert [n["node_id"] for n in body["changed_nodes"]] == [seeded.c, seeded.b, seeded.a]

    def test_invalid_status(self, client, seeded):
        response = client.put(
            "/api/srs/status",
            json={"node_id": seeded.a, "node_type": "definition", "status": "done"},
            headers=HEADERS,
        )
        assert response.status_code == 400


class TestDueAndProgress:
    def test_due_nodes_ordered(self, client, seeded):
        grasp(client, seeded.e, "exercise")

        response = client.get(f"/api/srs/domains/{seeded.domain}/due", headers=HEADERS)

        assert response.status_code == 200
        due = response.json()["due_nodes"]
        assert [(d["node_type"], d["code"]) for d in due] == [
            ("exercise", "E1"),
            ("definition", "D3"),
            ("definition", "D2"),
            ("definition", "D1"),
        ]

    def test_due_type_filter(self, client, seeded):
        grasp(client, seeded.e, "exercise")

        response = client.get(
            f"/api/srs/domains/{seeded.domain}/due", params={"type": "exercise"}, headers=HEADERS
        )

        assert [d["code"] for d in response.json()["due_nodes"]] == ["E1"]

    def test_due_is_per_user(self, client, seeded):
        grasp(client, seeded.e, "exercise")

        response = client.get(f"/api/srs/domains/{seeded.domain}/due", headers={"X-User-Id": "2"})

        assert response.json()["due_nodes"] == []

    def test_unknown_domain(self, client, seeded):
        response = client.get("/api/srs/domains/999/due", headers=HEADERS)
        assert response.status_code == 404

    def test_progress(self, client, seeded):
        response = client.get(f"/api/srs/domains/{seeded.domain}/progress", headers=HEADERS)

        assert response.status_code == 200
        assert [p["status"] for p in response.json()] == ["fresh"] * 4


class TestHistoryAndSessions:
    def test_session_flow(self, client, seeded):
        grasp(client, seeded.c)
        started = client.post(
            "/api/srs/sessions", json={"domain_id": seeded.domain, "session_type": "definition"}, headers=HEADERS
        )
        assert started.status_code == 201
        session_id = started.json()["id"]

        client.post(
            "/api/srs/reviews",
            json={
                "node_id": seeded.c,
                "node_type": "definition",
                "success": True,
                "quality": 4,
                "session_id": session_id,
            },
            headers=HEADERS,
        )
        ended = client.put(f"/api/srs/sessions/{session_id}/end", headers=HEADERS)

        assert ended.status_code == 200
        assert ended.json()["total_reviews"] == 1
        assert ended.json()["end_time"] is not None

        sessions = client.get("/api/srs/sessions", headers=HEADERS).json()
        assert [s["id"] for s in sessions] == [session_id]

        history = client.get(
            "/api/srs/history",
            params={"node_id": seeded.c, "node_type": "definition"},
            headers=HEADERS,
        ).json()
        assert len(history) == 1
        assert history[0]["quality"] == 4

    def test_end_unknown_session(self, client, seeded):
        response = client.put("/api/srs/sessions/77/end", headers=HEADERS)
        assert response.status_code == 404


class TestPrerequisites:
    def test_create_and_delete(self, client, seeded):
        created = client.post(
            "/api/srs/prerequisites",
            json={
                "node_id": seeded.e,
                "node_type": "exercise",
                "prerequisite_id": seeded.a,
                "prerequisite_type": "definition",
                "weight": 0.4,
            },
        )
        assert created.status_code == 201
        edge_id = created.json()["id"]

        listed = client.get(f"/api/srs/domains/{seeded.domain}/prerequisites").json()
        assert edge_id in [e["id"] for e in listed]

        assert client.delete(f"/api/srs/prerequisites/{edge_id}").status_code == 200
        assert client.delete(f"/api/srs/prerequisites/{edge_id}").status_code == 404

    def test_invalid_weight(self, client, seeded):
        response = client.post(
            "/api/srs/prerequisites",
            json={
                "node_id": seeded.b,
                "node_type": "definition",
                "prerequisite_id": seeded.c,
                "prerequisite_type": "definition",
                "weight": 0,
            },
        )
        assert response.status_code == 400
