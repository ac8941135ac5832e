"""
Shipping manifests: creation, scan verification and the close/pickup lifecycle
"""
import pytest


@pytest.fixture
def manifest(client):
    response = client.post("/api/manifests", json={
        "carrier": "Servientrega",
        "manifest_date": "2025-06-02",
        "items": [
            {"tracking_number": "SV-1001", "order_number": "#1001", "recipient_name": "Ana"},
            {"tracking_number": "SV-1002", "order_number": "#1002"},
        ],
    })
    assert response.status_code == 201
    return response.json()


def _scan(client, manifest_id, tracking_number):
    return client.post(f"/api/manifests/{manifest_id}/scan", json={"tracking_number": tracking_number})


class TestManifestCreation:

    def test_number_and_totals(self, manifest):
        assert manifest["manifestNumber"] == "SERVIENTREGA-20250602-001"
        assert manifest["status"] == "OPEN"
        assert manifest["totalPackages"] == 2
        assert manifest["totalVerified"] == 0
        assert {i["scanStatus"] for i in manifest["items"]} == {"PENDING"}

    def test_sequence_per_carrier_and_day(self, client, manifest):
        response = client.post("/api/manifests", json={"carrier": "Servientrega", "manifest_date": "2025-06-02"})
        assert response.json()["manifestNumber"] == "SERVIENTREGA-20250602-002"

    def test_number_not_reused_after_delete(self, client, manifest):
        second = client.post("/api/manifests", json={"carrier": "Servientrega", "manifest_date": "2025-06-02"}).json()
        assert client.delete(f"/api/manifests/{manifest['id']}").status_code == 200

        third = client.post("/api/manifests", json={"carrier": "Servientrega", "manifest_date": "2025-06-02"})

        assert third.status_code == 201
        assert second["manifestNumber"] == "SERVIENTREGA-20250602-002"
        assert third.json()["manifestNumber"] == "SERVIENTREGA-20250602-003"

    def test_duplicate_tracking_number_rejected(self, client):
        response = client.post("/api/manifests", json={
            "carrier": "Coordinadora",
            "items": [{"tracking_number": "C-1"}, {"tracking_number": "C-1"}],
        })
        assert response.status_code == 400

    def test_list_filters_by_status(self, client, manifest):
        assert len(client.get("/api/manifests", params={"status": "OPEN"}).json()["manifests"]) == 1
        assert client.get("/api/manifests", params={"status": "CLOSED"}).json()["manifests"] == []


class TestScanning:

    def test_verified_then_already_scanned(self, client, manifest):
        first = _scan(client, manifest["id"], "SV-1001").json()
        assert first["result"] == "verified"
        assert first["totalVerified"] == 1
        assert first["recipientName"] == "Ana"

        again = _scan(client, manifest["id"], "SV-1001").json()
        assert again["result"] == "already_scanned"
        assert client.get(f"/api/manifests/{manifest['id']}").json()["totalVerified"] == 1

    def test_not_found(self, client, manifest):
        assert _scan(client, manifest["id"], "NOPE-1").json()["result"] == "not_found"

    def test_wrong_manifest(self, client, manifest):
        other = client.post("/api/manifests", json={
            "carrier": "Coordinadora",
            "manifest_date": "2025-06-02",
            "items": [{"tracking_number": "CO-77"}],
        }).json()

        result = _scan(client, manifest["id"], "CO-77").json()

        assert result["result"] == "wrong_manifest"
        assert result["manifestNumber"] == other["manifestNumber"]


class TestLifecycle:

    def test_close_then_pickup(self, client, manifest):
        closed = client.post(f"/api/manifests/{manifest['id']}/close")
        assert closed.status_code == 200
        assert closed.json()["status"] == "CLOSED"
        assert closed.json()["closedAt"] is not None

        assert _scan(client, manifest["id"], "SV-1002").status_code == 400

        picked = client.post(f"/api/manifests/{manifest['id']}/pickup")
        assert picked.status_code == 200
        assert picked.json()["status"] == "PICKED_UP"

    def test_pickup_requires_closed(self, client, manifest):
        assert client.post(f"/api/manifests/{manifest['id']}/pickup").status_code == 400

    def test_close_twice_rejected(self, client, manifest):
        client.post(f"/api/manifests/{manifest['id']}/close")
        assert client.post(f"/api/manifests/{manifest['id']}/close").status_code == 400

    def test_delete_only_while_open(self, client, manifest):
        client.post(f"/api/manifests/{manifest['id']}/close")
        assert client.delete(f"/api/manifests/{manifest['id']}").status_code == 400

    def test_delete_open(self, client, manifest):
        assert client.delete(f"/api/manifests/{manifest['id']}").json() == {"success": True}
        assert client.get(f"/api/manifests/{manifest['id']}").status_code == 404
