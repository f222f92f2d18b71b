"""HTTP surface: routing, envelope and error mapping."""

import uuid

import pytest
from fastapi.testclient import TestClient

from api import app, get_uow
from infrastructure import InMemoryDatabase, InMemoryUnitOfWork

API = "/api/v1"


@pytest.fixture
def client():
    db = InMemoryDatabase()
    app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork(db)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _today(client):
    response = client.post(f"{API}/reports/today")
    assert response.status_code == 200
    return response.json()["data"]


def _client_section(client, report_id, name="Rossi", site="Via Roma"):
    response = client.post(
        f"{API}/reports/{report_id}/clients", json={"client_name": name, "job_site": site}
    )
    assert response.status_code == 201
    return response.json()["data"]


def _machine(client, section_id, hours, machine="Escavatore"):
    response = client.post(
        f"{API}/clients/{section_id}/activities/machine",
        json={"machine_name": machine, "hours": hours},
    )
    assert response.status_code == 201
    return response.json()["data"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_today_is_idempotent(client):
    assert client.get(f"{API}/reports/current-draft").json() == {"data": None}
    first = _today(client)
    second = _today(client)
    assert first["id"] == second["id"]
    assert first["status"] == "draft"
    assert client.get(f"{API}/reports/current-draft").json()["data"]["id"] == first["id"]


def test_full_day_flow(client):
    report = _today(client)
    section = _client_section(client, report["id"])
    _machine(client, section["id"], 2.5)
    _machine(client, section["id"], "3.0", machine="Pala")
    material = client.post(
        f"{API}/clients/{section['id']}/activities/material",
        json={"material_name": "Ghiaia", "quantity": "3.25", "unit": "tons"},
    )
    assert material.status_code == 201
    assert material.json()["data"]["unit"] == "tons"

    detail = client.get(f"{API}/reports/{report['id']}").json()["data"]
    assert detail["total_hours"] == pytest.approx(5.5)
    assert len(detail["clients"][0]["activities"]) == 3

    final = client.post(f"{API}/reports/{report['id']}/finalize")
    assert final.status_code == 200
    assert final.json()["data"]["status"] == "final"
    assert final.json()["data"]["finalized_at"] is not None

    finals = client.get(f"{API}/reports", params={"status": "final"}).json()["data"]
    assert [r["id"] for r in finals] == [report["id"]]

    weekly = client.get(f"{API}/dashboard/weekly-hours").json()["data"]
    assert weekly["hours"] == pytest.approx(5.5)
    dashboard = client.get(f"{API}/dashboard").json()["data"]
    assert dashboard["current_draft"] is None
    assert [r["id"] for r in dashboard["latest_reports"]] == [report["id"]]


def test_finalize_empty_report_conflicts(client):
    report = _today(client)
    response = client.post(f"{API}/reports/{report['id']}/finalize")
    assert response.status_code == 409
    assert "client sections" in response.json()["detail"]


def test_edit_after_finalize_conflicts_and_reopen_unlocks(client):
    report = _today(client)
    section = _client_section(client, report["id"])
    _machine(client, section["id"], 4)
    client.post(f"{API}/reports/{report['id']}/finalize")

    blocked = client.post(
        f"{API}/clients/{section['id']}/activities/machine",
        json={"machine_name": "Rullo", "hours": 1},
    )
    assert blocked.status_code == 409

    trasferta = client.patch(f"{API}/reports/{report['id']}/trasferta", json={"trasferta": True})
    assert trasferta.status_code == 200
    assert trasferta.json()["data"]["trasferta"] is True

    reopened = client.post(f"{API}/reports/{report['id']}/reopen")
    assert reopened.status_code == 200
    assert reopened.json()["data"]["finalized_at"] is None
    _machine(client, section["id"], 1, machine="Rullo")


def test_unknown_report_is_404(client):
    response = client.get(f"{API}/reports/{uuid.uuid4()}")
    assert response.status_code == 404
    assert "not found" in response.json()["detail"]


@pytest.mark.parametrize(
    "body",
    [
        {"machine_name": "Pala", "hours": 0},
        {"machine_name": "Pala", "hours": -1},
        {"machine_name": "", "hours": 1},
        {"machine_name": "Pala"},
        {"machine_name": "Pala", "hours": "1e100000"},
        {"machine_name": "Pala", "hours": "2.12345"},
    ],
)
def test_invalid_machine_activity_is_422(client, body):
    report = _today(client)
    section = _client_section(client, report["id"])
    response = client.post(f"{API}/clients/{section['id']}/activities/machine", json=body)
    assert response.status_code == 422


def test_invalid_material_unit_is_422(client):
    report = _today(client)
    section = _client_section(client, report["id"])
    response = client.post(
        f"{API}/clients/{section['id']}/activities/material",
        json={"material_name": "Ghiaia", "quantity": 1, "unit": "litres"},
    )
    assert response.status_code == 422


def test_blank_client_name_is_422(client):
    report = _today(client)
    response = client.post(
        f"{API}/reports/{report['id']}/clients", json={"client_name": "   ", "job_site": "A"}
    )
    assert response.status_code == 422


def test_oversized_material_quantity_is_422(client):
    report = _today(client)
    section = _client_section(client, report["id"])
    response = client.post(
        f"{API}/clients/{section['id']}/activities/material",
        json={"material_name": "Ghiaia", "quantity": "1e100000", "unit": "tons"},
    )
    assert response.status_code == 422


def test_rename_client_section(client):
    report = _today(client)
    section = _client_section(client, report["id"])
    response = client.patch(
        f"{API}/clients/{section['id']}",
        json={"client_name": "Bianchi", "job_site": "Via Milano"},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert (data["client_name"], data["job_site"]) == ("Bianchi", "Via Milano")
    assert data["color_tag"] == section["color_tag"]

    stored = client.get(f"{API}/reports/{report['id']}").json()["data"]
    assert stored["clients"][0]["client_name"] == "Bianchi"


def test_rename_client_section_validation_and_state(client):
    report = _today(client)
    section = _client_section(client, report["id"])
    url = f"{API}/clients/{section['id']}"

    blank = client.patch(url, json={"client_name": "   ", "job_site": "B"})
    assert blank.status_code == 422

    _machine(client, section["id"], 4)
    assert client.post(f"{API}/reports/{report['id']}/finalize").status_code == 200
    final = client.patch(url, json={"client_name": "Bianchi", "job_site": "B"})
    assert final.status_code == 409

    missing = client.patch(
        f"{API}/clients/{uuid.uuid4()}", json={"client_name": "Bianchi", "job_site": "B"}
    )
    assert missing.status_code == 404


def test_unknown_status_filter_is_422(client):
    assert client.get(f"{API}/reports", params={"status": "archived"}).status_code == 422


def test_delete_endpoints(client):
    report = _today(client)
    section = _client_section(client, report["id"])
    activity = _machine(client, section["id"], 1)

    assert client.delete(f"{API}/activities/{activity['id']}").status_code == 204
    assert client.get(f"{API}/clients/{section['id']}/activities").json()["data"] == []

    assert client.delete(f"{API}/clients/{section['id']}").status_code == 204
    assert client.get(f"{API}/reports/{report['id']}/clients").json()["data"] == []

    assert client.delete(f"{API}/reports/{report['id']}").status_code == 204
    assert client.get(f"{API}/reports/{report['id']}").status_code == 404


def test_job_sites_and_search(client):
    report = _today(client)
    section = _client_section(client, report["id"], site="Cantiere Nord")
    _machine(client, section["id"], 3, machine="Escavatore JCB")
    _client_section(client, report["id"], name="Bianchi", site="Via Roma")

    sites = client.get(f"{API}/job-sites", params={"q": "nord"}).json()["data"]
    assert sites == ["Cantiere Nord"]

    found = client.get(f"{API}/reports/search", params={"machine": "jcb"}).json()["data"]
    assert [r["id"] for r in found] == [report["id"]]
    none = client.get(f"{API}/reports/search", params={"machine": "gru"}).json()["data"]
    assert none == []

    inverted = client.get(
        f"{API}/reports/search", params={"date_from": "2024-05-20", "date_to": "2024-05-01"}
    )
    assert inverted.status_code == 422


def test_latest_reports_limit(client):
    assert client.get(f"{API}/dashboard/latest", params={"limit": 3}).json() == {"data": []}
    assert client.get(f"{API}/dashboard/latest", params={"limit": -1}).status_code == 422
