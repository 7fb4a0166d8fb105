"""HTTP boundary: payload shapes and error mapping."""

import uuid


def _create_job(client, title="Fence repair"):
    res = client.post("/jobs", json={"title": title, "scheduled_date": "2030-03-01", "total_estimate": 900})
    assert res.status_code == 201, res.text
    return res.json()


def _create_crew(client, name="Alpha"):
    res = client.post("/crews", json={"name": name, "capacity": 3})
    assert res.status_code == 201, res.text
    return res.json()


def _create_vehicle(client, plate="API-001"):
    res = client.post("/fleet/vehicles", json={"name": "Truck", "license_plate": plate})
    assert res.status_code == 201, res.text
    return res.json()


def test_healthz_and_request_id(client):
    res = client.get("/healthz", headers={"X-Request-ID": "req-123"})
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
    assert res.headers["X-Request-ID"] == "req-123"


def test_requests_without_token_are_rejected(client):
    res = client.get("/jobs", headers={"Authorization": ""})
    assert res.status_code == 401


def test_job_status_change_payload(client):
    job = _create_job(client)
    assert job["status"] == "scheduled"

    res = client.patch(f"/jobs/{job['id']}/status", json={"status": "in-progress", "note": "Started"})

    assert res.status_code == 200
    assert res.json() == {"job_id": job["id"], "old_status": "scheduled", "new_status": "in-progress"}
    history = client.get(f"/jobs/{job['id']}/status-history").json()
    assert [(h["old_status"], h["new_status"]) for h in history] == [("scheduled", "in-progress")]


def test_illegal_job_status_change_is_422(client):
    job = _create_job(client)
    client.patch(f"/jobs/{job['id']}/status", json={"status": "in-progress"})
    client.patch(f"/jobs/{job['id']}/status", json={"status": "completed"})

    res = client.patch(f"/jobs/{job['id']}/status", json={"status": "scheduled"})

    assert res.status_code == 422
    body = res.json()
    assert body["error"] == "INVALID_TRANSITION"
    assert body["current_state"] == "completed"
    assert body["requested_state"] == "scheduled"
    assert body["entity_id"] == job["id"]
    assert client.get(f"/jobs/{job['id']}").json()["status"] == "completed"


def test_job_update_rejects_status_field(client):
    job = _create_job(client)
    res = client.put(f"/jobs/{job['id']}", json={"status": "completed"})
    assert res.status_code == 422
    res = client.put(f"/jobs/{job['id']}", json={"address": "1 Main St"})
    assert res.status_code == 200
    assert res.json()["address"] == "1 Main St"
    assert res.json()["status"] == "scheduled"


def test_crew_assignment_payload_and_conflict(client):
    j1 = _create_job(client, "J1")
    j2 = _create_job(client, "J2")
    crew = _create_crew(client)

    res = client.put(f"/jobs/{j1['id']}/crew", json={"crew_id": crew["id"]})
    assert res.status_code == 200
    assert res.json() == {"job_id": j1["id"], "crew_id": crew["id"]}

    res = client.put(f"/jobs/{j2['id']}/crew", json={"crew_id": crew["id"]})
    assert res.status_code == 409
    assert res.json()["error"] == "CREW_UNAVAILABLE"
    assert res.json()["current_job_id"] == j1["id"]

    released = client.post(f"/crews/{crew['id']}/release", json={"note": "Rain day"}).json()
    assert released["is_available"] is True
    assert released["current_job_id"] is None


def test_crew_assignment_unknown_job_is_404(client):
    crew = _create_crew(client)
    res = client.put(f"/jobs/{uuid.uuid4()}/crew", json={"crew_id": crew["id"]})
    assert res.status_code == 404
    assert res.json()["error"] == "JOB_NOT_FOUND"


def test_vehicle_assignment_lifecycle(client):
    vehicle = _create_vehicle(client)
    j1 = _create_job(client, "J1")
    j2 = _create_job(client, "J2")

    res = client.post(f"/fleet/vehicles/{vehicle['id']}/assignments", json={"job_id": j1["id"]})
    assert res.status_code == 201, res.text
    created = res.json()
    assert created["status"] == "active"
    assert created["vehicle_status"] == "in-use"

    res = client.post(f"/fleet/vehicles/{vehicle['id']}/assignments", json={"job_id": j2["id"]})
    assert res.status_code == 409
    assert res.json()["error"] == "VEHICLE_ALREADY_ASSIGNED"

    overview = client.get(f"/fleet/vehicles/{vehicle['id']}/assignments").json()
    assert overview["current_assignment"]["id"] == created["assignment_id"]

    res = client.post(
        f"/fleet/vehicles/{vehicle['id']}/assignments/{created['assignment_id']}/release",
        json={"outcome": "completed", "end_mileage": 120},
    )
    assert res.status_code == 200
    assert res.json()["status"] == "completed"
    assert res.json()["vehicle_status"] == "available"
    assert client.get(f"/fleet/vehicles/{vehicle['id']}").json()["mileage"] == 120


def test_assignment_without_target_is_400(client):
    vehicle = _create_vehicle(client)
    res = client.post(f"/fleet/vehicles/{vehicle['id']}/assignments", json={})
    assert res.status_code == 400
    assert res.json()["error"] == "ASSIGNMENT_TARGET_REQUIRED"


def test_maintenance_status_drives_vehicle_status(client):
    vehicle = _create_vehicle(client)

    res = client.post(f"/fleet/vehicles/{vehicle['id']}/maintenance", json={"title": "Brakes", "maintenance_type": "brake"})
    assert res.status_code == 201, res.text
    ticket = res.json()
    assert ticket["vehicle_status"] == "available"

    res = client.patch(
        f"/fleet/vehicles/{vehicle['id']}/maintenance/{ticket['maintenance_id']}/status",
        json={"status": "in-progress"},
    )
    assert res.status_code == 200
    assert res.json()["old_status"] == "scheduled"
    assert res.json()["vehicle_status"] == "maintenance"

    res = client.patch(
        f"/fleet/vehicles/{vehicle['id']}/maintenance/{ticket['maintenance_id']}/status",
        json={"status": "deferred"},
    )
    assert res.status_code == 422
    assert res.json()["error"] == "INVALID_TRANSITION"


def test_vehicle_update_cannot_set_status(client):
    vehicle = _create_vehicle(client)
    res = client.put(f"/fleet/vehicles/{vehicle['id']}", json={"status": "retired"})
    assert res.status_code == 422

    res = client.put(f"/fleet/vehicles/{vehicle['id']}/override", json={"manual_status": "retired", "note": "Sold"})
    assert res.status_code == 200
    assert res.json()["status"] == "retired"


def test_audit_endpoint_lists_entity_history(client):
    job = _create_job(client)
    client.patch(f"/jobs/{job['id']}/status", json={"status": "cancelled"})

    res = client.get("/audit", params={"entity_type": "job", "entity_id": job["id"]})

    assert res.status_code == 200
    assert {row["action"] for row in res.json()} == {"CREATE", "STATUS_CHANGE"}


def test_null_for_required_field_is_422(client):
    job = _create_job(client)
    vehicle = _create_vehicle(client)

    res = client.put(f"/jobs/{job['id']}", json={"title": None})
    assert res.status_code == 422
    res = client.put(f"/fleet/vehicles/{vehicle['id']}", json={"license_plate": None})
    assert res.status_code == 422

    assert client.get(f"/jobs/{job['id']}").json()["title"] == "Fence repair"
    res = client.put(f"/jobs/{job['id']}", json={"notes": None})
    assert res.status_code == 200


def test_vehicle_update_duplicate_plate_is_409(client):
    _create_vehicle(client, plate="DUP-1")
    other = _create_vehicle(client, plate="DUP-2")

    res = client.put(f"/fleet/vehicles/{other['id']}", json={"license_plate": "DUP-1"})

    assert res.status_code == 409
    assert res.json()["detail"] == "License plate already registered"
    res = client.put(f"/fleet/vehicles/{other['id']}", json={"license_plate": "DUP-2", "make": "Ford"})
    assert res.status_code == 200


def test_vehicle_update_cannot_lower_mileage(client):
    vehicle = _create_vehicle(client)
    assert client.put(f"/fleet/vehicles/{vehicle['id']}", json={"mileage": 900}).status_code == 200

    res = client.put(f"/fleet/vehicles/{vehicle['id']}", json={"mileage": 400})

    assert res.status_code == 400
    assert res.json()["error"] == "INVALID_REQUEST"
    assert client.get(f"/fleet/vehicles/{vehicle['id']}").json()["mileage"] == 900


def test_descriptive_updates_are_audited(client):
    job = _create_job(client)
    vehicle = _create_vehicle(client)
    client.put(f"/jobs/{job['id']}", json={"address": "9 Elm St"})
    client.put(f"/fleet/vehicles/{vehicle['id']}", json={"vehicle_type": "truck"})

    job_rows = client.get("/audit", params={"entity_type": "job", "entity_id": job["id"]}).json()
    vehicle_rows = client.get("/audit", params={"entity_type": "vehicle", "entity_id": vehicle["id"]}).json()

    update = next(row for row in job_rows if row["action"] == "UPDATE")
    assert update["context"] == {"address": "9 Elm St"}
    update = next(row for row in vehicle_rows if row["action"] == "UPDATE")
    assert update["context"] == {"vehicle_type": "truck"}
