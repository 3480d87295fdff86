def _create(client, headers, **body):
    payload = {"lat": 14.61, "lng": -90.53}
    payload.update(body)
    return client.post("/api/incidents", json=payload, headers=headers)


def test_health_and_ready(client):
    assert client.get("/health").status_code == 204
    r = client.get("/ready")
    assert r.status_code == 200
    assert r.get_json() == {"status": "ok"}
    assert r.headers["X-Content-Type-Options"] == "nosniff"


def test_requests_without_token_are_forbidden(client):
    r = client.post("/api/incidents", json={"lat": 1, "lng": 1})
    assert r.status_code == 403
    assert r.get_json()["error"] == "forbidden"

    r = client.get("/api/ops/incidents", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 403


def test_citizen_flow(client, citizen_headers):
    r = _create(client, citizen_headers, accuracy=8, battery=55, device={"os": "ios", "version": "17"})
    assert r.status_code == 201
    incident_id = r.get_json()["id"]
    assert r.get_json()["status"] == "NEW"

    r = client.post(f"/api/incidents/{incident_id}/location",
                    json={"lat": 14.62, "lng": -90.52, "ts": "2099-01-01T00:00:00Z"},
                    headers=citizen_headers)
    assert r.status_code == 202 and r.get_json() == {"ok": True}

    r = client.get(f"/api/incidents/{incident_id}", headers=citizen_headers)
    assert r.status_code == 200
    data = r.get_json()
    assert data["location"]["lat"] == 14.62
    assert len(data["locationHistory"]) == 2

    r = client.post(f"/api/incidents/{incident_id}/cancel", json={"reason": "resolved"}, headers=citizen_headers)
    assert r.get_json() == {"status": "CANCELED"}

    r = client.post(f"/api/incidents/{incident_id}/cancel", json={}, headers=citizen_headers)
    assert r.status_code == 409
    body = r.get_json()
    assert body["error"] == "conflict"
    assert body["details"] == {"from": "CANCELED", "to": "CANCELED"}


def test_citizen_cannot_touch_foreign_incident(client, citizen_headers, auth_headers):
    incident_id = _create(client, citizen_headers).get_json()["id"]
    stranger = auth_headers("8", "citizen")

    assert client.get(f"/api/incidents/{incident_id}", headers=stranger).status_code == 403
    assert client.post(f"/api/incidents/{incident_id}/cancel", json={}, headers=stranger).status_code == 403
    assert client.get("/api/incidents/INC-2025-999999", headers=citizen_headers).status_code == 404


def test_staff_cannot_use_citizen_routes_and_vice_versa(client, citizen_headers, staff_headers):
    assert _create(client, staff_headers).status_code == 403
    assert client.get("/api/ops/incidents", headers=citizen_headers).status_code == 403


def test_invalid_body_maps_to_400(client, citizen_headers):
    r = _create(client, citizen_headers, lat=120)
    assert r.status_code == 400
    body = r.get_json()
    assert body["error"] == "validation_error"
    assert body["details"][0]["loc"] == ["lat"]

    r = _create(client, citizen_headers, colour="red")
    assert r.status_code == 400


def test_ops_flow(app, client, citizen_headers, staff_headers, auth_headers):
    supervisor = auth_headers("sup1", "supervisor")
    incident_id = _create(client, citizen_headers).get_json()["id"]

    assert client.post("/api/ops/units", json={"name": "Patrol 1"}, headers=staff_headers).status_code == 403
    r = client.post("/api/ops/units", json={"name": "Patrol 1", "type": "patrol"}, headers=supervisor)
    assert r.status_code == 201
    unit_id = r.get_json()["id"]

    r = client.get("/api/ops/incidents?status=NEW", headers=staff_headers)
    assert [i["id"] for i in r.get_json()["items"]] == [incident_id]

    assert client.post(f"/api/ops/incidents/{incident_id}/ack", headers=staff_headers).get_json() == {"status": "ACK"}
    r = client.post(f"/api/ops/incidents/{incident_id}/assign", json={"unit_id": unit_id, "note": "closest"},
                    headers=staff_headers)
    assert r.get_json() == {"status": "DISPATCHED"}

    r = client.get(f"/api/ops/units/{unit_id}/active-assignment", headers=staff_headers)
    assert r.get_json()["assignment"]["incidentId"] == incident_id

    r = client.patch(f"/api/ops/units/{unit_id}", json={"status": "available"}, headers=staff_headers)
    assert r.status_code == 409

    r = client.post(f"/api/ops/incidents/{incident_id}/notes", json={"text": "on the way"}, headers=staff_headers)
    assert r.status_code == 201 and r.get_json()["actorRef"] == "staff1"

    r = client.post(f"/api/ops/incidents/{incident_id}/status", json={"status": "IN_PROGRESS"}, headers=staff_headers)
    assert r.get_json() == {"status": "IN_PROGRESS"}
    r = client.post(f"/api/ops/incidents/{incident_id}/status", json={"status": "CLOSED", "reason": "done"},
                    headers=staff_headers)
    assert r.get_json() == {"status": "CLOSED"}

    units = client.get("/api/ops/units", headers=staff_headers).get_json()["items"]
    assert [(u["id"], u["status"]) for u in units] == [(unit_id, "available")]

    r = client.get(f"/api/ops/incidents/{incident_id}", headers=staff_headers)
    assert r.get_json()["endedAt"] is not None
    assert r.get_json()["activeUnits"] == []

    r = client.get(f"/api/ops/audit?entity=incident&entity_id={incident_id}", headers=supervisor)
    actions = {row["action"] for row in r.get_json()["items"]}
    assert {"incident.create", "incident.ack", "incident.assign", "incident.note"} <= actions


def test_status_body_rejects_unsettable_status(client, citizen_headers, staff_headers):
    incident_id = _create(client, citizen_headers).get_json()["id"]
    r = client.post(f"/api/ops/incidents/{incident_id}/status", json={"status": "ACK"}, headers=staff_headers)
    assert r.status_code == 400


def test_unit_update_requires_a_field(client, staff_headers, make_unit):
    unit_id = make_unit()
    r = client.patch(f"/api/ops/units/{unit_id}", json={"force": True}, headers=staff_headers)
    assert r.status_code == 400
    r = client.patch("/api/ops/units/999", json={"name": "x"}, headers=staff_headers)
    assert r.status_code == 404


def test_simulation_routes(client, auth_headers, staff_headers):
    supervisor = auth_headers("sup1", "supervisor")
    assert client.post("/api/ops/simulations", json={"lat": 1, "lng": 1}, headers=staff_headers).status_code == 403

    r = client.post("/api/ops/simulations", json={"lat": 14.6, "lng": -90.5}, headers=supervisor)
    assert r.status_code == 201
    sim_id = r.get_json()["id"]

    r = client.post(f"/api/ops/simulations/{sim_id}/status", json={"status": "pause"}, headers=supervisor)
    assert r.get_json() == {"status": "SIM_PAUSED"}
    r = client.post(f"/api/ops/simulations/{sim_id}/status", json={"status": "explode"}, headers=supervisor)
    assert r.status_code == 400


def test_device_registration(client, citizen_headers, auth_headers):
    body = {"platform": "android", "fcm_token": "token-1234567890"}
    r = client.post("/api/devices", json=body, headers=citizen_headers)
    assert r.status_code == 201
    device_id = r.get_json()["device_id"]

    # same token again updates the same row
    assert client.post("/api/devices", json=body, headers=citizen_headers).get_json()["device_id"] == device_id

    stranger = auth_headers("8", "citizen")
    assert client.delete(f"/api/devices/{device_id}", headers=stranger).status_code == 404
    assert client.delete(f"/api/devices/{device_id}", headers=citizen_headers).status_code == 204

    r = client.post("/api/devices", json={"platform": "symbian", "fcm_token": "token-1234567890"},
                    headers=citizen_headers)
    assert r.status_code == 400


def test_realtime_token_and_stats(client, citizen_headers, staff_headers):
    assert client.get("/api/realtime/token").status_code == 403

    r = client.get("/api/realtime/token", headers=citizen_headers)
    assert r.status_code == 200
    data = r.get_json()
    assert data["token"] and data["expires_in"] == 600
    assert data["ws_url"].startswith("ws://")

    assert client.get("/api/realtime/stats", headers=citizen_headers).status_code == 403
    stats = client.get("/api/realtime/stats", headers=staff_headers).get_json()
    assert stats["relay"] is False


def test_unknown_api_route_is_json_404(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.get_json()["error"] == "not_found"
