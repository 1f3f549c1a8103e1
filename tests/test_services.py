def _services(client, headers):
    return client.get("/services", headers=headers).get_json()["services"]


def test_default_catalogue_is_seeded(client, patient):
    services = _services(client, patient)
    assert len(services) == 7
    cleaning = next(s for s in services if s["name"] == "Routine Cleaning")
    assert cleaning["category"] == "preventive"
    assert cleaning["defaultPrice"] == 120
    assert cleaning["estimatedDuration"] == 60
    assert cleaning["isActive"] is True


def test_admin_manages_services(client, admin):
    r = client.post("/services", headers=admin, json={
        "name": "Sealants", "category": "preventive", "defaultPrice": "45.5", "estimatedDuration": 20})
    assert r.status_code == 201
    service = r.get_json()["service"]
    assert service["defaultPrice"] == 45.5

    r = client.put(f"/services/{service['id']}", json={"isActive": False}, headers=admin)
    assert r.get_json()["service"]["isActive"] is False

    active = client.get("/services?active=true", headers=admin).get_json()["services"]
    assert "Sealants" not in [s["name"] for s in active]
    assert len(_services(client, admin)) == 8


def test_service_validation(client, admin):
    r = client.post("/services", json={"name": "Mystery", "category": "magic"}, headers=admin)
    assert r.status_code == 400
    r = client.post("/services", json={"name": "Cheap", "category": "cosmetic", "defaultPrice": -1},
                    headers=admin)
    assert r.status_code == 400
    assert client.put("/services/nope", json={"name": "X"}, headers=admin).status_code == 404


def test_only_admin_edits_catalogue(client, staff):
    r = client.post("/services", json={"name": "Sealants", "category": "preventive"}, headers=staff)
    assert r.status_code == 403


def test_service_record_from_catalogue(client, staff, patient):
    crown = next(s for s in _services(client, staff) if s["name"] == "Dental Crown")
    r = client.post("/service-history", headers=staff, json={
        "patientEmail": "patient@example.com", "serviceId": crown["id"], "date": "2026-09-01"})
    assert r.status_code == 201
    record = r.get_json()["record"]
    assert record["serviceName"] == "Dental Crown"
    assert record["cost"] == 950
    assert record["status"] == "completed"
    assert record["performedBy"] == "staff@dentalclinic.com"
    assert record["performedByName"] == "Mary Chen"

    client.post("/service-history", headers=staff, json={
        "patientEmail": "patient@example.com", "serviceName": "Emergency visit", "date": "2026-10-01",
        "cost": 90})
    history = client.get("/service-history", headers=patient).get_json()["serviceHistory"]
    assert [h["date"] for h in history] == ["2026-10-01", "2026-09-01"]


def test_patient_only_sees_own_service_history(client, staff, login):
    client.post("/service-history", headers=staff, json={
        "patientEmail": "patient@example.com", "serviceName": "Filling", "date": "2026-09-01"})
    client.post("/auth/signup", json={"email": "alice@example.com", "password": "Passw0rd!", "name": "Alice"},
                headers={"Authorization": "Bearer test-anon-key"})
    alice = login("alice@example.com", "Passw0rd!")
    r = client.get("/service-history?patientEmail=patient@example.com", headers=alice)
    assert r.get_json()["serviceHistory"] == []


def test_service_record_validation_and_update(client, staff, patient):
    r = client.post("/service-history", json={"patientEmail": "patient@example.com", "date": "2026-09-01"},
                    headers=staff)
    assert r.status_code == 400
    assert r.get_json()["error"] == "A service is required"

    r = client.post("/service-history", json={"patientEmail": "patient@example.com", "serviceName": "X",
                                              "date": "2026-09-01"}, headers=patient)
    assert r.status_code == 403

    record = client.post("/service-history", headers=staff, json={
        "patientEmail": "patient@example.com", "serviceName": "Whitening", "date": "2026-09-01",
        "status": "planned"}).get_json()["record"]
    r = client.put(f"/service-history/{record['id']}", json={"status": "in-progress", "notes": "Session 1"},
                   headers=staff)
    assert r.get_json()["record"]["status"] == "in-progress"
    assert r.get_json()["record"]["notes"] == "Session 1"
    assert client.put("/service-history/missing", json={}, headers=staff).status_code == 404


def test_medical_history(client, staff, patient):
    assert client.get("/medical-history/patient@example.com", headers=patient).get_json() == {
        "medicalHistory": None}

    r = client.put("/medical-history/patient@example.com", headers=staff, json={
        "allergies": ["Penicillin", " "],
        "medications": [],
        "medicalConditions": ["Asthma"],
        "emergencyContact": {"name": "Jane Smith", "phone": "555-0102", "relationship": "Spouse"},
        "insuranceInfo": {"provider": "Delta", "policyNumber": "P-1"},
        "notes": "Prefers mornings",
    })
    history = r.get_json()["medicalHistory"]
    assert history["allergies"] == ["Penicillin"]
    assert history["insuranceInfo"] == {"provider": "Delta", "policyNumber": "P-1"}
    assert history["updatedBy"] == "staff@dentalclinic.com"

    fetched = client.get("/medical-history/patient@example.com", headers=patient).get_json()["medicalHistory"]
    assert fetched["medicalConditions"] == ["Asthma"]
    assert fetched["emergencyContact"]["relationship"] == "Spouse"


def test_medical_history_access_and_validation(client, staff, patient):
    assert client.get("/medical-history/staff@dentalclinic.com", headers=patient).status_code == 403
    assert client.put("/medical-history/ghost@example.com", json={}, headers=staff).status_code == 404
    r = client.put("/medical-history/patient@example.com", json={"allergies": "Penicillin"}, headers=staff)
    assert r.status_code == 400
    r = client.put("/medical-history/patient@example.com", json={"insuranceInfo": {"provider": "Delta"}},
                   headers=staff)
    assert r.status_code == 400


def test_medical_history_rejects_malformed_sections(client, staff):
    r = client.put("/medical-history/patient@example.com", json={"emergencyContact": "Jane"}, headers=staff)
    assert r.status_code == 400
    assert r.get_json()["error"] == "Emergency contact must be an object"
    r = client.put("/medical-history/patient@example.com", json={"insuranceInfo": ["Delta"]}, headers=staff)
    assert r.status_code == 400
    r = client.post("/service-history", json={"patientEmail": "patient@example.com", "serviceId": 3,
                                              "date": "2026-09-01"}, headers=staff)
    assert r.status_code == 400
