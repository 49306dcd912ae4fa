from mozarela.api.auth import hash_password


async def test_export_contains_users_and_cases_without_hashes(client, admin_user, register_user):
    admin = await admin_user()
    vet = await register_user("vet@example.test")
    await client.post("/api/cases", json={"id": "c1", "timestamp": 7, "data": {"patientName": "Rex"}}, headers=vet.mutate)

    resp = await client.get("/api/export", headers=admin.auth)
    assert resp.status_code == 200
    backup = resp.json()
    assert backup["version"] == 1
    assert {u["email"] for u in backup["data"]["users"]} == {"admin@example.test", "vet@example.test"}
    assert all("passwordHash" not in u for u in backup["data"]["users"])
    assert backup["data"]["cases"] == [{
        "id": "c1", "userId": vet.user_id, "timestamp": 7, "data": {"patientName": "Rex"}, "results": None,
    }]


async def test_import_rejects_malformed_backup(client, admin_user):
    admin = await admin_user()
    for body in ({}, {"data": "nope"}, {"version": 1}):
        resp = await client.post("/api/import", json=body, headers=admin.mutate)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid backup"


async def test_import_is_best_effort(client, admin_user):
    admin = await admin_user()
    backup = {"version": 1, "data": {
        "users": [
            {"id": "u-new", "email": "new@example.test", "fullName": "New Vet", "passwordHash": hash_password("pw")},
            {"id": "u-nohash", "email": "nohash@example.test", "fullName": "No Hash"},
            {"id": "u-clash", "email": "admin@example.test", "fullName": "Clash", "passwordHash": "x"},
        ],
        "cases": [
            {"id": "c-ok", "userId": "u-new", "timestamp": 3, "data": {"patientName": "Tom"}},
            {"id": "c-orphan", "userId": "ghost", "data": {}},
            {"id": "c-noowner", "data": {}},
        ],
    }}

    resp = await client.post("/api/import", json=backup, headers=admin.mutate)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["imported"] == {"users": 1, "cases": 1}
    assert {(f["kind"], f["id"]) for f in body["failed"]} == {
        ("user", "u-nohash"), ("user", "u-clash"), ("case", "c-orphan"), ("case", "c-noowner"),
    }

    login = await client.post("/api/auth/login", json={"email": "new@example.test", "password": "pw"})
    assert login.status_code == 200
    client.cookies.clear()
    token = login.json()["token"]
    cases = (await client.get("/api/cases", headers={"Authorization": f"Bearer {token}"})).json()
    assert [c["id"] for c in cases] == ["c-ok"]


async def test_import_updates_existing_user(client, admin_user, register_user):
    admin = await admin_user()
    vet = await register_user("vet@example.test", password="keep")

    backup = {"data": {"users": [{"id": vet.user_id, "email": "vet@example.test", "fullName": "Renamed"}]}}
    resp = await client.post("/api/import", json=backup, headers=admin.mutate)
    assert resp.json()["imported"] == {"users": 1, "cases": 0}

    me = (await client.get("/api/me", headers=vet.auth)).json()
    assert me["fullName"] == "Renamed"
    login = await client.post("/api/auth/login", json={"email": "vet@example.test", "password": "keep"})
    assert login.status_code == 200


async def test_import_needs_admin_and_csrf(client, admin_user, register_user):
    vet = await register_user("vet@example.test")
    admin = await admin_user()
    body = {"data": {}}

    assert (await client.post("/api/import", json=body, headers=vet.mutate)).status_code == 403
    assert (await client.post("/api/import", json=body, headers=admin.auth)).status_code == 403
    assert (await client.post("/api/import", json=body, headers=admin.mutate)).json()["success"] is True


async def test_import_refuses_items_that_would_not_read_back(client, admin_user, register_user):
    admin = await admin_user()
    vet = await register_user("vet@example.test")
    backup = {"data": {
        "users": [
            {"id": "u-legacy", "email": "legacy@example.test", "fullName": "Legacy",
             "passwordHash": hash_password("pw"), "savedScoringConfig": {"name": "legacy.csv"}},
            {"id": vet.user_id, "email": "vet@example.test", "isAdmin": "sometimes"},
        ],
        "cases": [
            {"id": "c-when", "userId": vet.user_id, "timestamp": "yesterday", "data": {}},
            {"id": "c-data", "userId": vet.user_id, "data": ["not", "an", "object"]},
            {"id": "c-results", "userId": vet.user_id, "results": "oops"},
            {"id": "c-good", "userId": vet.user_id, "timestamp": "42", "data": {"species": "Cat"}},
        ],
    }}

    resp = await client.post("/api/import", json=backup, headers=admin.mutate)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["imported"] == {"users": 0, "cases": 1}
    failed = {f["id"]: f["error"] for f in body["failed"]}
    assert set(failed) == {"u-legacy", vet.user_id, "c-when", "c-data", "c-results"}
    assert "savedScoringConfig.fileName" in failed["u-legacy"]
    assert "timestamp" in failed["c-when"]

    # nothing half-written breaks the read endpoints
    for path in ("/api/admin/users", "/api/admin/cases", "/api/admin/stats", "/api/export"):
        assert (await client.get(path, headers=admin.auth)).status_code == 200
    cases = (await client.get("/api/cases", headers=vet.auth)).json()
    assert [(c["id"], c["timestamp"]) for c in cases] == [("c-good", 42)]
    assert (await client.get("/api/me", headers=vet.auth)).json()["isAdmin"] is False


async def test_import_stores_valid_scoring_config(client, admin_user, register_user):
    admin = await admin_user()
    vet = await register_user("vet@example.test")
    config = {"fileName": "clinic.csv", "content": "a,b,c,d,e,f"}
    backup = {"data": {"users": [{"id": vet.user_id, "email": "vet@example.test", "savedScoringConfig": config}]}}

    resp = await client.post("/api/import", json=backup, headers=admin.mutate)
    assert resp.json()["success"] is True
    assert (await client.get("/api/me", headers=vet.auth)).json()["savedScoringConfig"] == config
