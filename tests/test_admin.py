import pytest
from sqlalchemy import func, select

from mozarela.config import settings
from mozarela.models.case import Case
from mozarela.models.session import Session
from mozarela.models.user import User

ADMIN_READS = ["/api/admin/stats", "/api/admin/users", "/api/admin/cases", "/api/export"]


@pytest.mark.parametrize("path", ADMIN_READS)
async def test_non_admin_is_forbidden_not_hidden(client, register_user, path):
    vet = await register_user("plain@example.test")

    resp = await client.get(path, headers=vet.auth)
    assert resp.status_code == 403
    assert resp.json()["error"] == "Admin access required"

    assert (await client.get(path)).status_code == 401


async def test_non_admin_mutations_forbidden(client, register_user):
    vet = await register_user("plain@example.test")
    other = await register_user("target@example.test")

    assert (await client.delete(f"/api/admin/users/{other.user_id}", headers=vet.mutate)).status_code == 403
    assert (await client.patch(f"/api/admin/users/{other.user_id}/toggle-admin", headers=vet.mutate)).status_code == 403
    assert (await client.delete("/api/admin/cases/x", headers=vet.mutate)).status_code == 403


async def test_admin_mutations_need_csrf(client, admin_user, register_user):
    admin = await admin_user()
    other = await register_user("target@example.test")

    resp = await client.patch(f"/api/admin/users/{other.user_id}/toggle-admin", headers=admin.auth)
    assert resp.status_code == 403
    assert resp.json()["error"] == "Missing CSRF token"


async def test_stats_and_listings(client, admin_user, register_user):
    admin = await admin_user()
    vet = await register_user("vet@example.test", full_name="Dr. Vet")
    await client.post("/api/cases", headers=vet.mutate, json={
        "id": "c1", "timestamp": 5, "data": {"patientName": "Rex", "species": "Dog", "analysisMode": "AI"},
    })

    stats = (await client.get("/api/admin/stats", headers=admin.auth)).json()
    assert stats["users"]["total"] == 2
    assert stats["cases"]["total"] == 1
    assert stats["sessions"]["total"] == 2
    assert stats["cases"]["recent"][0]["preview"]["patientName"] == "Rex"

    users = (await client.get("/api/admin/users", headers=admin.auth)).json()
    assert [u["email"] for u in users] == ["admin@example.test", "vet@example.test"]
    assert users[0]["isAdmin"] is True

    cases = (await client.get("/api/admin/cases", headers=admin.auth)).json()
    assert cases[0]["userEmail"] == "vet@example.test"
    assert cases[0]["userFullName"] == "Dr. Vet"
    assert cases[0]["analysisMode"] == "AI"
    assert cases[0]["species"] == "Dog"


async def test_admin_cannot_delete_or_demote_self(client, admin_user):
    admin = await admin_user()

    delete = await client.delete(f"/api/admin/users/{admin.user_id}", headers=admin.mutate)
    assert delete.status_code == 400
    assert delete.json()["error"] == "Cannot delete your own account"

    toggle = await client.patch(f"/api/admin/users/{admin.user_id}/toggle-admin", headers=admin.mutate)
    assert toggle.status_code == 400
    assert (await client.get("/api/admin/stats", headers=admin.auth)).status_code == 200


async def test_toggle_admin(client, admin_user, register_user):
    admin = await admin_user()
    vet = await register_user("promote@example.test")

    on = await client.patch(f"/api/admin/users/{vet.user_id}/toggle-admin", headers=admin.mutate)
    assert on.json() == {"success": True, "isAdmin": True}
    assert (await client.get("/api/admin/stats", headers=vet.auth)).status_code == 200

    off = await client.patch(f"/api/admin/users/{vet.user_id}/toggle-admin", headers=admin.mutate)
    assert off.json() == {"success": True, "isAdmin": False}
    assert (await client.get("/api/admin/stats", headers=vet.auth)).status_code == 403

    missing = await client.patch("/api/admin/users/nope/toggle-admin", headers=admin.mutate)
    assert missing.status_code == 404


async def test_delete_user_cascades(client, admin_user, register_user, session_factory):
    admin = await admin_user()
    vet = await register_user("doomed@example.test")
    await client.post("/api/cases", json={"id": "doomed-case", "data": {}}, headers=vet.mutate)

    resp = await client.delete(f"/api/admin/users/{vet.user_id}", headers=admin.mutate)
    assert resp.json() == {"success": True}

    async with session_factory() as s:
        assert await s.get(User, vet.user_id) is None
        sessions = await s.scalar(select(func.count()).select_from(Session).where(Session.user_id == vet.user_id))
        cases = await s.scalar(select(func.count()).select_from(Case).where(Case.user_id == vet.user_id))
    assert sessions == 0
    assert cases == 0
    assert (await client.get("/api/me", headers=vet.auth)).status_code == 401

    again = await client.delete(f"/api/admin/users/{vet.user_id}", headers=admin.mutate)
    assert again.status_code == 404


async def test_admin_delete_case(client, admin_user, register_user):
    admin = await admin_user()
    vet = await register_user("vet@example.test")
    await client.post("/api/cases", json={"id": "c", "data": {}}, headers=vet.mutate)

    assert (await client.delete("/api/admin/cases/c", headers=admin.mutate)).json() == {"success": True}
    assert (await client.delete("/api/admin/cases/c", headers=admin.mutate)).status_code == 404


async def test_backup_download(client, admin_user, tmp_path, monkeypatch):
    admin = await admin_user()
    db_file = tmp_path / "backup-source.db"
    db_file.write_bytes(b"SQLite format 3\x00")
    monkeypatch.setattr(settings, "database_url", f"sqlite+aiosqlite:///{db_file}")

    resp = await client.get("/api/admin/backup", headers=admin.auth)
    assert resp.status_code == 200
    assert resp.content == b"SQLite format 3\x00"
    assert "mozarela-backup-" in resp.headers["content-disposition"]

    monkeypatch.setattr(settings, "database_url", f"sqlite+aiosqlite:///{tmp_path / 'missing.db'}")
    assert (await client.get("/api/admin/backup", headers=admin.auth)).status_code == 404

    monkeypatch.setattr(settings, "database_url", "postgresql+asyncpg://u:p@localhost/db")
    assert (await client.get("/api/admin/backup", headers=admin.auth)).status_code == 400
