import pytest

from mozarela import cli


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


async def test_legacy_items(client):
    assert (await client.get("/api/items")).json() == []

    assert (await client.post("/api/items", json={"name": "gauze"})).json() == {"success": True}
    assert (await client.post("/api/items", json={"name": ""})).status_code == 400

    assert (await client.get("/api/items")).json() == [{"id": 1, "name": "gauze"}]


def test_cli_parser():
    args = cli.build_parser().parse_args(["create", "--email", "a@b.test", "--full-name", "Dr. A"])
    assert (args.command, args.email, args.full_name, args.clinic_name) == ("create", "a@b.test", "Dr. A", None)

    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["promote"])


def test_cli_password_from_environment(monkeypatch):
    monkeypatch.setenv(cli.PASSWORD_ENV, "from-env")
    assert cli._read_password() == "from-env"
