"""Tests for the framework admin endpoints (catalog, upload, detail, delete)."""
import copy
import io
import json

import pytest
from werkzeug.security import generate_password_hash

from app.grc import create_app
from app.grc.db import session_scope
from app.grc.models import Base, Permission, Role, User
from app.grc.modules.framework_plugins.models import Framework, Requirement

DEMO = {
    "manifest": {
        "id": "demo-std-1",
        "slug": "demo-std",
        "name": "Demo Standard",
        "version": "1.0",
        "author": "Compliance Team",
        "description": "A demo standard.",
        "type": "General",
    },
    "content": {
        "phases": [{"name": "Plan", "order": 1}],
        "requirements": [
            {"identifier": "DS-1", "title": "Do the thing", "description": "...", "phaseName": "Plan"},
            {"identifier": "DS-2", "title": "Orphan", "description": "...", "phaseName": "Later"},
        ],
    },
}


def _seed_all_permissions(s):
    """Seed all permissions needed for framework admin tests."""
    perm_keys = [
        ("admin.view", "Admin: view shell"),
        ("frameworks.view", "Frameworks: view"),
        ("frameworks.install", "Frameworks: install"),
        ("frameworks.delete", "Frameworks: delete"),
    ]
    perms = []
    for key, name in perm_keys:
        p = Permission(key=key, name=name)
        s.add(p)
        perms.append(p)
    return perms


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.delenv("FRAMEWORK_CATALOG_PATH", raising=False)
    monkeypatch.delenv("FRAMEWORK_RETIRE_MISSING", raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = _seed_all_permissions(s)
        admin = Role(key="admin", name="Administrator")
        for p in perms:
            admin.permissions.append(p)
        viewer = Role(key="viewer", name="Viewer")
        viewer.permissions.append(perms[1])
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(admin)
        v = User(email="viewer@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        v.roles.append(viewer)
        s.add_all([admin, viewer, u, v])

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email="admin@example.com"):
    r = client.post("/auth/login", data={"email": email, "password": "pw"})
    assert r.status_code == 200
    return {"X-CSRF-Token": r.json["csrf_token"]}


def _upload(client, headers, package):
    return client.post(
        "/admin/frameworks/upload",
        data=json.dumps(package),
        content_type="application/json",
        headers=headers,
    )


def test_catalog_requires_auth(client):
    assert client.get("/admin/frameworks/catalog").status_code == 401
    assert client.post("/admin/frameworks/catalog/soc2-2017/install").status_code in (400, 401)


def test_catalog_list_and_install(client):
    headers = _login(client)
    r = client.get("/admin/frameworks/catalog")
    assert r.status_code == 200
    packages = {p["package_id"]: p for p in r.json["packages"]}
    assert packages["iso27001-2022"]["installed"] is False
    assert packages["iso27001-2022"]["type"] == "Security"

    r = client.post("/admin/frameworks/catalog/iso27001-2022/install", headers=headers)
    assert r.status_code == 200
    assert r.json["success"] is True
    assert r.json["framework_created"] is True
    assert r.json["requirements"]["created"] == 10

    r = client.get("/admin/frameworks/catalog")
    packages = {p["package_id"]: p for p in r.json["packages"]}
    assert packages["iso27001-2022"]["installed"] is True
    assert packages["iso27001-2022"]["installed_version"] == "2022.1"
    assert packages["iso27001-2022"]["update_available"] is False

    r = client.post("/admin/frameworks/catalog/iso27001-2022/install", headers=headers)
    assert r.status_code == 200
    assert r.json["framework_created"] is False
    assert r.json["requirements"]["unchanged"] == 10


def test_catalog_install_unknown_package(client):
    headers = _login(client)
    r = client.post("/admin/frameworks/catalog/nist-800-53/install", headers=headers)
    assert r.status_code == 404
    assert "nist-800-53" in r.json["error"]


def test_upload_creates_then_updates(app, client):
    headers = _login(client)
    r = _upload(client, headers, DEMO)
    assert r.status_code == 201
    assert r.json["warnings"][0]["code"] == "unknown_phase"
    assert r.json["warnings"][0]["requirement"] == "DS-2"
    framework_id = r.json["framework_id"]

    updated = copy.deepcopy(DEMO)
    updated["manifest"]["version"] = "1.1"
    r = _upload(client, headers, updated)
    assert r.status_code == 200
    assert r.json["framework_id"] == framework_id

    with session_scope(app) as s:
        assert s.query(Framework).count() == 1
        assert s.query(Requirement).count() == 2
        assert s.get(Framework, framework_id).version == "1.1"


def test_upload_multipart_file(client):
    headers = _login(client)
    data = {"file": (io.BytesIO(json.dumps(DEMO).encode("utf-8")), "demo.json")}
    r = client.post("/admin/frameworks/upload", data=data, headers=headers, content_type="multipart/form-data")
    assert r.status_code == 201
    assert r.json["slug"] == "demo-std"


def test_upload_rejects_non_json_file(client):
    headers = _login(client)
    data = {"file": (io.BytesIO(b"manifest: {}"), "demo.yaml")}
    r = client.post("/admin/frameworks/upload", data=data, headers=headers, content_type="multipart/form-data")
    assert r.status_code == 400
    assert r.json["fields"][0]["path"] == "<root>"


def test_invalid_upload_shows_field_paths(app, client):
    headers = _login(client)
    bad = copy.deepcopy(DEMO)
    bad["manifest"]["type"] = "Nonsense"
    del bad["content"]["requirements"][0]["identifier"]
    r = _upload(client, headers, bad)
    assert r.status_code == 400
    assert r.json["error"] == "Invalid framework package."
    paths = {f["path"] for f in r.json["fields"]}
    assert paths == {"manifest.type", "content.requirements[0].identifier"}

    with session_scope(app) as s:
        assert s.query(Framework).count() == 0


def test_validate_does_not_write(app, client):
    headers = _login(client)
    r = client.post(
        "/admin/frameworks/validate",
        data=json.dumps(DEMO),
        content_type="application/json",
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["requirements"] == 2
    with session_scope(app) as s:
        assert s.query(Framework).count() == 0


def test_empty_upload(client):
    headers = _login(client)
    r = client.post("/admin/frameworks/upload", data=b"", content_type="application/json", headers=headers)
    assert r.status_code == 400
    assert r.json["fields"][0]["message"] == "No package provided."


def test_viewer_cannot_install(client):
    headers = _login(client, email="viewer@example.com")
    assert client.get("/admin/frameworks").status_code == 200
    r = _upload(client, headers, DEMO)
    assert r.status_code == 403
    assert r.json["missing_permission"] == "frameworks.install"


def test_detail_delete_and_runs(client):
    headers = _login(client)
    framework_id = _upload(client, headers, DEMO).json["framework_id"]

    r = client.get("/admin/frameworks")
    (fw,) = r.json["frameworks"]
    assert fw["slug"] == "demo-std"
    assert fw["phase_count"] == 1
    assert fw["requirement_count"] == 2

    r = client.get(f"/admin/frameworks/{framework_id}")
    assert r.status_code == 200
    phase_id = r.json["phases"][0]["id"]
    reqs = {q["identifier"]: q for q in r.json["requirements"]}
    assert reqs["DS-1"]["phase_id"] == phase_id
    assert reqs["DS-2"]["phase_id"] is None

    r = client.get("/admin/frameworks/runs")
    (run,) = r.json["runs"]
    assert run["source"] == "upload"
    assert run["framework_id"] == framework_id
    assert run["warnings"][0]["phase_name"] == "Later"

    r = client.delete(f"/admin/frameworks/{framework_id}", json={"reason": "test cleanup"}, headers=headers)
    assert r.status_code == 200
    assert r.json == {"ok": True, "deleted": framework_id}
    assert client.get(f"/admin/frameworks/{framework_id}").status_code == 404
    assert client.get("/admin/frameworks").json["frameworks"] == []


def test_catalog_install_malformed_package(app, client, tmp_path):
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    app.config["FRAMEWORK_CATALOG_PATH"] = str(tmp_path)
    headers = _login(client)

    r = client.get("/admin/frameworks/catalog")
    assert r.status_code == 200
    (entry,) = r.json["packages"]
    assert entry["valid"] is False

    r = client.post("/admin/frameworks/catalog/broken/install", headers=headers)
    assert r.status_code == 400
    assert r.json["fields"][0]["path"] == "<root>"
    with session_scope(app) as s:
        assert s.query(Framework).count() == 0
