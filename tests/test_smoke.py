import pytest
from werkzeug.security import generate_password_hash

from app.grc import create_app
from app.grc.db import session_scope
from app.grc.models import Base, Permission, Role, User


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        p = Permission(key="frameworks.view", name="Frameworks: view")
        r = Role(key="admin", name="Administrator")
        r.permissions.append(p)
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        s.add_all([p, r, u])

    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_and_admin_access(client):
    # Anonymous must authenticate
    r = client.get("/admin/frameworks")
    assert r.status_code == 401

    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["csrf_token"]

    r = client.get("/admin/frameworks")
    assert r.status_code == 200
    assert r.json["frameworks"] == []

    r = client.get("/auth/logout")
    assert r.status_code == 200
    assert client.get("/admin/frameworks").status_code == 401


def test_bad_password_rejected(client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json["ok"] is False


def test_unsafe_methods_require_csrf(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    r = client.post("/admin/frameworks/validate", json={})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]


def test_unknown_route_is_json_404(client):
    r = client.get("/nope")
    assert r.status_code == 404
    assert r.json["error"] == "Not found."
