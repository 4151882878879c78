"""User login and administration endpoints."""

from medscribe.auth import decode_access_token
from medscribe.table_store import PARTITION_KEY, ROW_KEY, TableStore
from medscribe.users import USER_PARTITION, USERS_TABLE

from conftest import PASSWORD, auth_header


def login(client, username, password=PASSWORD):
    return client.post("/users/login", json={"username": username, "password": password})


def test_login_success_returns_token_and_public_user(api_client):
    resp = login(api_client, "drsmith")
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["user"]["role"] == "doctor"
    assert data["user"]["lastLogin"]
    for field in ("passwordHash", "password", "salt", "partitionKey", "rowKey"):
        assert field not in data["user"]
    claims = decode_access_token(data["token"])
    assert claims["sub"] == "drsmith"
    assert claims["role"] == "doctor"


def test_login_is_case_insensitive_on_username(api_client):
    assert login(api_client, "DrSmith").status_code == 200


def test_validate_alias(api_client):
    resp = api_client.post("/users/validate", json={"username": "nurse", "password": PASSWORD})
    assert resp.status_code == 200


def test_login_bad_password(api_client):
    resp = login(api_client, "drsmith", "wrong-password")
    assert resp.status_code == 401
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "invalid_credentials"


def test_login_unknown_user_matches_bad_password(api_client):
    unknown = login(api_client, "nobody")
    assert unknown.status_code == 401
    assert unknown.json()["error"]["message"] == login(api_client, "drsmith", "bad").json()["error"]["message"]


def test_login_missing_fields(api_client):
    assert api_client.post("/users/login", json={"username": "drsmith"}).status_code == 400
    assert api_client.post("/users/login").status_code == 400


def test_login_disabled_account(api_client, headers):
    assert api_client.delete("/users/drsmith", headers=headers["super_admin"]).status_code == 204
    resp = login(api_client, "drsmith")
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "account_disabled"


def test_disabled_account_token_is_rejected(api_client, headers):
    api_client.delete("/users/drsmith", headers=headers["super_admin"])
    assert api_client.get("/patients", headers=headers["doctor"]).status_code == 401


def test_legacy_plaintext_password_is_rejected(api_client, engine):
    TableStore(engine, USERS_TABLE).create(
        {PARTITION_KEY: USER_PARTITION, ROW_KEY: "legacy", "id": "legacy", "username": "legacy", "password": "plain1"}
    )
    assert login(api_client, "legacy", "plain1").status_code == 401


def test_list_users_requires_manage_users(api_client, headers):
    resp = api_client.get("/users", headers=headers["admin"])
    assert resp.status_code == 200
    usernames = {u["username"] for u in resp.json()}
    assert {"chief", "drsmith", "nurse"} <= usernames
    assert all("passwordHash" not in u for u in resp.json())

    assert api_client.get("/users", headers=headers["doctor"]).status_code == 403
    assert api_client.get("/users").status_code == 401


def test_create_user(api_client, headers):
    payload = {"username": "NewDoc", "password": "longenough", "name": "New <b>Doc</b>", "role": "medical_provider"}
    resp = api_client.post("/users", json=payload, headers=headers["admin"])
    assert resp.status_code == 201
    user = resp.json()
    assert user["id"] == "newdoc"
    assert user["name"] == "New Doc"
    assert user["isActive"] is True
    assert login(api_client, "newdoc", "longenough").status_code == 200

    assert api_client.post("/users", json=payload, headers=headers["admin"]).status_code == 409


def test_create_user_validation(api_client, headers):
    short = {"username": "x", "password": "123", "name": "X"}
    assert api_client.post("/users", json=short, headers=headers["admin"]).status_code == 400
    bad_role = {"username": "x", "password": "123456", "name": "X", "role": "janitor"}
    assert api_client.post("/users", json=bad_role, headers=headers["admin"]).status_code == 400
    assert api_client.post("/users", json={"username": "x"}, headers=headers["admin"]).status_code == 400
    ok = {"username": "x", "password": "123456", "name": "X"}
    assert api_client.post("/users", json=ok, headers=headers["nurse"]).status_code == 403


def test_update_user_role(api_client, headers):
    resp = api_client.put("/users/nurse", json={"role": "staff"}, headers=headers["admin"])
    assert resp.status_code == 200
    assert resp.json()["role"] == "staff"
    assert api_client.put("/users/nobody", json={"name": "x"}, headers=headers["admin"]).status_code == 404


def test_cannot_delete_own_account(api_client, headers):
    resp = api_client.delete("/users/chief", headers=headers["super_admin"])
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "You cannot delete your own account"


def test_delete_requires_delete_users(api_client, headers):
    assert api_client.delete("/users/nurse", headers=headers["admin"]).status_code == 403


def test_change_own_password(api_client, headers):
    resp = api_client.post(
        "/users/drsmith/password",
        json={"currentPassword": PASSWORD, "newPassword": "brand-new-pass"},
        headers=headers["doctor"],
    )
    assert resp.status_code == 200
    assert login(api_client, "drsmith", "brand-new-pass").status_code == 200
    assert login(api_client, "drsmith").status_code == 401


def test_change_own_password_requires_current(api_client, headers):
    resp = api_client.post(
        "/users/drsmith/password",
        json={"currentPassword": "wrong", "newPassword": "brand-new-pass"},
        headers=headers["doctor"],
    )
    assert resp.status_code == 401


def test_password_reset_by_other_user_requires_manage_users(api_client, headers):
    body = {"newPassword": "reset-pass"}
    assert api_client.post("/users/nurse/password", json=body, headers=headers["doctor"]).status_code == 403
    assert api_client.post("/users/nurse/password", json=body, headers=headers["admin"]).status_code == 200
    assert login(api_client, "nurse", "reset-pass").status_code == 200


def test_invalid_token_is_rejected(api_client):
    resp = api_client.get("/patients", headers=auth_header("not-a-jwt"))
    assert resp.status_code == 401
    assert resp.json()["success"] is False
