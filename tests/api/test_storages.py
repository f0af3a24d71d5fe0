"""API tests for /api/storages: sessions and storage management."""

from datetime import timedelta

from clist.api.auth import issue_session_token
from clist.api.dependencies import shared_mock_connection
from clist.config.settings import get_settings
from clist.infrastructure.snowflake.repositories.storages import StorageRepository


class TestLogin:

    def test_login_sets_http_only_cookie(self, client):
        response = client.post(
            "/api/storages",
            json={"action": "login", "username": "admin", "password": "test-password"},
        )
        assert response.status_code == 200
        assert response.json() == {"success": True}
        set_cookie = response.headers["set-cookie"]
        assert "clist_session=" in set_cookie
        assert "HttpOnly" in set_cookie

        assert client.get("/api/storages").json()["isAdmin"] is True

    def test_wrong_password(self, client):
        response = client.post(
            "/api/storages",
            json={"action": "login", "username": "admin", "password": "nope"},
        )
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid username or password"}

    def test_login_requires_fields(self, client):
        response = client.post("/api/storages", json={"action": "login", "username": "admin"})
        assert response.status_code == 400
        assert "password" in response.json()["error"]

    def test_logout_clears_session(self, admin_client):
        response = admin_client.post("/api/storages", json={"action": "logout"})
        assert response.status_code == 200
        assert admin_client.get("/api/storages").json()["isAdmin"] is False

    def test_bearer_token_is_accepted(self, client):
        token = issue_session_token(get_settings())
        response = client.get("/api/storages", headers={"Authorization": f"Bearer {token}"})
        assert response.json()["isAdmin"] is True

    def test_expired_bearer_token_is_ignored(self, client):
        token = issue_session_token(get_settings(), expires_delta=timedelta(minutes=-5))
        response = client.get("/api/storages", headers={"Authorization": f"Bearer {token}"})
        assert response.json()["isAdmin"] is False

    def test_other_authorization_schemes_are_ignored(self, client):
        token = issue_session_token(get_settings())
        response = client.get("/api/storages", headers={"Authorization": f"Basic {token}"})
        assert response.json()["isAdmin"] is False

    def test_unknown_action(self, client):
        response = client.post("/api/storages", json={"action": "dance"})
        assert response.status_code == 400
        assert "dance" in response.json()["error"]


class TestListStorages:

    def test_visitors_see_public_only(self, client, create_storage):
        create_storage(name="Public")
        create_storage(name="Private", isPublic=False)

        body = client.get("/api/storages").json()
        assert body["isAdmin"] is False
        assert [s["name"] for s in body["storages"]] == ["Public"]

    def test_admin_sees_everything(self, admin_client, create_storage):
        create_storage(name="Public")
        create_storage(name="Private", isPublic=False)

        body = admin_client.get("/api/storages").json()
        assert body["isAdmin"] is True
        assert [s["name"] for s in body["storages"]] == ["Public", "Private"]

    def test_secret_never_returned(self, admin_client, create_storage):
        create_storage()
        response = admin_client.get("/api/storages")
        assert "top-secret" not in response.text
        assert "secretAccessKey" not in response.json()["storages"][0]


class TestCreateStorage:

    def test_create(self, admin_client, storage_payload):
        response = admin_client.post("/api/storages", json=storage_payload)
        assert response.status_code == 201
        storage = response.json()["storage"]
        assert storage["id"] == 1
        assert storage["accessKeyId"] == "AKIA"
        assert storage["isPublic"] is True
        assert "top-secret" not in response.text

    def test_requires_admin(self, client, storage_payload):
        response = client.post("/api/storages", json=storage_payload)
        assert response.status_code == 401
        assert response.json() == {"error": "Administrator login required"}

    def test_missing_fields(self, admin_client):
        response = admin_client.post("/api/storages", json={"name": "Only a name"})
        assert response.status_code == 400

    def test_invalid_endpoint(self, admin_client, storage_payload):
        response = admin_client.post("/api/storages", json={**storage_payload, "endpoint": "r2.local"})
        assert response.status_code == 400
        assert "Endpoint" in response.json()["error"]

    def test_base_path_is_normalized(self, admin_client, storage_payload):
        response = admin_client.post("/api/storages", json={**storage_payload, "basePath": "/media/2024/"})
        assert response.json()["storage"]["basePath"] == "media/2024"


class TestUpdateStorage:

    def test_partial_update(self, admin_client, create_storage):
        storage = create_storage()
        response = admin_client.put("/api/storages", json={"id": storage["id"], "name": "Renamed"})
        assert response.status_code == 200
        updated = response.json()["storage"]
        assert updated["name"] == "Renamed"
        assert updated["bucket"] == "media"

    def test_blank_secret_keeps_stored_one(self, admin_client, create_storage):
        storage = create_storage()
        admin_client.put(
            "/api/storages",
            json={"id": storage["id"], "secretAccessKey": "", "bucket": "other"},
        )

        stored = StorageRepository(shared_mock_connection()).get(storage["id"])
        assert stored.secret_access_key == "top-secret"
        assert stored.bucket == "other"

    def test_new_secret_replaces_old(self, admin_client, create_storage):
        storage = create_storage()
        admin_client.put("/api/storages", json={"id": storage["id"], "secretAccessKey": "rotated"})

        stored = StorageRepository(shared_mock_connection()).get(storage["id"])
        assert stored.secret_access_key == "rotated"

    def test_unknown_storage(self, admin_client):
        response = admin_client.put("/api/storages", json={"id": 42, "name": "x"})
        assert response.status_code == 404

    def test_requires_admin(self, client, create_storage):
        storage = create_storage()
        response = client.put("/api/storages", json={"id": storage["id"], "name": "x"})
        assert response.status_code == 401


class TestDeleteStorage:

    def test_delete(self, admin_client, create_storage):
        storage = create_storage()
        response = admin_client.delete(f"/api/storages?id={storage['id']}")
        assert response.status_code == 200
        assert admin_client.get("/api/storages").json()["storages"] == []

    def test_delete_unknown(self, admin_client):
        assert admin_client.delete("/api/storages?id=9").status_code == 404

    def test_requires_admin(self, client, create_storage):
        storage = create_storage()
        assert client.delete(f"/api/storages?id={storage['id']}").status_code == 401
