from sps.models.audit import AuditFilters

from conftest import STRONG_PASSWORD


def _create(client, headers, email, name="Test User", type_="user"):
    return client.post(
        "/api/users",
        json={"name": name, "email": email, "type": type_, "password": STRONG_PASSWORD},
        headers=headers,
    )


def test_create_then_get_round_trip_without_password(client, auth_headers):
    res = _create(client, auth_headers, "jane@example.com", name="Jane")
    assert res.status_code == 201, res.text
    created = res.json()["data"]
    assert created == {"id": 2, "name": "Jane", "email": "jane@example.com", "type": "user"}

    res = client.get(f"/api/users/{created['id']}", headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["data"] == created


def test_create_rejects_duplicate_email(client, auth_headers):
    assert _create(client, auth_headers, "dup@example.com").status_code == 201
    res = _create(client, auth_headers, "dup@example.com")
    assert res.status_code == 400
    assert res.json()["error"] == "Email already registered"


def test_create_rejects_weak_password(client, auth_headers):
    res = client.post(
        "/api/users",
        json={"name": "Weak", "email": "weak@example.com", "type": "user", "password": "password"},
        headers=auth_headers,
    )
    assert res.status_code == 400
    assert res.json()["details"][0]["field"] == "password"


def test_update_user(client, auth_headers, container):
    user_id = _create(client, auth_headers, "old@example.com").json()["data"]["id"]

    res = client.put(f"/api/users/{user_id}", json={"email": "new@example.com"}, headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["data"]["email"] == "new@example.com"

    updates = container.audit.query(AuditFilters(action="user_updated")).entries
    assert updates[0].resource_id == str(user_id)
    assert updates[0].details == {"changedFields": ["email"]}


def test_update_requires_a_field_and_existing_user(client, auth_headers):
    assert client.put("/api/users/1", json={}, headers=auth_headers).status_code == 400
    assert client.put("/api/users/404", json={"name": "Ghost"}, headers=auth_headers).status_code == 404


def test_update_to_taken_email_is_rejected(client, auth_headers):
    a = _create(client, auth_headers, "a@example.com").json()["data"]
    _create(client, auth_headers, "b@example.com")
    res = client.put(f"/api/users/{a['id']}", json={"email": "b@example.com"}, headers=auth_headers)
    assert res.status_code == 400


def test_primary_admin_cannot_be_deleted(client, auth_headers):
    res = client.delete("/api/users/1", headers=auth_headers)
    assert res.status_code == 403
    assert res.json()["success"] is False


def test_delete_succeeds_once(client, auth_headers):
    user_id = _create(client, auth_headers, "gone@example.com").json()["data"]["id"]
    res = client.delete(f"/api/users/{user_id}", headers=auth_headers)
    assert res.status_code == 204
    assert res.content == b""
    assert client.delete(f"/api/users/{user_id}", headers=auth_headers).status_code == 404
    assert client.get(f"/api/users/{user_id}", headers=auth_headers).status_code == 404


def test_invalid_id_is_400(client, auth_headers):
    for bad in ("abc", "0", "-1"):
        res = client.get(f"/api/users/{bad}", headers=auth_headers)
        assert res.status_code == 400, bad
        assert res.json()["error"] == "Invalid ID"


def test_pagination_over_25_users(client, auth_headers):
    for i in range(24):
        assert _create(client, auth_headers, f"user{i}@example.com").status_code == 201

    res = client.get("/api/users?page=2&limit=10", headers=auth_headers)
    assert res.status_code == 200
    data = res.json()["data"]
    assert len(data["users"]) == 10
    pagination = data["pagination"]
    assert pagination["total"] == 25
    assert pagination["totalPages"] == 3
    assert pagination["hasNext"] is True
    assert pagination["hasPrev"] is True
    assert (pagination["prevPage"], pagination["nextPage"]) == (1, 3)
    assert data["links"]["next"] == "/api/users?page=3&limit=10"
    assert data["links"]["last"] == "/api/users?page=3&limit=10"


def test_list_filters(client, auth_headers):
    _create(client, auth_headers, "maria@example.com", name="Maria Silva")
    _create(client, auth_headers, "joao@example.com", name="Joao", type_="admin")

    res = client.get("/api/users?name=silva", headers=auth_headers)
    assert [u["email"] for u in res.json()["data"]["users"]] == ["maria@example.com"]

    res = client.get("/api/users?type=admin", headers=auth_headers)
    emails = [u["email"] for u in res.json()["data"]["users"]]
    assert emails == ["admin@spsgroup.com.br", "joao@example.com"]
    assert res.json()["data"]["links"]["self"] == "/api/users?page=1&limit=10&type=admin"


def test_list_clamps_page_and_limit(client, auth_headers):
    res = client.get("/api/users?page=0&limit=500", headers=auth_headers)
    pagination = res.json()["data"]["pagination"]
    assert (pagination["page"], pagination["limit"]) == (1, 100)


def test_list_cache_miss_hit_then_miss_after_mutation(client, auth_headers):
    first = client.get("/api/users", headers=auth_headers)
    assert first.headers["X-Cache"] == "MISS"
    assert first.headers["X-Cache-Key"] == "users:list:1:10"
    assert first.headers["X-Cache-TTL"] == "600"

    second = client.get("/api/users", headers=auth_headers)
    assert second.headers["X-Cache"] == "HIT"
    assert second.json() == first.json()

    _create(client, auth_headers, "fresh@example.com")
    third = client.get("/api/users", headers=auth_headers)
    assert third.headers["X-Cache"] == "MISS"
    assert third.json()["data"]["pagination"]["total"] == 2


def test_item_cache_invalidated_by_update(client, auth_headers):
    user_id = _create(client, auth_headers, "cached@example.com").json()["data"]["id"]
    assert client.get(f"/api/users/{user_id}", headers=auth_headers).headers["X-Cache"] == "MISS"
    assert client.get(f"/api/users/{user_id}", headers=auth_headers).headers["X-Cache"] == "HIT"

    client.put(f"/api/users/{user_id}", json={"name": "Renamed"}, headers=auth_headers)
    res = client.get(f"/api/users/{user_id}", headers=auth_headers)
    assert res.headers["X-Cache"] == "MISS"
    assert res.json()["data"]["name"] == "Renamed"


def test_filtered_lists_use_distinct_cache_keys(client, auth_headers):
    client.get("/api/users", headers=auth_headers)
    res = client.get("/api/users?type=admin", headers=auth_headers)
    assert res.headers["X-Cache"] == "MISS"
    assert res.headers["X-Cache-Key"] == "users:list:1:10:type=admin"


def test_not_found_is_not_cached(client, auth_headers, container):
    assert client.get("/api/users/77", headers=auth_headers).status_code == 404
    assert container.backend.get("user:77") is None


def test_mutations_are_audited(client, auth_headers, container):
    user_id = _create(client, auth_headers, "audited@example.com").json()["data"]["id"]
    client.delete(f"/api/users/{user_id}", headers=auth_headers)

    created = container.audit.query(AuditFilters(action="user_created")).entries
    deleted = container.audit.query(AuditFilters(action="user_deleted")).entries
    assert created[0].user_id == 1
    assert created[0].resource_id == str(user_id)
    assert deleted[0].resource_id == str(user_id)
    assert container.backend.get_counter("users_created") == 1
    assert container.backend.get_counter("users_deleted") == 1


def test_email_is_stored_exactly_as_submitted(client, auth_headers):
    res = _create(client, auth_headers, "Jane@Example.COM", name="Jane")
    assert res.status_code == 201, res.text
    assert res.json()["data"]["email"] == "Jane@Example.COM"

    fetched = client.get(f"/api/users/{res.json()['data']['id']}", headers=auth_headers).json()["data"]
    assert fetched["email"] == "Jane@Example.COM"


def test_malformed_email_is_rejected(client, auth_headers):
    res = _create(client, auth_headers, "not-an-email")
    assert res.status_code == 400
    assert res.json()["details"][0]["field"] == "email"


def test_response_read_before_concurrent_update_is_not_cached(client, auth_headers, container, monkeypatch):
    user_id = _create(client, auth_headers, "race@example.com", name="Old Name").json()["data"]["id"]
    read_user = container.users.get

    def read_then_update(uid):
        user = read_user(uid)
        # another request updates the user while this response is in flight
        container.users.update(uid, {"name": "New Name"})
        return user

    monkeypatch.setattr(container.users, "get", read_then_update)
    stale = client.get(f"/api/users/{user_id}", headers=auth_headers)
    assert stale.json()["data"]["name"] == "Old Name"
    assert container.backend.get(f"user:{user_id}") is None

    monkeypatch.setattr(container.users, "get", read_user)
    res = client.get(f"/api/users/{user_id}", headers=auth_headers)
    assert res.headers["X-Cache"] == "MISS"
    assert res.json()["data"]["name"] == "New Name"
