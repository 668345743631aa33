from sps.services.pagination import build_links, list_cache_key, paginate, validate_params

USERS = [
    {"id": 1, "name": "Alice", "type": "admin"},
    {"id": 2, "name": "Bob", "type": "user"},
    {"id": 3, "name": "alicia", "type": "user"},
    {"id": 4, "name": "Carol", "type": "user"},
]


def test_params_are_clamped():
    assert validate_params(0, 0) == (1, 1, 0)
    assert validate_params("3", "500") == (3, 100, 200)
    assert validate_params("abc", None) == (1, 10, 0)


def test_filters_apply_before_slicing():
    result = paginate(USERS, page=1, limit=1, filters={"name": "ALI"})
    assert [u["id"] for u in result["data"]] == [1]
    assert result["pagination"]["total"] == 2
    assert result["pagination"]["totalPages"] == 2
    assert result["pagination"]["nextPage"] == 2
    assert result["pagination"]["prevPage"] is None


def test_page_past_the_end_is_empty():
    result = paginate(USERS, page=9, limit=2)
    assert result["data"] == []
    assert result["pagination"]["hasNext"] is False
    assert result["pagination"]["hasPrev"] is True


def test_links_carry_limit_and_filters():
    pagination = paginate(USERS, page=2, limit=1, filters={"type": "user"})["pagination"]
    links = build_links("/api/users", pagination, {"type": "user"})
    assert links["self"] == "/api/users?page=2&limit=1&type=user"
    assert links["first"] == "/api/users?page=1&limit=1&type=user"
    assert links["last"] == "/api/users?page=3&limit=1&type=user"
    assert links["prev"].startswith("/api/users?page=1")
    assert links["next"].startswith("/api/users?page=3")


def test_empty_collection_links_point_at_page_one():
    pagination = paginate([], page=1, limit=10)["pagination"]
    links = build_links("/api/users", pagination)
    assert links["last"] == "/api/users?page=1&limit=10"
    assert "next" not in links and "prev" not in links


def test_list_cache_key_includes_filters():
    assert list_cache_key(1, 10) == "users:list:1:10"
    assert list_cache_key("2", "5", {"type": "user", "name": "a"}) == "users:list:2:5:name=a,type=user"
