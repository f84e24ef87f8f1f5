"""
Test cases for the admin and manager endpoints.
"""
import pytest
import pytest_asyncio

from conftest import TEST_PASSWORD, bearer, login


@pytest_asyncio.fixture
async def admin_headers(client, store):
    await store.add_user("Root", "root@example.com", role="admin")
    tokens = await login(client, "root@example.com")
    return bearer(tokens["access_token"])


@pytest_asyncio.fixture
async def manager_headers(client, store):
    await store.add_user("Manny", "manny@example.com", role="manager")
    tokens = await login(client, "manny@example.com")
    return bearer(tokens["access_token"])


# --- User management ---

@pytest.mark.asyncio
async def test_list_users_paginates(client, store, admin_headers):
    for i in range(14):
        await store.add_user(f"User {i}", f"user{i}@example.com")

    response = await client.get("/api/admin/users", headers=admin_headers, params={"page": 2, "limit": 10})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 15
    assert data["page"] == 2
    assert data["limit"] == 10
    assert len(data["users"]) == 5
    assert all("password_hash" not in u for u in data["users"])


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [{"page": 0}, {"limit": 0}, {"limit": 101}])
async def test_list_users_rejects_bad_paging(client, admin_headers, params):
    response = await client.get("/api/admin/users", headers=admin_headers, params=params)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_user_with_role(client, store, admin_headers):
    manager = await store.find_role_by_name("manager")

    response = await client.post("/api/admin/users", headers=admin_headers, json={
        "name": "New Manager",
        "email": "boss@example.com",
        "password": TEST_PASSWORD,
        "role_id": manager.id,
    })

    assert response.status_code == 201
    assert response.json()["data"]["user"]["role"] == "manager"
    tokens = await login(client, "boss@example.com")
    assert tokens["user"]["role"] == "manager"


@pytest.mark.asyncio
async def test_create_user_unknown_role(client, admin_headers):
    response = await client.post("/api/admin/users", headers=admin_headers, json={
        "name": "X",
        "email": "x@example.com",
        "password": TEST_PASSWORD,
        "role_id": 99,
    })

    assert response.status_code == 404
    assert response.json()["message"] == "Role not found"


@pytest.mark.asyncio
async def test_create_user_duplicate_email(client, admin_headers):
    response = await client.post("/api/admin/users", headers=admin_headers, json={
        "name": "Root again",
        "email": "root@example.com",
        "password": TEST_PASSWORD,
    })

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_update_user_role_applies_on_next_login(client, store, admin_headers):
    identity = await store.add_user("A", "a@example.com")
    admin_role = await store.find_role_by_name("admin")
    old_tokens = await login(client, "a@example.com")

    response = await client.put(
        f"/api/admin/users/{identity.id}",
        headers=admin_headers,
        json={"name": "Promoted", "role_id": admin_role.id},
    )

    assert response.status_code == 200
    user = response.json()["data"]["user"]
    assert user["name"] == "Promoted"
    assert user["role"] == "admin"

    # Already issued tokens keep the role they were signed with
    response = await client.get("/api/admin/dashboard", headers=bearer(old_tokens["access_token"]))
    assert response.status_code == 403

    new_tokens = await login(client, "a@example.com")
    response = await client.get("/api/admin/dashboard", headers=bearer(new_tokens["access_token"]))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_update_user_email_conflict(client, store, admin_headers):
    identity = await store.add_user("A", "a@example.com")

    response = await client.put(
        f"/api/admin/users/{identity.id}",
        headers=admin_headers,
        json={"email": "root@example.com"},
    )

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_update_user_rejects_unknown_fields(client, store, admin_headers):
    identity = await store.add_user("A", "a@example.com")

    response = await client.put(
        f"/api/admin/users/{identity.id}",
        headers=admin_headers,
        json={"password_hash": "x"},
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_update_missing_user(client, admin_headers):
    response = await client.put("/api/admin/users/999", headers=admin_headers, json={"name": "X"})

    assert response.status_code == 404
    assert response.json()["message"] == "User not found"


@pytest.mark.asyncio
async def test_delete_user(client, store, admin_headers):
    identity = await store.add_user("A", "a@example.com")

    response = await client.delete(f"/api/admin/users/{identity.id}", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["data"] == {"user_id": identity.id}

    response = await client.delete(f"/api/admin/users/{identity.id}", headers=admin_headers)
    assert response.status_code == 404

    response = await client.post("/api/auth/login", json={"email": "a@example.com", "password": TEST_PASSWORD})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_manager_cannot_manage_users(client, store, manager_headers):
    identity = await store.add_user("A", "a@example.com")

    assert (await client.get("/api/admin/users", headers=manager_headers)).status_code == 403
    assert (await client.delete(f"/api/admin/users/{identity.id}", headers=manager_headers)).status_code == 403
    assert await store.find_by_id(identity.id) is not None


# --- Dashboards and reports ---

@pytest.mark.asyncio
async def test_admin_dashboard_stats(client, store, admin_headers):
    await store.add_user("Manny", "manny@example.com", role="manager")
    await store.add_user("A", "a@example.com")
    await store.add_user("B", "b@example.com")

    response = await client.get("/api/admin/dashboard", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["data"]["stats"] == {
        "total_users": 4,
        "total_admins": 1,
        "total_managers": 1,
    }


@pytest.mark.asyncio
async def test_manager_dashboard_lists_recent_users(client, store, manager_headers):
    for i in range(6):
        await store.add_user(f"User {i}", f"user{i}@example.com")

    response = await client.get("/api/manager/dashboard", headers=manager_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total_users"] == 7
    assert [u["email"] for u in data["recent_users"]] == [f"user{i}@example.com" for i in (5, 4, 3, 2, 1)]


@pytest.mark.asyncio
async def test_manager_reports_group_by_role(client, store, manager_headers):
    await store.add_user("Root", "root@example.com", role="admin")
    await store.add_user("A", "a@example.com")

    response = await client.get("/api/manager/reports", headers=manager_headers)

    assert response.status_code == 200
    reports = response.json()["data"]["reports"]
    assert reports["total_users"] == 3
    assert {role: len(users) for role, users in reports["users_by_role"].items()} == {
        "admin": 1,
        "manager": 1,
        "user": 1,
    }
