from conftest import DEV_WALLET, OUTSIDER, STUDENT_1, STUDENT_2, as_wallet, build_client

NEW_STUDENT = "0x5555555555555555555555555555555555555555"


# --- /api/users/check

def test_check_by_body(client):
    resp = client.post("/api/users/check", json={"walletAddress": STUDENT_1})
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["walletAddress"] == STUDENT_1
    assert data["isRegistered"] is True
    assert data["role"] == "student"
    assert data["isAdmin"] is False
    assert data["studentInfo"] == {"name": "Zhang San", "studentId": "2023001"}


def test_check_by_header(client):
    resp = client.post("/api/users/check", headers=as_wallet(DEV_WALLET))
    assert resp.status_code == 200
    data = resp.json()
    assert data["role"] == "owner"
    assert data["isOwner"] is True
    assert data["isAdmin"] is True
    assert data["isSystem"] is True


def test_check_checksum_address_is_normalized(client):
    resp = client.post("/api/users/check", json={"walletAddress": "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"})
    assert resp.json()["walletAddress"] == DEV_WALLET


def test_check_unregistered(client):
    data = client.post("/api/users/check", json={"walletAddress": OUTSIDER}).json()
    assert data["isRegistered"] is False
    assert data["role"] is None
    assert data["studentInfo"] is None


def test_check_without_address_outside_development(client):
    resp = client.post("/api/users/check")
    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_check_without_address_in_development_uses_dev_wallet():
    """В development без адреса используется кошелёк разработчика"""
    client = build_client(ENVIRONMENT="development")
    resp = client.post("/api/users/check")
    assert resp.status_code == 200
    assert resp.json()["walletAddress"] == DEV_WALLET
    assert resp.json()["role"] == "owner"


def test_check_malformed_address(client):
    resp = client.post("/api/users/check", json={"walletAddress": "0x1234"})
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "message": "Invalid wallet address", "error": "HTTPError"}


def test_check_unavailable_in_production_without_fallback():
    client = build_client(ENVIRONMENT="production", ALLOW_MOCK_FALLBACK=False)
    resp = client.post("/api/users/check", json={"walletAddress": STUDENT_1})
    assert resp.status_code == 503
    assert resp.json()["error"] == "ServiceUnavailable"


# --- Регистрация

def test_register(client):
    resp = client.post("/api/users/register", json={
        "walletAddress": NEW_STUDENT, "name": "Zhao Liu", "studentId": "2023004",
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["userInfo"] == {"address": NEW_STUDENT, "name": "Zhao Liu",
                                "studentId": "2023004", "isRegistered": True}
    assert data["transactionHash"].startswith("0x")

    check = client.post("/api/users/check", json={"walletAddress": NEW_STUDENT}).json()
    assert check["role"] == "student"


def test_register_duplicate_returns_existing_user(client):
    resp = client.post("/api/users/register", json={
        "walletAddress": STUDENT_1, "name": "Somebody", "studentId": "999",
    })
    assert resp.status_code == 400
    data = resp.json()
    assert data["error"] == "AlreadyRegistered"
    assert data["userInfo"]["name"] == "Zhang San"
    assert data["userInfo"]["studentId"] == "2023001"


def test_register_validation(client):
    resp = client.post("/api/users/register", json={"walletAddress": NEW_STUDENT, "name": "", "studentId": "1"})
    assert resp.status_code == 400
    data = resp.json()
    assert data["error"] == "ValidationError"
    assert data["details"]


def test_register_blank_name(client):
    resp = client.post("/api/users/register", json={"walletAddress": NEW_STUDENT, "name": "   ", "studentId": "1"})
    assert resp.status_code == 400


def test_register_via_students_router(client):
    resp = client.post("/api/students/register", json={
        "walletAddress": NEW_STUDENT, "name": "Zhao Liu", "studentId": "2023004",
    })
    assert resp.status_code == 200


# --- GET /api/users/{address}

def test_get_user(client):
    resp = client.get(f"/api/users/{STUDENT_2}")
    assert resp.status_code == 200
    assert resp.json()["studentInfo"]["name"] == "Li Si"


def test_get_user_invalid_address(client):
    assert client.get("/api/users/not-an-address").status_code == 400


# --- Экстренный доступ

def test_emergency_access_admin(client):
    resp = client.post(f"/api/users/{OUTSIDER}/emergency-access", json={"key": "admin"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["role"] == "admin"
    assert data["isAdmin"] is True
    assert data["isSystem"] is False


def test_emergency_access_system(client):
    data = client.post(f"/api/users/{OUTSIDER}/emergency-access", json={"key": "xjtuse"}).json()
    assert data["role"] == "system"
    assert data["isSystem"] is True


def test_emergency_access_does_not_unlock_server_gates(client):
    """Экстренный доступ живёт только на клиенте, сервер проверяет контракт"""
    client.post(f"/api/users/{OUTSIDER}/emergency-access", json={"key": "xjtuse"})
    resp = client.get("/api/students", headers=as_wallet(OUTSIDER))
    assert resp.status_code == 403


def test_emergency_access_invalid_key(client):
    resp = client.post(f"/api/users/{OUTSIDER}/emergency-access", json={"key": "wrong"})
    assert resp.status_code == 403
    assert resp.json()["error"] == "InvalidKey"


def test_emergency_access_rate_limited(client):
    url = f"/api/users/{OUTSIDER}/emergency-access"
    for _ in range(10):
        assert client.post(url, json={"key": "guess"}).status_code == 403
    resp = client.post(url, json={"key": "admin"})
    assert resp.status_code == 429
    assert resp.json()["error"] == "RateLimited"


# --- Администраторы

def test_add_admin_by_owner(client):
    resp = client.post("/api/users/add-admin", json={"adminAddress": STUDENT_1}, headers=as_wallet(DEV_WALLET))
    assert resp.status_code == 200
    assert resp.json()["transactionHash"].startswith("0x")
    assert client.post("/api/users/check", json={"walletAddress": STUDENT_1}).json()["role"] == "admin"


def test_add_admin_requires_admin(client):
    resp = client.post("/api/users/add-admin", json={"adminAddress": STUDENT_2}, headers=as_wallet(STUDENT_1))
    assert resp.status_code == 403
    assert resp.json()["error"] == "InsufficientPermission"


def test_remove_admin_requires_owner(client):
    client.post("/api/users/add-admin", json={"adminAddress": STUDENT_1}, headers=as_wallet(DEV_WALLET))
    resp = client.post("/api/users/remove-admin", json={"adminAddress": STUDENT_1}, headers=as_wallet(STUDENT_1))
    assert resp.status_code == 403

    resp = client.post("/api/users/remove-admin", json={"adminAddress": STUDENT_1}, headers=as_wallet(DEV_WALLET))
    assert resp.status_code == 200
    assert client.post("/api/users/check", json={"walletAddress": STUDENT_1}).json()["role"] == "student"


# --- Тестовые данные

def test_generate_test_data_only_in_development(client):
    resp = client.post("/api/users/generate-test-data", json={"count": 5}, headers=as_wallet(DEV_WALLET))
    assert resp.status_code == 403


def test_generate_test_data_requires_system(client):
    client = build_client(ENVIRONMENT="development")
    resp = client.post("/api/users/generate-test-data", json={"count": 5}, headers=as_wallet(STUDENT_1))
    assert resp.status_code == 403


def test_generate_test_data_in_development():
    client = build_client(ENVIRONMENT="development")
    resp = client.post("/api/users/generate-test-data", json={"count": 10}, headers=as_wallet(DEV_WALLET))
    assert resp.status_code == 200
    data = resp.json()
    assert data["students"] == 10
    assert data["courses"] == 2
    assert 0 <= data["attendanceRecords"] <= 20

    listing = client.get("/api/students", headers=as_wallet(DEV_WALLET)).json()
    assert listing["total"] == 13


def test_generate_test_data_count_bounds():
    client = build_client(ENVIRONMENT="development")
    resp = client.post("/api/users/generate-test-data", json={"count": 51}, headers=as_wallet(DEV_WALLET))
    assert resp.status_code == 400


# --- Служебные эндпоинты

def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "backend": "mock", "chainConnected": False}


def test_metrics(client):
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
    assert "chain_connected" in resp.text


def test_ethereum_status_offline(client):
    resp = client.get("/api/ethereum/status")
    assert resp.status_code == 200
    data = resp.json()
    assert data["connected"] is False
    assert data["backend"] == "mock"
    assert data["fallbackMode"] is True
    assert data["isLocalNode"] is False
