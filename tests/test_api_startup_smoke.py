from fastapi.testclient import TestClient


REQUIRED_ROUTES = {
    "/api/users/register",
    "/api/users/login",
    "/api/users/token",
    "/api/users/me",
    "/api/users/logout",
    "/api/customers",
    "/api/customers/{customer_id}",
    "/api/products",
    "/api/products/search",
    "/api/products/{product_id}",
    "/api/products/{product_id}/stock",
    "/api/invoices",
    "/api/invoices/{invoice_id}",
    "/api/invoices/{invoice_id}/payment-status",
    "/api/admin/reconciliation",
    "/health",
}


def test_api_startup_and_router_registration(monkeypatch):
    from invoicing import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    with TestClient(main.app) as client:
        response = client.get("/")
        health_response = client.get("/health")
        docs_response = client.get("/docs")
        openapi_response = client.get("/openapi.json")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert health_response.json() == {"status": "ok"}
    assert docs_response.status_code == 200
    assert openapi_response.status_code == 200
    assert response.headers["X-Request-ID"]

    paths = {route.path for route in main.app.routes}
    assert REQUIRED_ROUTES.issubset(paths)


def test_request_id_header_is_echoed(monkeypatch):
    from invoicing import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    with TestClient(main.app) as client:
        response = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_protected_route_without_token_uses_error_envelope(monkeypatch):
    from invoicing import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    with TestClient(main.app) as client:
        response = client.get("/api/invoices")

    assert response.status_code == 401
    assert response.json()["status"] == "fail"
