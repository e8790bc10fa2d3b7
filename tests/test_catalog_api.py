import pytest

from invoicing.models.stock_movement import StockMovement
from tests.fixtures_data import CUSTOMER, DUE_DATE, OTHER_OWNER, PRODUCT_BOOK, PRODUCT_WIDGET
from tests.support import add_customer, add_product, add_user, build_client, memory_session_factory, stock_of


@pytest.fixture()
def db():
    session = memory_session_factory()()
    yield session
    session.close()


@pytest.fixture()
def owner(db):
    return add_user(db)


@pytest.fixture()
def client(db, owner):
    return build_client(db, owner)


def test_customer_crud_flow(client):
    created = client.post("/api/customers", json={**CUSTOMER, "email": "Billing@Acme.example.com"})
    assert created.status_code == 201
    customer = created.json()["data"]
    assert customer["email"] == "billing@acme.example.com"

    listing = client.get("/api/customers").json()
    assert listing["results"] == 1

    updated = client.put(f"/api/customers/{customer['id']}", json={**CUSTOMER, "name": "Acme S.A."})
    assert updated.status_code == 200
    assert updated.json()["data"]["name"] == "Acme S.A."

    assert client.delete(f"/api/customers/{customer['id']}").status_code == 204
    assert client.get(f"/api/customers/{customer['id']}").status_code == 404


def test_customer_email_is_unique_per_owner(db, client):
    assert client.post("/api/customers", json=CUSTOMER).status_code == 201

    duplicate = client.post("/api/customers", json=CUSTOMER)
    assert duplicate.status_code == 400
    assert duplicate.json()["details"] == {"field": "email"}

    other_client = build_client(db, add_user(db, OTHER_OWNER))
    assert other_client.post("/api/customers", json=CUSTOMER).status_code == 201


def test_customer_with_invoices_cannot_be_deleted(db, owner, client):
    customer = add_customer(db, owner)
    widget = add_product(db, owner, quantity=2)
    client.post(
        "/api/invoices",
        json={"customer": customer.id, "products": [{"product": widget.id, "quantity": 1}], "dueDate": DUE_DATE},
    )

    response = client.delete(f"/api/customers/{customer.id}")

    assert response.status_code == 400
    assert response.json()["kind"] == "ValidationError"


def test_customer_payload_validation(client):
    response = client.post("/api/customers", json={**CUSTOMER, "email": "not-an-email"})

    assert response.status_code == 400
    assert response.json()["message"].startswith("email")


def test_create_and_get_product(client):
    created = client.post("/api/products", json=PRODUCT_WIDGET)

    assert created.status_code == 201
    product = created.json()["data"]
    assert product["price"] == 10.0
    assert product["quantity"] == 5

    fetched = client.get(f"/api/products/{product['id']}").json()["data"]
    assert fetched["name"] == "Widget"


@pytest.mark.parametrize(
    "changes",
    [{"price": 0}, {"quantity": -1}, {"category": "Weapons"}, {"description": "short"}],
)
def test_create_product_validation(client, changes):
    response = client.post("/api/products", json={**PRODUCT_WIDGET, **changes})

    assert response.status_code == 400


def test_list_products_paginates(db, owner, client):
    for index in range(5):
        add_product(db, owner, name=f"Item {index}")

    body = client.get("/api/products", params={"page": 2, "limit": 2}).json()

    assert body["total"] == 5
    assert body["totalPages"] == 3
    assert body["currentPage"] == 2
    assert body["results"] == 2


def test_search_products_matches_name_description_and_category(client):
    client.post("/api/products", json=PRODUCT_WIDGET)
    client.post("/api/products", json=PRODUCT_BOOK)

    by_name = client.get("/api/products/search", params={"q": "widg"}).json()
    by_category = client.get("/api/products/search", params={"q": "books"}).json()
    by_description = client.get("/api/products/search", params={"q": "PAGES"}).json()

    assert [p["name"] for p in by_name["data"]] == ["Widget"]
    assert [p["name"] for p in by_category["data"]] == ["Python Book"]
    assert [p["name"] for p in by_description["data"]] == ["Python Book"]


def test_patch_product_sets_quantity_through_stock_movement(db, owner, client):
    widget = add_product(db, owner, quantity=5)

    response = client.patch(f"/api/products/{widget.id}", json={"quantity": 12, "price": "11.25"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["quantity"] == 12
    assert data["price"] == 11.25
    movement = db.query(StockMovement).filter(StockMovement.product_id == widget.id).one()
    assert movement.quantity == 7


def test_stock_adjustment_endpoint(db, owner, client):
    widget = add_product(db, owner, quantity=5)

    restocked = client.post(f"/api/products/{widget.id}/stock", json={"delta": 3})
    too_much = client.post(f"/api/products/{widget.id}/stock", json={"delta": -20, "reason": "manual"})

    assert restocked.status_code == 200
    assert restocked.json()["data"]["quantity"] == 8
    assert too_much.status_code == 400
    assert too_much.json()["kind"] == "InsufficientStockError"
    assert stock_of(db, widget.id) == 8


def test_products_of_other_owner_are_hidden(db, owner, client):
    other = add_user(db, OTHER_OWNER)
    foreign = add_product(db, other)

    assert client.get(f"/api/products/{foreign.id}").status_code == 404
    assert client.post(f"/api/products/{foreign.id}/stock", json={"delta": 1}).status_code == 404
    assert client.delete(f"/api/products/{foreign.id}").status_code == 404
    assert client.get("/api/products").json()["total"] == 0
