# Overview: Pytest coverage for the HTTP API through Flask's test client.

"""
API tests

Exercise the blueprints end to end: authentication, owner scoping, payload
validation and the JSON shapes returned to the SPA.
"""

from agrisupply.models import Product

from conftest import PASSWORD, auth_headers, get_auth_token


class TestAuthAndHealth:
    def test_health(self, client, db_session):
        response = client.get('/api/health')
        assert response.status_code == 200
        assert response.json["status"] == "healthy"
        assert response.json["checks"]["database"]["status"] == "healthy"

    def test_register_login_me_logout(self, client, db_session):
        response = client.post('/api/auth/register', json={
            'username': 'kisan_kendra',
            'email': 'Owner@KisanKendra.in',
            'password': PASSWORD,
            'business_name': 'Kisan Kendra',
        })
        assert response.status_code == 201
        assert response.json["user"]["email"] == "owner@kisankendra.in"
        token = response.json["token"]

        me = client.get('/api/auth/me', headers=auth_headers(token))
        assert me.status_code == 200
        assert me.json["user"]["username"] == "kisan_kendra"

        login_token = get_auth_token(client, 'owner@kisankendra.in')
        assert login_token

        assert client.post('/api/auth/logout', headers=auth_headers(token)).status_code == 200
        assert client.get('/api/auth/me', headers=auth_headers(token)).status_code == 401
        assert client.get('/api/auth/me', headers=auth_headers(login_token)).status_code == 200

    def test_register_duplicate_and_weak_password(self, client, owner):
        duplicate = client.post('/api/auth/register', json={
            'username': owner.username, 'email': 'new@example.com', 'password': PASSWORD,
        })
        assert duplicate.status_code == 409

        weak = client.post('/api/auth/register', json={
            'username': 'someone', 'email': 'someone@example.com', 'password': 'password',
        })
        assert weak.status_code == 400

    def test_bad_login(self, client, owner):
        response = client.post('/api/auth/login', json={'username': owner.username, 'password': 'Wrong123!'})
        assert response.status_code == 401
        assert response.json["error"] == "Invalid credentials"

    def test_protected_routes_require_token(self, client, db_session):
        assert client.get('/api/customers').status_code == 401
        response = client.get('/api/orders', headers=auth_headers('not-a-token'))
        assert response.status_code == 401
        assert response.json["error"] == "Invalid or expired token"


class TestCustomersApi:
    def test_create_with_nested_address(self, client, owner_headers):
        response = client.post('/api/customers', headers=owner_headers, json={
            'name': 'Ganesh More',
            'phone': '9822012345',
            'email': 'Ganesh@Example.com',
            'address': {'city': 'Nashik', 'state': 'Maharashtra', 'pincode': '422001'},
            'crop_types': ['Rice', 'Vegetables'],
            'credit_limit_cents': 5000000,
        })
        assert response.status_code == 201
        customer = response.json["customer"]
        assert customer["email"] == "ganesh@example.com"
        assert customer["address"]["city"] == "Nashik"

        listed = client.get('/api/customers?search=ganesh', headers=owner_headers)
        assert listed.json["total"] == 1

    def test_validation_errors_are_field_level(self, client, owner_headers):
        response = client.post('/api/customers', headers=owner_headers, json={
            'name': 'No Phone', 'business_type': 'Astronaut', 'email': 'not-an-email',
        })
        assert response.status_code == 400
        fields = {e["field"] for e in response.json["errors"]}
        assert {"phone", "business_type"} <= fields

    def test_other_owner_sees_404(self, client, owner_headers, other_owner, make_customer):
        theirs = make_customer(other_owner)
        assert client.get(f'/api/customers/{theirs.id}', headers=owner_headers).status_code == 404
        assert client.delete(f'/api/customers/{theirs.id}', headers=owner_headers).status_code == 404

    def test_soft_delete(self, client, owner, owner_headers, make_customer):
        customer = make_customer(owner)
        response = client.delete(f'/api/customers/{customer.id}', headers=owner_headers)
        assert response.status_code == 200
        assert response.json["customer"]["is_active"] is False
        assert client.get('/api/customers', headers=owner_headers).json["total"] == 0
        assert client.get('/api/customers?is_active=', headers=owner_headers).json["total"] == 1


class TestProductsApi:
    def test_create_with_pack_size_and_adjust_stock(self, client, owner_headers, db_session):
        response = client.post('/api/products', headers=owner_headers, json={
            'name': 'Chlorpyrifos 20% EC',
            'category': 'Pesticides',
            'brand': 'Dhanuka',
            'price_cents': 42000,
            'stock_quantity': 12,
            'pack_size': {'value': 1, 'unit': 'L'},
        })
        assert response.status_code == 201
        product = response.json["product"]
        assert product["pack_size"] == {"value": 1, "unit": "L"}

        stock = client.put(f'/api/products/{product["id"]}/stock', headers=owner_headers, json={
            'operation': 'set', 'quantity': 5,
        })
        assert stock.status_code == 200
        assert stock.json["product"]["stock_quantity"] == 5
        assert db_session.get(Product, product["id"]).stock_quantity == 5

    def test_stock_cannot_be_set_through_update(self, client, owner, owner_headers, make_product):
        product = make_product(owner)
        response = client.put(f'/api/products/{product.id}', headers=owner_headers, json={'stock_quantity': 1})
        assert response.status_code == 400

    def test_bad_stock_operation(self, client, owner, owner_headers, make_product):
        product = make_product(owner)
        response = client.put(f'/api/products/{product.id}/stock', headers=owner_headers, json={
            'operation': 'multiply', 'quantity': 2,
        })
        assert response.status_code == 400
        assert response.json["errors"][0]["field"] == "operation"


class TestOrdersAndLedgerApi:
    def test_credit_checkout_then_payment(self, client, owner, owner_headers, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner, price_cents=15000)

        created = client.post('/api/orders', headers=owner_headers, json={
            'customer_id': customer.id,
            'items': [{'product_id': product.id, 'quantity': 2}],
            'payment_method': 'Credit',
            'credit_terms': '15_days',
        })
        assert created.status_code == 201
        order = created.json["order"]
        assert order["remaining_amount_cents"] == 30000

        paid = client.post('/api/ledger/payment', headers=owner_headers, json={
            'customer_id': customer.id,
            'amount_cents': 10000,
            'payment_method': 'UPI',
            'description': 'UPI transfer',
        })
        assert paid.status_code == 201
        assert paid.json["new_balance_cents"] == 20000
        assert paid.json["customer_balance_cents"] == 20000
        assert paid.json["allocations"][0]["order_id"] == order["id"]

        ledger = client.get(f'/api/ledger/customer/{customer.id}', headers=owner_headers)
        assert ledger.status_code == 200
        assert ledger.json["total"] == 2
        assert ledger.json["customer"]["current_balance_cents"] == 20000

        summary = client.get('/api/ledger/summary?period=7', headers=owner_headers)
        assert summary.json["total_receivables_cents"] == 20000

    def test_checkout_validation_collects_errors(self, client, owner_headers):
        response = client.post('/api/orders', headers=owner_headers, json={
            'items': [{'product_id': 1, 'quantity': 0}],
            'payment_method': 'Barter',
        })
        assert response.status_code == 400
        fields = {e["field"] for e in response.json["errors"]}
        assert {"customer_id", "items[0].quantity", "payment_method"} <= fields

    def test_insufficient_stock_message(self, client, owner, owner_headers, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner, name="Zinc Sulphate", stock_quantity=1)
        response = client.post('/api/orders', headers=owner_headers, json={
            'customer_id': customer.id,
            'items': [{'product_id': product.id, 'quantity': 2}],
        })
        assert response.status_code == 400
        assert response.json["error"] == "Insufficient stock for Zinc Sulphate. Available: 1"

    def test_payment_rejects_adjustment_method(self, client, owner, owner_headers, make_customer):
        customer = make_customer(owner)
        response = client.post('/api/ledger/payment', headers=owner_headers, json={
            'customer_id': customer.id, 'amount_cents': 100, 'payment_method': 'Adjustment', 'description': 'x',
        })
        assert response.status_code == 400

    def test_payment_for_foreign_customer(self, client, owner_headers, other_owner, make_customer):
        theirs = make_customer(other_owner)
        response = client.post('/api/ledger/payment', headers=owner_headers, json={
            'customer_id': theirs.id, 'amount_cents': 100, 'payment_method': 'Cash', 'description': 'x',
        })
        assert response.status_code == 404
        assert response.json["error"] == "Customer not found"

    def test_status_and_cancel_routes(self, client, owner, owner_headers, make_customer, make_product, db_session):
        customer = make_customer(owner)
        product = make_product(owner, stock_quantity=10)
        order = client.post('/api/orders', headers=owner_headers, json={
            'customer_id': customer.id, 'items': [{'product_id': product.id, 'quantity': 4}],
        }).json["order"]

        confirmed = client.put(f'/api/orders/{order["id"]}/status', headers=owner_headers, json={
            'order_status': 'Confirmed',
        })
        assert confirmed.status_code == 200
        assert confirmed.json["order"]["invoice_number"] == "INV-000001"

        cancelled = client.delete(f'/api/orders/{order["id"]}', headers=owner_headers)
        assert cancelled.status_code == 200
        assert db_session.get(Product, product.id).stock_quantity == 10

        again = client.delete(f'/api/orders/{order["id"]}', headers=owner_headers)
        assert again.status_code == 404


class TestPromotionsApi:
    def _create(self, client, headers, **overrides):
        body = {
            'name': 'Monsoon 10',
            'code': 'monsoon10',
            'promo_type': 'percentage',
            'discount_value': 1000,
            'max_discount_amount_cents': 8000,
            'start_date': '2020-01-01T00:00:00Z',
            'end_date': '2099-01-01T00:00:00Z',
        }
        body.update(overrides)
        return client.post('/api/promotions', headers=headers, json=body)

    def test_create_validate_and_duplicate(self, client, owner, owner_headers, make_customer, make_product):
        created = self._create(client, owner_headers)
        assert created.status_code == 201
        assert created.json["promotion"]["code"] == "MONSOON10"
        assert self._create(client, owner_headers).status_code == 409

        customer = make_customer(owner)
        product = make_product(owner, price_cents=100000)
        validated = client.post('/api/promotions/validate', headers=owner_headers, json={
            'code': 'MONSOON10',
            'order_amount_cents': 100000,
            'customer_id': customer.id,
            'items': [{'product_id': product.id, 'quantity': 1}],
        })
        assert validated.status_code == 200
        assert validated.json["valid"] is True
        assert validated.json["discount_amount_cents"] == 8000

    def test_validate_unknown_code(self, client, owner, owner_headers, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner)
        response = client.post('/api/promotions/validate', headers=owner_headers, json={
            'code': 'GHOST',
            'order_amount_cents': 5000,
            'customer_id': customer.id,
            'items': [{'product_id': product.id, 'quantity': 1}],
        })
        assert response.status_code == 404
        assert response.json == {"valid": False, "error": "Invalid promotion code", "details": {}}

    def test_product_ids_must_be_integers(self, client, owner_headers):
        response = self._create(client, owner_headers, applicable_product_ids=["abc"])
        assert response.status_code == 400

    def test_analytics_route(self, client, owner, owner_headers):
        promo_id = self._create(client, owner_headers).json["promotion"]["id"]
        response = client.get(f'/api/promotions/analytics/{promo_id}', headers=owner_headers)
        assert response.status_code == 200
        assert response.json["analytics"]["total_usage"] == 0

        other_token = client.post('/api/auth/register', json={
            'username': 'second_dealer', 'email': 'second@example.com', 'password': PASSWORD,
        }).json["token"]
        assert client.get(f'/api/promotions/{promo_id}', headers=auth_headers(other_token)).status_code == 404
