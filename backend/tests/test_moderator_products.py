from decimal import Decimal

from conftest import unique


def test_moderator_routes_require_moderator_role(client, member_headers):
    r = client.get('/api/moderator/orders')
    assert r.status_code in (401, 403)
    r2 = client.get('/api/moderator/orders', headers=member_headers)
    assert r2.status_code == 403
    r3 = client.get('/api/moderator/orders', headers={'Authorization': 'Bearer invalid.token.here'})
    assert r3.status_code == 401


def test_admin_passes_moderator_policy(client, admin_headers):
    r = client.get('/api/moderator/orders', headers=admin_headers)
    assert r.status_code == 200


def test_create_product_returns_location_and_dto(client, moderator_headers):
    name = unique('chair')
    r = client.post(
        '/api/moderator/product',
        data={'name': name, 'sale_price': '49.99'},
        headers=moderator_headers,
    )
    assert r.status_code == 201
    body = r.json()
    assert body['name'] == name
    assert body['photos'] == []
    assert body['photo_url'] is None
    assert r.headers['Location'].endswith(f"/api/moderator/product/{body['id']}")

    fetched = client.get(f"/api/moderator/product/{body['id']}", headers=moderator_headers)
    assert fetched.status_code == 200
    assert Decimal(fetched.json()['sale_price']) == Decimal('49.99')


def test_creating_a_product_with_a_duplicate_name_returns_400(client, moderator_headers, product):
    r = client.post(
        '/api/moderator/product',
        data={'name': product['name'], 'sale_price': '1.00'},
        headers=moderator_headers,
    )
    assert r.status_code == 400
    assert r.json()['detail'] == 'Product name is taken'


def test_get_missing_product_returns_404_with_id(client, moderator_headers):
    r = client.get('/api/moderator/product/987654', headers=moderator_headers)
    assert r.status_code == 404
    assert r.json()['id'] == 987654


def test_update_product(client, moderator_headers, product):
    new_name = unique('lamp-xl')
    r = client.put(
        f"/api/moderator/product/{product['id']}",
        data={'name': new_name, 'description': 'bigger', 'category': 'lighting', 'sale_price': '15.00'},
        headers=moderator_headers,
    )
    assert r.status_code == 204
    fetched = client.get(f"/api/moderator/product/{product['id']}", headers=moderator_headers).json()
    assert fetched['name'] == new_name
    assert fetched['description'] == 'bigger'

    # identical values persist nothing
    same = client.put(
        f"/api/moderator/product/{product['id']}",
        data={'name': new_name, 'description': 'bigger', 'category': 'lighting', 'sale_price': '15.00'},
        headers=moderator_headers,
    )
    assert same.status_code == 400
    assert same.json()['detail'] == 'Failed to update product'


def test_update_product_rejects_taken_name_and_missing_id(client, moderator_headers, product):
    other = client.post(
        '/api/moderator/product',
        data={'name': unique('desk'), 'sale_price': '80.00'},
        headers=moderator_headers,
    ).json()
    clash = client.put(
        f"/api/moderator/product/{other['id']}",
        data={'name': product['name'], 'sale_price': '80.00'},
        headers=moderator_headers,
    )
    assert clash.status_code == 400
    assert clash.json()['detail'] == 'Product name is taken'

    missing = client.put(
        '/api/moderator/product/876543',
        data={'name': unique('ghost'), 'sale_price': '1.00'},
        headers=moderator_headers,
    )
    assert missing.status_code == 404
    assert missing.json()['id'] == 876543


def test_delete_product(client, moderator_headers, product):
    r = client.delete(f"/api/moderator/product/{product['id']}", headers=moderator_headers)
    assert r.status_code == 200
    gone = client.get(f"/api/moderator/product/{product['id']}", headers=moderator_headers)
    assert gone.status_code == 404
    again = client.delete(f"/api/moderator/product/{product['id']}", headers=moderator_headers)
    assert again.status_code == 404


def test_delete_product_in_an_order_fails(client, moderator_headers, member_headers, product):
    added = client.post('/api/basket/items', json={'product_id': product['id']}, headers=member_headers)
    assert added.status_code == 200
    r = client.delete(f"/api/moderator/product/{product['id']}", headers=moderator_headers)
    assert r.status_code == 400
    assert r.json()['detail'] == 'Failed to delete product'
