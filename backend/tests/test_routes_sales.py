"""
Sales API tests: recording, viewing, cancelling and refunding sales.
"""

import pytest

from stockroom.models import InventoryItem, Sale

from conftest import reload


def _create_sale(client, headers, item_id, quantity=2, **extra):
    line = {"inventory_item_id": item_id, "quantity": quantity}
    line.update(extra)
    return client.post("/api/sales", json={"items": [line], "notes": "Walk-in"}, headers=headers)


class TestSaleEndpoints:

    def test_create_sale(self, client, db_session, item, operator_user, operator_headers):
        response = _create_sale(client, operator_headers, item.id)

        assert response.status_code == 201
        sale = response.get_json()["sale"]
        assert sale["status"] == "COMPLETED"
        assert sale["subtotal_cents"] == 3000
        assert sale["tax_cents"] == 480
        assert sale["total_cents"] == 3480
        assert sale["created_by_user_id"] == operator_user.id
        assert sale["transactions"][0]["sku"] == "HW-001"
        assert sale["transactions"][0]["refunded_quantity"] == 0
        assert sale["refunds"] == []
        assert reload(InventoryItem, item.id).quantity == 8

    def test_create_with_price_override(self, client, db_session, item, operator_headers):
        response = _create_sale(client, operator_headers, item.id, quantity=1, unit_price_cents=999)
        assert response.get_json()["sale"]["subtotal_cents"] == 999

    def test_insufficient_stock(self, client, db_session, item, operator_headers):
        response = _create_sale(client, operator_headers, item.id, quantity=11)
        assert response.status_code == 400
        assert response.get_json()["code"] == "INSUFFICIENT_STOCK"
        assert db_session.query(Sale).count() == 0

    @pytest.mark.parametrize("payload", [
        {},
        {"items": []},
        {"items": "HW-001"},
        {"items": [{"quantity": 1}]},
        {"items": [{"inventory_item_id": 1, "quantity": 1.5}]},
        {"items": [{"inventory_item_id": 1, "quantity": 1, "discount": 5}]},
        {"items": [5]},
    ])
    def test_invalid_payloads(self, client, db_session, item, operator_headers, payload):
        response = client.post("/api/sales", json=payload, headers=operator_headers)
        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_ARGUMENT"

    def test_viewer_cannot_sell(self, client, db_session, item, viewer_headers):
        response = _create_sale(client, viewer_headers, item.id)
        assert response.status_code == 403

    def test_get_and_list(self, client, db_session, item, operator_headers, viewer_headers):
        sale_id = _create_sale(client, operator_headers, item.id).get_json()["sale"]["id"]

        response = client.get(f"/api/sales/{sale_id}", headers=viewer_headers)
        assert response.status_code == 200
        assert response.get_json()["sale"]["id"] == sale_id

        response = client.get(f"/api/sales?inventory_item_id={item.id}", headers=viewer_headers)
        body = response.get_json()
        assert body["count"] == 1
        assert body["pagination"]["total"] == 1
        assert "transactions" not in body["items"][0]

        assert client.get("/api/sales/9999", headers=viewer_headers).status_code == 404


class TestCancelEndpoint:

    def test_cancel_twice(self, client, db_session, item, operator_headers, manager_headers):
        sale_id = _create_sale(client, operator_headers, item.id).get_json()["sale"]["id"]

        first = client.delete(f"/api/sales/{sale_id}", headers=manager_headers)
        assert first.status_code == 200
        assert first.get_json()["sale"]["status"] == "CANCELLED"
        assert reload(InventoryItem, item.id).quantity == 10

        second = client.delete(f"/api/sales/{sale_id}", headers=manager_headers)
        assert second.status_code == 400
        assert second.get_json()["code"] == "SALE_CANCELLED"
        assert reload(InventoryItem, item.id).quantity == 10

    def test_operator_cannot_cancel(self, client, db_session, item, operator_headers):
        sale_id = _create_sale(client, operator_headers, item.id).get_json()["sale"]["id"]
        response = client.delete(f"/api/sales/{sale_id}", headers=operator_headers)
        assert response.status_code == 403
        assert response.get_json()["required_permission"] == "sale:cancel"


class TestRefundEndpoint:

    def test_partial_refund(self, client, db_session, item, manager_headers):
        sale = _create_sale(client, manager_headers, item.id, quantity=4).get_json()["sale"]
        tx_id = sale["transactions"][0]["id"]

        response = client.post(f"/api/sales/{sale['id']}/refund", json={
            "items": [{"transaction_id": tx_id, "quantity": 1}],
            "reason": "Cracked handle",
        }, headers=manager_headers)

        assert response.status_code == 200
        body = response.get_json()
        assert body["refund_amount_cents"] == 1500
        assert body["refund"]["reason"] == "Cracked handle"
        assert body["refund"]["lines"][0]["quantity"] == 1
        assert body["sale"]["subtotal_cents"] == 4500
        assert body["sale"]["tax_cents"] == 720
        assert body["sale"]["transactions"][0]["refunded_quantity"] == 1
        assert body["sale"]["notes"] == "Walk-in\nRefund: Cracked handle"
        assert reload(InventoryItem, item.id).quantity == 7

    def test_over_refund(self, client, db_session, item, manager_headers):
        sale = _create_sale(client, manager_headers, item.id, quantity=2).get_json()["sale"]
        tx_id = sale["transactions"][0]["id"]

        response = client.post(f"/api/sales/{sale['id']}/refund", json={
            "items": [{"transaction_id": tx_id, "quantity": 3}],
            "reason": "Too many",
        }, headers=manager_headers)

        assert response.status_code == 400
        assert reload(InventoryItem, item.id).quantity == 8

    @pytest.mark.parametrize("payload", [
        {"items": [{"transaction_id": 1, "quantity": 1}]},
        {"items": [{"transaction_id": 1, "quantity": 1}], "reason": ""},
        {"items": [], "reason": "x"},
        {"items": [{"transaction_id": 1}], "reason": "x"},
    ])
    def test_invalid_refund_payloads(self, client, db_session, item, manager_headers, payload):
        sale_id = _create_sale(client, manager_headers, item.id).get_json()["sale"]["id"]
        response = client.post(f"/api/sales/{sale_id}/refund", json=payload, headers=manager_headers)
        assert response.status_code == 400

    def test_refund_cancelled_sale(self, client, db_session, item, manager_headers):
        sale = _create_sale(client, manager_headers, item.id).get_json()["sale"]
        client.delete(f"/api/sales/{sale['id']}", headers=manager_headers)

        response = client.post(f"/api/sales/{sale['id']}/refund", json={
            "items": [{"transaction_id": sale["transactions"][0]["id"], "quantity": 1}],
            "reason": "Late",
        }, headers=manager_headers)

        assert response.status_code == 400
        assert response.get_json()["code"] == "SALE_CANCELLED"
