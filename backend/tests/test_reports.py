"""
Report tests: low stock, margin bands, and sales totals net of refunds.
"""

from datetime import date, datetime

import pytest

from stockroom.errors import NotFoundError
from stockroom.extensions import db
from stockroom.services import inventory_service, reporting_service, sales_service
from stockroom.validation import ValidationError


def _sale_on(when, *lines):
    sale = sales_service.create_sale(
        items=[
            {"inventory_item_id": item_id, "quantity": quantity, "unit_price_cents": 1000}
            for item_id, quantity in lines
        ],
        tax_rate_bps=1000,
    )
    sale.date = when
    db.session.commit()
    return sale


class TestLowStock:

    def test_lists_low_and_out_of_stock(self, db_session, item, second_item):
        inventory_service.adjust_stock(item_id=item.id, new_quantity=2)
        empty = inventory_service.create_item(patch={"sku": "EMPTY", "name": "Empty Bin"})

        report = reporting_service.low_stock_report()

        assert [r["sku"] for r in report["items"]] == ["EMPTY", "HW-001"]
        assert report["items"][1]["shortfall"] == 3
        assert report["summary"] == {"low_count": 1, "out_of_stock_count": 1}
        assert empty.id in {r["id"] for r in report["items"]}

    def test_endpoint_permission(self, client, db_session, item, operator_headers, viewer_headers):
        assert client.get("/api/reports/low-stock", headers=operator_headers).status_code == 200
        assert client.get("/api/reports/low-stock", headers=viewer_headers).status_code == 403


class TestMargins:

    @pytest.mark.parametrize("margin,band", [
        (-5.0, "low"),
        (14.99, "low"),
        (15.0, "medium"),
        (29.9, "medium"),
        (30.0, "high"),
        (150.0, "high"),
    ])
    def test_band(self, margin, band):
        assert reporting_service.margin_band(margin, low_threshold=15, high_threshold=30) == band

    def test_report(self, db_session, item, second_item):
        # item: 50% margin, second_item: 150% margin
        inventory_service.create_item(patch={"sku": "THIN", "name": "Thin", "price_cents": 105, "cost_cents": 100})

        report = reporting_service.margin_report(low_threshold=15, high_threshold=30)

        assert [r["sku"] for r in report["bands"]["high"]] == ["HW-002", "HW-001"]
        assert [r["sku"] for r in report["bands"]["low"]] == ["THIN"]
        assert report["summary"]["item_count"] == 3
        assert report["summary"]["average_margin"] == pytest.approx((150 + 50 + 5) / 3)

    def test_thresholds_must_be_ordered(self, db_session):
        with pytest.raises(ValueError):
            reporting_service.margin_report(low_threshold=40, high_threshold=10)

    def test_endpoint_uses_config(self, client, db_session, item, manager_headers, operator_headers):
        response = client.get("/api/reports/margins", headers=manager_headers)
        assert response.status_code == 200
        assert response.get_json()["thresholds"] == {"low": 15, "high": 30}
        assert client.get("/api/reports/margins", headers=operator_headers).status_code == 403


class TestSalesReport:

    def test_totals_exclude_cancelled_and_net_refunds(self, db_session, item, second_item):
        kept = sales_service.create_sale(
            items=[
                {"inventory_item_id": item.id, "quantity": 4, "unit_price_cents": 1000},
                {"inventory_item_id": second_item.id, "quantity": 3, "unit_price_cents": 500},
            ],
            tax_rate_bps=1000,
        )
        cancelled = sales_service.create_sale(
            items=[{"inventory_item_id": second_item.id, "quantity": 50}], tax_rate_bps=1000,
        )
        sales_service.cancel_sale(sale_id=cancelled.id)
        hammer_line = next(tx for tx in kept.transactions if tx.inventory_item_id == item.id)
        sales_service.refund_sale(
            sale_id=kept.id, items=[{"transaction_id": hammer_line.id, "quantity": 2}], reason="Returned"
        )

        report = reporting_service.sales_report()

        assert report["summary"] == {
            "sales_count": 1,
            "revenue_cents": 3500,
            "tax_cents": 350,
            "total_cents": 3850,
            "average_sale_cents": 3500,
        }
        assert [(r["sku"], r["units_sold"]) for r in report["top_items"]] == [("HW-002", 3), ("HW-001", 2)]

    def test_empty_range(self, db_session):
        report = reporting_service.sales_report()
        assert report["summary"]["sales_count"] == 0
        assert report["summary"]["average_sale_cents"] == 0
        assert report["top_items"] == []

    def test_endpoint_rejects_inverted_range(self, client, db_session, manager_headers):
        response = client.get(
            "/api/reports/sales?start_date=2026-02-01&end_date=2026-01-01", headers=manager_headers
        )
        assert response.status_code == 400


class TestSalesTrend:

    @pytest.mark.parametrize("moment,group_by,expected", [
        (datetime(2026, 3, 1, 23, 59), "day", date(2026, 3, 1)),
        (datetime(2026, 3, 1, 12, 0), "week", date(2026, 2, 23)),
        (datetime(2026, 3, 2, 0, 0), "week", date(2026, 3, 2)),
        (datetime(2026, 3, 31, 23, 59, 59), "month", date(2026, 3, 1)),
    ])
    def test_period_start(self, moment, group_by, expected):
        assert reporting_service.period_start(moment, group_by) == expected

    @pytest.mark.parametrize("group_by,expected", [
        ("day", [("2026-02-28", 1), ("2026-03-01", 1), ("2026-03-02", 1)]),
        ("week", [("2026-02-23", 2), ("2026-03-02", 1)]),
        ("month", [("2026-02-01", 1), ("2026-03-01", 2)]),
    ])
    def test_buckets_split_at_period_boundaries(self, db_session, item, group_by, expected):
        _sale_on(datetime(2026, 2, 28, 23, 59, 59), (item.id, 1))
        _sale_on(datetime(2026, 3, 1, 0, 0, 0), (item.id, 1))
        _sale_on(datetime(2026, 3, 2, 9, 30), (item.id, 2))

        report = reporting_service.sales_report(group_by=group_by)

        assert report["group_by"] == group_by
        assert [(b["period"], b["sales_count"]) for b in report["trend"]] == expected
        assert sum(b["revenue_cents"] for b in report["trend"]) == report["summary"]["revenue_cents"] == 4000

    def test_bucket_revenue_and_totals(self, db_session, item):
        _sale_on(datetime(2026, 3, 1, 8, 0), (item.id, 1))
        _sale_on(datetime(2026, 3, 1, 18, 0), (item.id, 2))

        report = reporting_service.sales_report(group_by="day")

        assert report["trend"] == [
            {"period": "2026-03-01", "sales_count": 2, "revenue_cents": 3000, "total_cents": 3300},
        ]

    def test_range_limits_buckets(self, db_session, item):
        _sale_on(datetime(2026, 1, 15), (item.id, 1))
        _sale_on(datetime(2026, 3, 15), (item.id, 1))

        report = reporting_service.sales_report(
            start=datetime(2026, 3, 1), end=datetime(2026, 3, 31, 23, 59, 59), group_by="month"
        )

        assert [b["period"] for b in report["trend"]] == ["2026-03-01"]

    def test_unknown_grouping_rejected(self, db_session):
        with pytest.raises(ValidationError):
            reporting_service.sales_report(group_by="year")

    def test_item_filter(self, db_session, item, second_item):
        _sale_on(datetime(2026, 3, 1), (item.id, 1))
        _sale_on(datetime(2026, 3, 2), (item.id, 2), (second_item.id, 5))
        _sale_on(datetime(2026, 3, 3), (second_item.id, 7))

        report = reporting_service.sales_report(inventory_item_id=item.id)

        assert report["summary"]["sales_count"] == 2
        assert [(r["sku"], r["units_sold"], r["revenue_cents"]) for r in report["top_items"]] == [
            ("HW-001", 3, 3000),
        ]
        assert [b["period"] for b in report["trend"]] == ["2026-03-01", "2026-03-02"]

    def test_unknown_item_rejected(self, db_session):
        with pytest.raises(NotFoundError):
            reporting_service.sales_report(inventory_item_id=999)

    def test_endpoint_grouping(self, client, db_session, item, manager_headers):
        _sale_on(datetime(2026, 2, 28, 12, 0), (item.id, 1))
        _sale_on(datetime(2026, 3, 1, 12, 0), (item.id, 1))

        response = client.get(
            f"/api/reports/sales?group_by=month&inventory_item_id={item.id}", headers=manager_headers
        )

        assert response.status_code == 200
        body = response.get_json()
        assert [b["period"] for b in body["trend"]] == ["2026-02-01", "2026-03-01"]
        assert body["inventory_item_id"] == item.id

    @pytest.mark.parametrize("query,status", [
        ("group_by=year", 400),
        ("inventory_item_id=abc", 400),
        ("inventory_item_id=999", 404),
    ])
    def test_endpoint_rejects_bad_filters(self, client, db_session, manager_headers, query, status):
        response = client.get(f"/api/reports/sales?{query}", headers=manager_headers)
        assert response.status_code == status
