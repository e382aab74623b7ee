"""
API Integration Tests — Stores and per-store metrics.
"""

import pytest
from httpx import AsyncClient

from rebalance.metrics import weeks_of_cover


class TestWeeksOfCover:
    def test_no_sales_is_infinite(self):
        assert weeks_of_cover(50, 0) == 999.0

    def test_rounded_to_one_decimal(self):
        assert weeks_of_cover(22, 1.5) == 2.1

    def test_capped_at_sentinel(self):
        assert weeks_of_cover(100000, 0.001) == 999.0


@pytest.mark.asyncio
class TestStoresAPI:

    async def test_metrics_empty(self, client: AsyncClient):
        response = await client.get("/api/v1/stores/metrics")
        assert response.status_code == 200
        assert response.json() == []

    async def test_list_stores(self, client: AsyncClient, seeded_tenant):
        response = await client.get("/api/v1/stores/")
        assert response.status_code == 200
        data = response.json()
        assert [s["name"] for s in data] == ["Kho tổng", "Store Hà Nội", "Store Sài Gòn"]
        assert data[0]["location_type"] == "central_warehouse"

    async def test_metrics_from_latest_snapshot(self, client: AsyncClient, seeded_tenant):
        response = await client.get("/api/v1/stores/metrics")
        assert response.status_code == 200
        metrics = {m["store_name"]: m for m in response.json()}

        hanoi = metrics["Store Hà Nội"]
        assert hanoi["on_hand"] == 22
        assert hanoi["available"] == 20
        assert hanoi["velocity"] == 1.5
        assert hanoi["weeks_of_cover"] == 2.1
        assert hanoi["tier"] == "A"

        saigon = metrics["Store Sài Gòn"]
        assert saigon["on_hand"] == 54
        assert saigon["weeks_of_cover"] == 171.4

        warehouse = metrics["Kho tổng"]
        assert warehouse["on_hand"] == 100
        assert warehouse["velocity"] == 0
        assert warehouse["weeks_of_cover"] == 999.0

    async def test_inactive_stores_are_left_out(self, client: AsyncClient, test_db, seeded_tenant):
        seeded_tenant["saigon"].status = "inactive"
        await test_db.commit()

        names = [m["store_name"] for m in (await client.get("/api/v1/stores/metrics")).json()]
        assert "Store Sài Gòn" not in names
