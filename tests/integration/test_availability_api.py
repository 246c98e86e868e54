from agenda.core.config import settings
from tests.fixtures.scheduling_fixtures import add_entry, at

API = settings.API_V1_PREFIX


class TestAvailabilityAPI:
    async def test_slots_for_cart(self, client, db, business, catalog, ids):
        await add_entry(db, business, at(10), 30, professional=catalog.p2)

        response = await client.get(
            f"{API}/availability",
            params={
                "business_id": ids.business,
                "date": "2030-01-07",
                "service_ids": [ids.x, ids.y],
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["window_minutes"] == 90
        assert data["eligible_professional_ids"] == [ids.p2]
        slots = {s["start"]: s for s in data["slots"]}
        assert not slots["2030-01-07T09:30:00"]["available"]
        assert slots["2030-01-07T09:30:00"]["reasons"] == ["all_professionals_busy"]
        assert slots["2030-01-07T10:30:00"]["available"]

    async def test_professional_filter(self, client, ids):
        response = await client.get(
            f"{API}/availability",
            params={
                "business_id": ids.business,
                "date": "2030-01-07",
                "service_ids": [ids.x, ids.y],
                "professional_id": ids.p1,
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["eligible_professional_ids"] == []
        assert not any(s["available"] for s in data["slots"])

    async def test_unknown_business(self, client, ids):
        response = await client.get(
            f"{API}/availability",
            params={"business_id": 999, "date": "2030-01-07", "service_ids": [ids.x]},
        )

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    async def test_unknown_service(self, client, ids):
        response = await client.get(
            f"{API}/availability",
            params={"business_id": ids.business, "date": "2030-01-07", "service_ids": [999]},
        )

        assert response.status_code == 404
        assert response.json()["details"]["entity"] == "Service"

    async def test_professional_options(self, client, db, business, catalog, ids):
        await add_entry(db, business, at(10), 30, professional=catalog.p1)

        response = await client.get(
            f"{API}/availability/professionals",
            params={
                "business_id": ids.business,
                "scheduled_at": "2030-01-07T10:00:00",
                "service_ids": [ids.x],
            },
        )

        assert response.status_code == 200
        options = response.json()
        assert [(o["name"], o["busy"], o["selectable"]) for o in options] == [
            ("Ana", True, False),
            ("Bruno", False, True),
        ]


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_professional_options_with_offset(client, db, business, catalog, ids):
    await add_entry(db, business, at(10), 30, professional=catalog.p1)

    response = await client.get(
        f"{API}/availability/professionals",
        params={
            "business_id": ids.business,
            "scheduled_at": "2030-01-07T10:00:00Z",
            "service_ids": [ids.x],
        },
    )

    assert response.status_code == 200, response.text
    assert [o["busy"] for o in response.json()] == [True, False]
