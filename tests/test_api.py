from __future__ import annotations

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from bikeledger.api.app import create_app
from bikeledger.api.routes import format_sse
from bikeledger.config.models import (
    ApiSettings,
    AppConfig,
    AppSettings,
    ChartSettings,
    LoggingSettings,
    PreferencesSettings,
    StorageSettings,
)


def _config(*, demo_mode: bool = False) -> AppConfig:
    return AppConfig(
        app=AppSettings(name="Test", demo_mode=demo_mode),
        storage=StorageSettings(db_path=None),
        preferences=PreferencesSettings(),
        chart=ChartSettings(threshold_km=1000.0),
        logging=LoggingSettings(level="WARNING"),
        api=ApiSettings(sse_keepalive_s=0.1),
    )


@pytest.fixture
def client():
    with TestClient(create_app(_config())) as c:
        yield c


def _bike_payload(name: str = "Trail", **overrides) -> dict:
    payload = {
        "type": 1,
        "name": name,
        "color": "bikeOrange",
        "wheel_size": 2,
        "service_due": 100,
        "is_default": False,
    }
    payload.update(overrides)
    return payload


def _ride_payload(bike_id: str, name: str = "Loop", *, date: str = "2024-02-10T09:00:00", distance: float = 30) -> dict:
    return {"name": name, "distance": distance, "duration": 90, "date": date, "bike_id": bike_id}


def test_config_endpoint(client) -> None:
    resp = client.get("/config")
    assert resp.status_code == 200
    assert resp.json() == {"app_name": "Test", "demo_mode": False, "chart_threshold_km": 1000.0, "sse_keepalive_s": 0.1}


def test_empty_garage_views(client) -> None:
    assert client.get("/bikes").json() == []
    assert client.get("/bikes/view").json() == {"empty": True, "bikes": []}
    assert client.get("/rides/sections").json() == {"empty": True, "sections": []}
    chart = client.get("/rides/chart").json()
    assert chart["empty"] is True
    assert chart["threshold"] == pytest.approx(1000.0)


def test_bike_crud_and_default_switch(client) -> None:
    first = client.post("/bikes", json=_bike_payload("First", is_default=True))
    assert first.status_code == 201
    first_id = first.json()["id"]
    second_id = client.post("/bikes", json=_bike_payload("Second")).json()["id"]

    resp = client.post(f"/bikes/{second_id}/default")
    assert resp.status_code == 204
    bikes = client.get("/bikes").json()
    assert [b["name"] for b in bikes] == ["Second", "First"]
    assert [b["is_default"] for b in bikes] == [True, False]

    resp = client.put(f"/bikes/{first_id}", json=_bike_payload("Renamed"))
    assert resp.status_code == 204
    assert client.get(f"/bikes/{first_id}").json()["name"] == "Renamed"

    resp = client.post(f"/bikes/{first_id}/service", json={"serviced_on": "2024-03-01"})
    assert resp.status_code == 204
    assert client.get(f"/bikes/{first_id}").json()["latest_service"] == "2024-03-01"

    assert client.delete(f"/bikes/{first_id}").status_code == 204
    missing = client.get(f"/bikes/{first_id}")
    assert missing.status_code == 404
    assert missing.json()["error"] == "NotFoundError"


def test_invalid_bike_payload_is_rejected(client) -> None:
    assert client.post("/bikes", json=_bike_payload(service_due=0)).status_code == 422
    assert client.post("/bikes", json=_bike_payload(type=9)).status_code == 422


def test_rides_flow(client) -> None:
    bike_id = client.post("/bikes", json=_bike_payload(service_due=100)).json()["id"]
    jan = client.post("/rides", json=_ride_payload(bike_id, "January", date="2024-01-10T08:00:00", distance=40))
    assert jan.status_code == 201
    client.post("/rides", json=_ride_payload(bike_id, "February", date="2024-02-10T08:00:00", distance=70))

    rides = client.get("/rides").json()
    assert [r["name"] for r in rides] == ["February", "January"]
    assert rides[0]["bike_name"] == "Trail"
    assert [r["name"] for r in client.get("/rides", params={"bike_id": bike_id}).json()] == ["February", "January"]

    sections = client.get("/rides/sections").json()
    assert [s["label"] for s in sections["sections"]] == ["February 2024", "January 2024"]

    chart = client.get("/rides/chart").json()
    assert chart["empty"] is False
    assert chart["entries"] == [{"bike_type": 1, "total_distance": 110.0, "percentage": pytest.approx(0.11)}]

    bike = client.get(f"/bikes/{bike_id}").json()
    assert bike["rides_total_distance"] == pytest.approx(110.0)
    assert bike["formatted_service_due"] == "Overdue"

    ride_id = jan.json()["id"]
    assert client.put(f"/rides/{ride_id}", json=_ride_payload(bike_id, "Edited", distance=5)).status_code == 204
    assert client.get(f"/rides/{ride_id}").json()["name"] == "Edited"
    assert client.delete(f"/rides/{ride_id}").status_code == 204
    assert client.get(f"/rides/{ride_id}").status_code == 404


def test_ride_for_unknown_bike_is_422(client) -> None:
    resp = client.post("/rides", json=_ride_payload("00000000-0000-0000-0000-000000000000"))
    assert resp.status_code == 422
    assert resp.json()["error"] == "ParentNotFoundError"


def test_deleting_bike_removes_its_rides(client) -> None:
    bike_id = client.post("/bikes", json=_bike_payload()).json()["id"]
    client.post("/rides", json=_ride_payload(bike_id))
    assert client.delete(f"/bikes/{bike_id}").status_code == 204
    assert client.get("/rides").json() == []


def test_preferences_switch_units(client) -> None:
    bike_id = client.post("/bikes", json=_bike_payload(service_due=160.9344)).json()["id"]

    resp = client.put("/preferences", json={"distance_unit": "MI", "service_reminder_distance": 10})
    assert resp.status_code == 200
    assert resp.json()["distance_unit"] == "MI"
    assert client.get("/preferences").json()["service_reminder_distance"] == 10

    assert client.get(f"/bikes/{bike_id}").json()["service_due"] == pytest.approx(100.0)
    assert client.get("/rides/chart").json()["threshold"] == pytest.approx(1000.0 / 1.609344)

    assert client.put("/preferences", json={"service_reminder_distance": -1}).status_code == 422


def test_export_csv(client) -> None:
    bike_id = client.post("/bikes", json=_bike_payload()).json()["id"]
    client.post("/rides", json=_ride_payload(bike_id, "Loop"))
    resp = client.get("/rides/export.csv")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    lines = resp.text.strip().splitlines()
    assert lines[0] == "ride_id,name,date,distance,duration,bike_id,bike_name,bike_type"
    assert ",Loop," in lines[1]


def test_demo_mode_seeds_garage_and_reminders() -> None:
    with TestClient(create_app(_config(demo_mode=True))) as client:
        bikes = client.get("/bikes").json()
        assert len(bikes) == 4
        assert bikes[0]["name"] == "MTB"
        assert bikes[0]["is_default"] is True

        reminders = {r["bike_name"]: r for r in client.get("/reminders").json()}
        assert reminders["MTB"]["overdue"] is True
        assert reminders["ELECTRIC"]["overdue"] is False


def test_format_sse() -> None:
    text = format_sse("snapshot", [{"name": "Brașov"}])
    assert text.startswith("event: snapshot\ndata: ")
    assert text.endswith("\n\n")
    assert json.loads(text.split("data: ", 1)[1]) == [{"name": "Brașov"}]


def _get_scope(path: str) -> dict:
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"testserver"), (b"accept", b"text/event-stream")],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }


@pytest.mark.parametrize("path,attr,expected", [("/events/bikes", "bikes", 4), ("/events/rides", "rides", 8)])
def test_event_stream_sends_snapshot_and_releases_observer_on_disconnect(path, attr, expected) -> None:
    # The stream never ends on its own, so drive the ASGI app directly and hang up after the first snapshot.
    async def scenario() -> None:
        app = create_app(_config(demo_mode=True))
        service = app.state.garage_service
        await service.setup()
        hung_up = asyncio.Event()
        started: list[dict] = []
        body: list[str] = []

        async def receive() -> dict:
            await hung_up.wait()
            return {"type": "http.disconnect"}

        async def send(message: dict) -> None:
            if message["type"] == "http.response.start":
                started.append(message)
            elif message["type"] == "http.response.body":
                body.append(message.get("body", b"").decode("utf-8"))
                if "event: snapshot" in "".join(body):
                    hung_up.set()

        try:
            await asyncio.wait_for(app(_get_scope(path), receive, send), timeout=5)
            assert started[0]["status"] == 200
            headers = dict(started[0]["headers"])
            assert headers[b"content-type"].startswith(b"text/event-stream")

            text = "".join(body)
            assert text.startswith("retry: 3000\n\n")
            event = text.split("event: snapshot\n", 1)[1]
            data = event.split("data: ", 1)[1].split("\n\n", 1)[0]
            assert len(json.loads(data)) == expected
            assert getattr(service, attr).observer_count == 0
        finally:
            service.close()

    asyncio.run(scenario())
