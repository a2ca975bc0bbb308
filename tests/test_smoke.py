"""Smoke tests: the app builds and its basic endpoints respond."""

from httpx import AsyncClient


async def test_app_title(app) -> None:
    assert app.title == "Sticky Add to Cart API"


async def test_health_check(client: AsyncClient) -> None:
    res = await client.get("/")
    assert res.status_code == 200
    data = res.json()
    assert data["status"] == "success"
    assert data["message"] == "Sticky Add to Cart App is running"
    assert data["timestamp"]


async def test_unknown_route_returns_json_404(client: AsyncClient) -> None:
    res = await client.get("/nope")
    assert res.status_code == 404
    assert res.json() == {"error": "Not Found", "path": "/nope"}


async def test_routes_are_registered(app) -> None:
    paths = {route.path for route in app.routes}
    assert {"/", "/auth", "/auth/callback", "/api/webhooks", "/api/data"} <= paths


async def test_components_are_shared_on_app_state(app) -> None:
    assert app.state.webhook_dispatcher is not None
    assert app.state.installation_coordinator is not None
    assert app.state.task_runner.pending == 0


async def test_wrong_method_on_known_path_returns_json_404(client: AsyncClient) -> None:
    res = await client.get("/api/webhooks")
    assert res.status_code == 404
    assert res.json() == {"error": "Not Found", "path": "/api/webhooks"}
