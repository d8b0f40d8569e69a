"""Tests for perch.App — registration, freezing and validation."""

from dataclasses import dataclass

import pytest

from perch import App, ConfigurationError, ConflictError, Managed, Param, Query, ServerConfig
from perch.dispatch import Dispatcher
from perch.http.request import Request
from perch.testing import TestClient


@pytest.fixture
def app() -> App:
    return App(ServerConfig())


@dataclass
class Counter:
    hits: int = 0


class TestRegistration:
    async def test_method_shortcuts(self, app: App) -> None:
        for method in ("get", "post", "put", "patch", "delete"):

            @getattr(app, method)("/thing")
            def handler() -> str:
                return "ok"

        methods = sorted(route.method for route in app.routes.routes)
        assert methods == ["DELETE", "GET", "PATCH", "POST", "PUT"]

    async def test_route_with_several_methods(self, app: App) -> None:
        @app.route("/form", methods=["get", "post"])
        def form() -> str:
            return "form"

        async with TestClient(app) as client:
            assert (await client.get("/form")).text == "form"
            assert (await client.post("/form")).text == "form"

    def test_decorator_returns_function(self, app: App) -> None:
        def handler() -> str:
            return "x"

        assert app.get("/")(handler) is handler

    def test_same_shape_under_other_names(self, app: App) -> None:
        @app.get("/a/<x>")
        def first(request: Request) -> str:
            return "1"

        @app.get("/a/<y>")
        def second(request: Request) -> str:
            return "2"

        app.freeze()

    def test_same_pattern_conflicts(self, app: App) -> None:
        @app.get("/a")
        def first() -> str:
            return "1"

        @app.get("/a")
        def second() -> str:
            return "2"

        with pytest.raises(ConflictError) as info:
            app.freeze()
        assert info.value.method == "GET"
        assert info.value.pattern == "/a"


class TestFreeze:
    def test_freeze_is_idempotent(self, app: App) -> None:
        first = app.freeze()
        assert isinstance(first, Dispatcher)
        assert app.freeze() is first
        assert app.frozen

    def test_modify_after_freeze(self, app: App) -> None:
        app.freeze()
        with pytest.raises(RuntimeError, match="after it has started"):

            @app.get("/late")
            def late() -> str:
                return "late"

        with pytest.raises(RuntimeError):
            app.manage(Counter())

    def test_default_config_reads_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("PERCH_PORT", "9123")
        assert App().config.port == 9123


class TestValidation:
    def test_param_guard_must_name_a_capture(self, app: App) -> None:
        @app.get("/items/<id>", guards=[Param("item_id", int)])
        def show(item_id: int) -> str:
            return "x"

        with pytest.raises(ConfigurationError, match="item_id"):
            app.freeze()

    def test_guard_names_unique(self, app: App) -> None:
        @app.get("/search", guards=[Query("q"), Query("query", name="q")])
        def search(q: str) -> str:
            return q

        with pytest.raises(ConfigurationError, match="two guards"):
            app.freeze()

    def test_handler_parameter_without_guard(self, app: App) -> None:
        @app.get("/items/<id>")
        def show(id: int) -> str:
            return "x"

        with pytest.raises(ConfigurationError, match="not provided by any guard"):
            app.freeze()

    def test_defaults_and_request_are_fine(self, app: App) -> None:
        @app.get("/items/<id>", guards=[Param("id", int)])
        def show(id: int, request: Request, verbose: bool = False) -> str:
            return "x"

        app.freeze()


class TestManagedAndCatchers:
    async def test_managed_resource(self, app: App) -> None:
        counter = Counter()
        app.manage(counter)

        @app.get("/hit", guards=[Managed(Counter, name="counter")])
        def hit(counter: Counter) -> dict:
            counter.hits += 1
            return {"hits": counter.hits}

        async with TestClient(app) as client:
            await client.get("/hit")
            response = await client.get("/hit")
        assert response.json == {"hits": 2}
        assert counter.hits == 2

    async def test_catcher_for_404(self, app: App) -> None:
        @app.catch(404)
        def not_found(request: Request) -> dict:
            return {"missing": request.path}

        async with TestClient(app) as client:
            response = await client.get("/nowhere")
        assert response.status == 404
        assert response.json == {"missing": "/nowhere"}

    async def test_catcher_for_exception_type(self, app: App) -> None:
        @app.catch(KeyError)
        def key_error(request: Request, error: Exception) -> str:
            return f"no key {error}"

        @app.get("/lookup")
        def lookup() -> str:
            return {}["absent"]

        async with TestClient(app) as client:
            response = await client.get("/lookup")
        assert response.status == 500
        assert response.text == "no key 'absent'"


class TestClientBehaviour:
    async def test_head_strips_body(self, app: App) -> None:
        @app.get("/page")
        def page() -> str:
            return "content"

        async with TestClient(app) as client:
            response = await client.head("/page")
        assert response.status == 200
        assert response.body == b""

    async def test_query_and_form(self, app: App) -> None:
        @app.get("/search", guards=[Query("q")])
        def search(q: str) -> str:
            return q

        @app.post("/form")
        def form(request: Request) -> dict:
            return dict(request.form())

        async with TestClient(app) as client:
            assert (await client.get("/search", query={"q": "a b"})).text == "a b"
            response = await client.post("/form", form={"name": "Ada"})
        assert response.json == {"name": "Ada"}
