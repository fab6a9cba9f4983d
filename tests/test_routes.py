"""Tests for route descriptors."""

import dataclasses
import threading

import pytest
from pydantic import BaseModel

from typedrest import HTTPMethod, PydanticSchema, Request, Response, Route, TypedResponse, route
from typedrest.exceptions import InvalidPatternError, MissingParamSchemaError, RegistrationError


class ItemId(BaseModel):
    id: int


class Item(BaseModel):
    id: int
    name: str


async def show_item(params):
    """Show one item."""
    return TypedResponse(200, Item(id=params.id, name="thing"))


class TestRouteConstruction:

    def test_method_strings_are_normalized(self):
        r = Route("get", "/items/:id", show_item, params=ItemId, responses={200: Item})
        assert r.method is HTTPMethod.GET

    def test_plain_types_become_schemas(self):
        r = Route("GET", "/items/:id", show_item, params=ItemId, responses={200: Item})
        assert isinstance(r.params, PydanticSchema)
        assert isinstance(r.responses[200], PydanticSchema)

    def test_responses_are_read_only(self):
        r = Route("GET", "/items/:id", show_item, params=ItemId, responses={200: Item})
        with pytest.raises(TypeError):
            r.responses[201] = PydanticSchema(Item)

    def test_route_is_frozen(self):
        r = Route("GET", "/items/:id", show_item, params=ItemId, responses={200: Item})
        with pytest.raises(dataclasses.FrozenInstanceError):
            r.path = "/other"

    def test_path_param_requires_params_schema(self):
        with pytest.raises(MissingParamSchemaError) as exc_info:
            Route("GET", "/items/:id", show_item, responses={200: Item})
        assert exc_info.value.missing == ("id",)

    def test_path_param_must_be_a_params_field(self):
        class Other(BaseModel):
            name: str

        with pytest.raises(MissingParamSchemaError):
            Route("GET", "/items/:id", show_item, params=Other, responses={200: Item})

    def test_invalid_pattern(self):
        with pytest.raises(InvalidPatternError):
            Route("GET", "/items//x", show_item)

    def test_unknown_method_rejected(self):
        with pytest.raises(ValueError):
            Route("TRACE", "/items", show_item)

    def test_handler_with_unsupported_arguments(self):
        def handler(request, session):
            return Response(200)

        with pytest.raises(RegistrationError, match="session"):
            Route("GET", "/items", handler)

    def test_empty_responses_allowed(self):
        r = Route("GET", "/health", lambda: Response(200))
        assert dict(r.responses) == {}

    def test_operation_id_and_doc(self):
        r = Route("GET", "/items/:id", show_item, params=ItemId, responses={200: Item})
        assert r.operation_id == "show_item"
        assert r.doc == "Show one item."

        named = Route("GET", "/items/:id", show_item, params=ItemId, responses={200: Item},
                      name="getItem", description="Explicit.")
        assert named.operation_id == "getItem"
        assert named.doc == "Explicit."

    def test_with_prefix(self):
        r = Route("GET", "/:id", show_item, params=ItemId, responses={200: Item})
        mounted = r.with_prefix("/items")
        assert mounted.path == "/items/:id"
        assert mounted.pattern.param_names == ("id",)
        assert r.path == "/:id"

    def test_route_decorator(self):
        @route("GET", "/items/:id", params=ItemId, responses={200: Item}, tags=["items"])
        async def get_item(params):
            return TypedResponse(200, Item(id=params.id, name="x"))

        assert isinstance(get_item, Route)
        assert get_item.tags == ("items",)
        assert get_item.handler.__name__ == "get_item"


class TestRouteInvoke:

    @pytest.mark.anyio
    async def test_async_handler_receives_named_inputs(self):
        r = Route("GET", "/items/:id", show_item, params=ItemId, responses={200: Item})
        response = await r.invoke(Request("GET", "/items/3"), ItemId(id=3), None)
        assert response.status_code == 200
        assert response.json() == {"id": 3, "name": "thing"}

    @pytest.mark.anyio
    async def test_sync_handler_runs_in_worker_thread(self):
        seen = {}

        def handler(request):
            seen["thread"] = threading.current_thread()
            return Response(200, "ok")

        r = Route("GET", "/sync", handler)
        response = await r.invoke(Request("GET", "/sync"), None, None)
        assert response.body == "ok"
        assert seen["thread"] is not threading.main_thread()

    @pytest.mark.anyio
    async def test_kwargs_handler_receives_everything(self):
        captured = {}

        async def handler(**kwargs):
            captured.update(kwargs)
            return Response(204)

        r = Route("POST", "/things", handler, body=Item)
        await r.invoke(Request("POST", "/things"), None, {"id": 1})
        assert set(captured) == {"request", "params", "body"}

    @pytest.mark.anyio
    async def test_non_response_result_is_an_error(self):
        async def handler():
            return {"not": "a response"}

        r = Route("GET", "/bad", handler)
        with pytest.raises(TypeError, match="expected a Response"):
            await r.invoke(Request("GET", "/bad"), None, None)

    @pytest.mark.anyio
    async def test_handler_exceptions_propagate(self):
        async def handler():
            raise RuntimeError("boom")

        r = Route("GET", "/boom", handler)
        with pytest.raises(RuntimeError, match="boom"):
            await r.invoke(Request("GET", "/boom"), None, None)
