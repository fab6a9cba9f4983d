"""
Dispatch behaviour checked through every driver.

The same router runs directly, behind the ASGI adapter and behind the AWS
API Gateway adapter; the observable responses must not differ.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from typedrest import PydanticSchema, Router, TypedResponse
from tests.framework import MultiDriverTestBase, multi_driver_test_class


class ItemId(BaseModel):
    id: int


class Item(BaseModel):
    id: int
    name: str


class NewItem(BaseModel):
    name: str = Field(min_length=1)
    price: float = Field(gt=0)


class ItemQuery(BaseModel):
    limit: int = 10
    prefix: Optional[str] = None


ITEMS = [Item(id=1, name="pen"), Item(id=2, name="pencil"), Item(id=3, name="paper")]


@multi_driver_test_class(enabled_drivers=['direct', 'asgi', 'aws_lambda', 'aws_lambda_base64', 'aws_lambda_v2'])
class TestItemsApi(MultiDriverTestBase):
    """Routing, validation and response shapes across drivers."""

    def create_router(self) -> Router:
        router = Router()

        @router.get("/items/featured", responses={200: Item})
        async def featured_item():
            return TypedResponse(200, ITEMS[0])

        @router.get("/items/:id", params=ItemId, responses={200: Item, 404: PydanticSchema(str, "Not Found")})
        async def get_item(params):
            for item in ITEMS:
                if item.id == params.id:
                    return TypedResponse(200, item)
            return TypedResponse(404, "Item not found")

        @router.get("/items", params=ItemQuery, responses={200: List[Item]})
        def list_items(params):
            items = [i for i in ITEMS if params.prefix is None or i.name.startswith(params.prefix)]
            return TypedResponse(200, items[:params.limit])

        @router.post("/items", body=NewItem, responses={201: Item})
        async def create_item(body):
            return TypedResponse(201, Item(id=99, name=body.name))

        return router

    def test_literal_segment_beats_parameter(self, api):
        api_client, driver_name = api
        data = api_client.expect_successful_retrieval(api_client.get_resource("/items/featured"))
        assert data == {"id": 1, "name": "pen"}

    def test_parameter_route(self, api):
        api_client, driver_name = api
        data = api_client.expect_successful_retrieval(api_client.get_resource("/items/2"))
        assert data == {"id": 2, "name": "pencil"}

    def test_declared_not_found_status(self, api):
        api_client, driver_name = api
        response = api_client.get_resource("/items/42")
        api_client.expect_not_found(response)
        assert response.get_json_body() == "Item not found"
        assert response.is_marked()

    def test_unmatched_path_is_404(self, api):
        api_client, driver_name = api
        response = api_client.get_resource("/nothing/here")
        api_client.expect_not_found(response)
        assert not response.is_marked()

    def test_wrong_method_is_405_with_allow(self, api):
        api_client, driver_name = api
        response = api_client.execute(api_client.delete("/items"))
        api_client.expect_method_not_allowed(response, "GET", "POST")

    def test_bad_path_param_is_400(self, api):
        api_client, driver_name = api
        error = api_client.expect_validation_error(api_client.get_resource("/items/abc"))
        assert api_client.failure_paths(error) == [["params", "id"]]

    def test_query_params_coerced(self, api):
        api_client, driver_name = api
        response = api_client.search_resources("/items", {"prefix": "pe", "limit": "1"})
        assert api_client.expect_successful_retrieval(response) == [{"id": 1, "name": "pen"}]

    def test_bad_query_param_is_400(self, api):
        api_client, driver_name = api
        error = api_client.expect_validation_error(api_client.search_resources("/items", {"limit": "many"}))
        assert api_client.failure_paths(error) == [["params", "limit"]]

    def test_create_with_valid_body(self, api):
        api_client, driver_name = api
        response = api_client.create_resource("/items", {"name": "stapler", "price": 3.5})
        data = api_client.expect_successful_creation(response, ["id", "name"])
        assert data["name"] == "stapler"
        assert response.is_marked()

    def test_every_body_failure_reported(self, api):
        api_client, driver_name = api
        error = api_client.expect_validation_error(api_client.create_resource("/items", {"name": "", "price": 0}))
        assert sorted(api_client.failure_paths(error)) == [["body", "name"], ["body", "price"]]

    def test_malformed_json_body(self, api):
        api_client, driver_name = api
        request = api_client.post("/items").with_text_body("{oops")
        error = api_client.expect_validation_error(api_client.execute(request))
        assert api_client.failure_paths(error) == [["body"]]
