"""OpenAPI document generation.

The document is derived from the same route descriptors the router
dispatches with, so the published description and the dispatch table cannot
drift apart.
"""

import copy
import json
import logging
import os
from http import HTTPStatus
from typing import Any, Dict, Iterable, List, Mapping, Set

from .exceptions import MissingOutputSchemaError
from .routes import Route
from .schemas import PydanticSchema, Schema

logger = logging.getLogger(__name__)

OPENAPI_VERSION = "3.1.0"
WELL_KNOWN_PATH = "/.well-known/openapi.json"


def _hoist_definitions(description: Dict[str, Any], schemas: Dict[str, Any],
                       suffix: str = "Input") -> Dict[str, Any]:
    """Move a schema's ``$defs`` into ``components.schemas``.

    A definition whose name is already taken by a different schema (a model
    described once for input and once for output) is stored as
    ``<Name><suffix>`` and references to it are rewritten.
    """
    description = dict(description)
    definitions = description.pop("$defs", {})
    renamed = {
        name: f"{name}{suffix}"
        for name, definition in definitions.items()
        if name in schemas and schemas[name] != definition
    }
    if renamed:
        text = json.dumps({"description": description, "definitions": definitions})
        for old, new in renamed.items():
            text = text.replace(f'"#/components/schemas/{old}"', f'"#/components/schemas/{new}"')
        rewritten = json.loads(text)
        description = rewritten["description"]
        definitions = {renamed.get(name, name): d for name, d in rewritten["definitions"].items()}
    for name, definition in definitions.items():
        schemas.setdefault(name, definition)
    return description


def _object_root(description: Dict[str, Any], schemas: Mapping[str, Any]) -> Dict[str, Any]:
    """Follow a top-level component reference to the object it names."""
    ref = description.get("$ref", "")
    if ref.startswith("#/components/schemas/"):
        return schemas.get(ref.rsplit("/", 1)[-1], description)
    return description


def _describe_output(schema: Schema) -> Dict[str, Any]:
    """Describe a response schema as the handler output serializes."""
    if isinstance(schema, PydanticSchema):
        return schema.describe(mode="serialization")
    return schema.describe()


def _status_description(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return f"Response {status}"


def _parameters(route: Route, schemas: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Describe every params field as a path or query parameter."""
    if route.params is None:
        return []

    description = _hoist_definitions(route.params.describe(), schemas)
    root = _object_root(description, schemas)
    required = set(root.get("required") or ())
    path_names = set(route.pattern.param_names)

    parameters = []
    for name, field_schema in (root.get("properties") or {}).items():
        in_path = name in path_names
        parameter: Dict[str, Any] = {
            "name": name,
            "in": "path" if in_path else "query",
            "required": in_path or name in required,
            "schema": field_schema,
        }
        if isinstance(field_schema, dict) and field_schema.get("description"):
            parameter["description"] = field_schema["description"]
        parameters.append(parameter)
    return parameters


def _operation(route: Route, schemas: Dict[str, Any], operation_id: str) -> Dict[str, Any]:
    """Build the Operation Object for one route."""
    operation: Dict[str, Any] = {"operationId": operation_id}
    if route.summary:
        operation["summary"] = route.summary
    if route.doc:
        operation["description"] = route.doc
    if route.tags:
        operation["tags"] = list(route.tags)

    parameters = _parameters(route, schemas)
    if parameters:
        operation["parameters"] = parameters

    if route.body is not None:
        operation["requestBody"] = {
            "content": {
                "application/json": {
                    "schema": _hoist_definitions(route.body.describe(), schemas),
                },
            },
            "required": True,
        }

    responses: Dict[str, Any] = {}
    for status, schema in route.responses.items():
        description = _hoist_definitions(_describe_output(schema), schemas, suffix="Output")
        responses[str(status)] = {
            "description": description.get("description") or _status_description(status),
            "content": {"application/json": {"schema": description}},
        }
    operation["responses"] = responses
    return operation


def generate_openapi(routes: Iterable[Route], metadata: Mapping[str, Any]) -> Dict[str, Any]:
    """Generate an OpenAPI 3.1 document from route descriptors.

    Args:
        routes: Route descriptors, in the order they should be documented.
        metadata: Top-level document fields. ``info`` is required; ``servers``,
            ``components``, ``security``, ``tags`` and any other fields are
            copied through, and ``components.schemas`` is merged with the
            model definitions the routes reference.

    Raises:
        ValueError: If ``metadata`` has no ``info``.
        MissingOutputSchemaError: If a route declares no response schemas.
    """
    if "info" not in metadata:
        raise ValueError("OpenAPI metadata must include 'info'")

    extra = copy.deepcopy(dict(metadata))
    extra.pop("openapi", None)
    extra.pop("paths", None)
    components = dict(extra.pop("components", None) or {})
    schemas: Dict[str, Any] = dict(components.get("schemas") or {})

    paths: Dict[str, Dict[str, Any]] = {}
    operation_ids: Set[str] = set()
    for route in routes:
        if not route.responses:
            raise MissingOutputSchemaError(route.method.value, route.path)

        operation_id = route.operation_id
        suffix = 2
        while operation_id in operation_ids:
            operation_id = f"{route.operation_id}_{suffix}"
            suffix += 1
        operation_ids.add(operation_id)

        operations = paths.setdefault(route.pattern.to_openapi(), {})
        operations[route.method.value.lower()] = _operation(route, schemas, operation_id)

    if schemas:
        components["schemas"] = schemas

    document: Dict[str, Any] = {"openapi": OPENAPI_VERSION}
    document.update(extra)
    document["components"] = components
    document["paths"] = paths
    logger.debug(f"Generated OpenAPI document with {len(paths)} path(s)")
    return document


def openapi_json(routes: Iterable[Route], metadata: Mapping[str, Any]) -> str:
    """Generate the OpenAPI document serialized as JSON."""
    return json.dumps(generate_openapi(routes, metadata), indent=2)


def save_openapi_json(
    routes: Iterable[Route],
    metadata: Mapping[str, Any],
    filename: str = "openapi.json",
    docs_dir: str = "docs",
) -> str:
    """Generate the OpenAPI document and save it to a file in ``docs_dir``.

    Returns:
        The path of the written file.
    """
    if not os.path.exists(docs_dir):
        os.makedirs(docs_dir)

    document = openapi_json(routes, metadata)

    file_path = os.path.join(docs_dir, filename)
    with open(file_path, "w", encoding="utf-8") as f:
        f.write(document)

    return file_path
