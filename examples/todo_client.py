"""
TODO API client example.

Start the server first (``python examples/todo_app.py``), then run:

    python examples/todo_client.py [http://localhost:8080]

The client loads the server's OpenAPI document and can only call the
routes it declares.
"""

import logging
import sys

from typedrest import RestClient, UndeclaredRouteError


def main(root: str = "http://localhost:8080") -> None:
    client = RestClient.from_server(root, strict=True)

    print("Existing TODOs:")
    print(client.get("/todos").json())

    created = client.post("/todos", body={"title": "Buy milk"})
    if created.status_code != 201:
        raise RuntimeError(f"Failed to create TODO: {created.status_code} {created.text}")
    todo = created.json()

    updated = client.put("/todos/:id", params={"id": todo["id"]}, body={"title": "Buy milk", "completed": True})
    if updated.status_code != 200:
        raise RuntimeError(f"Failed to update TODO: {updated.status_code} {updated.text}")
    print("Updated TODO:")
    print(updated.json())

    print("New TODO list:")
    print(client.get("/todos").json())

    try:
        client.patch("/todos/:id", params={"id": todo["id"]}, body={"completed": False})
    except UndeclaredRouteError as e:
        print(f"Refused: {e}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main(*sys.argv[1:2])
