"""
TODO API example.

A small CRUD service showing typed routes, validation, OpenAPI generation
and cookie-scoped session state. Each browser session gets its own TODO
list, keyed by a ``sessionId`` cookie; sessions idle for longer than the
store's TTL are dropped.

Run it with:

    python examples/todo_app.py

then fetch http://localhost:8080/.well-known/openapi.json, or run
``examples/todo_client.py`` against it.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from http.cookies import SimpleCookie
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from typedrest import ASGIAdapter, PydanticSchema, Request, Router, TypedResponse, serve
from typedrest.models import MultiValueHeaders

logger = logging.getLogger(__name__)

SESSION_COOKIE = "sessionId"
SESSION_COOKIE_MAX_AGE = 60 * 60 * 24 * 7


class Todo(BaseModel):
    id: int
    title: str
    completed: bool = False


class CreateTodo(BaseModel):
    title: str = Field(min_length=1)


class UpdateTodo(BaseModel):
    title: Optional[str] = None
    completed: Optional[bool] = None


class TodoId(BaseModel):
    id: int = Field(description="TODO identifier")


class TodoNotFound(LookupError):
    pass


@dataclass
class SessionState:
    todos: List[Todo] = field(default_factory=list)
    next_id: int = 1
    last_seen: float = 0.0


class TodoStore:
    """In-memory TODO lists, one per session.

    Sessions not touched for ``ttl`` seconds are evicted on the next access
    to the store.

    Args:
        ttl: Idle time in seconds after which a session is dropped.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(self, ttl: float = 60 * 60, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._sessions: Dict[str, SessionState] = {}
        # Plain-function handlers run in worker threads.
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _evict_idle(self, now: float) -> None:
        expired = [sid for sid, state in self._sessions.items() if now - state.last_seen > self.ttl]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug(f"Evicted {len(expired)} idle session(s)")

    def _session(self, session_id: str) -> SessionState:
        now = self.clock()
        self._evict_idle(now)
        state = self._sessions.get(session_id)
        if state is None:
            state = self._sessions[session_id] = SessionState()
        state.last_seen = now
        return state

    def todos(self, session_id: str) -> List[Todo]:
        with self._lock:
            return list(self._session(session_id).todos)

    def create(self, session_id: str, title: str, completed: bool = False) -> Todo:
        with self._lock:
            state = self._session(session_id)
            todo = Todo(id=state.next_id, title=title, completed=completed)
            state.next_id += 1
            state.todos.append(todo)
            return todo

    def get(self, session_id: str, todo_id: int) -> Todo:
        with self._lock:
            for todo in self._session(session_id).todos:
                if todo.id == todo_id:
                    return todo
        raise TodoNotFound(todo_id)

    def update(self, session_id: str, todo_id: int, changes: Dict[str, object]) -> Todo:
        with self._lock:
            todos = self._session(session_id).todos
            for index, todo in enumerate(todos):
                if todo.id == todo_id:
                    todos[index] = todo.model_copy(update=changes)
                    return todos[index]
        raise TodoNotFound(todo_id)

    def delete(self, session_id: str, todo_id: int) -> None:
        with self._lock:
            todos = self._session(session_id).todos
            for index, todo in enumerate(todos):
                if todo.id == todo_id:
                    del todos[index]
                    return
        raise TodoNotFound(todo_id)


class Session:
    """The caller's session id, read from or issued as a cookie."""

    def __init__(self, request: Request):
        self.headers = MultiValueHeaders()
        cookies = SimpleCookie()
        raw = request.headers.get("cookie")
        if raw:
            cookies.load(raw)

        morsel = cookies.get(SESSION_COOKIE)
        if morsel is not None and morsel.value:
            self.id = morsel.value
            return

        self.id = str(uuid.uuid4())
        issued = SimpleCookie()
        issued[SESSION_COOKIE] = self.id
        issued[SESSION_COOKIE]["path"] = "/"
        issued[SESSION_COOKIE]["max-age"] = SESSION_COOKIE_MAX_AGE
        self.headers.add("Set-Cookie", issued[SESSION_COOKIE].OutputString())


NOT_FOUND = PydanticSchema(str, "Not Found")


def build_router(store: TodoStore, validate_responses: Optional[bool] = None) -> Router:
    """Build the TODO router around *store*."""
    router = Router(validate_responses=validate_responses)

    @router.post(
        "/todos",
        body=CreateTodo,
        responses={201: PydanticSchema(Todo, "Created TODO")},
        summary="Create TODO",
        tags=("todos",),
    )
    async def create_todo(request: Request, body: CreateTodo):
        """Create a new TODO item"""
        session = Session(request)
        todo = store.create(session.id, body.title)
        return TypedResponse(201, todo, headers=session.headers)

    @router.get(
        "/todos",
        responses={200: PydanticSchema(List[Todo], "List of TODOs")},
        summary="List TODOs",
        tags=("todos",),
    )
    def list_todos(request: Request):
        """Retrieve all TODO items"""
        session = Session(request)
        return TypedResponse(200, store.todos(session.id), headers=session.headers)

    @router.get(
        "/todos/:id",
        params=TodoId,
        responses={200: PydanticSchema(Todo, "The TODO"), 404: NOT_FOUND},
        summary="Get TODO",
        tags=("todos",),
    )
    def get_todo(request: Request, params: TodoId):
        """Fetch a single TODO item by its ID"""
        session = Session(request)
        try:
            todo = store.get(session.id, params.id)
        except TodoNotFound:
            return TypedResponse(404, "TODO item not found", headers=session.headers)
        return TypedResponse(200, todo, headers=session.headers)

    @router.put(
        "/todos/:id",
        params=TodoId,
        body=UpdateTodo,
        responses={200: PydanticSchema(Todo, "Updated TODO"), 404: NOT_FOUND},
        summary="Update TODO",
        tags=("todos",),
    )
    async def update_todo(request: Request, params: TodoId, body: UpdateTodo):
        """Update a TODO item by its ID"""
        session = Session(request)
        try:
            todo = store.update(session.id, params.id, body.model_dump(exclude_unset=True, exclude_none=True))
        except TodoNotFound:
            return TypedResponse(404, "TODO item not found", headers=session.headers)
        return TypedResponse(200, todo, headers=session.headers)

    @router.delete(
        "/todos/:id",
        params=TodoId,
        responses={204: PydanticSchema(None, "Deleted TODO"), 404: NOT_FOUND},
        summary="Delete TODO",
        tags=("todos",),
    )
    async def delete_todo(request: Request, params: TodoId):
        """Delete a TODO item by its ID"""
        session = Session(request)
        try:
            store.delete(session.id, params.id)
        except TodoNotFound:
            return TypedResponse(404, "TODO item not found", headers=session.headers)
        return TypedResponse(204, headers=session.headers)

    return router


OPENAPI_METADATA = {
    "info": {
        "title": "TODO API",
        "version": "1.0.0",
    },
    "components": {
        "securitySchemes": {
            "cookieAuth": {
                "type": "apiKey",
                "in": "cookie",
                "name": SESSION_COOKIE,
            },
        },
    },
    "security": [{"cookieAuth": []}],
}

store = TodoStore()
router = build_router(store)
app = ASGIAdapter(router, openapi=OPENAPI_METADATA)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    serve(router, host="0.0.0.0", port=8080, openapi=OPENAPI_METADATA)
