"""
engine/cloud_storage.py -- REST storage backend.

Talks JSON over HTTP to the Authorio API using only ``urllib``.  Requests
carry the stored bearer token; a 401 response clears the token so the user
is sent back through login.

Classes:
    TokenStore          Bearer token persisted to a file in the data dir.
    CloudStorageClient  Transport, error mapping and the auth endpoints.
    CloudBookBackend    ``BookBackend`` implementation on top of the client.

Usage:
    client = CloudStorageClient(config.api_url, TokenStore(data_dir))
    client.login("me@example.com", "secret")
    backend = CloudBookBackend(client)
    book = backend.load_book(book_id)
"""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.parse
import urllib.request
from pathlib import Path
from typing import Any, Sequence

from pydantic import BaseModel

from engine.errors import AuthenticationError, NetworkError, NotFoundError, StorageError
from engine.models.book import Book, Chapter, Character
from engine.models.wire import (
    chapter_from_wire,
    chapter_to_wire,
    character_from_wire,
    character_to_wire,
    project_from_wire,
    project_to_wire,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:5000/api"
TOKEN_FILENAME = "authorio_token"

# Fields the server assigns itself; never sent in request bodies.
_SERVER_OWNED = ("_id", "createdAt", "updatedAt")


# ---------------------------------------------------------------------------
# Token persistence
# ---------------------------------------------------------------------------

class TokenStore:
    """Keeps the bearer token in memory and in ``<data_dir>/authorio_token``."""

    def __init__(self, data_dir: str | os.PathLike):
        self.path = Path(data_dir) / TOKEN_FILENAME
        self._token: str | None = None

    def get(self) -> str | None:
        if self._token is None and self.path.exists():
            try:
                self._token = self.path.read_text(encoding="utf-8").strip() or None
            except OSError as exc:
                logger.warning("Could not read token file %s: %s", self.path, exc)
        return self._token

    def set(self, token: str) -> None:
        self._token = token
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token, encoding="utf-8")

    def clear(self) -> None:
        self._token = None
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class AuthUser(BaseModel):
    id: str
    email: str
    name: str
    token: str


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class CloudStorageClient:
    """Thin JSON client for the Authorio REST API.

    Parameters
    ----------
    base_url : str
        API root, e.g. ``http://localhost:5000/api``.
    token_store : TokenStore
        Where the bearer token lives.
    timeout : float | None
        Per-request socket timeout in seconds; ``None`` waits indefinitely.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        token_store: TokenStore | None = None,
        timeout: float | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_store = token_store
        self.timeout = timeout

    # -- token ----------------------------------------------------------

    @property
    def token(self) -> str | None:
        return self.token_store.get() if self.token_store else None

    def is_authenticated(self) -> bool:
        return bool(self.token)

    def _clear_token(self) -> None:
        if self.token_store is not None:
            self.token_store.clear()

    # -- requests -------------------------------------------------------

    def request(self, method: str, endpoint: str, body: Any = None) -> Any:
        """Send one request and return the decoded JSON response.

        Raises
        ------
        AuthenticationError
            On HTTP 401; the stored token is cleared first.
        NotFoundError
            On HTTP 404.
        StorageError
            On any other non-2xx status, carrying the server's ``error``.
        NetworkError
            When the server cannot be reached.
        """
        headers = {"Content-Type": "application/json"}
        token = self.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        data = json.dumps(body).encode("utf-8") if body is not None else None

        req = urllib.request.Request(
            f"{self.base_url}{endpoint}", data=data, headers=headers, method=method,
        )
        logger.debug("%s %s", method, endpoint)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as exc:
            raise self._error_for(exc) from exc
        except urllib.error.URLError as exc:
            logger.warning("Request %s %s failed: %s", method, endpoint, exc.reason)
            raise NetworkError(f"Could not reach server: {exc.reason}") from exc

        if not raw:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StorageError("Malformed response from server") from exc

    def _error_for(self, exc: urllib.error.HTTPError) -> StorageError:
        if exc.code == 401:
            self._clear_token()
            return AuthenticationError()

        message = "Request failed"
        try:
            payload = json.loads(exc.read().decode("utf-8"))
            if isinstance(payload, dict) and payload.get("error"):
                message = str(payload["error"])
        except (ValueError, OSError, AttributeError):
            pass

        if exc.code == 404:
            return NotFoundError(message if message != "Request failed" else "Not found")
        logger.warning("Server returned %s: %s", exc.code, message)
        return StorageError(message, status=exc.code)

    # -- auth -----------------------------------------------------------

    def register(self, email: str, password: str, name: str) -> AuthUser:
        data = self.request("POST", "/auth/register",
                            {"email": email, "password": password, "name": name})
        return self._accept_auth(data)

    def login(self, email: str, password: str) -> AuthUser:
        data = self.request("POST", "/auth/login", {"email": email, "password": password})
        return self._accept_auth(data)

    def get_current_user(self) -> AuthUser:
        data = self.request("GET", "/auth/me")
        return AuthUser(
            id=str(data.get("id", "")),
            email=data.get("email", ""),
            name=data.get("name", ""),
            token=self.token or "",
        )

    def logout(self) -> None:
        self._clear_token()

    def _accept_auth(self, data: dict[str, Any]) -> AuthUser:
        token = data["token"]
        if self.token_store is not None:
            self.token_store.set(token)
        user = data.get("user", {})
        logger.info("Signed in as %s", user.get("email", "?"))
        return AuthUser(
            id=str(user.get("id", "")),
            email=user.get("email", ""),
            name=user.get("name", ""),
            token=token,
        )


def _quote(entity_id: str) -> str:
    return urllib.parse.quote(entity_id, safe="")


def _request_body(wire: dict[str, Any], **extra: Any) -> dict[str, Any]:
    body = {k: v for k, v in wire.items() if k not in _SERVER_OWNED}
    body.update(extra)
    return body


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

class CloudBookBackend:
    """``BookBackend`` over the REST API.

    Plot points and the timeline have no endpoints of their own and are
    not persisted in cloud mode; ``update_book`` sends metadata and
    settings only.
    """

    def __init__(self, client: CloudStorageClient):
        self.client = client

    # -- projects -------------------------------------------------------

    def list_books(self) -> list[Book]:
        return [project_from_wire(p) for p in self.client.request("GET", "/projects") or []]

    def load_book(self, book_id: str) -> Book:
        book = project_from_wire(self.client.request("GET", f"/projects/{_quote(book_id)}"))
        book.characters = [
            character_from_wire(c)
            for c in self.client.request("GET", f"/characters/project/{_quote(book_id)}") or []
        ]
        book.chapters = [
            chapter_from_wire(c)
            for c in self.client.request("GET", f"/chapters/project/{_quote(book_id)}") or []
        ]
        return book

    def create_book(self, book: Book) -> Book:
        created = self.client.request("POST", "/projects", project_to_wire(book.metadata, book.settings))
        return project_from_wire(created)

    def update_book(self, book: Book) -> Book:
        updated = self.client.request(
            "PUT", f"/projects/{_quote(book.id)}", project_to_wire(book.metadata, book.settings),
        )
        return project_from_wire(updated)

    def delete_book(self, book_id: str) -> None:
        self.client.request("DELETE", f"/projects/{_quote(book_id)}")

    # -- characters -----------------------------------------------------

    def create_character(self, book_id: str, character: Character) -> Character:
        body = _request_body(character_to_wire(character), projectId=book_id)
        return character_from_wire(self.client.request("POST", "/characters", body))

    def update_character(self, book_id: str, character: Character) -> Character:
        body = _request_body(character_to_wire(character))
        return character_from_wire(
            self.client.request("PUT", f"/characters/{_quote(character.id)}", body)
        )

    def delete_character(self, book_id: str, character_id: str) -> None:
        self.client.request("DELETE", f"/characters/{_quote(character_id)}")

    # -- chapters -------------------------------------------------------

    def create_chapter(self, book_id: str, chapter: Chapter) -> Chapter:
        body = _request_body(chapter_to_wire(chapter), projectId=book_id)
        return chapter_from_wire(self.client.request("POST", "/chapters", body))

    def update_chapter(self, book_id: str, chapter: Chapter) -> Chapter:
        body = _request_body(chapter_to_wire(chapter))
        return chapter_from_wire(
            self.client.request("PUT", f"/chapters/{_quote(chapter.id)}", body)
        )

    def delete_chapter(self, book_id: str, chapter_id: str) -> None:
        self.client.request("DELETE", f"/chapters/{_quote(chapter_id)}")

    def reorder_chapters(self, book_id: str, orders: Sequence[tuple[str, int]]) -> None:
        self.client.request("POST", "/chapters/reorder", {
            "projectId": book_id,
            "chapterOrders": [{"id": cid, "order": order} for cid, order in orders],
        })
