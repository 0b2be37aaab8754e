"""
User lookup collaborators.

A strategy calls the directory when a payload names a user but carries no
email address. Two implementations:

- FixtureUserDirectory reads users from a JSON fixture file (demos, tests)
- HttpUserDirectory asks the platform's user API over HTTP

Both raise UserNotFound when the user does not exist. The HTTP directory
raises UserLookupFailed for transport errors and unexpected responses, so a
platform outage is distinguishable from a missing user in the logs.
"""

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union

import httpx

from shared.errors import UserLookupFailed, UserNotFound

logger = logging.getLogger("user_directory")


@dataclass(frozen=True)
class ResolvedRecipient:
    """Who an email goes to."""
    username: str
    email: str


class UserDirectory(Protocol):
    """The user-lookup collaborator contract."""

    def resolve_user(self, identifier: Union[str, int]) -> ResolvedRecipient:
        ...


class FixtureUserDirectory:
    """
    User directory backed by a JSON fixture file.

    The file is a list of user objects with at least "id", "username" and
    "email". It is loaded on first use. Identifiers match a username or an id.
    """

    def __init__(self, data_dir: Optional[Path] = None, filename: str = "users.json"):
        if data_dir is None:
            data_dir = Path(__file__).parent.parent / "data"
        self.path = Path(data_dir) / filename
        self._users: Optional[list[dict]] = None
        self._lock = threading.Lock()

    def _ensure_loaded(self) -> list[dict]:
        with self._lock:
            if self._users is None:
                if self.path.exists():
                    with open(self.path, "r", encoding="utf-8") as f:
                        self._users = json.load(f)
                else:
                    logger.warning(f"User fixture file not found: {self.path}")
                    self._users = []
            return self._users

    def add_user(self, user_id: int, username: str, email: Optional[str]) -> None:
        """Add a user in memory (used by tests and demos)."""
        users = self._ensure_loaded()
        with self._lock:
            users.append({"id": user_id, "username": username, "email": email})

    def resolve_user(self, identifier: Union[str, int]) -> ResolvedRecipient:
        key = str(identifier)
        for user in self._ensure_loaded():
            if user.get("username") == key or str(user.get("id")) == key:
                if not user.get("email"):
                    raise UserNotFound(f"User {key} has no email address", {"identifier": key})
                return ResolvedRecipient(username=user["username"], email=user["email"])
        raise UserNotFound(f"User not found: {key}", {"identifier": key})


class HttpUserDirectory:
    """
    User directory that queries the platform's REST API.

    GET {base_url}/rest/users/username/{username} for usernames and
    GET {base_url}/rest/users/{id} for numeric ids. The response is a user
    object with "username" and "email".
    """

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout_s)

    def close(self) -> None:
        self._client.close()

    def _path_for(self, identifier: Union[str, int]) -> str:
        key = str(identifier)
        if key.isdigit():
            return f"/rest/users/{key}"
        return f"/rest/users/username/{key}"

    def resolve_user(self, identifier: Union[str, int]) -> ResolvedRecipient:
        path = self._path_for(identifier)
        try:
            response = self._client.get(path, timeout=self.timeout_s)
        except httpx.HTTPError as e:
            logger.error(f"User lookup failed for {identifier}: {e}")
            raise UserLookupFailed(f"User lookup failed: {e}", {"identifier": str(identifier)}) from e

        if response.status_code == 404:
            raise UserNotFound(f"User not found: {identifier}", {"identifier": str(identifier)})
        if response.status_code >= 400:
            raise UserLookupFailed(
                f"User lookup returned HTTP {response.status_code}",
                {"identifier": str(identifier), "status": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UserLookupFailed(f"User lookup returned invalid JSON: {e}") from e

        email = data.get("email") if isinstance(data, dict) else None
        if not email:
            raise UserNotFound(f"User {identifier} has no email address", {"identifier": str(identifier)})
        return ResolvedRecipient(username=data.get("username") or str(identifier), email=email)
