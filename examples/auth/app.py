"""Auth — bearer tokens, JSON bodies and managed state.

``POST /login`` exchanges JSON credentials for a token; ``GET /me``
requires ``Authorization: Bearer <token>``. The token store is built
here and handed to perch with ``app.manage``; it locks its own state.

Run:
    cd examples/auth && python app.py
"""

import secrets
import threading
from dataclasses import dataclass

from perch import App, BearerToken, Json, Managed

app = App()

USERS = {"ada": "lovelace", "grace": "hopper"}


@dataclass(frozen=True, slots=True)
class Credentials:
    username: str
    password: str


class TokenStore:
    """Opaque tokens mapped to usernames."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: dict[str, str] = {}

    def issue(self, username: str) -> str:
        token = secrets.token_urlsafe(24)
        with self._lock:
            self._tokens[token] = username
        return token

    def revoke(self, token: str) -> None:
        with self._lock:
            self._tokens.pop(token, None)

    def lookup(self, token: str) -> str | None:
        with self._lock:
            return self._tokens.get(token)


store = TokenStore()
app.manage(store)


@app.post("/login", guards=[Json(Credentials, name="credentials"), Managed(TokenStore, name="tokens")])
def login(credentials: Credentials, tokens: TokenStore):
    if USERS.get(credentials.username) != credentials.password:
        return {"error": "invalid credentials"}, 401
    return {"token": tokens.issue(credentials.username)}, 201


@app.get("/me", guards=[BearerToken(verify=store.lookup, name="user")])
def me(user: str) -> dict:
    return {"user": user}


@app.post("/logout", guards=[BearerToken(verify=store.lookup), Managed(TokenStore, name="tokens")])
def logout(token: str, tokens: TokenStore) -> None:
    tokens.revoke(token)


if __name__ == "__main__":
    app.run()
