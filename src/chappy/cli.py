"""CLI for chappy.

Runs the server and talks to a running server over HTTP. Client settings
(server URL and bearer token) live in ~/.config/chappy/config.yaml.
"""

from __future__ import annotations

import json
import logging
import os
import sys

import cyclopts
import httpx

from .config import ClientConfig
from .keys import dm_key

app = cyclopts.App(
    name="chappy",
    help="Multi-room chat with channels and direct messages",
)

channel_app = cyclopts.App(name="channel", help="Channel operations")
dm_app = cyclopts.App(name="dm", help="Direct message operations")
user_app = cyclopts.App(name="user", help="User operations")

app.command(channel_app)
app.command(dm_app)
app.command(user_app)


def api_request(
    method: str,
    path: str,
    *,
    config: ClientConfig | None = None,
    params: dict | None = None,
    json_data: dict | None = None,
    auth: bool = True,
) -> httpx.Response:
    """Make an API request, exiting with the error body on failure."""
    if config is None:
        config = ClientConfig.load()

    headers = {}
    if auth and config.token:
        headers["Authorization"] = f"Bearer {config.token}"

    response = httpx.request(
        method,
        f"{config.url}{path}",
        headers=headers,
        params=params,
        json=json_data,
        timeout=30.0,
    )

    if response.status_code >= 400:
        print(f"Error {response.status_code}: {response.text}", file=sys.stderr)
        sys.exit(1)

    return response


def print_json(data):
    """Pretty print JSON data."""
    print(json.dumps(data, indent=2, default=str))


def print_messages(messages: list[dict]):
    for message in messages:
        print(f"[{message.get('time') or '--:--'}] {message['author']}: {message['text']}")


@app.command
def set_token(token: str, *, url: str | None = None):
    """Store a bearer token (and optionally the server URL) for later commands.

    Args:
        token: Bearer token issued by your auth service
        url: Server URL (default: keep the current one)
    """
    config = ClientConfig.load()
    config.token = token
    if url:
        config.url = url.rstrip("/")
    config.save()
    print(f"Saved credentials for {config.url}")


@app.command
def me():
    """Show who the stored token belongs to."""
    print_json(api_request("GET", "/api/me").json())


@channel_app.command(name="list")
def channel_list(*, all: bool = False):
    """List channels.

    Args:
        all: Include locked channels (requires login)
    """
    path = "/api/channels/all" if all else "/api/channels"
    for channel in api_request("GET", path, auth=all).json()["channels"]:
        lock = " (locked)" if channel["isLocked"] else ""
        print(f"#{channel['name']}{lock}")


@channel_app.command(name="read")
def channel_read(name: str, *, limit: int = 50, json_output: bool = False):
    """Read a channel's messages, oldest first.

    Args:
        name: Channel name
        limit: Maximum number of messages (1-200)
        json_output: Print raw JSON
    """
    data = api_request(
        "GET",
        "/api/messages",
        params={"kind": "channel", "channel": name, "limit": limit},
    ).json()
    if json_output:
        print_json(data)
    else:
        print_messages(data["messages"])


@channel_app.command(name="send")
def channel_send(name: str, text: str, *, guest: bool = False):
    """Post to a channel.

    Args:
        name: Channel name
        text: Message text
        guest: Post anonymously (public channel only)
    """
    path = "/api/messages/public" if guest else "/api/messages"
    data = api_request(
        "POST",
        path,
        json_data={"kind": "channel", "channel": name, "text": text},
        auth=not guest,
    ).json()
    print(f"Sent {data['message']['id']}")


@dm_app.command(name="list")
def dm_list():
    """List your DM threads, newest first."""
    for dm in api_request("GET", "/api/dms").json()["dms"]:
        print(f"{dm['dmId']}  {dm['username']}  {dm.get('lastMessageAt') or ''}".rstrip())


@dm_app.command(name="read")
def dm_read(me: str, other: str, *, limit: int = 50):
    """Read the DM thread between two users.

    Args:
        me: Your username
        other: The other participant
        limit: Maximum number of messages (1-200)
    """
    data = api_request(
        "GET",
        "/api/messages",
        params={"kind": "dm", "dmId": dm_key(me, other), "limit": limit},
    ).json()
    print_messages(data["messages"])


@dm_app.command(name="send")
def dm_send(me: str, other: str, text: str):
    """Send a direct message.

    Args:
        me: Your username
        other: Recipient username
        text: Message text
    """
    data = api_request(
        "POST",
        "/api/messages",
        json_data={"kind": "dm", "dmId": dm_key(me, other), "text": text},
    ).json()
    print(f"Sent {data['message']['id']}")


@user_app.command(name="list")
def user_list():
    """List users."""
    for user in api_request("GET", "/api/users").json()["users"]:
        print(f"{user['userId']}  {user['username']}  {user['accessLevel']}")


@user_app.command(name="delete")
def user_delete(user_id: str, *, force: bool = False):
    """Delete a user (yourself, or anyone if you are an admin).

    Args:
        user_id: Id of the user to delete
        force: Skip confirmation prompt
    """
    if not force:
        confirm = input(f"Delete user {user_id}? [y/N] ")
        if confirm.lower() != "y":
            print("Cancelled")
            return
    api_request("DELETE", f"/api/users/{user_id}")
    print(f"Deleted {user_id}")


@app.command
def serve(
    *,
    host: str = "0.0.0.0",
    port: int = 1338,
    reload: bool = False,
    no_auth: bool = False,
    log_level: str = "info",
):
    """Run the chappy server.

    Credential verification, in order of precedence:
    - CHAPPY_AUTH_MODULE: custom verifier module
    - CHAPPY_AUTH_URL: remote verifier service
    - CHAPPY_TOKENS_FILE: YAML map of token -> {username, accessLevel}
    - --no-auth: the bearer token is taken as the username (development only!)
    """
    import uvicorn

    from .auth_provider import is_auth_enabled

    logging.basicConfig(level=log_level.upper())

    if no_auth:
        os.environ["CHAPPY_NO_AUTH"] = "1"
        print("WARNING: Running in no-auth mode. Any token is accepted as a username!")
        print("         Do not use in production.\n")
    elif not is_auth_enabled():
        print("Error: No auth method configured.", file=sys.stderr)
        print("Options:", file=sys.stderr)
        print("  --no-auth                Development mode", file=sys.stderr)
        print("  CHAPPY_AUTH_URL=...      Remote verifier service", file=sys.stderr)
        print("  CHAPPY_TOKENS_FILE=...   Static token file", file=sys.stderr)
        sys.exit(1)

    uvicorn.run(
        "chappy.api:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level.lower(),
    )


if __name__ == "__main__":
    app()
