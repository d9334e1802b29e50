from __future__ import annotations

import time

import pytest
from starlette.testclient import WebSocketTestSession
from starlette.websockets import WebSocketDisconnect

from app.api import ws as ws_module
from app.core.security import create_access_token


def _create_channel(client, headers, name: str = "general") -> str:
    response = client.post("/api/channels", json={"name": name}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["id"]


def test_missing_token_is_rejected(client) -> None:
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws/changes/messages?channel_id=x"):
            pass

    assert excinfo.value.code == 1008


def test_unknown_table_is_rejected(client, make_user) -> None:
    token = create_access_token({"sub": make_user().id})

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(f"/ws/changes/users?token={token}"):
            pass

    assert excinfo.value.code == 1003


def test_message_feed_requires_a_visible_channel(client, make_user) -> None:
    token = create_access_token({"sub": make_user().id})

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(f"/ws/changes/messages?token={token}"):
            pass

    assert excinfo.value.code == 1008


def test_message_inserts_are_streamed(client, make_user, headers_for) -> None:
    alice = make_user("alice")
    channel_id = _create_channel(client, headers_for(alice))
    other_id = _create_channel(client, headers_for(alice), "random")
    token = create_access_token({"sub": alice.id})

    with client.websocket_connect(
        f"/ws/changes/messages?token={token}&channel_id={channel_id}&events=INSERT"
    ) as connection:
        client.post(
            "/api/messages",
            json={"channel_id": other_id, "content": "elsewhere"},
            headers=headers_for(alice),
        )
        created = client.post(
            "/api/messages",
            json={"channel_id": channel_id, "content": "hello"},
            headers=headers_for(alice),
        ).json()

        change = connection.receive_json()

    assert change["table"] == "messages"
    assert change["event"] == "INSERT"
    assert change["old"] is None
    assert change["new"]["id"] == created["id"]
    assert change["new"]["channel_id"] == channel_id


def test_reaction_feed_streams_toggles(client, make_user, headers_for) -> None:
    alice = make_user("alice")
    channel_id = _create_channel(client, headers_for(alice))
    message = client.post(
        "/api/messages",
        json={"channel_id": channel_id, "content": "vote"},
        headers=headers_for(alice),
    ).json()
    token = create_access_token({"sub": alice.id})

    with client.websocket_connect(f"/ws/changes/reactions?token={token}") as connection:
        url = f"/api/messages/{message['id']}/reactions"
        client.post(url, json={"emoji": "👍"}, headers=headers_for(alice))
        client.post(url, json={"emoji": "👍"}, headers=headers_for(alice))

        added = connection.receive_json()
        removed = connection.receive_json()

    assert (added["event"], added["new"]["emoji"]) == ("INSERT", "👍")
    assert (removed["event"], removed["old"]["message_id"]) == ("DELETE", message["id"])


def test_change_feed_connection_survives_keepalive_timeout(client, make_user, headers_for) -> None:
    """Ensure that the server side keepalive pings keep the socket open."""

    user = make_user("keepalive-user")
    channel_id = _create_channel(client, headers_for(user))
    token = create_access_token({"sub": user.id})

    settings = ws_module.settings
    original_timeout = settings.websocket_keepalive_timeout_seconds
    original_interval = settings.websocket_keepalive_ping_interval_seconds

    settings.websocket_keepalive_timeout_seconds = 0.1
    settings.websocket_keepalive_ping_interval_seconds = 0.05

    try:
        with client.websocket_connect(f"/ws/changes/messages?token={token}&channel_id={channel_id}") as connection:
            _assert_keepalive_sequence(connection)
    finally:
        settings.websocket_keepalive_timeout_seconds = original_timeout
        settings.websocket_keepalive_ping_interval_seconds = original_interval


def _assert_keepalive_sequence(connection: WebSocketTestSession) -> None:
    """Observe two keepalive pings with client responses to keep the connection active."""

    time.sleep(0.15)
    ping = connection.receive_json()
    assert ping["type"] == "ping"
    connection.send_json({"type": "pong"})

    time.sleep(0.12)
    ping_again = connection.receive_json()
    assert ping_again["type"] == "ping"
    connection.send_json({"type": "pong"})

    connection.send_json({"type": "ping"})
    pong = connection.receive_json()
    while pong["type"] == "ping":
        pong = connection.receive_json()
    assert pong["type"] == "pong"


def test_reaction_feed_hides_direct_channels_of_others(client, make_user, headers_for) -> None:
    alice, bob, carol = make_user("alice"), make_user("bob"), make_user("carol")
    direct = client.post(f"/api/channels/direct/{bob.id}", headers=headers_for(alice)).json()
    private = client.post(
        "/api/messages",
        json={"channel_id": direct["id"], "content": "just us"},
        headers=headers_for(alice),
    ).json()
    public_channel = _create_channel(client, headers_for(alice))
    public = client.post(
        "/api/messages",
        json={"channel_id": public_channel, "content": "everyone"},
        headers=headers_for(alice),
    ).json()
    token = create_access_token({"sub": carol.id})

    with client.websocket_connect(f"/ws/changes/reactions?token={token}") as connection:
        client.post(f"/api/messages/{private['id']}/reactions", json={"emoji": "❤️"}, headers=headers_for(bob))
        client.post(f"/api/messages/{public['id']}/reactions", json={"emoji": "👀"}, headers=headers_for(bob))

        change = connection.receive_json()

    assert change["new"]["message_id"] == public["id"]
    assert change["new"]["emoji"] == "👀"


def test_reaction_feed_reaches_direct_channel_participants(client, make_user, headers_for) -> None:
    alice, bob = make_user("alice"), make_user("bob")
    direct = client.post(f"/api/channels/direct/{bob.id}", headers=headers_for(alice)).json()
    private = client.post(
        "/api/messages",
        json={"channel_id": direct["id"], "content": "just us"},
        headers=headers_for(alice),
    ).json()
    token = create_access_token({"sub": alice.id})

    with client.websocket_connect(f"/ws/changes/reactions?token={token}") as connection:
        client.post(f"/api/messages/{private['id']}/reactions", json={"emoji": "❤️"}, headers=headers_for(bob))

        change = connection.receive_json()

    assert (change["event"], change["new"]["user_id"]) == ("INSERT", bob.id)
