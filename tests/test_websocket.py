"""WebSocket endpoint tests — the whole path through a real app.

Learn: Starlette's TestClient runs the app (lifespan included) on a
portal thread, so these tests are sync. REST calls made through the same
TestClient share the app's registry, which is how a dispatch reaches
the socket opened a few lines earlier.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from quickserv.auth.jwt import create_access_token


def _headers(user_id: int, role: str = "client") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}


def _auth(ws, user_id: int) -> None:
    ws.send_json({"type": "auth", "token": create_access_token(user_id)})
    assert ws.receive_json() == {"type": "auth_success"}


def _notify(tc: TestClient, user_ids, title="Nova reserva"):
    r = tc.post(
        "/api/notifications/dispatch",
        json={"userIds": list(user_ids), "type": "new_booking",
              "title": title, "message": "Maria reservou Limpeza", "relatedId": 301},
        headers=_headers(1, "admin"),
    )
    assert r.status_code == 201
    return r.json()


def test_auth_success_then_unread_count(ws_app):
    with TestClient(ws_app) as tc:
        _notify(tc, [7])
        _notify(tc, [7])
        with tc.websocket_connect("/ws") as ws:
            _auth(ws, 7)
            assert ws.receive_json() == {"type": "unread_count", "count": 2}


def test_dispatch_reaches_open_socket(ws_app):
    with TestClient(ws_app) as tc:
        with tc.websocket_connect("/ws") as ws:
            _auth(ws, 7)
            assert ws.receive_json() == {"type": "unread_count", "count": 0}

            created = _notify(tc, [7], title="Reserva aceita")

            frame = ws.receive_json()
            assert frame["type"] == "notification"
            assert frame["data"] == created[0]
            assert frame["data"]["title"] == "Reserva aceita"
            assert ws.receive_json() == {"type": "unread_count", "count": 1}


def test_three_dispatches_then_mark_read(ws_app):
    """Three pushes; REST agrees; mark-read pushes the lower count."""
    with TestClient(ws_app) as tc:
        with tc.websocket_connect("/ws") as ws:
            _auth(ws, 7)
            ws.receive_json()

            pushed = []
            for i in range(3):
                _notify(tc, [7], title=f"n{i}")
                pushed.append(ws.receive_json())
                pushed.append(ws.receive_json())
            counts = [f["count"] for f in pushed if f["type"] == "unread_count"]
            assert counts == [1, 2, 3]

            items = tc.get("/api/notifications", headers=_headers(7)).json()
            assert [n["title"] for n in items] == ["n2", "n1", "n0"]

            r = tc.put(f"/api/notifications/{items[0]['id']}/read", headers=_headers(7))
            assert r.status_code == 200
            assert ws.receive_json() == {"type": "unread_count", "count": 2}

            r = tc.put("/api/notifications/mark-all-read", headers=_headers(7))
            assert r.json() == {"updated": 2}
            assert ws.receive_json() == {"type": "unread_count", "count": 0}


def test_every_tab_of_the_user_gets_the_push(ws_app):
    with TestClient(ws_app) as tc:
        with tc.websocket_connect("/ws") as laptop, tc.websocket_connect("/ws") as phone:
            for ws in (laptop, phone):
                _auth(ws, 7)
                ws.receive_json()
            assert ws_app.state.registry.connection_count() == 2

            _notify(tc, [7])

            for ws in (laptop, phone):
                assert ws.receive_json()["type"] == "notification"
                assert ws.receive_json() == {"type": "unread_count", "count": 1}


def test_unauthenticated_socket_receives_nothing(ws_app):
    with TestClient(ws_app) as tc:
        with tc.websocket_connect("/ws") as authed, tc.websocket_connect("/ws") as pending:
            _auth(authed, 7)
            authed.receive_json()

            _notify(tc, [7])
            assert authed.receive_json()["type"] == "notification"
            assert ws_app.state.registry.connection_count() == 1

            # the first thing the pending socket sees is its own handshake
            _auth(pending, 7)
            assert pending.receive_json() == {"type": "unread_count", "count": 1}


def test_ping_pong_after_auth(ws_app):
    with TestClient(ws_app) as tc:
        with tc.websocket_connect("/ws") as ws:
            _auth(ws, 7)
            ws.receive_json()
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}


def test_binary_frame_before_auth_is_ignored(ws_app):
    with TestClient(ws_app) as tc:
        with tc.websocket_connect("/ws") as ws:
            ws.send_bytes(b"\x00\x01")
            _auth(ws, 7)
            assert ws.receive_json() == {"type": "unread_count", "count": 0}
            assert ws_app.state.registry.connection_count() == 1


def test_binary_frame_after_auth_keeps_socket_open(ws_app):
    with TestClient(ws_app) as tc:
        with tc.websocket_connect("/ws") as ws:
            _auth(ws, 7)
            ws.receive_json()
            ws.send_bytes(b"\xff" * 16)
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            _notify(tc, [7])
            assert ws.receive_json()["type"] == "notification"


def test_invalid_token_gets_auth_error_and_4001(ws_app):
    with TestClient(ws_app) as tc:
        with tc.websocket_connect("/ws") as ws:
            ws.send_json({"type": "auth", "token": "not-a-jwt"})
            frame = ws.receive_json()
            assert frame["type"] == "auth_error"
            assert frame["message"]
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
            assert exc.value.code == 4001
        assert ws_app.state.registry.connection_count() == 0


def test_no_auth_frame_closes_with_4408(ws_app):
    ws_app.state.handshake.timeout = 0.1
    with TestClient(ws_app) as tc:
        with tc.websocket_connect("/ws") as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
            assert exc.value.code == 4408


def test_disconnect_unregisters(ws_app):
    with TestClient(ws_app) as tc:
        with tc.websocket_connect("/ws") as ws:
            _auth(ws, 7)
            ws.receive_json()
            assert ws_app.state.registry.connection_count() == 1
        assert ws_app.state.registry.connection_count() == 0

        # the user is offline; the notification is still persisted
        _notify(tc, [7])
        r = tc.get("/api/notifications/unread-count", headers=_headers(7))
        assert r.json() == {"count": 1}
