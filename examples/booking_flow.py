#!/usr/bin/env python3
"""
QuickServ booking flow — a provider's badge, live.

The provider (user 7) holds a socket through ReconnectController while
an admin (standing in for the booking service) dispatches three events.
The badge climbs to 3, then one mark-read and a mark-all bring it back
to 0. Run with: python examples/booking_flow.py

Backend must be running: quickserv serve
"""

import asyncio

from _common import API, WS, admin_client, token_for

from quickserv.client import NotificationsApi, ReconnectController, SessionStore

PROVIDER_ID = 7

EVENTS = [
    {"type": "new_booking", "title": "Nova reserva",
     "message": "Maria reservou Limpeza residencial para 12/05", "relatedId": 301},
    {"type": "chat_message", "title": "Nova mensagem",
     "message": "Maria: o portão fica aberto, pode entrar", "relatedId": 88},
    {"type": "booking_status", "title": "Reserva cancelada",
     "message": "Carlos cancelou a reserva de 14/05", "relatedId": 297},
]


async def main():
    admin = admin_client()
    session = SessionStore(token_for(PROVIDER_ID, "provider"))
    api = NotificationsApi(API, session)
    controller = ReconnectController(WS, session, api, poll_interval=30.0)

    controller.on_state(lambda s: print(f"  [{s.value}]"))
    controller.on_unread_count(lambda c: print(f"  badge: {c}"))
    controller.on_notification(lambda n: print(f"  toast: {n['title']} — {n['message']}"))

    # ── Connect ───────────────────────────────────────────────────
    print("\n1. Provider opens the dashboard...")
    controller.start()
    while controller.state.value != "live":
        await asyncio.sleep(0.05)

    # ── Business events ───────────────────────────────────────────
    print("\n2. Three things happen to the provider's bookings...")
    for event in EVENTS:
        resp = admin.post("/api/notifications/dispatch", json={"userIds": [PROVIDER_ID], **event})
        assert resp.status_code == 201, f"Failed: {resp.text}"
        await asyncio.sleep(0.2)

    # ── Acknowledge ───────────────────────────────────────────────
    print("\n3. Provider opens the newest one...")
    newest = controller.notifications[0]
    await controller.mark_read(newest["id"])

    print("\n4. ...and clears the rest")
    await controller.mark_all_read()
    assert controller.unread_count == 0

    await controller.stop()
    await api.aclose()
    admin.close()
    print("\nDone.")


if __name__ == "__main__":
    asyncio.run(main())
