"""
Shared helpers for QuickServ examples.

Mints tokens locally (the examples run next to the server and share its
QUICKSERV_JWT_SECRET) and checks the backend before doing anything.
"""

import sys

import httpx

from quickserv.auth.jwt import create_access_token

API = "http://localhost:8000"
WS = "ws://localhost:8000/ws"


def check_backend() -> None:
    """Verify the backend is reachable and healthy."""
    try:
        resp = httpx.get(f"{API}/api/health", timeout=5)
    except httpx.ConnectError:
        print(f"ERROR: Backend not reachable at {API}")
        print("Start it with:  quickserv serve --reload")
        sys.exit(1)

    if resp.status_code != 200:
        print(f"ERROR: Health check returned {resp.status_code}")
        sys.exit(1)

    health = resp.json()
    print("Backend health:")
    print(f"  Database: {'✓' if health['database'] == 'ok' else '✗'}")
    print(f"  Redis:    {health['redis']}")

    if health["database"] != "ok":
        print("\nERROR: Database is not connected. Start it with: docker compose up -d")
        sys.exit(1)


def token_for(user_id: int, role: str = "client") -> str:
    return create_access_token(user_id, role=role)


def admin_client() -> httpx.Client:
    """Check backend and return an httpx Client acting as an admin."""
    check_backend()
    return httpx.Client(
        base_url=API,
        timeout=10,
        headers={"Authorization": f"Bearer {token_for(1, 'admin')}"},
    )
