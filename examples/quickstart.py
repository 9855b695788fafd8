#!/usr/bin/env python3
"""
tenantauth Quickstart — full session lifecycle in one script.

Signup → /me → refresh (rotation) → stale-token replay → logout.
Run with: python examples/quickstart.py

Requires: pip install httpx
Backend must be running: http://localhost:8000
"""

import sys
import uuid

import httpx

BASE = "http://localhost:8000/api/v1"


def main():
    run_id = uuid.uuid4().hex[:6]
    client = httpx.Client(base_url=BASE, timeout=10)

    # ── Health check ──────────────────────────────────────────────
    print("Checking backend health...")
    try:
        resp = client.get("/health")
    except httpx.ConnectError:
        print(f"Backend not reachable at {BASE}")
        print("Start it with:  uvicorn tenantauth.main:app --reload --port 8000")
        sys.exit(1)
    health = resp.json()
    print(f"  Server:   {health['server']}")
    print(f"  Database: {health['database']}")

    # ── Signup ────────────────────────────────────────────────────
    print("\n1. Signing up a company...")
    resp = client.post("/auth/signup/company", json={
        "companyName": f"Demo Corp {run_id}",
        "fullName": "Demo Admin",
        "email": f"admin-{run_id}@example.com",
        "password": "StrongPass123!",
    })
    assert resp.status_code == 201, f"Failed: {resp.text}"
    auth = resp.json()
    first_refresh = resp.cookies["refresh_token"]
    print(f"   User: {auth['user']['fullName']} ({auth['user']['role']})")
    print(f"   Company: {auth['user']['companyId'][:8]}...")

    # ── Current user ──────────────────────────────────────────────
    print("\n2. Calling /auth/me with the access token...")
    headers = {"Authorization": f"Bearer {auth['accessToken']}"}
    resp = client.get("/auth/me", headers=headers)
    assert resp.status_code == 200, f"Failed: {resp.text}"
    print(f"   Me: {resp.json()['email']}")

    resp = client.get("/auth/admin-check", headers=headers)
    print(f"   Admin check: {resp.status_code}")

    # ── Refresh ───────────────────────────────────────────────────
    print("\n3. Rotating the refresh session (cookie)...")
    resp = client.post("/auth/refresh")
    assert resp.status_code == 200, f"Failed: {resp.text}"
    print(f"   New access token issued, session valid until {resp.json()['refreshExpiresAt']}")

    # ── Replay ────────────────────────────────────────────────────
    print("\n4. Replaying the first (now stale) refresh token...")
    replay = httpx.post(
        f"{BASE}/auth/refresh", json={"refreshToken": first_refresh}, timeout=10
    )
    print(f"   Replay rejected: {replay.status_code} {replay.json()['detail']}")

    # ── Logout ────────────────────────────────────────────────────
    print("\n5. Logging out...")
    resp = client.post("/auth/logout")
    print(f"   {resp.json()}")
    resp = client.post("/auth/refresh")
    print(f"   Refresh after logout: {resp.status_code}")

    print("\nDone.")


if __name__ == "__main__":
    main()
