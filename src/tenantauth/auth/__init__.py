"""Authentication and authorization.

Learn: Three building blocks, composed by services.auth_service:
1. password — Argon2id hashing with constant-cost verification
2. jwt — access/refresh token codec with two independent keys
3. dependencies — the per-request gate (bearer token → AuthContext, role checks)
"""
