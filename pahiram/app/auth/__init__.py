"""
Authentication Package

This package handles login federation with the APCIS identity API and
the Pahiram session tokens issued afterwards.

Key responsibilities:
- Forwarding credentials to APCIS and parsing its login envelope
- Mirroring the APCIS user and course on first login
- Issuing session tokens that expire with the APCIS token
- Logout of the current session or of every device

Modules:
- routes: Public endpoints (/login, /logout, /logout-all)
- service: The login state machine
- apcis_client: Outbound APCIS login call
- session: Session token issuance, verification and revocation

The authentication flow:
1. Client posts email/password to /login
2. Service forwards them to APCIS
3. Course and user are created locally if absent
4. APCIS token is stored, a session token with the same expiry is issued
5. Client uses the session token for subsequent API requests
"""

from .routes import auth_router

__all__ = [
    "auth_router",
]
