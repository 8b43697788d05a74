"""
Authentication Package

This package implements login with Microsoft Entra ID using the OpenID
Connect authorization code flow.

Key responsibilities:
- Provider discovery and authorization URL construction
- Per-attempt state and nonce, carried in signed cookies
- Callback verification (state, code exchange, ID token via JWKS, nonce,
  user-info subject)
- Reconciliation with local users, including auto-provisioning
- Session JWT issuance for the client application
- Redirects to the frontend and the completion page

Modules:
- routes: Public endpoints (/auth/entra/enabled, /login, /callback, /complete)
- discovery: OIDC discovery and its cache
- tokens: State/nonce generation and cookie transport
- authorization: Authorization URL builder
- verifier: Callback verification
- reconciler / usernames: Identity to local user mapping
- session: Session JWT creation and validation
- redirects / completion: Frontend hand-off
- errors: Failure taxonomy and public error categories

The authentication flow:
1. Client calls /auth/entra/login and navigates to the returned authUrl
2. User authenticates with Microsoft Entra ID
3. Provider redirects the browser to /auth/entra/callback
4. The callback is verified, the user reconciled and a session JWT issued
5. Browser lands on /auth/entra/complete, which stores the session
"""

from .routes import auth_router

__all__ = [
    "auth_router",
]
