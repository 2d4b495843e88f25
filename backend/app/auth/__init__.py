"""Authentication module.

Verifies bearer tokens for WebSocket connections and HTTP requests.

Services:
    - TokenIdentityService: JWT verification into a UserIdentity.
"""
