"""
Credential primitives shared by the OAuth flow and the MCP endpoint.

- token.py: decodes the bearer token's claim set and validates expiry, issuer and audience
- pkce.py: PKCE (RFC 7636) challenge computation and verification
"""
