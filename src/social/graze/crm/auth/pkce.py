import base64
import hashlib
import secrets
from typing import Tuple

S256 = "S256"
PLAIN = "plain"

SUPPORTED_METHODS = (S256, PLAIN)
"""Methods the verifier accepts. Only S256 is advertised in discovery."""


def compute_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(code_verifier)) with the padding stripped."""
    hashed = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    encoded = base64.urlsafe_b64encode(hashed)
    return encoded.decode("ascii").rstrip("=")


def generate_pkce_verifier() -> Tuple[str, str]:
    """
    Generate a (verifier, S256 challenge) pair.

    The service never needs one of these itself; clients and tests do.
    """
    pkce_token = secrets.token_urlsafe(80)
    return (pkce_token, compute_challenge(pkce_token))


def verify_code_verifier(
    code_verifier: str, code_challenge: str, code_challenge_method: str
) -> bool:
    if code_challenge_method == S256:
        expected = compute_challenge(code_verifier)
    elif code_challenge_method == PLAIN:
        expected = code_verifier
    else:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), code_challenge.encode("utf-8"))
