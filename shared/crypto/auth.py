# Identify authentication string

from __future__ import annotations
import base64

from cryptography.hazmat.primitives import hashes

from shared.envelope import AuthenticationError, Hello


def _sha256_b64(data: str) -> str:
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data.encode("utf-8"))
    return base64.b64encode(digest.finalize()).decode("ascii")


def generate_authentication(password: str, challenge: str, salt: str) -> str:
    """
    Compute the proof sent in Identify.authentication.

    secret = base64(sha256(password + salt))
    auth   = base64(sha256(secret + challenge))

    Standard base64 alphabet with padding.
    """
    secret = _sha256_b64(password + salt)
    return _sha256_b64(secret + challenge)


def authenticate_hello(password: str, hello: Hello) -> str:
    """Proof for ``hello``; raises AuthenticationError if it carries no challenge/salt."""
    if hello.challenge is None or hello.salt is None:
        raise AuthenticationError("Hello carries no authentication challenge")
    return generate_authentication(password, hello.challenge, hello.salt)
