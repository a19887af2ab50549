"""JWS request signing for the ACME protocol (RFC 8555 section 6.2)."""

import base64
import hashlib
import json
from typing import Any

import jwt
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from jwt.algorithms import RSAAlgorithm

ALGORITHM = "RS256"

_jws = jwt.PyJWS()


def b64url(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def public_jwk(key: RSAPrivateKey) -> dict[str, str]:
    """Return the account public key as a JWK with only its required members."""
    jwk = json.loads(RSAAlgorithm.to_jwk(key.public_key()))
    return {"e": jwk["e"], "kty": jwk["kty"], "n": jwk["n"]}


def jwk_thumbprint(key: RSAPrivateKey) -> str:
    """Return the RFC 7638 SHA-256 thumbprint of the account public key."""
    canonical = json.dumps(public_jwk(key), sort_keys=True, separators=(",", ":"))
    return b64url(hashlib.sha256(canonical.encode("utf-8")).digest())


def sign_request(
    key: RSAPrivateKey,
    url: str,
    nonce: str,
    payload: dict[str, Any] | None,
    kid: str | None = None,
) -> dict[str, str]:
    """Sign an ACME request body in flattened JSON serialization.

    Args:
        key: Account private key
        url: Request URL, bound into the protected header
        nonce: Replay nonce from the server
        payload: JSON payload, or None for POST-as-GET (empty payload)
        kid: Account URL; when None the public JWK is embedded instead
            (newAccount requests)

    Returns:
        Dict with protected, payload and signature members
    """
    headers: dict[str, Any] = {"typ": None, "nonce": nonce, "url": url}
    if kid is None:
        headers["jwk"] = public_jwk(key)
    else:
        headers["kid"] = kid

    body = b"" if payload is None else json.dumps(payload).encode("utf-8")
    compact = _jws.encode(body, key, algorithm=ALGORITHM, headers=headers)
    protected, encoded_payload, signature = compact.split(".")
    return {"protected": protected, "payload": encoded_payload, "signature": signature}
