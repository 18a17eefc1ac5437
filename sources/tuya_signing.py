"""Tuya OpenAPI request signing (HMAC-SHA256 over the canonical request)"""
import hashlib
import hmac
import time

SIGN_METHOD = "HMAC-SHA256"

# SHA-256 of the empty string, used for requests without a body
EMPTY_BODY_HASH = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def content_hash(body: bytes = b"") -> str:
    """SHA-256 hex digest of the request body"""
    if not body:
        return EMPTY_BODY_HASH
    return hashlib.sha256(body).hexdigest()


def string_to_sign(
    client_id: str,
    timestamp: str,
    method: str,
    path: str,
    body: bytes = b"",
    access_token: str | None = None
) -> str:
    """
    Build the canonical string Tuya expects us to sign.

    Layout: client_id + [access_token] + t + METHOD + "\\n" + body hash
    + "\\n" + (no signed headers) + "\\n" + path with query.
    """
    return (
        f"{client_id}{access_token or ''}{timestamp}{method.upper()}\n"
        f"{content_hash(body)}\n"
        f"\n"
        f"{path}"
    )


def calculate_sign(content: str, secret: str) -> str:
    """HMAC-SHA256 of content keyed with the secret, upper-case hex"""
    return hmac.new(
        secret.encode("utf-8"),
        content.encode("utf-8"),
        hashlib.sha256
    ).hexdigest().upper()


def signed_headers(
    client_id: str,
    secret: str,
    method: str,
    path: str,
    body: bytes = b"",
    access_token: str | None = None,
    timestamp: str | None = None
) -> dict:
    """
    Headers for a signed Tuya request.

    Args:
        client_id: Cloud project access id
        secret: Cloud project access secret
        method: HTTP method (GET, POST, ...)
        path: Request path including the query string, e.g. "/v1.0/token?grant_type=1"
        body: Exact bytes that will be sent as the request body
        access_token: Token for business requests, None for the token exchange
        timestamp: Milliseconds since epoch as string (default: now)
    """
    if timestamp is None:
        timestamp = str(int(time.time() * 1000))

    sign = calculate_sign(
        string_to_sign(client_id, timestamp, method, path, body, access_token),
        secret
    )

    headers = {
        "client_id": client_id,
        "sign": sign,
        "t": timestamp,
        "sign_method": SIGN_METHOD,
    }
    if access_token:
        headers["access_token"] = access_token
    return headers
