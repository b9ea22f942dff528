"""
app/core/security.py

Purpose: Twilio webhook request signing

- Computes the X-Twilio-Signature for a URL + form params
- Constant-time comparison against the received header
"""

import base64
import hashlib
import hmac
from typing import Mapping, Optional


def compute_twilio_signature(url: str, params: Mapping[str, str], auth_token: str) -> str:
    """
    Twilio signature: base64(HMAC-SHA1(auth_token, url + k1 + v1 + k2 + v2 ...))
    with the POST params sorted by key.
    """
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def is_valid_twilio_signature(
    url: str,
    params: Mapping[str, str],
    signature: Optional[str],
    auth_token: Optional[str]
) -> bool:
    if not signature or not auth_token:
        return False
    expected = compute_twilio_signature(url, params, auth_token)
    return hmac.compare_digest(expected, signature)
