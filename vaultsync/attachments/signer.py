"""Request signing for OSS style single PUT uploads.

The string-to-sign is::

    PUT\\n
    <Content-MD5, always empty>\\n
    <Content-Type>\\n
    <Date, RFC 1123>\\n
    /<bucket>/<object key>

The object key inside the canonical resource is never percent-encoded;
encoding only happens when building the transport URL.
"""

import base64
import hashlib
import hmac

PUT = "PUT"


def canonical_resource(bucket: str, object_key: str) -> str:
    """Build the canonical resource string used verbatim in the signature."""
    return f"/{bucket}/{object_key}"


def build_string_to_sign(
    content_type: str,
    date: str,
    resource: str,
    method: str = PUT,
    content_md5: str = "",
) -> str:
    """Join the signed request fields with newline separators."""
    return "\n".join([method, content_md5, content_type, date, resource])


def sign(secret_key: str, string_to_sign: str) -> str:
    """Return the base64 HMAC-SHA1 of ``string_to_sign`` keyed by ``secret_key``."""
    digest = hmac.new(
        secret_key.encode("utf-8"),
        string_to_sign.encode("utf-8"),
        hashlib.sha1,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def authorization_header(access_key_id: str, signature: str) -> str:
    return f"OSS {access_key_id}:{signature}"
