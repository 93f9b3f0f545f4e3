"""Signed single PUT upload of attachment bytes to OSS style object storage."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Callable, Optional

import httpx

from vaultsync.attachments import signer
from vaultsync.attachments.config import SyncSettings
from vaultsync.attachments.exceptions import UploadError
from vaultsync.attachments.links import percent_encode

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def content_type_for(extension: str) -> str:
    return CONTENT_TYPES.get(extension.lower(), DEFAULT_CONTENT_TYPE)


def format_timestamp(when: datetime) -> str:
    """Format ``when`` as ``yyyyMMdd-HHmmss``."""
    return when.strftime("%Y%m%d-%H%M%S")


def make_object_key(prefix: str, extension: str, when: datetime) -> str:
    """Build ``{prefix}/{ext}-{yyyyMMdd-HHmmss}.{ext}``.

    The original file name is not used, which keeps keys free of characters
    that need escaping. Two uploads of the same extension within one second
    get the same key.
    """
    ext = extension.lower()
    return f"{prefix}/{ext}-{format_timestamp(when)}.{ext}"


def encode_object_key(object_key: str) -> str:
    """Percent-encode each path segment, keeping the ``/`` separators."""
    return "/".join(percent_encode(part) for part in object_key.split("/"))


def rfc1123_date(when: datetime) -> str:
    return format_datetime(when.astimezone(timezone.utc), usegmt=True)


@dataclass(frozen=True)
class UploadRequest:
    """Everything needed to sign and send one PUT."""

    content: bytes
    content_type: str
    object_key: str
    resource: str
    date: str
    method: str = signer.PUT

    @property
    def string_to_sign(self) -> str:
        return signer.build_string_to_sign(
            content_type=self.content_type,
            date=self.date,
            resource=self.resource,
            method=self.method,
        )


@dataclass(frozen=True)
class SignedRequest:
    request: UploadRequest
    signature: str
    authorization: str

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": self.request.content_type,
            "Date": self.request.date,
            "Authorization": self.authorization,
        }


class OSSUploader:
    """Upload files to an OSS bucket with a signed PUT.

    Each call to :meth:`upload` builds, signs and sends a fresh request and
    returns the public URL of the stored object.
    """

    def __init__(
        self,
        settings: SyncSettings,
        client: Optional[httpx.Client] = None,
        clock: Optional[Callable[[], datetime]] = None,
        timeout: int = 60,
    ):
        """
        Args:
            settings: Credentials, bucket, endpoint and prefix
            client: Optional preconfigured httpx client (tests inject a mock transport)
            clock: Returns the current time; defaults to the local wall clock
            timeout: Request timeout in seconds
        """
        self.settings = settings
        self.client = client or httpx.Client(timeout=timeout)
        self.clock = clock or (lambda: datetime.now().astimezone())

    @property
    def host(self) -> str:
        return f"{self.settings.bucket}.{self.settings.endpoint}"

    def object_url(self, object_key: str) -> str:
        return f"https://{self.host}/{encode_object_key(object_key)}"

    def build_request(self, content: bytes, extension: str) -> UploadRequest:
        now = self.clock()
        object_key = make_object_key(self.settings.prefix, extension, now)
        return UploadRequest(
            content=content,
            content_type=content_type_for(extension),
            object_key=object_key,
            resource=signer.canonical_resource(self.settings.bucket, object_key),
            date=rfc1123_date(now),
        )

    def sign_request(self, request: UploadRequest) -> SignedRequest:
        signature = signer.sign(self.settings.access_key_secret, request.string_to_sign)
        return SignedRequest(
            request=request,
            signature=signature,
            authorization=signer.authorization_header(
                self.settings.access_key_id, signature
            ),
        )

    def upload(self, content: bytes, extension: str, name: str = "") -> str:
        """Upload ``content`` and return its public URL.

        Args:
            content: Raw file bytes
            extension: File extension without the dot
            name: File name, used only for diagnostics

        Returns:
            ``https://{bucket}.{endpoint}/{encoded key}``

        Raises:
            UploadError: Non-200 response, transport failure or signing failure
        """
        request = self.build_request(content, extension)
        url = self.object_url(request.object_key)

        try:
            signed = self.sign_request(request)
        except Exception as e:
            logger.error(f"Signing failed for {name or request.object_key}: {e}")
            raise UploadError(f"Signing failed: {e}") from e

        try:
            response = self.client.put(url, content=content, headers=signed.headers)
        except httpx.HTTPError as e:
            logger.error(f"Upload error for {name or request.object_key}: {e}")
            self._log_request(url, signed)
            raise UploadError(f"Upload error: {e}") from e

        if response.status_code == 200:
            logger.debug(f"Uploaded {name or request.object_key} to {url}")
            return url

        logger.error(f"Upload failed for {name or request.object_key}")
        logger.error(f"Status: {response.status_code}")
        logger.error(f"Response: {response.text}")
        self._log_request(url, signed)
        raise UploadError(
            f"Upload failed: {response.status_code}",
            status=response.status_code,
            body=response.text,
        )

    def _log_request(self, url: str, signed: SignedRequest) -> None:
        logger.error(f"Request URL: {url}")
        logger.error(f"Request Headers: {json.dumps(signed.headers, indent=2)}")
        logger.error(f"StringToSign: {json.dumps(signed.request.string_to_sign)}")
        logger.error(f"Signature: {signed.signature}")

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
