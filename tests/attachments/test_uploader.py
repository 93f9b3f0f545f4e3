"""Tests for the OSS uploader."""

import logging
from datetime import datetime, timezone

import httpx
import pytest

from vaultsync.attachments import signer
from vaultsync.attachments.config import SyncSettings
from vaultsync.attachments.exceptions import UploadError
from vaultsync.attachments.uploader import (
    OSSUploader,
    content_type_for,
    encode_object_key,
    make_object_key,
    rfc1123_date,
)

FIXED_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_uploader(handler, **overrides):
    values = dict(
        access_key_id="LTAIkey",
        access_key_secret="supersecret",
        bucket="mybucket",
        endpoint="oss-cn-guangzhou.aliyuncs.com",
        prefix="notes_assets",
    )
    values.update(overrides)
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return OSSUploader(SyncSettings(**values), client=client, clock=lambda: FIXED_TIME)


class TestObjectKey:
    def test_key_format(self):
        assert (
            make_object_key("notes_assets", "png", FIXED_TIME)
            == "notes_assets/png-20240101-000000.png"
        )

    def test_extension_lowercased(self):
        assert make_object_key("p", "PNG", FIXED_TIME) == "p/png-20240101-000000.png"

    def test_encode_keeps_separators(self):
        assert encode_object_key("my notes/png-1.png") == "my%20notes/png-1.png"

    def test_rfc1123_date(self):
        assert rfc1123_date(FIXED_TIME) == "Mon, 01 Jan 2024 00:00:00 GMT"


class TestContentType:
    @pytest.mark.parametrize(
        "ext,expected",
        [
            ("png", "image/png"),
            ("JPG", "image/jpeg"),
            ("svg", "image/svg+xml"),
            ("pdf", "application/pdf"),
            ("zip", "application/octet-stream"),
        ],
    )
    def test_content_type_for(self, ext, expected):
        assert content_type_for(ext) == expected


class TestUpload:
    def test_success_returns_public_url(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        uploader = make_uploader(handler)
        url = uploader.upload(b"\x89PNG", "png", name="a.png")

        assert url == (
            "https://mybucket.oss-cn-guangzhou.aliyuncs.com/"
            "notes_assets/png-20240101-000000.png"
        )
        assert len(requests) == 1
        assert requests[0].method == "PUT"
        assert requests[0].content == b"\x89PNG"

    def test_signed_headers(self):
        captured = {}

        def handler(request):
            captured.update(request.headers)
            return httpx.Response(200)

        make_uploader(handler).upload(b"data", "png")

        expected_signature = signer.sign(
            "supersecret",
            "PUT\n\nimage/png\nMon, 01 Jan 2024 00:00:00 GMT\n"
            "/mybucket/notes_assets/png-20240101-000000.png",
        )
        assert captured["content-type"] == "image/png"
        assert captured["date"] == "Mon, 01 Jan 2024 00:00:00 GMT"
        assert captured["authorization"] == f"OSS LTAIkey:{expected_signature}"

    def test_prefix_with_space_is_encoded_in_url_not_signature(self):
        captured = {}

        def handler(request):
            captured["path"] = request.url.raw_path.decode()
            captured["authorization"] = request.headers["authorization"]
            return httpx.Response(200)

        uploader = make_uploader(handler, prefix="my notes")
        url = uploader.upload(b"data", "png")

        assert url.endswith("/my%20notes/png-20240101-000000.png")
        assert captured["path"] == "/my%20notes/png-20240101-000000.png"
        expected_signature = signer.sign(
            "supersecret",
            "PUT\n\nimage/png\nMon, 01 Jan 2024 00:00:00 GMT\n"
            "/mybucket/my notes/png-20240101-000000.png",
        )
        assert captured["authorization"] == f"OSS LTAIkey:{expected_signature}"

    def test_non_200_raises_with_status_and_body(self):
        def handler(request):
            return httpx.Response(403, text="<Error><Code>AccessDenied</Code></Error>")

        with pytest.raises(UploadError) as exc_info:
            make_uploader(handler).upload(b"data", "png", name="a.png")

        assert exc_info.value.status == 403
        assert "AccessDenied" in exc_info.value.body

    def test_created_status_is_not_success(self):
        """Only 200 counts as a successful upload."""

        def handler(request):
            return httpx.Response(201)

        with pytest.raises(UploadError):
            make_uploader(handler).upload(b"data", "png")

    def test_transport_error_raises_upload_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UploadError, match="connection refused"):
            make_uploader(handler).upload(b"data", "png")

    def test_failure_logs_diagnostics_without_secret(self, caplog):
        def handler(request):
            return httpx.Response(403, text="SignatureDoesNotMatch")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(UploadError):
                make_uploader(handler).upload(b"data", "png", name="a.png")

        assert "Status: 403" in caplog.text
        assert "StringToSign" in caplog.text
        assert "SignatureDoesNotMatch" in caplog.text
        assert "supersecret" not in caplog.text

    def test_build_request_uses_one_clock_reading(self):
        ticks = iter(
            [
                datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc),
                datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc),
            ]
        )
        uploader = OSSUploader(
            SyncSettings(bucket="b", prefix="p"),
            client=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200))),
            clock=lambda: next(ticks),
        )

        request = uploader.build_request(b"x", "png")

        assert request.object_key == "p/png-20240101-000000.png"
        assert request.date == "Mon, 01 Jan 2024 00:00:00 GMT"
        assert request.resource == "/b/p/png-20240101-000000.png"

    def test_context_manager_closes_client(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with OSSUploader(SyncSettings(), client=client):
            pass
        assert client.is_closed
