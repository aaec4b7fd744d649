"""Unit tests for archive upload against a local aiohttp server."""

from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp import test_utils

from rgbd_logger.network.uploader import ArchiveUploader, UploadError, mime_type_for


@asynccontextmanager
async def serve(upload_status: int = 200, root_status: int = 200):
    """Collection server double; records what each upload carried."""
    received = []

    async def root(request):
        return web.Response(status=root_status, text="collector")

    async def upload(request):
        reader = await request.multipart()
        part = await reader.next()
        data = await part.read()
        received.append({
            "field": part.name,
            "filename": part.filename,
            "content_type": part.headers.get("Content-Type"),
            "data": bytes(data),
        })
        return web.Response(status=upload_status, text="stored")

    app = web.Application()
    app.router.add_get("/", root)
    app.router.add_post("/upload", upload)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        yield f"http://{server.host}:{server.port}", received
    finally:
        await server.close()


@pytest.fixture
def archive(tmp_path):
    path = tmp_path / "session_20240501_120000.tar.gz"
    path.write_bytes(b"\x1f\x8b" + b"payload" * 10)
    return path


class TestMimeTypes:

    @pytest.mark.parametrize("name,expected", [
        ("a.tar.gz", "application/gzip"),
        ("a.MP4", "video/mp4"),
        ("a.bson", "application/bson"),
        ("a.depth", "application/octet-stream"),
        ("noext", "application/octet-stream"),
    ])
    def test_last_extension(self, name, expected):
        assert mime_type_for(name) == expected


class TestArchiveUploaderInit:

    def test_requires_url(self):
        with pytest.raises(ValueError):
            ArchiveUploader("")

    def test_upload_url(self):
        assert ArchiveUploader("https://host:8443/").upload_url == "https://host:8443/upload"

    def test_tls_verification_off_by_default(self):
        assert ArchiveUploader("https://host").verify_tls is False


class TestArchiveUploader:

    @pytest.mark.asyncio
    async def test_upload_success(self, archive):
        async with serve() as (url, received):
            result = await ArchiveUploader(url).upload_archive(archive)

        assert result.status == 200
        assert result.body == "stored"
        assert received == [{
            "field": "file",
            "filename": archive.name,
            "content_type": "application/gzip",
            "data": archive.read_bytes(),
        }]

    @pytest.mark.asyncio
    async def test_any_2xx_is_success(self, archive):
        async with serve(upload_status=201) as (url, _):
            result = await ArchiveUploader(url).upload_file(archive)
        assert result.status == 201

    @pytest.mark.asyncio
    async def test_server_error_raises(self, archive):
        async with serve(upload_status=500) as (url, _):
            with pytest.raises(UploadError) as excinfo:
                await ArchiveUploader(url).upload_file(archive)
        assert excinfo.value.status == 500

    @pytest.mark.asyncio
    async def test_connection_test_requires_200(self, archive):
        async with serve(root_status=204) as (url, received):
            uploader = ArchiveUploader(url)
            assert await uploader.test_connection() is False
            with pytest.raises(UploadError):
                await uploader.upload_archive(archive)
            result = await uploader.upload_archive(archive, check_connection=False)
        assert result.status == 200
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unreachable_server(self, archive):
        async with serve() as (url, _):
            pass
        uploader = ArchiveUploader(url, timeout=5)
        assert await uploader.test_connection() is False
        with pytest.raises(UploadError):
            await uploader.upload_file(archive)

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(UploadError):
            await ArchiveUploader("http://127.0.0.1:9").upload_file(tmp_path / "nope.tar.gz")
