"""Tests for resolving and decoding image references."""

from __future__ import annotations

from pathlib import Path

import pytest
import requests
from PIL import Image

from bgremover_service import loader
from bgremover_service.errors import InvalidSource
from bgremover_service.loader import load_source_image


def test_loads_plain_path(make_image, settings) -> None:
    path = make_image("photo.jpg", size=(64, 48))

    source = load_source_image(str(path), settings)

    assert source.size == (64, 48)
    assert source.name == "photo.jpg"
    assert source.image.mode == "RGB"


def test_loads_file_uri(make_image, settings) -> None:
    path = make_image("photo.png", size=(10, 20))

    source = load_source_image(path.resolve().as_uri(), settings)

    assert source.size == (10, 20)
    assert source.name == "photo.png"


def test_applies_exif_orientation(make_image, settings) -> None:
    exif = Image.Exif()
    exif[0x0112] = 6  # rotated 90 degrees clockwise
    path = make_image("rotated.jpg", size=(40, 20), exif=exif)

    source = load_source_image(str(path), settings)

    assert source.size == (20, 40)


def test_keeps_alpha_channel(make_image, settings) -> None:
    path = make_image("alpha.png", mode="RGBA")

    source = load_source_image(str(path), settings)

    assert source.image.mode == "RGBA"


def test_palette_image_becomes_rgb(make_image, settings) -> None:
    path = make_image("palette.png", mode="P")

    source = load_source_image(str(path), settings)

    assert source.image.mode == "RGB"


def test_missing_file_is_invalid_source(tmp_path: Path, settings) -> None:
    with pytest.raises(InvalidSource):
        load_source_image(str(tmp_path / "nope.jpg"), settings)


def test_undecodable_file_is_invalid_source(tmp_path: Path, settings) -> None:
    path = tmp_path / "broken.jpg"
    path.write_bytes(b"definitely not an image")

    with pytest.raises(InvalidSource):
        load_source_image(str(path), settings)


def test_truncated_file_is_invalid_source(make_image, settings) -> None:
    path = make_image("truncated.png", size=(64, 64))
    path.write_bytes(path.read_bytes()[:60])

    with pytest.raises(InvalidSource):
        load_source_image(str(path), settings)


@pytest.mark.parametrize("uri", ["", "   ", "ftp://example.com/photo.jpg"])
def test_unusable_reference_is_invalid_source(uri: str, settings) -> None:
    with pytest.raises(InvalidSource):
        load_source_image(uri, settings)


class _FakeResponse:
    def __init__(self, content: bytes, status_code: int = 200):
        self.content = content
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_downloads_http_url(monkeypatch, make_image, settings) -> None:
    data = make_image("remote.png", size=(12, 8)).read_bytes()
    monkeypatch.setattr(loader.requests, "get", lambda url, timeout: _FakeResponse(data))

    source = load_source_image("https://cdn.example.com/images/remote.png?x=1", settings)

    assert source.size == (12, 8)
    assert source.name == "remote.png"


def test_http_error_is_invalid_source(monkeypatch, settings) -> None:
    monkeypatch.setattr(loader.requests, "get", lambda url, timeout: _FakeResponse(b"", 404))

    with pytest.raises(InvalidSource):
        load_source_image("https://cdn.example.com/missing.png", settings)


def test_connection_error_is_invalid_source(monkeypatch, settings) -> None:
    def _boom(url, timeout):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(loader.requests, "get", _boom)

    with pytest.raises(InvalidSource):
        load_source_image("http://unreachable.invalid/a.jpg", settings)


@pytest.mark.parametrize("uri", ["/tmp/pho\x00to.jpg", "file:///tmp/pho%00to.jpg"])
def test_nul_byte_in_path_is_invalid_source(uri: str, settings) -> None:
    with pytest.raises(InvalidSource):
        load_source_image(uri, settings)


def test_relative_filename_with_colon_is_a_path(make_image, settings, monkeypatch) -> None:
    path = make_image("shot:1.jpg", size=(12, 10))
    monkeypatch.chdir(path.parent)

    source = load_source_image("shot:1.jpg", settings)

    assert source.size == (12, 10)
    assert source.name == "shot:1.jpg"
