"""
Tests for info-hash extraction.
"""
import asyncio
import base64
import hashlib
import time

import bencodepy

from rainarr.utils import infohash
from rainarr.utils.infohash import (
    find_redirect_url,
    info_hash_from_magnet,
    info_hash_from_torrent,
    resolve_info_hash,
)

HEX_HASH = "c12fe1c06bba254a9dc9f519b335aa7c1367a88a"

# Keys in sorted order, as they must appear on the wire
INFO_BYTES = b"d6:lengthi12345e4:name7:Foo.mkv12:piece lengthi16384e6:pieces20:" + b"\x00" * 20 + b"e"
TORRENT_BYTES = b"d8:announce31:http://tracker.example/announce4:info" + INFO_BYTES + b"e"


class FakeResponse:
    def __init__(self, body: bytes):
        self.body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def raise_for_status(self):
        pass

    async def read(self):
        return self.body


class FakeSession:
    def __init__(self, body: bytes):
        self.body = body

    def get(self, url, **kwargs):
        return FakeResponse(self.body)


def test_magnet_hex_hash_lowercased():
    assert info_hash_from_magnet(f"magnet:?xt=urn:btih:{HEX_HASH.upper()}&dn=Foo") == HEX_HASH


def test_magnet_base32_hash():
    b32 = base64.b32encode(bytes.fromhex(HEX_HASH)).decode()
    assert info_hash_from_magnet(f"magnet:?xt=urn:btih:{b32}") == HEX_HASH


def test_not_a_magnet():
    assert info_hash_from_magnet("https://example.com/file.torrent") is None
    assert info_hash_from_magnet("magnet:?dn=no-hash") is None
    assert info_hash_from_magnet("") is None


def test_torrent_file_hash_is_sha1_of_info_dict():
    assert info_hash_from_torrent(TORRENT_BYTES) == hashlib.sha1(INFO_BYTES).hexdigest()


def test_torrent_without_info_dict():
    assert info_hash_from_torrent(b"d8:announce1:xe") is None
    assert info_hash_from_torrent(b"<html>not a torrent</html>") is None
    assert info_hash_from_torrent(b"") is None


def test_large_multi_file_torrent_decodes_quickly():
    files = [{b"length": 1000 + i, b"path": [b"Season 01", b"file%05d.mkv" % i]} for i in range(20000)]
    info = {b"name": b"Big.Pack", b"piece length": 262144, b"pieces": b"\x00" * 20, b"files": files}
    data = bencodepy.encode({b"announce": b"http://tracker.example/announce", b"info": info})

    started = time.perf_counter()
    result = info_hash_from_torrent(data)
    elapsed = time.perf_counter() - started

    assert result == hashlib.sha1(bencodepy.encode(info)).hexdigest()
    assert elapsed < 2.0


async def test_magnet_links_need_no_network():
    magnet = f"magnet:?xt=urn:btih:{HEX_HASH}"
    assert await find_redirect_url(None, magnet) == magnet
    assert await resolve_info_hash(None, magnet) == HEX_HASH
    assert await resolve_info_hash(None, "") is None


async def test_torrent_download_parsed_in_worker_thread(monkeypatch):
    offloaded = []
    real_to_thread = asyncio.to_thread

    async def recording_to_thread(func, *args):
        offloaded.append(func)
        return await real_to_thread(func, *args)

    monkeypatch.setattr(infohash.asyncio, "to_thread", recording_to_thread)

    result = await resolve_info_hash(FakeSession(TORRENT_BYTES), "https://indexer.example/dl/1")

    assert result == hashlib.sha1(INFO_BYTES).hexdigest()
    assert offloaded == [info_hash_from_torrent]


async def test_magnet_body_from_download_link():
    session = FakeSession(f"magnet:?xt=urn:btih:{HEX_HASH}".encode())
    assert await resolve_info_hash(session, "https://indexer.example/dl/2") == HEX_HASH
