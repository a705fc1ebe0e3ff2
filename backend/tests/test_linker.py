"""
Tests for hardlinking finished media files.
"""
import os

import pytest
import pytest_asyncio

from rainarr.clients.base import TorrentFile
from rainarr.services.linker import FileLinker, flatten_name, is_linkable, sanitize_name


def media(name, size=50_000, progress=1.0, index=None):
    return TorrentFile(index=index, name=name, size=size, progress=progress)


def test_name_cleanup():
    assert flatten_name("Show/Season 1/Show: Pilot?.mkv") == "Show_Season 1_Show Pilot.mkv"
    assert flatten_name("dir\\file.mkv") == "dir_file.mkv"
    assert sanitize_name('My "Group"') == "My Group"


@pytest.mark.parametrize("item, expected", [
    (media("Show.S01E01.mkv"), True),
    (media("Show.S01E01.MP4"), True),
    (media("Show.S01E01.nfo"), False),
    (media("sample.mkv", size=5_000), False),
    (media("Show.S01E01.mkv", progress=0.5), False),
])
def test_is_linkable(item, expected):
    assert is_linkable(item) is expected


@pytest_asyncio.fixture
async def linker(tmp_path, settings_service):
    await settings_service.set("torrentClientBasePath", str(tmp_path / "client"))
    await settings_service.set("destinationSavePath", str(tmp_path / "library"))
    return FileLinker(settings_service)


def write_file(path, size):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\0" * size)


async def test_links_media_files(tmp_path, linker):
    write_file(tmp_path / "client" / "downloads" / "Show" / "Show.S01E01.mkv", 50_000)
    write_file(tmp_path / "client" / "downloads" / "Show" / "Show.nfo", 50_000)
    contents = [media("Show/Show.S01E01.mkv"), media("Show/Show.nfo")]

    linked = await linker.link_files(contents, "/downloads", "My Shows")

    assert len(linked) == 1
    item = linked[0]
    assert item.index == 0
    assert item.created is True
    assert item.destination == str(tmp_path / "library" / "My Shows" / "Show_Show.S01E01.mkv")
    assert os.stat(item.destination).st_ino == os.stat(item.source).st_ino


async def test_existing_link_is_reported_not_recreated(tmp_path, linker):
    write_file(tmp_path / "client" / "downloads" / "Movie.mkv", 50_000)
    contents = [media("Movie.mkv", index=3)]

    await linker.link_files(contents, "/downloads", "Movies")
    again = await linker.link_files(contents, "/downloads", "Movies")

    assert [(i.index, i.created) for i in again] == [(3, False)]


async def test_missing_source_is_skipped(tmp_path, linker):
    linked = await linker.link_files([media("Gone.mkv")], "/downloads", "Movies")
    assert linked == []


async def test_unset_link_root_links_nothing(tmp_path, settings_service):
    await settings_service.set("torrentClientBasePath", str(tmp_path / "client"))
    write_file(tmp_path / "client" / "downloads" / "Movie.mkv", 50_000)
    linker = FileLinker(settings_service)

    linked = await linker.link_files([media("Movie.mkv")], "/downloads", "Movies")

    assert linked == []
    assert not os.path.exists(os.path.join("/", "Movies"))
