"""
标记文件测试
"""

from hls_archiver.core.markers import MarkerFileInfo, get_manifest_for_directory
from hls_archiver.core.naming import translate_name_default, try_extract_number_from_name
from hls_archiver.core.session import MARKER_DIRECTORY
from hls_archiver.core.storage import InMemoryResourceStore, ResourceKey


def _write_marker(store, file, content):
    with store.create_output_stream(ResourceKey("test", file, MARKER_DIRECTORY)) as stream:
        stream.write(content)
        stream.commit()


def _manifest(store):
    return get_manifest_for_directory(store, "test", MARKER_DIRECTORY,
                                      try_extract_number_from_name, translate_name_default)


def test_missing_numbers_between_markers():
    """测试编号 {1, 2, 5} 时推算 3、4 的文件名和序列号"""
    store = InMemoryResourceStore()
    _write_marker(store, "seg_5.ts", b"103")
    _write_marker(store, "seg_1.ts", b"99")
    _write_marker(store, "seg_2.ts", b"100\n")

    manifest = _manifest(store)

    assert manifest.lowest == MarkerFileInfo("seg_1.ts", 1, 99)
    assert manifest.missing == (
        MarkerFileInfo("seg_3.ts", 3, 101),
        MarkerFileInfo("seg_4.ts", 4, 102),
    )


def test_no_gaps():
    store = InMemoryResourceStore()
    _write_marker(store, "seg_7.ts", b"7")
    _write_marker(store, "seg_8.ts", b"8")

    manifest = _manifest(store)

    assert manifest.lowest.number == 7
    assert manifest.missing == ()


def test_no_numbered_files():
    """测试没有可提取编号的文件时返回 None"""
    store = InMemoryResourceStore()
    assert _manifest(store) is None

    _write_marker(store, "index.m3u8", b"1")
    assert _manifest(store) is None


def test_unreadable_sequence_number():
    """测试标记内容不是整数时序列号为 None"""
    store = InMemoryResourceStore()
    _write_marker(store, "seg_1.ts", b"unknown")
    _write_marker(store, "seg_3.ts", b"12")

    manifest = _manifest(store)

    assert manifest.lowest.msn is None
    assert manifest.missing == (MarkerFileInfo("seg_2.ts", 2, None),)


def test_other_directories_ignored():
    store = InMemoryResourceStore()
    _write_marker(store, "seg_1.ts", b"1")
    with store.create_output_stream(ResourceKey("test", "seg_9.ts")) as stream:
        stream.write(b"data")
        stream.commit()

    assert _manifest(store).missing == ()
