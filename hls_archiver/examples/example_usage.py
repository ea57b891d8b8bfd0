"""
HLS Archiver 使用示例
展示如何以编程方式录制直播
"""

import io
import threading

from hls_archiver.core.config import ArchiveConfig, ConfigTemplates, SaverTiming
from hls_archiver.core.http import HttpClient
from hls_archiver.core.naming import translate_name_match_length
from hls_archiver.core.parser import M3U8Parser
from hls_archiver.core.session import DownloaderSession
from hls_archiver.core.storage import DiskResourceStore
from hls_archiver.core.utils import setup_logger

MASTER_URL = "https://example.com/live/master.m3u8"


def example_tailing():
    """跟随录制示例：60 秒没有新片段后停止"""
    print("=== 跟随录制示例 ===")

    config = ArchiveConfig(url=MASTER_URL, artifact_id="live_show")
    logger = setup_logger("hls_archiver")
    http_client = HttpClient(config, logger)
    store = DiskResourceStore("./archive")
    try:
        group = DownloaderSession.open(http_client, store, config, logger)
        saver = group.primary.create_tailing_saver(one_off=False, timeout=60)
        saver.recovery_callback = lambda error: group.primary.set_config(config)
        saver.run()
    finally:
        http_client.close()


def example_backfill(timeout=120):
    """跟随录制的同时向前回填更早的片段"""
    print("\n=== 回填示例 ===")

    config = ConfigTemplates.stable(MASTER_URL, "live_show")
    http_client = HttpClient(config)
    store = DiskResourceStore("./archive")
    try:
        group = DownloaderSession.open(http_client, store, config)
        session = group.primary
        # seg_00120.ts -> seg_00119.ts, seg_00118.ts ...
        top_down = session.create_top_down_saver(119, name_transform=translate_name_match_length)
        saver = session.create_tailing_saver(one_off=False, timeout=timeout, extra_operation=top_down)

        def recover(error):
            session.set_config(config)

        saver.recovery_callback = recover
        top_down.recovery_callback = recover
        saver.run()
    finally:
        http_client.close()


def example_export_with_cancel():
    """导出到内存，并在另一个线程中取消"""
    print("\n=== 导出示例 ===")

    config = ArchiveConfig(url=MASTER_URL, timing=SaverTiming(playlist_delay=2.0))
    cancel_event = threading.Event()
    http_client = HttpClient(config, cancel_event=cancel_event)
    buffer = io.BytesIO()
    timer = threading.Timer(30, cancel_event.set)
    try:
        group = DownloaderSession.open(http_client, DiskResourceStore("./archive"), config,
                                       cancel_event=cancel_event)
        timer.start()
        group.primary.create_standard_saver(one_off=True, timeout=0).export(buffer)
    finally:
        timer.cancel()
        http_client.close()
    print(f"导出 {len(buffer.getvalue())} bytes")


def example_parser_only():
    """仅解析播放列表示例"""
    print("\n=== 仅解析播放列表示例 ===")

    text = """#EXTM3U
#EXT-X-MEDIA-SEQUENCE:120
#EXT-X-KEY:METHOD=AES-128,URI="key.bin",IV=0x000102030405060708090a0b0c0d0e0f
#EXTINF:6.0,
seg_120.ts
#EXTINF:6.0,
seg_121.ts
"""
    playlist = M3U8Parser().parse(text)
    print(f"片段数量: {len(playlist.data_lines)}")
    print(f"首个序列号: {playlist.first_media_sequence_number}")
    print(f"加密方法: {playlist.encryption_info.method}")


if __name__ == "__main__":
    example_parser_only()
