"""
命令行接口模块
提供 HLS 直播归档的命令行入口
"""

import argparse
import json
import signal
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional

import requests

from ..core.config import ArchiveConfig, ConfigTemplates
from ..core.errors import HLSArchiverError, HttpStatusError, OperationCancelled
from ..core.http import HttpClient
from ..core.markers import get_manifest_for_directory
from ..core.naming import (
    translate_name_default,
    translate_name_match_length,
    try_extract_number_from_name,
)
from ..core.progress import create_progress_factory
from ..core.session import MARKER_DIRECTORY, DownloaderSession
from ..core.storage import DiskResourceStore
from ..core.utils import URLProcessor, format_time, print_banner, setup_logger


class HLSArchiverCLI:
    """HLS 归档命令行界面"""

    def __init__(self):
        self.cancel_event = threading.Event()
        self.logger = None

    def parse_arguments(self, argv: Optional[List[str]] = None):
        """解析命令行参数"""
        parser = argparse.ArgumentParser(
            description="HLS Archiver - HLS 直播归档工具",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
使用示例:
  hls-archiver https://example.com/live/master.m3u8 -o ./archive
  hls-archiver https://example.com/live/master.m3u8 --mode tailing --top 1200 --timeout 120
  hls-archiver https://example.com/live/master.m3u8 --mode top-down --fill-gaps
  hls-archiver https://example.com/live/master.m3u8 --headers "Referer=https://example.com"
            """
        )

        # 基本参数
        parser.add_argument('url', help='主播放列表 URL')
        parser.add_argument('-o', '--output-dir', default='./archive', help='归档目录')
        parser.add_argument('-a', '--artifact-id', default='stream', help='归档 ID（子目录名）')

        # 录制方式
        parser.add_argument('--mode', choices=['standard', 'tailing', 'top-down'], default='tailing',
                            help='录制方式')
        parser.add_argument('--profile', choices=['live', 'stable', 'strict'], help='配置模板')
        parser.add_argument('--timeout', type=float, default=60.0, help='没有新片段多久后停止(秒)')
        parser.add_argument('--one-off', action='store_true', help='只读取一次播放列表')
        parser.add_argument('--top', type=int, help='自顶向下回填的起始编号')
        parser.add_argument('--top-msn', type=int, help='起始编号对应的媒体序列号')
        parser.add_argument('--pad-names', action='store_true', help='回填时按原编号长度补零')
        parser.add_argument('--fill-gaps', action='store_true', help='根据标记文件补齐缺失的编号')
        parser.add_argument('--prioritize-resolution', action='store_true', help='码流选择时分辨率优先')

        # 加密参数
        parser.add_argument('--no-decrypt', action='store_true', help='保存原始加密数据')
        parser.add_argument('--export-keys', action='store_true', help='保存密钥、IV 和加密方法')

        # 重试参数
        parser.add_argument('--max-consecutive-retries', type=int, help='连续失败上限')
        parser.add_argument('--max-total-retries', type=int, help='累计失败上限')
        parser.add_argument('--retry-delay', type=float, help='HTTP 500/503 重试延迟(秒)')
        parser.add_argument('--request-timeout', type=float, help='单个请求超时(秒)')
        parser.add_argument('--request-timeout-retries', type=int, help='请求超时后的重试次数')
        parser.add_argument('--redownload', action='store_true', help='重新下载已登记的片段')

        # 请求头参数
        parser.add_argument('--headers', help='自定义请求头 (JSON字符串或key=value格式)')
        parser.add_argument('--user-agent', help='自定义User-Agent')
        parser.add_argument('--referer', help='设置Referer')
        parser.add_argument('--origin', help='设置Origin')

        # 功能参数
        parser.add_argument('--verify-ssl', action='store_true', help='验证SSL证书')
        parser.add_argument('--no-progress', action='store_true', help='禁用进度条')
        parser.add_argument('--no-logging', action='store_true', help='禁用控制台日志')
        parser.add_argument('--log-file', help='日志文件路径')
        parser.add_argument('--dry-run', action='store_true', help='试运行，不实际下载')

        return parser.parse_args(argv)

    def create_config_from_args(self, args) -> ArchiveConfig:
        """从参数创建配置"""
        url = URLProcessor.normalize_url(args.url)
        if args.profile == 'live':
            config = ConfigTemplates.live(url, args.artifact_id)
        elif args.profile == 'stable':
            config = ConfigTemplates.stable(url, args.artifact_id)
        elif args.profile == 'strict':
            config = ConfigTemplates.strict(url, args.artifact_id)
        else:
            config = ArchiveConfig(url=url, artifact_id=args.artifact_id)

        timing = config.resolved_timing
        if args.retry_delay is not None:
            timing.http_500_retry_delay = args.retry_delay
            timing.http_503_retry_delay = args.retry_delay
        if args.request_timeout is not None:
            timing.request_timeout = args.request_timeout if args.request_timeout >= 0 else None
        if args.request_timeout_retries is not None:
            timing.request_timeout_retries = max(args.request_timeout_retries, 1)
        config.timing = timing

        if args.max_consecutive_retries is not None:
            config.max_consecutive_retries = max(args.max_consecutive_retries, 0)
        if args.max_total_retries is not None:
            config.max_total_retries = max(args.max_total_retries, 0)
        if args.prioritize_resolution:
            config.prioritize_resolution = True
        if args.no_decrypt:
            config.decrypt = False
        if args.redownload:
            config.skip_existing_segments = False
        if args.verify_ssl:
            config.verify_ssl = True
        if args.no_progress:
            config.show_progress = False
        if args.no_logging:
            config.enable_logging = False

        # 处理请求头
        if args.headers:
            self._parse_headers(config, args.headers)
        if args.user_agent:
            config.headers['User-Agent'] = args.user_agent
        if args.referer:
            config.referrer = args.referer
        if args.origin:
            config.origin = args.origin

        return config

    def _parse_headers(self, config: ArchiveConfig, headers_str: str):
        """解析请求头字符串"""
        headers_str = headers_str.strip()

        # 尝试解析JSON
        if headers_str.startswith('{'):
            try:
                config.update_headers(json.loads(headers_str))
                return
            except json.JSONDecodeError:
                pass

        # 解析key=value格式
        headers = {}
        for part in headers_str.split(','):
            if '=' in part:
                key, value = part.split('=', 1)
                headers[key.strip()] = value.strip()

        config.update_headers(headers)

    def _setup_signal_handlers(self):
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """信号处理"""
        if self.logger:
            self.logger.info("收到中断信号，正在停止...")
        self.cancel_event.set()

    # ==================== 保存器 ====================

    def _recovery_callback(self, session: DownloaderSession, config: ArchiveConfig):
        def recover(error: HttpStatusError):
            self.logger.info(f"[{session.name}] HTTP {error.status_code}，重新选择码流...")
            session.set_config(config)
        return recover

    def _name_transform(self, args):
        return translate_name_match_length if args.pad_names else translate_name_default

    def _create_top_down_saver(self, session: DownloaderSession, args, config: ArchiveConfig):
        top = args.top
        top_msn = args.top_msn
        if top is None:
            # 从当前播放列表第一个片段往前回填
            if not session.playlist.data_lines:
                raise HLSArchiverError("播放列表中没有片段，请使用 --top 指定起始编号")
            first = session.get_file_name(session.resolve_url(session.playlist.data_lines[0]))
            number = try_extract_number_from_name(first)
            if number is None:
                raise HLSArchiverError(f"无法从 {first} 推断编号，请使用 --top 指定起始编号")
            top = number - 1
            if top_msn is None:
                top_msn = session.playlist.first_media_sequence_number - 1

        saver = session.create_top_down_saver(top, top_msn, self._name_transform(args))
        if args.fill_gaps:
            self._enqueue_gaps(saver, session, args)
        return saver

    def _enqueue_gaps(self, saver, session: DownloaderSession, args):
        manifest = get_manifest_for_directory(
            session.store, session.config.artifact_id, MARKER_DIRECTORY,
            try_extract_number_from_name, self._name_transform(args))
        if manifest is None:
            self.logger.info("没有找到标记文件，跳过缺口补齐")
            return
        self.logger.info(f"最小编号 {manifest.lowest.number}，缺失 {len(manifest.missing)} 个片段")
        for info in manifest.missing:
            saver.enqueue_element(info.number, info.msn)
        saver.skip_missing = True

    def _create_saver(self, session: DownloaderSession, args, config: ArchiveConfig, position: int):
        if args.mode == 'standard':
            saver = session.create_standard_saver(args.one_off, args.timeout)
        elif args.mode == 'top-down':
            saver = self._create_top_down_saver(session, args, config)
        else:
            extra_operation = None
            if args.top is not None or args.fill_gaps:
                extra_operation = self._create_top_down_saver(session, args, config)
                extra_operation.recovery_callback = self._recovery_callback(session, config)
            saver = session.create_tailing_saver(args.one_off, args.timeout, extra_operation=extra_operation)

        saver.recovery_callback = self._recovery_callback(session, config)
        if config.show_progress:
            saver.progress_factory = create_progress_factory(session.is_concurrent, position)
        return saver

    def _run_sessions(self, sessions: List[DownloaderSession], args, config: ArchiveConfig) -> bool:
        savers = [self._create_saver(s, args, config, i) for i, s in enumerate(sessions)]
        if len(savers) == 1:
            savers[0].run()
            return True

        success = True
        unexpected_error = None
        with ThreadPoolExecutor(max_workers=len(savers)) as executor:
            futures = {executor.submit(saver.run): saver.session.name for saver in savers}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    future.result()
                except OperationCancelled:
                    success = False
                except HLSArchiverError as e:
                    self.logger.error(f"[{name}] 录制失败: {e}")
                    self.cancel_event.set()
                    success = False
                except Exception as e:
                    # 先停止其他会话，线程池关闭后再抛出
                    self.logger.error(f"[{name}] 录制异常终止: {e}")
                    self.cancel_event.set()
                    success = False
                    if unexpected_error is None:
                        unexpected_error = e
        if unexpected_error is not None:
            raise unexpected_error
        return success

    # ==================== 运行 ====================

    def run(self, argv: Optional[List[str]] = None) -> bool:
        """主运行函数"""
        args = self.parse_arguments(argv)

        url = URLProcessor.normalize_url(args.url)
        if not URLProcessor.validate_url(url):
            print(f"❌ URL格式无效: {args.url}")
            return False

        config = self.create_config_from_args(args)

        # 试运行模式
        if args.dry_run:
            print("试运行模式:")
            print(f"  URL: {config.url}")
            print(f"  输出: {args.output_dir}")
            print(f"  方式: {args.mode}")
            print(f"  配置: {config.to_dict()}")
            return True

        if config.enable_logging:
            print_banner()
        self.logger = setup_logger('hls_archiver', log_file=args.log_file, console_output=config.enable_logging)
        self._setup_signal_handlers()

        store = DiskResourceStore(args.output_dir)
        http_client = HttpClient(config, self.logger, self.cancel_event)
        start_time = time.time()
        try:
            group = DownloaderSession.open(http_client, store, config, self.logger, self.cancel_event)
            if args.export_keys:
                group.primary.write_key_material()
            sessions = [group.primary, *group.alternates]
            success = self._run_sessions(sessions, args, config)
            if success:
                self.logger.info(f"✅ 归档完成: {store.get_path(config.artifact_id, '')}，耗时 {format_time(time.time() - start_time)}")
            return success
        except OperationCancelled:
            self.logger.info("操作已取消")
            return False
        except HLSArchiverError as e:
            self.logger.error(f"❌ 归档失败: {e}")
            return False
        except requests.RequestException as e:
            self.logger.error(f"❌ 网络错误: {e}")
            return False
        finally:
            http_client.close()


def main():
    """主入口"""
    cli = HLSArchiverCLI()
    success = cli.run()
    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
