"""
HLS Archiver CLI 启动脚本
"""
from hls_archiver.cli.cli import main

if __name__ == "__main__":
    main()
