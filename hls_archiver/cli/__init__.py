"""
HLS Archiver CLI Module
命令行接口模块
"""

from .cli import HLSArchiverCLI, main

__all__ = ["HLSArchiverCLI", "main"]
