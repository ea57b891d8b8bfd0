"""
标记文件模块
根据已下载片段的标记文件找出编号缺口，供回填使用
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .storage import ResourceStore


@dataclass(frozen=True)
class MarkerFileInfo:
    """一个（已存在或缺失的）标记文件"""
    key: str
    number: int
    msn: Optional[int] = None


@dataclass(frozen=True)
class MarkerManifest:
    """编号最小的标记文件，以及按编号排列的缺失文件"""
    lowest: MarkerFileInfo
    missing: Tuple[MarkerFileInfo, ...] = ()


def _read_marker(store: ResourceStore, artifact_id: str, path: str, file: str, number: int) -> MarkerFileInfo:
    with store.open_input_stream(artifact_id, file, path) as stream:
        content = stream.read().decode('utf-8', errors='replace').strip()
    try:
        msn = int(content)
    except ValueError:
        msn = None
    return MarkerFileInfo(file, number, msn)


def get_manifest_for_directory(store: ResourceStore, artifact_id: str, path: str,
                               number_extractor: Callable[[str], Optional[int]],
                               number_replacer: Callable[[str, str], str]) -> Optional[MarkerManifest]:
    """
    列出目录下的标记文件并推算缺失的编号

    Args:
        store: 资源存储
        artifact_id: 归档 ID
        path: 标记文件目录
        number_extractor: 从文件名提取编号，无法提取时返回 None
        number_replacer: 用新编号替换文件名中的编号

    Returns:
        Optional[MarkerManifest]: 没有可提取编号的文件时返回 None

    例如编号 {1, 2, 5} 且 2 号文件内容为 "100"，缺失项为 3 (msn 101) 和 4 (msn 102)。
    """
    numbered: Dict[int, str] = {}
    for file in store.list_files(artifact_id, path):
        number = number_extractor(file)
        if number is not None and number not in numbered:
            numbered[number] = file
    if not numbered:
        return None

    ordered = sorted(numbered.items())
    missing: List[MarkerFileInfo] = []
    for (number, file), (next_number, _) in zip(ordered, ordered[1:]):
        if next_number - number <= 1:
            continue
        info = _read_marker(store, artifact_id, path, file, number)
        for offset in range(1, next_number - number):
            missing.append(MarkerFileInfo(
                number_replacer(file, str(number + offset)),
                number + offset,
                info.msn + offset if info.msn is not None else None,
            ))

    lowest_number, lowest_file = ordered[0]
    lowest = _read_marker(store, artifact_id, path, lowest_file, lowest_number)
    return MarkerManifest(lowest, tuple(missing))
