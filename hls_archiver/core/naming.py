"""
文件名变换模块
按 (前缀)(数字)(扩展名) 拆分片段文件名，替换或提取其中的数字
"""

import re
from typing import Optional, Union

from .errors import NameTransformError

_BIT_PATTERN = re.compile(r'(^[\S\s]*[^\d]|)\d+(\.\w+)$')
_BIT2_PATTERN = re.compile(r'(?P<prefix>^[\S\s]*[^\d]|)(?P<number>\d+)(?P<suffix>\.\w+)$')


def translate_name_default(name: str, i: Union[int, str]) -> str:
    """
    把文件名末尾的数字替换为 i

    Args:
        name: 作为模板的文件名，如 seg_120.ts
        i: 新编号

    Returns:
        str: 新文件名，如 seg_7.ts

    Raises:
        NameTransformError: 文件名没有末尾数字
    """
    match = _BIT_PATTERN.search(name)
    if match is None:
        raise NameTransformError(f"文件名中没有可替换的数字: {name}")
    return f"{match.group(1)}{i}{match.group(2)}"


def translate_name_match_length(name: str, i: Union[int, str]) -> str:
    """
    把文件名末尾的数字替换为 i，并补零到原数字的长度

    seg_00120.ts + 7 -> seg_00007.ts
    """
    match = _BIT2_PATTERN.search(name)
    if match is None:
        raise NameTransformError(f"文件名中没有可替换的数字: {name}")
    width = len(match.group('number'))
    return f"{match.group('prefix')}{str(i).rjust(width, '0')}{match.group('suffix')}"


def extract_number_from_name(name: str) -> int:
    """
    提取文件名末尾的数字

    Raises:
        NameTransformError: 文件名没有末尾数字
    """
    number = try_extract_number_from_name(name)
    if number is None:
        raise NameTransformError(f"文件名中没有数字: {name}")
    return number


def try_extract_number_from_name(name: str) -> Optional[int]:
    """提取文件名末尾的数字，失败时返回 None"""
    match = _BIT2_PATTERN.search(name)
    if match is None:
        return None
    return int(match.group('number'))
