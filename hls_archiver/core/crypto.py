"""
加密解密模块
支持 AES-128/192/256-CBC 加密的 M3U8 片段流式解密
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Dict

from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from .errors import DecryptionError, UnsupportedEncryptionError

# 支持的方法全部使用 CBC 模式
SUPPORTED_METHODS = ("AES-128", "AES-192", "AES-256")


@dataclass(frozen=True)
class EncryptionInfo:
    """加密信息数据类"""
    method: str  # 加密方法: AES-128, SAMPLE-AES, NONE
    uri: Optional[str] = None  # 密钥 URI
    key: Optional[bytes] = None  # 密钥，由会话按需下载
    iv: Optional[bytes] = None  # 初始向量 (16 bytes)
    key_format: str = "identity"  # 密钥格式

    def is_encrypted(self) -> bool:
        """判断是否加密"""
        return self.method not in (None, "NONE", "")

    def with_key(self, key: Optional[bytes]) -> 'EncryptionInfo':
        return replace(self, key=key)

    def merge_forward(self, previous: Optional['EncryptionInfo']) -> 'EncryptionInfo':
        """
        沿用上一次的密钥和 IV

        仅在加密方法相同时生效，且只补齐本次缺失的字段。
        方法相同即视为密钥未变，服务器在不改方法名的情况下轮换密钥时会被误判。

        Args:
            previous: 会话当前持有的加密信息

        Returns:
            EncryptionInfo: 合并后的新对象
        """
        if previous is None or previous.method != self.method:
            return self
        return replace(
            self,
            key=self.key if self.key is not None else previous.key,
            iv=self.iv if self.iv is not None else previous.iv,
        )

    def resolve_iv(self, sequence_number: Optional[int]) -> bytes:
        """获取解密使用的 IV，没有显式 IV 时由媒体序列号生成"""
        if self.iv is not None:
            return self.iv
        if sequence_number is None:
            raise DecryptionError("没有显式 IV，也没有媒体序列号")
        return AESDecryptor.generate_iv_from_sequence(sequence_number)

    def to_dict(self) -> Dict:
        """转换为字典"""
        return {
            'method': self.method,
            'uri': self.uri,
            'key': self.key.hex() if self.key else None,
            'iv': self.iv.hex() if self.iv else None,
            'key_format': self.key_format,
        }


def parse_iv_string(iv_string: str) -> bytes:
    """
    解析 IV 字符串

    Args:
        iv_string: 十六进制 IV 字符串，如 "0x12345678..."

    Returns:
        bytes: IV

    Raises:
        ValueError: 不是合法的十六进制字符串
    """
    if iv_string.startswith('0x') or iv_string.startswith('0X'):
        iv_string = iv_string[2:]
    return bytes.fromhex(iv_string)


class AESDecryptor:
    """
    AES-CBC 流式解密器

    数据可以分块送入，最后一个完整块保留到 finalize 时去除 PKCS7 填充。
    """

    def __init__(self, key: bytes, iv: bytes):
        if not key:
            raise DecryptionError("解密密钥未设置")
        try:
            self._cipher = AES.new(key, AES.MODE_CBC, iv)
        except ValueError as e:
            raise DecryptionError(f"无效的密钥或 IV: {e}") from e
        self._buffer = b""
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def generate_iv_from_sequence(sequence_number: int) -> bytes:
        """
        根据序列号生成 IV

        HLS 规范：如果没有显式 IV，使用媒体序列号作为 IV

        Args:
            sequence_number: 媒体片段序列号

        Returns:
            bytes: 16 字节 IV
        """
        return sequence_number.to_bytes(16, byteorder='big')

    def update(self, data: bytes) -> bytes:
        """解密一段数据，返回已经可以输出的明文"""
        self._buffer += data
        # 至少保留一个块给 finalize 去填充
        usable = len(self._buffer) - AES.block_size
        usable -= usable % AES.block_size
        if usable <= 0:
            return b""
        chunk, self._buffer = self._buffer[:usable], self._buffer[usable:]
        return self._cipher.decrypt(chunk)

    def finalize(self) -> bytes:
        """解密剩余数据并移除 PKCS7 填充"""
        if not self._buffer:
            return b""
        if len(self._buffer) % AES.block_size != 0:
            raise DecryptionError(f"密文长度不是块大小的整数倍: 剩余 {len(self._buffer)} bytes")
        tail = self._cipher.decrypt(self._buffer)
        self._buffer = b""
        try:
            return unpad(tail, AES.block_size)
        except ValueError:
            # 某些流可能没有标准填充，直接返回
            self.logger.warning("片段没有标准 PKCS7 填充，保留原始数据")
            return tail

    def decrypt(self, encrypted_data: bytes) -> bytes:
        """一次性解密完整数据"""
        return self.update(encrypted_data) + self.finalize()


def create_decryptor(encryption_info: EncryptionInfo, sequence_number: Optional[int] = None) -> AESDecryptor:
    """
    根据加密信息创建解密器

    Args:
        encryption_info: 加密信息（需已包含密钥）
        sequence_number: 媒体序列号，没有显式 IV 时使用

    Returns:
        AESDecryptor: 解密器

    Raises:
        UnsupportedEncryptionError: 加密方法不受支持
        DecryptionError: 缺少密钥或 IV
    """
    method = (encryption_info.method or "").upper()
    if method not in SUPPORTED_METHODS:
        raise UnsupportedEncryptionError(f"不支持的加密方法: {encryption_info.method}")
    if encryption_info.key is None:
        raise DecryptionError(f"{method} 加密缺少密钥")
    return AESDecryptor(encryption_info.key, encryption_info.resolve_iv(sequence_number))


class KeyManager:
    """
    加密密钥管理器

    负责下载并按 URI 缓存 M3U8 加密密钥
    """

    def __init__(self, http_client, logger: Optional[logging.Logger] = None):
        self.http_client = http_client
        self._cache: Dict[str, bytes] = {}
        self.logger = logger or logging.getLogger(__name__)

    def get_key(self, uri: str, referrer: Optional[str] = None, origin: Optional[str] = None,
                force_refresh: bool = False) -> bytes:
        """
        下载密钥

        Args:
            uri: 密钥绝对 URI
            referrer: Referer 请求头
            origin: Origin 请求头
            force_refresh: 忽略缓存

        Returns:
            bytes: 密钥数据

        Raises:
            HttpStatusError: 服务器返回失败状态码
        """
        if not force_refresh and uri in self._cache:
            return self._cache[uri]

        with self.http_client.get(uri, referrer=referrer, origin=origin) as response:
            response.raise_for_status()
            key_data = response.content

        if len(key_data) not in (16, 24, 32):
            self.logger.warning(f"密钥长度异常: {len(key_data)} bytes")
        self._cache[uri] = key_data
        self.logger.info(f"成功下载密钥: {uri[:50]}...")
        return key_data

    def clear_cache(self):
        """清除所有缓存"""
        self._cache.clear()
