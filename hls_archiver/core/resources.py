"""
资源描述模块
描述一个可以导出到输出流的资源：HTTP 响应体、解密后的数据或整个保存器的输出
"""

import threading
from datetime import datetime, timezone
from typing import Any, BinaryIO, Dict, Optional

from .crypto import EncryptionInfo, create_decryptor
from .storage import ResourceKey
from .utils import check_cancelled


class ResourceInfo:
    """资源描述基类"""

    def __init__(self, key: ResourceKey, content_type: Optional[str] = "application/octet-stream"):
        self.key = key
        self.content_type = content_type
        self.retrieved: Optional[datetime] = None

    def export_stream(self, target: BinaryIO):
        """把资源内容写入 target"""
        raise NotImplementedError

    def to_metadata(self) -> Dict[str, Any]:
        """登记资源时使用的元数据"""
        return {
            'key': self.key.to_str(),
            'content_type': self.content_type,
            'retrieved': self.retrieved.isoformat() if self.retrieved else None,
        }


class UrlResource(ResourceInfo):
    """通过 HTTP GET 获取的资源"""

    def __init__(self, http_client, url: str, key: ResourceKey, referrer: Optional[str] = None,
                 origin: Optional[str] = None, timeout=None, chunk_size: int = 8192,
                 cancel_event: Optional[threading.Event] = None):
        super().__init__(key)
        self.http_client = http_client
        self.url = url
        self.referrer = referrer
        self.origin = origin
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.cancel_event = cancel_event

    def export_stream(self, target: BinaryIO):
        """
        流式下载到 target

        Raises:
            HttpStatusError: 服务器返回失败状态码
        """
        with self.http_client.get(self.url, referrer=self.referrer, origin=self.origin,
                                  stream=True, timeout=self.timeout) as response:
            response.raise_for_status()
            self.content_type = response.headers.get('Content-Type', self.content_type)
            for chunk in response.iter_content(chunk_size=self.chunk_size):
                check_cancelled(self.cancel_event)
                target.write(chunk)
        self.retrieved = datetime.now(timezone.utc)

    def to_metadata(self) -> Dict[str, Any]:
        metadata = super().to_metadata()
        metadata['url'] = self.url
        return metadata


class _DecryptingWriter:
    """写入密文，向下游写出明文"""

    def __init__(self, target: BinaryIO, decryptor):
        self._target = target
        self._decryptor = decryptor

    def write(self, data: bytes) -> int:
        plain = self._decryptor.update(data)
        if plain:
            self._target.write(plain)
        return len(data)

    def finish(self):
        tail = self._decryptor.finalize()
        if tail:
            self._target.write(tail)


class EncryptedResource(ResourceInfo):
    """对基础资源进行 AES-CBC 解密后导出"""

    def __init__(self, encryption_info: EncryptionInfo, base: ResourceInfo,
                 sequence_number: Optional[int] = None):
        super().__init__(base.key, base.content_type)
        self.encryption_info = encryption_info
        self.base = base
        self.sequence_number = sequence_number

    def export_stream(self, target: BinaryIO):
        """
        Raises:
            UnsupportedEncryptionError: 加密方法不受支持
            DecryptionError: 缺少密钥或 IV，或密文不完整
        """
        # 先创建解密器，不支持的方法不会发出请求
        decryptor = create_decryptor(self.encryption_info, self.sequence_number)
        writer = _DecryptingWriter(target, decryptor)
        self.base.export_stream(writer)
        writer.finish()
        self.content_type = self.base.content_type
        self.retrieved = self.base.retrieved

    def to_metadata(self) -> Dict[str, Any]:
        metadata = self.base.to_metadata()
        metadata['encryption'] = self.encryption_info.method
        return metadata


class SaverResource(ResourceInfo):
    """把整个保存器的导出结果作为一个资源"""

    def __init__(self, saver, key: ResourceKey, content_type: Optional[str] = "application/octet-stream"):
        super().__init__(key, content_type)
        self.saver = saver

    def export_stream(self, target: BinaryIO):
        self.saver.export(target)
        self.retrieved = datetime.now(timezone.utc)
