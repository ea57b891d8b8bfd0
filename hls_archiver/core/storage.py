"""
资源存储模块
提供资源登记与可提交输出流，包含内存和磁盘两种实现
"""

import io
import json
import os
import threading
from dataclasses import dataclass
from typing import Any, BinaryIO, Dict, List, Optional


@dataclass(frozen=True)
class ResourceKey:
    """资源键：归档 ID + 目录 + 文件名"""
    artifact_id: str
    file: str
    path: str = ""

    def to_str(self) -> str:
        parts = [self.artifact_id, self.path, self.file]
        return '/'.join(p for p in parts if p)


class CommittableStream(io.RawIOBase):
    """
    可提交输出流

    只有在退出前把 committed 设为 True（或调用 commit()）时写入的数据才会生效，
    其余任何退出路径都会丢弃数据。
    """

    def __init__(self, inner: BinaryIO):
        super().__init__()
        self._inner = inner
        self.committed = False
        self._finished = False

    def writable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return self._inner.seekable()

    def write(self, data) -> int:
        return self._inner.write(data)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._inner.seek(offset, whence)

    def tell(self) -> int:
        return self._inner.tell()

    def truncate(self, size: Optional[int] = None) -> int:
        return self._inner.truncate(size)

    def flush(self):
        if not self._inner.closed:
            self._inner.flush()

    def commit(self):
        self.committed = True

    def close(self):
        if not self._finished:
            self._finished = True
            try:
                if self.committed:
                    self._on_commit()
                else:
                    self._on_discard()
            finally:
                super().close()

    def _on_commit(self):
        self._inner.close()

    def _on_discard(self):
        self._inner.close()

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            # 异常退出一律丢弃
            self.committed = False
        self.close()
        return False


class ResourceStore:
    """资源存储基类"""

    def exists(self, key: ResourceKey) -> bool:
        """资源是否已登记"""
        raise NotImplementedError

    def create_output_stream(self, key: ResourceKey) -> CommittableStream:
        """创建可提交输出流"""
        raise NotImplementedError

    def remove(self, key: ResourceKey):
        """删除资源登记"""
        raise NotImplementedError

    def add(self, key: ResourceKey, metadata: Optional[Dict[str, Any]] = None):
        """登记资源"""
        raise NotImplementedError

    def list_files(self, artifact_id: str, path: str = "") -> List[str]:
        """列出目录下已写入的文件名"""
        raise NotImplementedError

    def open_input_stream(self, artifact_id: str, file: str, path: str = "") -> BinaryIO:
        """打开已写入的文件"""
        raise NotImplementedError


class _MemoryCommittableStream(CommittableStream):

    def __init__(self, store: 'InMemoryResourceStore', key: ResourceKey):
        super().__init__(io.BytesIO())
        self._store = store
        self._key = key

    def _on_commit(self):
        self._store._write(self._key, self._inner.getvalue())
        self._inner.close()


class InMemoryResourceStore(ResourceStore):
    """内存资源存储"""

    def __init__(self):
        self._lock = threading.Lock()
        self.files: Dict[ResourceKey, bytes] = {}
        self.registrations: Dict[ResourceKey, Dict[str, Any]] = {}

    def _write(self, key: ResourceKey, data: bytes):
        with self._lock:
            self.files[key] = data

    def exists(self, key: ResourceKey) -> bool:
        with self._lock:
            return key in self.registrations

    def create_output_stream(self, key: ResourceKey) -> CommittableStream:
        return _MemoryCommittableStream(self, key)

    def remove(self, key: ResourceKey):
        with self._lock:
            self.registrations.pop(key, None)

    def add(self, key: ResourceKey, metadata: Optional[Dict[str, Any]] = None):
        with self._lock:
            self.registrations[key] = dict(metadata or {})

    def list_files(self, artifact_id: str, path: str = "") -> List[str]:
        with self._lock:
            return [k.file for k in self.files if k.artifact_id == artifact_id and k.path == path]

    def open_input_stream(self, artifact_id: str, file: str, path: str = "") -> BinaryIO:
        key = ResourceKey(artifact_id, file, path)
        with self._lock:
            if key not in self.files:
                raise FileNotFoundError(key.to_str())
            return io.BytesIO(self.files[key])

    def read(self, key: ResourceKey) -> bytes:
        """读取已提交文件的内容"""
        with self._lock:
            return self.files[key]


class _FileCommittableStream(CommittableStream):
    """先写临时文件，提交时替换到目标路径"""

    def __init__(self, path: str):
        self.destination_path = path
        self._temp_path = f"{path}.tmp"
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        super().__init__(open(self._temp_path, 'wb'))

    def _on_commit(self):
        self._inner.flush()
        os.fsync(self._inner.fileno())
        self._inner.close()
        os.replace(self._temp_path, self.destination_path)

    def _on_discard(self):
        self._inner.close()
        if os.path.exists(self._temp_path):
            os.remove(self._temp_path)


class DiskResourceStore(ResourceStore):
    """
    磁盘资源存储

    文件保存在 root/<artifact_id>/<path>/<file>，登记信息保存在 root/registrations.json
    """

    INDEX_FILE = "registrations.json"

    def __init__(self, root: str):
        self.root = root
        self._lock = threading.Lock()
        os.makedirs(root, exist_ok=True)
        self._index_path = os.path.join(root, self.INDEX_FILE)
        self._registrations: Dict[str, Dict[str, Any]] = self._load_index()

    def _load_index(self) -> Dict[str, Dict[str, Any]]:
        if not os.path.exists(self._index_path):
            return {}
        with open(self._index_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def _save_index(self):
        temp_path = f"{self._index_path}.tmp"
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(self._registrations, f, ensure_ascii=False, indent=2)
        os.replace(temp_path, self._index_path)

    def get_path(self, artifact_id: str, file: str, path: str = "") -> str:
        """获取资源在磁盘上的路径"""
        parts = [self.root, artifact_id]
        if path:
            parts.append(path)
        parts.append(file)
        return os.path.join(*parts)

    def exists(self, key: ResourceKey) -> bool:
        with self._lock:
            return key.to_str() in self._registrations

    def create_output_stream(self, key: ResourceKey) -> CommittableStream:
        return _FileCommittableStream(self.get_path(key.artifact_id, key.file, key.path))

    def remove(self, key: ResourceKey):
        with self._lock:
            if self._registrations.pop(key.to_str(), None) is not None:
                self._save_index()

    def add(self, key: ResourceKey, metadata: Optional[Dict[str, Any]] = None):
        with self._lock:
            self._registrations[key.to_str()] = dict(metadata or {})
            self._save_index()

    def list_files(self, artifact_id: str, path: str = "") -> List[str]:
        directory = os.path.join(self.root, artifact_id, path) if path else os.path.join(self.root, artifact_id)
        if not os.path.isdir(directory):
            return []
        return [
            name for name in os.listdir(directory)
            if os.path.isfile(os.path.join(directory, name)) and not name.endswith('.tmp')
        ]

    def open_input_stream(self, artifact_id: str, file: str, path: str = "") -> BinaryIO:
        return open(self.get_path(artifact_id, file, path), 'rb')
