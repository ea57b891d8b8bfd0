"""
加密解密测试
"""

import pytest
from Crypto.Cipher import AES
from Crypto.Util.Padding import pad

from hls_archiver.core.crypto import (
    AESDecryptor,
    EncryptionInfo,
    create_decryptor,
    parse_iv_string,
)
from hls_archiver.core.errors import DecryptionError, UnsupportedEncryptionError

# NIST SP 800-38A F.2.1 CBC-AES128
NIST_KEY = bytes.fromhex("2b7e151628aed2a6abf7158809cf4f3c")
NIST_IV = bytes.fromhex("000102030405060708090a0b0c0d0e0f")
NIST_PLAINTEXT = bytes.fromhex("6bc1bee22e409f96e93d7e117393172a" "ae2d8a571e03ac9c9eb76fac45af8e51")
NIST_CIPHERTEXT = bytes.fromhex("7649abac8119b246cee98e9b12e9197d" "5086cb9b507219ee95db113a917678b2")


def _encrypt(key, iv, data):
    return AES.new(key, AES.MODE_CBC, iv).encrypt(pad(data, AES.block_size))


def test_known_vector():
    """测试已知的 AES-128-CBC 向量"""
    assert AESDecryptor(NIST_KEY, NIST_IV).decrypt(NIST_CIPHERTEXT) == NIST_PLAINTEXT


def test_streaming_matches_one_shot():
    """测试分块解密与一次性解密结果一致，并去除填充"""
    data = bytes(range(256)) * 10 + b"tail"
    ciphertext = _encrypt(NIST_KEY, NIST_IV, data)

    decryptor = AESDecryptor(NIST_KEY, NIST_IV)
    output = b""
    for offset in range(0, len(ciphertext), 7):
        output += decryptor.update(ciphertext[offset:offset + 7])
    output += decryptor.finalize()

    assert output == data


def test_aes_256():
    """测试 AES-256 同样使用 CBC"""
    key = bytes(range(32))
    ciphertext = _encrypt(key, NIST_IV, b"segment data")
    info = EncryptionInfo(method="AES-256", key=key, iv=NIST_IV)
    assert create_decryptor(info).decrypt(ciphertext) == b"segment data"


def test_truncated_ciphertext():
    """测试密文长度不是块大小的整数倍"""
    decryptor = AESDecryptor(NIST_KEY, NIST_IV)
    decryptor.update(NIST_CIPHERTEXT[:20])
    with pytest.raises(DecryptionError):
        decryptor.finalize()


def test_iv_from_sequence_number():
    """测试没有显式 IV 时使用媒体序列号"""
    assert AESDecryptor.generate_iv_from_sequence(1) == b"\x00" * 15 + b"\x01"
    info = EncryptionInfo(method="AES-128", key=NIST_KEY)
    assert info.resolve_iv(258) == (258).to_bytes(16, 'big')
    with pytest.raises(DecryptionError):
        info.resolve_iv(None)


def test_unsupported_method():
    """测试不支持的加密方法"""
    info = EncryptionInfo(method="SAMPLE-AES", key=NIST_KEY, iv=NIST_IV)
    with pytest.raises(UnsupportedEncryptionError):
        create_decryptor(info)


def test_missing_key():
    """测试缺少密钥"""
    info = EncryptionInfo(method="AES-128", iv=NIST_IV)
    with pytest.raises(DecryptionError):
        create_decryptor(info)


def test_merge_forward_same_method():
    """测试方法相同时沿用密钥和 IV"""
    previous = EncryptionInfo(method="AES-128", uri="key1.bin", key=NIST_KEY, iv=NIST_IV)
    current = EncryptionInfo(method="AES-128", uri="key1.bin")

    merged = current.merge_forward(previous)
    assert merged.key == NIST_KEY
    assert merged.iv == NIST_IV
    # 原对象不变
    assert current.key is None


def test_merge_forward_keeps_own_values():
    """测试本次已有的 IV 不会被覆盖"""
    previous = EncryptionInfo(method="AES-128", key=NIST_KEY, iv=NIST_IV)
    own_iv = bytes(16)
    merged = EncryptionInfo(method="AES-128", iv=own_iv).merge_forward(previous)
    assert merged.iv == own_iv
    assert merged.key == NIST_KEY


def test_merge_forward_different_method():
    """测试方法不同时不合并"""
    previous = EncryptionInfo(method="AES-128", key=NIST_KEY, iv=NIST_IV)
    current = EncryptionInfo(method="AES-256")
    assert current.merge_forward(previous) is current


def test_parse_iv_string():
    """测试 IV 字符串解析"""
    assert parse_iv_string("0x000102030405060708090A0B0C0D0E0F") == NIST_IV
    assert parse_iv_string("000102030405060708090a0b0c0d0e0f") == NIST_IV
    with pytest.raises(ValueError):
        parse_iv_string("0xZZ")


def test_encryption_info_to_dict():
    info = EncryptionInfo(method="AES-128", uri="key.bin", key=b"\x01" * 16)
    data = info.to_dict()
    assert data['method'] == "AES-128"
    assert data['key'] == "01" * 16
    assert data['iv'] is None
