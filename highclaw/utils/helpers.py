"""
工具函数集合 - highclaw 项目全局通用的辅助函数。

本模块提供路径管理、字符串处理、时间戳等基础工具函数，
被项目中的多个模块引用。

函数分类：
- 路径管理：ensure_dir, get_data_path
- 字符串工具：truncate_string, safe_filename
- 时间工具：now_ms, ms_to_datetime, datetime_to_ms
"""

import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

# 文件名的最大字节数（大多数文件系统单个文件名上限为 255 字节，留出后缀余量）
MAX_FILENAME_BYTES = 200

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def ensure_dir(path: Path, mode: int = 0o755) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径
        mode: 新建目录的权限位，默认 0755

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True, mode=mode)
    return path


def get_data_path() -> Path:
    """
    获取 highclaw 数据根目录（~/.highclaw）。

    无法确定用户家目录时（如容器内无 HOME），退回到当前工作目录下的 .highclaw。
    本函数只计算路径，不创建目录。
    """
    try:
        return Path.home() / ".highclaw"
    except RuntimeError:
        return Path(".highclaw")


def now_ms() -> int:
    """获取当前时间的毫秒级 Unix 时间戳。"""
    return time.time_ns() // 1_000_000


def ms_to_datetime(ms: int) -> datetime:
    """毫秒时间戳转换为带 UTC 时区的 datetime。"""
    return _EPOCH + timedelta(milliseconds=int(ms))


def datetime_to_ms(dt: datetime) -> int:
    """datetime 转换为毫秒时间戳（无时区信息时按 UTC 处理），整数运算避免浮点误差。"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - _EPOCH) // timedelta(milliseconds=1)


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """
    按字符（code point）截断字符串，超出时追加后缀。

    注意后缀不计入 max_len：保留前 max_len 个字符再拼接 suffix，
    这与会话历史裁剪的约定一致（3000 个字符 + "..."）。

    参数:
        s: 原始字符串
        max_len: 保留的最大字符数
        suffix: 截断后缀，默认 "..."

    返回:
        截断后的字符串
    """
    if len(s) <= max_len:
        return s
    return s[:max_len] + suffix


def safe_filename(name: str, max_bytes: int = MAX_FILENAME_BYTES) -> str:
    """
    将字符串转换为安全的文件名。

    替换的不安全字符包括：< > : " / \\ | ? *
    结果按 UTF-8 编码截断到 max_bytes 字节以内，且不会切断多字节字符。

    参数:
        name: 原始文件名
        max_bytes: 编码后允许的最大字节数

    返回:
        安全的文件名字符串
    """
    unsafe = '<>:"/\\|?*'
    for char in unsafe:
        name = name.replace(char, "_")
    encoded = name.encode("utf-8")
    if len(encoded) <= max_bytes:
        return name
    # errors="ignore" 丢弃被截断的半个字符
    return encoded[:max_bytes].decode("utf-8", errors="ignore")
