"""工具函数模块。"""

from highclaw.utils.helpers import ensure_dir, get_data_path, safe_filename, truncate_string

__all__ = ["ensure_dir", "get_data_path", "safe_filename", "truncate_string"]
