"""
根 CA 签发流程的数据模型定义。
"""

from pathlib import Path

from pydantic import BaseModel


class CaIssueResult(BaseModel):
    prefix: str
    common_name: str
    key: Path
    cert: Path
    description: str  # 证书的可读文本
