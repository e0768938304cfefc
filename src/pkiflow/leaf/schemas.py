"""
叶子证书签发流程的数据模型定义。
"""

from pathlib import Path
from typing import List

from pydantic import BaseModel


class LeafIssueResult(BaseModel):
    common_name: str
    key: Path
    cert: Path
    bundle: Path
    p12: Path | None = None  # 导出失败并被跳过时为 None
    keystore: Path | None = None
    signer_cert: Path
    skipped_exports: List[str] = []
