"""
产物存储的数据模型定义。
"""

from pathlib import Path

from pydantic import BaseModel


class CaArtifacts(BaseModel):
    """
    一个 CA 前缀对应的文件集合。
    """
    prefix: str
    key: Path
    cert: Path
    serial: Path  # 签发时的序列号跟踪文件

    def all(self) -> list[Path]:
        return [self.key, self.cert, self.serial]


class LeafArtifacts(BaseModel):
    """
    一个 common name 对应的文件集合，全部位于同名目录下。
    """
    common_name: str
    dir: Path
    key: Path
    csr: Path
    ext: Path
    cert: Path
    bundle: Path  # 叶子证书 + 签发 CA 证书
    p12: Path
    keystore: Path


class SignerCandidate(BaseModel):
    """
    可供签发选择的 CA 私钥 / 证书对。
    """
    prefix: str
    key: Path
    cert: Path
    subject: str | None = None
    valid: bool = False
    reason: str | None = None  # 校验未通过时的原因
