"""
文件系统上的产物存储：按逻辑名称（CA 前缀或 common name）映射到一组相关文件。

布局：
- {ca_dir}/{prefix}.key / .crt / .srl
- {cert_dir}/{cn}/{cn}.key / .csr / .ext / .crt / -ca.bundle / .p12 / .jks
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import List

from loguru import logger

from src.pkiflow.config import Config
from src.pkiflow.errors import ProviderOperationFailed
from src.pkiflow.provider import core as provider
from src.pkiflow.store.schemas import CaArtifacts, LeafArtifacts, SignerCandidate

KEY_MODE = 0o600
PUBLIC_MODE = 0o644


class ArtifactStore:
    def __init__(self, config: Config) -> None:
        self.ca_dir = Path(config.ca_dir)
        self.cert_dir = Path(config.cert_dir)

    def ca_paths(self, prefix: str) -> CaArtifacts:
        return CaArtifacts(
            prefix=prefix,
            key=self.ca_dir / f"{prefix}.key",
            cert=self.ca_dir / f"{prefix}.crt",
            serial=self.ca_dir / f"{prefix}.srl",
        )

    def leaf_paths(self, common_name: str) -> LeafArtifacts:
        base = self.cert_dir / common_name
        return LeafArtifacts(
            common_name=common_name,
            dir=base,
            key=base / f"{common_name}.key",
            csr=base / f"{common_name}.csr",
            ext=base / f"{common_name}.ext",
            cert=base / f"{common_name}.crt",
            bundle=base / f"{common_name}-ca.bundle",
            p12=base / f"{common_name}.p12",
            keystore=base / f"{common_name}.jks",
        )

    def ca_exists(self, prefix: str) -> bool:
        paths = self.ca_paths(prefix)
        return paths.key.exists() or paths.cert.exists()

    def leaf_exists(self, common_name: str) -> bool:
        paths = self.leaf_paths(common_name)
        return paths.key.exists() or paths.cert.exists()

    def remove_ca(self, prefix: str) -> None:
        """删除 CA 的完整文件集合（私钥、证书、序列号文件）。"""
        for path in self.ca_paths(prefix).all():
            try:
                path.unlink()
                logger.info(f"已删除旧文件: {path}")
            except FileNotFoundError:
                pass

    def remove_leaf(self, common_name: str) -> None:
        """删除 common name 对应的整个目录。"""
        paths = self.leaf_paths(common_name)
        if paths.dir.exists():
            shutil.rmtree(paths.dir)
            logger.info(f"已删除旧目录: {paths.dir}")

    def ensure_ca_dir(self) -> None:
        self.ca_dir.mkdir(parents=True, exist_ok=True)

    def ensure_leaf_dir(self, common_name: str) -> Path:
        path = self.leaf_paths(common_name).dir
        path.mkdir(parents=True, exist_ok=True)
        return path

    def write(self, path: Path, data: bytes, mode: int = PUBLIC_MODE) -> Path:
        """
        先写同目录下的临时文件，设置权限并落盘后再原子替换，
        避免并发读取者看到写了一半的私钥或证书。
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                os.chmod(tmp_name, mode)
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        return path

    def write_bundle(self, leaf: LeafArtifacts, ca_cert_path: Path) -> Path:
        """证书链 = 叶子证书 + CA 证书，顺序不可交换。"""
        data = leaf.cert.read_bytes() + Path(ca_cert_path).read_bytes()
        return self.write(leaf.bundle, data)

    def list_available_cas(self) -> List[SignerCandidate]:
        """
        列出 CA 目录中所有成对的私钥 / 证书，并逐一校验：
        证书可解析、是 CA 证书、可自校验，私钥文件是 PEM 私钥。
        私钥加密存放，与证书公钥是否匹配要等解锁后才能确认。
        """
        if not self.ca_dir.is_dir():
            return []
        candidates: List[SignerCandidate] = []
        for cert_path in sorted(self.ca_dir.glob("*.crt")):
            prefix = cert_path.stem
            key_path = cert_path.with_suffix(".key")
            candidate = SignerCandidate(prefix=prefix, key=key_path, cert=cert_path)
            candidates.append(candidate)
            if not key_path.exists():
                candidate.reason = "缺少对应的私钥文件"
                continue
            try:
                cert = provider.load_certificate(cert_path)
            except ProviderOperationFailed as e:
                candidate.reason = str(e)
                continue
            candidate.subject = cert.subject.rfc4514_string()
            try:
                key_pem = key_path.read_bytes()
            except OSError as e:
                candidate.reason = f"无法读取私钥文件: {e}"
                continue
            if not provider.is_ca_certificate(cert):
                candidate.reason = "证书不是 CA 证书"
            elif not provider.verify_issued_by(cert, cert):
                candidate.reason = "证书无法自校验"
            elif b"PRIVATE KEY-----" not in key_pem:
                candidate.reason = "私钥文件不是 PEM 私钥"
            else:
                candidate.valid = True
        for candidate in candidates:
            if not candidate.valid:
                logger.warning(f"CA {candidate.prefix} 不可用于签发: {candidate.reason}")
        return candidates
