"""
叶子证书签发流程的业务逻辑层。

SetCommonName -> (冲突? ResolveConflict[删除整个目录] -> 中止|继续) -> CreateDirectory
-> GenerateKey -> SelectSigner -> ValidateSignerFiles -> GenerateCSR -> GenerateExtensions
-> AuthorizeWithCAPassphrase -> SetExportPassphrase -> Sign -> Bundle
-> ExportPKCS12 -> ExportKeystore -> Done
"""

from pathlib import Path
from typing import List, Tuple

from loguru import logger
from pydantic import SecretStr

from src.pkiflow.config import Config
from src.pkiflow.errors import (
    ConflictDeclined,
    ProviderOperationFailed,
    SignerFileNotFound,
    SignerMismatch,
)
from src.pkiflow.identity.core import IdentityRequestBuilder
from src.pkiflow.identity.prompter import Prompter
from src.pkiflow.identity.schemas import Decision
from src.pkiflow.provider import core as provider
from src.pkiflow.store.core import KEY_MODE, ArtifactStore
from src.pkiflow.store.schemas import LeafArtifacts
from src.pkiflow.store.services import resolve_conflict

from . import core
from .schemas import LeafIssueResult


class LeafIssuanceWorkflow:
    def __init__(
        self,
        config: Config,
        prompter: Prompter,
        store: ArtifactStore,
        identity: IdentityRequestBuilder | None = None,
    ) -> None:
        self.config = config
        self.prompter = prompter
        self.store = store
        self.identity = identity or IdentityRequestBuilder(config, prompter)

    def run(self) -> LeafIssueResult:
        """
        签发由已有 CA 签名的叶子证书，并生成证书链、PKCS12 与 keystore。
        :raises ConflictDeclined: 操作者拒绝覆盖，已有文件保持不变。
        :raises SignerFileNotFound: CA 私钥或证书文件不存在（在生成 CSR 之前）。
        :raises SignerMismatch: CA 私钥与证书不匹配，或证书不是 CA 证书。
        :raises ProviderOperationFailed: 密码学操作失败。
        """
        common_name = self.identity.collect_common_name()
        if self.store.leaf_exists(common_name):
            if resolve_conflict(self.prompter, "证书", common_name) is Decision.ABORT:
                raise ConflictDeclined(f"保留已存在的证书: {common_name}")
            self.store.remove_leaf(common_name)

        self.store.ensure_leaf_dir(common_name)
        paths = self.store.leaf_paths(common_name)

        self.store.write(paths.key, provider.generate_key(bits=self.config.key_bits), mode=KEY_MODE)
        logger.info(f"私钥已生成: {paths.key}")

        ca_key_path, ca_cert_path = self.select_signer()
        ca_cert = self._validate_signer_files(ca_key_path, ca_cert_path)

        subject = self.identity.build_subject(common_name)
        self.store.write(paths.csr, provider.build_csr(paths.key, subject))
        logger.info(f"CSR 已生成: {paths.csr}")

        descriptor = core.build_extensions(common_name)
        self.store.write(paths.ext, core.render_extension_file(descriptor).encode("utf-8"))

        ca_passphrase = SecretStr(self.prompter.ask_secret("CA 私钥口令: "))
        ca_key = provider.load_ca_key(ca_key_path, ca_passphrase)
        if not provider.key_matches_certificate(ca_key, ca_cert):
            raise SignerMismatch(f"CA 私钥 {ca_key_path} 与证书 {ca_cert_path} 不匹配")

        export_passphrase = self.identity.collect_passphrase("导出口令")

        self._sign(paths, ca_cert_path, ca_key)
        self.store.write_bundle(paths, ca_cert_path)
        logger.info(f"证书链已生成: {paths.bundle}")

        result = LeafIssueResult(
            common_name=common_name,
            key=paths.key,
            cert=paths.cert,
            bundle=paths.bundle,
            signer_cert=ca_cert_path,
        )
        self._export(paths, export_passphrase, result)
        self._report(result)
        return result

    def select_signer(self) -> Tuple[Path, Path]:
        """
        列出校验通过的 CA 供参考；操作者可输入编号直接选用，
        也可依次输入私钥路径与证书路径。
        """
        candidates = [c for c in self.store.list_available_cas() if c.valid]
        if candidates:
            self.prompter.say("可用的 CA:")
            for i, c in enumerate(candidates, start=1):
                self.prompter.say(f"  [{i}] {c.prefix}: {c.key} / {c.cert} ({c.subject})")
        else:
            self.prompter.say("CA 目录中没有可用的 CA")

        answer = self.prompter.ask_line("CA 私钥路径（或编号）: ").strip()
        if answer.isdigit() and 1 <= int(answer) <= len(candidates):
            chosen = candidates[int(answer) - 1]
            return chosen.key, chosen.cert
        cert_answer = self.prompter.ask_line("CA 证书路径: ").strip()
        return Path(answer), Path(cert_answer)

    def _validate_signer_files(self, key_path: Path, cert_path: Path):
        for what, path in (("CA 私钥", key_path), ("CA 证书", cert_path)):
            if not path.is_file():
                raise SignerFileNotFound(f"{what}文件不存在: {path}")
        ca_cert = provider.load_certificate(cert_path)
        if not provider.is_ca_certificate(ca_cert):
            raise SignerMismatch(f"{cert_path} 不是 CA 证书")
        return ca_cert

    def _sign(self, paths: LeafArtifacts, ca_cert_path: Path, ca_key) -> None:
        try:
            descriptor = core.parse_extension_file(paths.ext.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ProviderOperationFailed(f"扩展文件无效 ({paths.ext}): {e}") from e

        cert_pem = provider.sign_csr(
            paths.csr,
            ca_cert_path,
            ca_key,
            descriptor,
            self.config.leaf_days,
            ca_cert_path.with_suffix(".srl"),
        )
        self.store.write(paths.cert, cert_pem)

        cert = provider.load_certificate(paths.cert)
        if not provider.verify_issued_by(cert, provider.load_certificate(ca_cert_path)):
            raise ProviderOperationFailed(f"签发的证书无法通过 CA 校验: {paths.cert}")
        logger.info(f"证书已签发: {paths.cert}（有效期 {self.config.leaf_days} 天）")

    def _export(self, paths: LeafArtifacts, passphrase: SecretStr, result: LeafIssueResult) -> None:
        """
        导出 PKCS12 与 keystore。失败时按 strict_exports 决定中止还是告警后继续；
        PKCS12 失败时 keystore 无从转换，一并跳过。
        """
        skipped: List[str] = []
        try:
            p12 = provider.export_pkcs12(
                paths.key,
                paths.bundle,
                passphrase,
                paths.common_name,
                legacy=self.config.pkcs12_legacy,
            )
            result.p12 = self.store.write(paths.p12, p12, mode=KEY_MODE)
            logger.info(f"PKCS12 已导出: {paths.p12}")
        except ProviderOperationFailed as e:
            if self.config.strict_exports:
                raise
            logger.warning(f"PKCS12 导出失败，已跳过: {e}")
            skipped.extend(["pkcs12", "keystore"])

        if result.p12 is not None:
            try:
                keystore = provider.convert_to_keystore(
                    paths.p12,
                    passphrase,
                    alias=paths.common_name,
                    keytool_path=self.config.keytool_path,
                    store_type=self.config.keystore_type,
                )
                result.keystore = self.store.write(paths.keystore, keystore, mode=KEY_MODE)
                logger.info(f"keystore 已导出: {paths.keystore}")
            except ProviderOperationFailed as e:
                if self.config.strict_exports:
                    raise
                logger.warning(f"keystore 导出失败，已跳过: {e}")
                skipped.append("keystore")
        result.skipped_exports = skipped

    def _report(self, result: LeafIssueResult) -> None:
        self.prompter.say(f"私钥: {result.key}")
        self.prompter.say(f"证书: {result.cert}")
        self.prompter.say(f"证书链: {result.bundle}")
        self.prompter.say(f"PKCS12: {result.p12 or '未生成'}")
        self.prompter.say(f"Keystore: {result.keystore or '未生成'}")
