"""
根 CA 签发流程的业务逻辑层。

SelectPrefix -> (冲突? ResolveConflict -> 中止|继续) -> SetPassphrase -> SetCommonName
-> 删除旧文件集合 -> GenerateKey -> GenerateSelfSignedCert -> Done

所有输入都在删除旧 CA 之前收集并校验完毕，输入错误不会破坏已有 CA。
"""

from loguru import logger

from src.pkiflow.config import Config
from src.pkiflow.errors import ConflictDeclined, ProviderOperationFailed
from src.pkiflow.identity.core import IdentityRequestBuilder
from src.pkiflow.identity.prompter import Prompter
from src.pkiflow.identity.schemas import Decision
from src.pkiflow.provider import core as provider
from src.pkiflow.store.core import KEY_MODE, ArtifactStore
from src.pkiflow.store.services import resolve_conflict

from .schemas import CaIssueResult


class CaIssuanceWorkflow:
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

    def run(self) -> CaIssueResult:
        """
        创建自签根 CA。
        :return: 生成的 CA 文件路径与证书文本。
        :raises ConflictDeclined: 操作者拒绝覆盖已有 CA，已有文件保持不变。
        :raises EmptyInput / InvalidName / RetriesExhausted / ProviderOperationFailed: 致命错误。
        """
        prefix = self.identity.collect_prefix()
        paths = self.store.ca_paths(prefix)

        overwrite = False
        if self.store.ca_exists(prefix):
            if resolve_conflict(self.prompter, "CA", prefix) is Decision.ABORT:
                raise ConflictDeclined(f"保留已存在的 CA: {prefix}")
            overwrite = True

        passphrase = self.identity.collect_passphrase("CA 私钥口令")
        common_name = self.identity.collect_common_name()
        subject = self.identity.build_subject(common_name)

        # 口令与 CN 确认之后才删除旧 CA
        if overwrite:
            self.store.remove_ca(prefix)

        self.store.ensure_ca_dir()
        key_pem = provider.generate_key(passphrase, bits=self.config.key_bits)
        self.store.write(paths.key, key_pem, mode=KEY_MODE)
        logger.info(f"CA 私钥已生成: {paths.key}")

        try:
            cert_pem = provider.self_sign(paths.key, passphrase, subject, self.config.ca_days)
            self.store.write(paths.cert, cert_pem)
        except ProviderOperationFailed:
            # 不留下没有证书的孤立私钥
            self.store.remove_ca(prefix)
            raise

        cert = provider.load_certificate(paths.cert)
        key = provider.load_private_key(paths.key, passphrase)
        if not provider.verify_issued_by(cert, cert) or not provider.key_matches_certificate(key, cert):
            raise ProviderOperationFailed(f"CA 证书自校验失败: {paths.cert}")
        logger.info(f"CA 证书已生成: {paths.cert}（有效期 {self.config.ca_days} 天）")

        description = provider.describe_certificate(cert)
        self.prompter.say(description)
        self.prompter.say()
        self.prompter.say(f"CA 私钥: {paths.key}")
        self.prompter.say(f"CA 证书: {paths.cert}")

        return CaIssueResult(
            prefix=prefix,
            common_name=common_name,
            key=paths.key,
            cert=paths.cert,
            description=description,
        )
