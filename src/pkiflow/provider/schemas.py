"""
签名时应用的扩展描述，对应 OpenSSL extfile 中的各项。
"""

from typing import List, Tuple

from cryptography import x509
from pydantic import BaseModel, ConfigDict, field_validator

# OpenSSL keyUsage 名称 -> cryptography KeyUsage 参数名
KEY_USAGE_NAMES = {
    "digitalSignature": "digital_signature",
    "nonRepudiation": "content_commitment",
    "keyEncipherment": "key_encipherment",
    "dataEncipherment": "data_encipherment",
    "keyAgreement": "key_agreement",
    "keyCertSign": "key_cert_sign",
    "cRLSign": "crl_sign",
    "encipherOnly": "encipher_only",
    "decipherOnly": "decipher_only",
}


class ExtensionDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    authority_key_identifier: Tuple[str, ...] = ("keyid", "issuer")
    basic_constraints_ca: bool = False
    key_usage: Tuple[str, ...] = ()
    dns_names: Tuple[str, ...] = ()

    @field_validator("key_usage")
    @classmethod
    def check_key_usage(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        unknown = [name for name in value if name not in KEY_USAGE_NAMES]
        if unknown:
            raise ValueError(f"未知的 keyUsage: {', '.join(unknown)}")
        return value

    def to_x509_extensions(self, issuer: x509.Certificate) -> List[Tuple[x509.ExtensionType, bool]]:
        """
        转换为 (扩展, critical) 列表。
        authorityKeyIdentifier 的 keyid 取自签发者证书，issuer 仅在没有 keyid 时使用。
        """
        extensions: List[Tuple[x509.ExtensionType, bool]] = []
        tokens = {t.split(":")[0] for t in self.authority_key_identifier}
        if "keyid" in tokens:
            try:
                ski = issuer.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
                aki = x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski.value)
            except x509.ExtensionNotFound:
                aki = x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer.public_key())  # type: ignore[arg-type]
            extensions.append((aki, False))
        elif "issuer" in tokens:
            aki = x509.AuthorityKeyIdentifier(
                key_identifier=None,
                authority_cert_issuer=[x509.DirectoryName(issuer.issuer)],
                authority_cert_serial_number=issuer.serial_number,
            )
            extensions.append((aki, False))

        extensions.append(
            (x509.BasicConstraints(ca=self.basic_constraints_ca, path_length=None), False)
        )

        if self.key_usage:
            flags = {param: False for param in KEY_USAGE_NAMES.values()}
            for name in self.key_usage:
                flags[KEY_USAGE_NAMES[name]] = True
            extensions.append((x509.KeyUsage(**flags), False))

        if self.dns_names:
            san = x509.SubjectAlternativeName([x509.DNSName(n) for n in self.dns_names])
            extensions.append((san, False))
        return extensions
