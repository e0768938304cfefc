"""
密码学操作的实现，基于 cryptography 库；JKS 转换调用 JDK 的 keytool。
包括生成密钥、自签 CA 证书、构造 CSR、用 CA 签发证书、导出 PKCS12 / keystore 等。

输入以文件路径给出，输出以字节返回，由产物存储负责落盘。
任何底层失败都转换为 ProviderOperationFailed。
"""

import os
import subprocess
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)
from cryptography.x509.oid import NameOID
from loguru import logger
from pydantic import SecretStr

from src.pkiflow.errors import ProviderOperationFailed
from src.pkiflow.identity.schemas import IdentitySubject
from src.pkiflow.provider.schemas import ExtensionDescriptor

KEYTOOL_PASSWORD_ENV = "PKIFLOW_STOREPASS"


def _read_bytes(path: Path, what: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise ProviderOperationFailed(f"读取{what}失败 ({path}): {e}") from e


def _secret_bytes(passphrase: SecretStr | None) -> bytes | None:
    if passphrase is None:
        return None
    return passphrase.get_secret_value().encode("utf-8")


def generate_key(passphrase: SecretStr | None = None, bits: int = 2048) -> bytes:
    """
    生成 RSA 私钥。
    :param passphrase: 若提供，则以该口令加密私钥。
    :param bits: 密钥长度。
    :return: PKCS8 PEM 格式的私钥。
    """
    try:
        key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
        secret = _secret_bytes(passphrase)
        encryption = BestAvailableEncryption(secret) if secret else NoEncryption()
        return key.private_bytes(
            encoding=Encoding.PEM,
            format=PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        )
    except (ValueError, TypeError) as e:
        raise ProviderOperationFailed(f"生成私钥失败: {e}") from e


def load_private_key(key_path: Path, passphrase: SecretStr | None = None) -> rsa.RSAPrivateKey:
    """
    加载 PEM 私钥。
    :raises ProviderOperationFailed: 文件不可读、口令错误或不是 RSA 私钥。
    """
    data = _read_bytes(key_path, "私钥")
    try:
        key = serialization.load_pem_private_key(data, password=_secret_bytes(passphrase))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ProviderOperationFailed(f"无法加载私钥 {key_path}（口令错误或格式无效）") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ProviderOperationFailed(f"{key_path} 不是 RSA 私钥")
    return key


def load_ca_key(key_path: Path, passphrase: SecretStr) -> rsa.RSAPrivateKey:
    """用 CA 口令解锁 CA 私钥，仅供本次签名使用。"""
    return load_private_key(key_path, passphrase)


def load_certificate(cert_path: Path) -> x509.Certificate:
    data = _read_bytes(cert_path, "证书")
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError as e:
        raise ProviderOperationFailed(f"无效的证书文件: {cert_path}") from e


def self_sign(
    key_path: Path, passphrase: SecretStr, subject: IdentitySubject, days: int
) -> bytes:
    """
    使用指定私钥生成自签 CA 证书（SHA-256）。
    :return: PEM 格式证书。
    """
    key = load_private_key(key_path, passphrase)
    now = datetime.now(timezone.utc)
    try:
        name = subject.to_x509_name()
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=1))
            .not_valid_after(now + timedelta(days=days))
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(key.public_key()), critical=False
            )
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    key_encipherment=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    content_commitment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .sign(private_key=key, algorithm=hashes.SHA256())
        )
    except (ValueError, TypeError) as e:
        raise ProviderOperationFailed(f"自签证书失败: {e}") from e
    return cert.public_bytes(Encoding.PEM)


def build_csr(key_path: Path, subject: IdentitySubject) -> bytes:
    """为给定主体构造 PKCS#10 请求，使用未加密的叶子私钥签名。"""
    key = load_private_key(key_path)
    try:
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(subject.to_x509_name())
            .sign(key, hashes.SHA256())
        )
    except (ValueError, TypeError) as e:
        raise ProviderOperationFailed(f"生成 CSR 失败: {e}") from e
    return csr.public_bytes(Encoding.PEM)


def _next_serial(serial_path: Path) -> int:
    """
    读取 CA 的序列号文件（十六进制，与 openssl 的 .srl 一致）。
    文件不存在时从随机序列号开始。
    """
    if not serial_path.exists():
        return x509.random_serial_number()
    try:
        return int(serial_path.read_text(encoding="utf-8").strip(), 16)
    except OSError as e:
        raise ProviderOperationFailed(f"读取序列号文件失败 ({serial_path}): {e}") from e
    except ValueError as e:
        # 包括非 UTF-8 内容
        raise ProviderOperationFailed(f"序列号文件内容无效: {serial_path}") from e


def _store_serial(serial_path: Path, serial: int) -> None:
    tmp = serial_path.with_name(serial_path.name + ".tmp")
    try:
        tmp.write_text(f"{serial:X}\n", encoding="utf-8")
        os.replace(tmp, serial_path)
    except OSError as e:
        raise ProviderOperationFailed(f"写入序列号文件失败 ({serial_path}): {e}") from e


def sign_csr(
    csr_path: Path,
    ca_cert_path: Path,
    ca_key: rsa.RSAPrivateKey,
    extensions: ExtensionDescriptor,
    days: int,
    serial_path: Path,
) -> bytes:
    """
    用 CA 签发 CSR（SHA-256），主体原样取自 CSR，并推进 CA 的序列号。
    :param ca_key: 已用 CA 口令解锁的 CA 私钥。
    :param extensions: 要写入证书的扩展描述。
    :return: PEM 格式证书。
    """
    try:
        csr = x509.load_pem_x509_csr(_read_bytes(csr_path, "CSR"))
    except ValueError as e:
        raise ProviderOperationFailed("无效的 CSR 格式") from e
    if not csr.is_signature_valid:
        raise ProviderOperationFailed("CSR 签名校验失败")

    ca_cert = load_certificate(ca_cert_path)
    serial = _next_serial(serial_path)
    now = datetime.now(timezone.utc)
    try:
        builder = (
            x509.CertificateBuilder()
            .subject_name(csr.subject)
            .issuer_name(ca_cert.subject)
            .public_key(csr.public_key())
            .serial_number(serial)
            .not_valid_before(now - timedelta(minutes=1))
            .not_valid_after(now + timedelta(days=days))
        )
        for ext, critical in extensions.to_x509_extensions(ca_cert):
            builder = builder.add_extension(ext, critical=critical)
        cert = builder.sign(private_key=ca_key, algorithm=hashes.SHA256())
    except (ValueError, TypeError) as e:
        raise ProviderOperationFailed(f"证书签发失败 (signing CSR): {e}") from e

    _store_serial(serial_path, serial + 1)
    logger.debug(f"已使用序列号 0x{serial:X} 签发证书")
    return cert.public_bytes(Encoding.PEM)


def load_bundle(bundle_path: Path) -> List[x509.Certificate]:
    try:
        return x509.load_pem_x509_certificates(_read_bytes(bundle_path, "证书链"))
    except ValueError as e:
        raise ProviderOperationFailed(f"无效的证书链文件: {bundle_path}") from e


def _pkcs12_encryption(secret: bytes, legacy: bool):
    if not legacy:
        return BestAvailableEncryption(secret)
    return (
        PrivateFormat.PKCS12.encryption_builder()
        .kdf_rounds(50000)
        .key_cert_algorithm(pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC)
        .hmac_hash(hashes.SHA1())
        .build(secret)
    )


def export_pkcs12(
    key_path: Path,
    bundle_path: Path,
    passphrase: SecretStr,
    friendly_name: str,
    legacy: bool = False,
) -> bytes:
    """
    将叶子私钥与证书链打包为 PKCS12。证书链第一张为叶子证书，其余作为 CA 证书。
    :param legacy: 使用 SHA1 / 3DES 加密，兼容 8u301 之前的 JDK keytool。
    """
    key = load_private_key(key_path)
    certs = load_bundle(bundle_path)
    if not certs:
        raise ProviderOperationFailed("证书链为空")
    leaf, cas = certs[0], certs[1:]
    if not key_matches_certificate(key, leaf):
        raise ProviderOperationFailed("私钥与证书链中的叶子证书不匹配")
    try:
        return pkcs12.serialize_key_and_certificates(
            name=friendly_name.encode("utf-8"),
            key=key,
            cert=leaf,
            cas=cas,
            encryption_algorithm=_pkcs12_encryption(_secret_bytes(passphrase) or b"", legacy),
        )
    except (ValueError, TypeError) as e:
        raise ProviderOperationFailed(f"导出 PKCS12 失败: {e}") from e


def convert_to_keystore(
    p12_path: Path,
    passphrase: SecretStr,
    alias: str,
    keytool_path: str = "keytool",
    store_type: str = "JKS",
) -> bytes:
    """
    调用 keytool 把 PKCS12 转换为 keystore，存储口令与私钥口令相同。
    口令通过环境变量传给 keytool，不出现在命令行上。
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        dest_path = os.path.join(tmpdir, "keystore")
        cmd = [
            keytool_path,
            "-importkeystore",
            "-noprompt",
            "-srckeystore", str(p12_path),
            "-srcstoretype", "PKCS12",
            "-srcstorepass:env", KEYTOOL_PASSWORD_ENV,
            "-srcalias", alias,
            "-destkeystore", dest_path,
            "-deststoretype", store_type,
            "-deststorepass:env", KEYTOOL_PASSWORD_ENV,
            "-destkeypass:env", KEYTOOL_PASSWORD_ENV,
            "-destalias", alias,
        ]
        logger.debug(f"Executing command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=60,
                env={**os.environ, KEYTOOL_PASSWORD_ENV: passphrase.get_secret_value()},
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProviderOperationFailed(f"无法执行 keytool: {e}") from e
        if result.returncode != 0:
            raise ProviderOperationFailed(
                f"keystore 转换失败: {result.stderr.strip() or result.stdout.strip()}"
            )
        if not os.path.exists(dest_path):
            raise ProviderOperationFailed("keytool 未生成 keystore 文件")
        with open(dest_path, "rb") as f:
            return f.read()


def key_matches_certificate(key: rsa.RSAPrivateKey, cert: x509.Certificate) -> bool:
    """比较私钥对应的公钥与证书中的公钥。"""
    public_format = serialization.PublicFormat.SubjectPublicKeyInfo
    return key.public_key().public_bytes(Encoding.DER, public_format) == cert.public_key().public_bytes(
        Encoding.DER, public_format
    )


def verify_issued_by(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
    """
    验证 cert 由 issuer 直接签发（签发者名称一致且签名有效）。
    自签证书以自身作为 issuer 时即为信任锚自校验。
    """
    try:
        cert.verify_directly_issued_by(issuer)
        return True
    except (ValueError, TypeError, InvalidSignature):
        return False


def is_ca_certificate(cert: x509.Certificate) -> bool:
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints)
    except x509.ExtensionNotFound:
        return False
    return bc.value.ca


def _format_name(name: x509.Name) -> str:
    return name.rfc4514_string({NameOID.EMAIL_ADDRESS: "emailAddress"})


def _format_extension(ext: x509.Extension) -> str:
    value = ext.value
    if isinstance(value, x509.SubjectAlternativeName):
        body = ", ".join(f"DNS:{n}" for n in value.get_values_for_type(x509.DNSName))
    elif isinstance(value, x509.SubjectKeyIdentifier):
        body = value.digest.hex(":")
    elif isinstance(value, x509.AuthorityKeyIdentifier):
        body = f"keyid:{(value.key_identifier or b'').hex(':')}"
    else:
        body = repr(value)
    critical = " (critical)" if ext.critical else ""
    return f"{type(value).__name__}{critical}: {body}"


def describe_certificate(cert: x509.Certificate) -> str:
    """生成证书的可读文本，类似 openssl x509 -text 的摘要。"""
    public_key = cert.public_key()
    key_size = getattr(public_key, "key_size", None)
    hash_name = cert.signature_hash_algorithm.name if cert.signature_hash_algorithm else "unknown"
    lines = [
        "Certificate:",
        f"    Version: {cert.version.value + 1}",
        f"    Serial Number: 0x{cert.serial_number:X}",
        f"    Signature Hash: {hash_name}",
        f"    Issuer: {_format_name(cert.issuer)}",
        "    Validity",
        f"        Not Before: {cert.not_valid_before_utc.isoformat()}",
        f"        Not After : {cert.not_valid_after_utc.isoformat()}",
        f"    Subject: {_format_name(cert.subject)}",
        f"    Public Key: {type(public_key).__name__} ({key_size} bit)",
        "    X509v3 extensions:",
    ]
    lines.extend(f"        {_format_extension(ext)}" for ext in cert.extensions)
    lines.append(f"    SHA256 Fingerprint: {cert.fingerprint(hashes.SHA256()).hex(':').upper()}")
    return "\n".join(lines)
