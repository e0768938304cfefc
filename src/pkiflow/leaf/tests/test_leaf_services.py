"""
叶子证书签发流程的测试：仅测试公开接口行为，不测试内部实现。
"""

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat, pkcs12

from src.pkiflow.errors import (
    ConflictDeclined,
    InvalidName,
    ProviderOperationFailed,
    SignerFileNotFound,
    SignerMismatch,
)
from src.pkiflow.leaf.services import LeafIssuanceWorkflow
from src.pkiflow.provider import core as provider

CN = "svc.example.com"


def _answers(signer=("1",), ca_pass="ca-secret", export_pass="export-pass", conflict=()):
    return [CN, *conflict, *signer, ca_pass, export_pass, export_pass]


def _public_der(key_path):
    key = provider.load_private_key(key_path)
    return key.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)


def test_issue_leaf_signed_by_root(config, store, scripted, make_ca, fake_keytool):
    ca = make_ca("root", "root.example.com")
    prompter = scripted(_answers())
    result = LeafIssuanceWorkflow(config, prompter, store).run()

    paths = store.leaf_paths(CN)
    for path in (paths.key, paths.csr, paths.ext, paths.cert, paths.bundle, paths.p12, paths.keystore):
        assert path.exists(), path
    assert result.signer_cert == ca.cert
    assert result.skipped_exports == []

    leaf = provider.load_certificate(paths.cert)
    root = provider.load_certificate(ca.cert)
    assert provider.verify_issued_by(leaf, root)
    assert leaf.subject == x509.load_pem_x509_csr(paths.csr.read_bytes()).subject
    assert leaf.issuer == root.subject

    # 证书链：叶子在前，CA 在后，逐字节拼接
    assert paths.bundle.read_bytes() == paths.cert.read_bytes() + ca.cert.read_bytes()
    bundle = x509.load_pem_x509_certificates(paths.bundle.read_bytes())
    assert [c.subject for c in bundle] == [leaf.subject, root.subject]

    san = leaf.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert san.get_values_for_type(x509.DNSName) == [CN, f"{CN}.*"]
    usage = leaf.extensions.get_extension_for_class(x509.KeyUsage).value
    assert usage.digital_signature and usage.content_commitment
    assert usage.key_encipherment and usage.data_encipherment
    assert not usage.key_cert_sign
    assert "DNS.2 = svc.example.com.*" in paths.ext.read_text()

    # PKCS12 使用导出口令，与 CA 口令无关
    loaded = pkcs12.load_pkcs12(paths.p12.read_bytes(), b"export-pass")
    assert loaded.cert.certificate == leaf
    with pytest.raises(ValueError):
        pkcs12.load_pkcs12(paths.p12.read_bytes(), b"ca-secret")

    cmd = fake_keytool[0]["cmd"]
    assert cmd[cmd.index("-srcalias") + 1] == CN
    assert fake_keytool[0]["env"][provider.KEYTOOL_PASSWORD_ENV] == "export-pass"
    assert str(paths.keystore) in prompter.text


def test_signer_chosen_by_paths(config, store, scripted, make_ca, fake_keytool):
    ca = make_ca("root")
    prompter = scripted(_answers(signer=(str(ca.key), str(ca.cert))))
    result = LeafIssuanceWorkflow(config, prompter, store).run()
    assert provider.verify_issued_by(
        provider.load_certificate(result.cert), provider.load_certificate(ca.cert)
    )


def test_leaf_does_not_verify_against_unrelated_ca(config, store, scripted, make_ca, fake_keytool):
    ca = make_ca("root", "root.example.com")
    other = make_ca("other", "other.example.com")
    signer = (str(ca.key), str(ca.cert))
    result = LeafIssuanceWorkflow(config, scripted(_answers(signer=signer)), store).run()

    leaf = provider.load_certificate(result.cert)
    assert not provider.verify_issued_by(leaf, provider.load_certificate(other.cert))


def test_missing_signer_key_fails_before_csr(config, store, scripted, make_ca, tmp_path):
    ca = make_ca("root")
    prompter = scripted(_answers(signer=(str(tmp_path / "nope.key"), str(ca.cert))))
    with pytest.raises(SignerFileNotFound):
        LeafIssuanceWorkflow(config, prompter, store).run()
    assert not store.leaf_paths(CN).csr.exists()
    assert prompter.secret_prompts == []


def test_missing_signer_cert_fails(config, store, scripted, make_ca, tmp_path):
    ca = make_ca("root")
    prompter = scripted(_answers(signer=(str(ca.key), str(tmp_path / "nope.crt"))))
    with pytest.raises(SignerFileNotFound):
        LeafIssuanceWorkflow(config, prompter, store).run()


def test_wrong_ca_passphrase_is_fatal(config, store, scripted, make_ca):
    make_ca("root")
    prompter = scripted(_answers(ca_pass="not-the-pass"))
    with pytest.raises(ProviderOperationFailed):
        LeafIssuanceWorkflow(config, prompter, store).run()
    assert not store.leaf_paths(CN).cert.exists()


def test_mismatched_signer_pair(config, store, scripted, make_ca):
    ca = make_ca("root", "root.example.com")
    other = make_ca("other", "other.example.com")
    prompter = scripted(_answers(signer=(str(ca.key), str(other.cert))))
    with pytest.raises(SignerMismatch):
        LeafIssuanceWorkflow(config, prompter, store).run()


def test_decline_overwrite_leaves_leaf_untouched(config, store, scripted, make_ca, fake_keytool):
    make_ca("root")
    LeafIssuanceWorkflow(config, scripted(_answers()), store).run()
    paths = store.leaf_paths(CN)
    before = {p.name: p.read_bytes() for p in paths.dir.iterdir()}

    with pytest.raises(ConflictDeclined):
        LeafIssuanceWorkflow(config, scripted([CN, "no"]), store).run()
    assert {p.name: p.read_bytes() for p in paths.dir.iterdir()} == before


def test_accept_overwrite_removes_directory_and_regenerates(config, store, scripted, make_ca, fake_keytool):
    make_ca("root")
    LeafIssuanceWorkflow(config, scripted(_answers()), store).run()
    paths = store.leaf_paths(CN)
    old_public = _public_der(paths.key)
    stray = paths.dir / "stale.txt"
    stray.write_text("old")

    LeafIssuanceWorkflow(config, scripted(_answers(conflict=("y",))), store).run()
    assert not stray.exists()
    assert _public_der(paths.key) != old_public


def test_keystore_failure_is_warned_by_default(config, store, scripted, make_ca, monkeypatch):
    make_ca("root")

    def _fail(*args, **kwargs):
        raise ProviderOperationFailed("keystore 转换失败: boom")

    monkeypatch.setattr(provider, "convert_to_keystore", _fail)
    prompter = scripted(_answers())
    result = LeafIssuanceWorkflow(config, prompter, store).run()

    assert result.keystore is None
    assert result.p12 is not None and result.p12.exists()
    assert result.skipped_exports == ["keystore"]
    assert not store.leaf_paths(CN).keystore.exists()
    assert "Keystore: 未生成" in prompter.text


def test_keystore_failure_is_fatal_when_strict(config, store, scripted, make_ca, monkeypatch):
    make_ca("root")
    strict = config.model_copy(update={"strict_exports": True})

    def _fail(*args, **kwargs):
        raise ProviderOperationFailed("keystore 转换失败: boom")

    monkeypatch.setattr(provider, "convert_to_keystore", _fail)
    with pytest.raises(ProviderOperationFailed):
        LeafIssuanceWorkflow(strict, scripted(_answers()), store).run()


def test_overlong_common_name_fails_before_any_file(config, store, scripted, make_ca):
    make_ca("root")
    cn = "a" * 70 + ".example.com"
    with pytest.raises(InvalidName):
        LeafIssuanceWorkflow(config, scripted([cn]), store).run()
    assert not (config.cert_dir / cn).exists()


def test_corrupt_serial_file_is_provider_failure(config, store, scripted, make_ca, fake_keytool):
    ca = make_ca("root")
    ca.cert.with_suffix(".srl").write_bytes(b"\xff\xfe\x00")
    with pytest.raises(ProviderOperationFailed, match="序列号"):
        LeafIssuanceWorkflow(config, scripted(_answers()), store).run()
    assert not store.leaf_paths(CN).cert.exists()
