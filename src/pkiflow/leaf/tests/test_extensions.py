"""
测试扩展描述文件的生成与解析。
"""

import pytest

from src.pkiflow.leaf import core

EXPECTED_EXT = """\
authorityKeyIdentifier=keyid,issuer
basicConstraints=CA:FALSE
keyUsage = digitalSignature, nonRepudiation, keyEncipherment, dataEncipherment
subjectAltName = @alt_names

[alt_names]
DNS.1 = svc.example.com
DNS.2 = svc.example.com.*
"""


def test_render_leaf_extension_file():
    text = core.render_extension_file(core.build_extensions("svc.example.com"))
    assert text == EXPECTED_EXT


def test_parse_reads_back_rendered_file():
    desc = core.parse_extension_file(EXPECTED_EXT)
    assert desc == core.build_extensions("svc.example.com")


def test_parse_accepts_comments_critical_and_inline_san():
    text = """
    # 手工编辑
    basicConstraints = critical, CA:FALSE
    keyUsage = critical, digitalSignature
    subjectAltName = DNS:a.example.com, DNS:b.example.com
    """
    desc = core.parse_extension_file(text)
    assert desc.basic_constraints_ca is False
    assert desc.key_usage == ("digitalSignature",)
    assert desc.dns_names == ("a.example.com", "b.example.com")


@pytest.mark.parametrize(
    "text",
    [
        "extendedKeyUsage = serverAuth\n",
        "subjectAltName = @missing\n",
        "subjectAltName = IP:10.0.0.1\n",
        "keyUsage = flying\n",
        "just a line without equals\n",
    ],
)
def test_parse_rejects_unsupported(text):
    with pytest.raises(ValueError):
        core.parse_extension_file(text)
