"""
叶子证书扩展描述的构造、渲染与解析。

扩展文件使用 OpenSSL extfile 语法写入 {cn}.ext，签名时读回并应用，
文件内容即最终写入证书的扩展。
"""

from typing import Dict, List

from src.pkiflow.provider.schemas import ExtensionDescriptor

LEAF_KEY_USAGE = ("digitalSignature", "nonRepudiation", "keyEncipherment", "dataEncipherment")
ALT_NAMES_SECTION = "alt_names"


def build_extensions(common_name: str) -> ExtensionDescriptor:
    """SAN 包含 common name 本身以及 "{cn}.*" 两个 DNS 条目。"""
    return ExtensionDescriptor(
        authority_key_identifier=("keyid", "issuer"),
        basic_constraints_ca=False,
        key_usage=LEAF_KEY_USAGE,
        dns_names=(common_name, f"{common_name}.*"),
    )


def render_extension_file(desc: ExtensionDescriptor) -> str:
    lines = [
        f"authorityKeyIdentifier={','.join(desc.authority_key_identifier)}",
        f"basicConstraints=CA:{'TRUE' if desc.basic_constraints_ca else 'FALSE'}",
    ]
    if desc.key_usage:
        lines.append(f"keyUsage = {', '.join(desc.key_usage)}")
    if desc.dns_names:
        lines.append(f"subjectAltName = @{ALT_NAMES_SECTION}")
        lines.append("")
        lines.append(f"[{ALT_NAMES_SECTION}]")
        lines.extend(f"DNS.{i} = {name}" for i, name in enumerate(desc.dns_names, start=1))
    return "\n".join(lines) + "\n"


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_extension_file(text: str) -> ExtensionDescriptor:
    """
    解析 render_extension_file 产生的（或手工编辑的同语法）扩展文件。
    :raises ValueError: 出现无法识别的条目。
    """
    sections: Dict[str, List[tuple]] = {"": []}
    current = ""
    for raw in text.splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        if line.startswith("[") and line.endswith("]"):
            current = line[1:-1].strip()
            sections.setdefault(current, [])
            continue
        key, sep, value = line.partition("=")
        if not sep:
            raise ValueError(f"扩展文件中缺少 '=': {raw!r}")
        sections[current].append((key.strip(), value.strip()))

    fields: dict = {}
    for key, value in sections[""]:
        if key == "authorityKeyIdentifier":
            fields["authority_key_identifier"] = tuple(_split_list(value))
        elif key == "basicConstraints":
            flags = [item.upper() for item in _split_list(value) if item.lower() != "critical"]
            if flags not in (["CA:TRUE"], ["CA:FALSE"]):
                raise ValueError(f"不支持的 basicConstraints: {value}")
            fields["basic_constraints_ca"] = flags == ["CA:TRUE"]
        elif key == "keyUsage":
            fields["key_usage"] = tuple(
                item for item in _split_list(value) if item.lower() != "critical"
            )
        elif key == "subjectAltName":
            fields["dns_names"] = tuple(_parse_alt_names(value, sections))
        else:
            raise ValueError(f"不支持的扩展: {key}")
    return ExtensionDescriptor(**fields)


def _parse_alt_names(value: str, sections: Dict[str, List[tuple]]) -> List[str]:
    if value.startswith("@"):
        section = value[1:].strip()
        if section not in sections:
            raise ValueError(f"扩展文件缺少段落 [{section}]")
        entries = sections[section]
    else:
        entries = [tuple(item.split(":", 1)) for item in _split_list(value)]

    names: List[str] = []
    for entry in entries:
        if len(entry) != 2:
            raise ValueError(f"无效的 subjectAltName 条目: {entry}")
        kind, name = entry
        if kind.split(".", 1)[0].strip() != "DNS":
            raise ValueError(f"仅支持 DNS 类型的 subjectAltName: {kind}")
        names.append(name.strip())
    return names
