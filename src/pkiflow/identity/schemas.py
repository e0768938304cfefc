"""
身份请求相关的数据模型定义。
"""

from enum import Enum

from cryptography import x509
from cryptography.x509.oid import NameOID
from pydantic import BaseModel, ConfigDict


class Decision(str, Enum):
    PROCEED = "proceed"
    ABORT = "abort"


class IdentitySubject(BaseModel):
    """
    证书主体。组织字段来自配置，common_name 每次请求不同。
    """
    model_config = ConfigDict(frozen=True)

    country: str
    state: str
    city: str
    organization: str
    organizational_unit: str
    common_name: str
    email: str

    def to_x509_name(self) -> x509.Name:
        """按 C, ST, L, O, OU, CN, emailAddress 的顺序构造 X.509 名称。"""
        return x509.Name(
            [
                x509.NameAttribute(NameOID.COUNTRY_NAME, self.country),
                x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, self.state),
                x509.NameAttribute(NameOID.LOCALITY_NAME, self.city),
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, self.organization),
                x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit),
                x509.NameAttribute(NameOID.COMMON_NAME, self.common_name),
                x509.NameAttribute(NameOID.EMAIL_ADDRESS, self.email),
            ]
        )
