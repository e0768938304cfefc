"""
身份请求构建：收集并校验 common name / CA 前缀 / 口令，组合证书主体。
组织字段由配置一次性提供，不逐次询问。
"""

import re

from loguru import logger
from pydantic import SecretStr

from src.pkiflow.config import Config
from src.pkiflow.errors import EmptyInput, InvalidName, RetriesExhausted
from src.pkiflow.identity.prompter import Prompter
from src.pkiflow.identity.schemas import IdentitySubject

VALID_NAME = re.compile(r"\A[a-zA-Z0-9._-]+\Z")
# X.509 ub-common-name
MAX_COMMON_NAME_LENGTH = 64


def validate_name(value: str, label: str) -> str:
    """
    校验将用作文件名 / 目录名的名称。
    :raises EmptyInput: 输入为空或只有空白。
    :raises InvalidName: 含有不允许的字符，或为 "." / ".."。
    """
    name = value.strip()
    if not name:
        raise EmptyInput(f"{label}不能为空")
    if not VALID_NAME.match(name) or name in (".", ".."):
        raise InvalidName(f"{label}包含非法字符: {name!r}")
    return name


class IdentityRequestBuilder:
    def __init__(self, config: Config, prompter: Prompter) -> None:
        self.config = config
        self.prompter = prompter

    def collect_prefix(self) -> str:
        """询问 CA 文件名前缀，空输入直接失败，不重试。"""
        return validate_name(self.prompter.ask_line("CA 文件名前缀: "), "CA 前缀")

    def collect_common_name(self) -> str:
        """
        询问 common name。它同时用作文件名，因此只允许字母、数字、"." "_" "-"，
        不支持 "*.example.com" 这样的通配符名称。
        :raises InvalidName: 含非法字符，或超过 X.509 允许的 64 个字符。
        """
        name = validate_name(
            self.prompter.ask_line("Common Name (CN，仅限字母数字与 . _ -): "), "Common Name"
        )
        if len(name) > MAX_COMMON_NAME_LENGTH:
            raise InvalidName(f"Common Name 长度不能超过 {MAX_COMMON_NAME_LENGTH} 个字符: {len(name)}")
        return name

    def collect_passphrase(self, label: str = "口令") -> SecretStr:
        """
        两次不回显输入并比较。不一致或过短都会消耗一次重试机会，
        机会用尽时抛出 RetriesExhausted。
        :param label: 提示中显示的口令用途。
        :return: 确认后的口令。
        """
        retries = self.config.passphrase_retries
        min_length = self.config.passphrase_min_length
        while True:
            first = self.prompter.ask_secret(f"请输入{label}: ")
            second = self.prompter.ask_secret(f"请再次输入{label}: ")
            if first != second:
                problem = "两次输入不一致"
            elif len(first) < min_length:
                problem = f"长度不能少于 {min_length} 个字符"
            else:
                return SecretStr(first)

            retries -= 1
            logger.warning(f"{label}{problem}，剩余重试次数: {retries}")
            if retries <= 0:
                raise RetriesExhausted(f"{label}确认失败次数过多")
            self.prompter.say(f"{label}{problem}，请重新输入")

    def build_subject(self, common_name: str) -> IdentitySubject:
        cfg = self.config
        return IdentitySubject(
            country=cfg.country,
            state=cfg.state,
            city=cfg.city,
            organization=cfg.organization,
            organizational_unit=cfg.organizational_unit,
            common_name=common_name,
            email=cfg.email,
        )
