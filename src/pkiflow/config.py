"""
配置加载模块：支持 .env、环境变量、工作目录 config.json（或 CONFIG_FILE 指定）多来源合并。
公开接口：
- Config: 读取配置的设置类（不可变，启动时加载一次并注入到各流程）
- load_config: 加载配置，缺失或非法时抛出 ConfigMissing
内部方法：
- Config.settings_customise_sources: 自定义配置来源顺序
- Config.check_country: 校验国家代码
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Tuple

from loguru import logger
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource

from src.pkiflow.errors import ConfigMissing


class Config(BaseSettings):
    # 存储目录
    ca_dir: Path = Path("ca")
    cert_dir: Path = Path("certs")

    # 有效期（天），必须由配置提供
    ca_days: int = Field(gt=0)
    leaf_days: int = Field(gt=0)

    # 组织身份字段，每次签发共用，不逐次询问
    country: str
    state: str
    city: str
    organization: str
    organizational_unit: str
    email: str

    key_bits: int = Field(default=2048, ge=2048)
    passphrase_retries: int = Field(default=3, ge=1)
    # keytool 要求存储口令至少 6 位
    passphrase_min_length: int = Field(default=6, ge=1)

    keytool_path: str = "keytool"
    keystore_type: str = "JKS"
    # 为 True 时 PKCS12 / keystore 导出失败视为致命错误，否则仅告警
    strict_exports: bool = False
    # 为 True 时 PKCS12 使用 SHA1 / 3DES 加密，供不支持 AES 的旧版 keytool 读取
    pkcs12_legacy: bool = False

    model_config = SettingsConfigDict(
        env_prefix="PKIFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    @field_validator("country")
    @classmethod
    def check_country(cls, value: str) -> str:
        """国家代码必须是两位字母（X.509 countryName 的长度限制）。"""
        value = value.strip().upper()
        if len(value) != 2 or not value.isalpha():
            raise ValueError("country 必须是两位字母国家代码")
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """自定义配置来源顺序：入参 > 环境变量 > .env > config.json > secrets。"""

        class JsonFileSettingsSource(PydanticBaseSettingsSource):
            """从工作目录的 config.json（或 CONFIG_FILE 指定路径）加载配置的自定义 Source。"""

            def __init__(self, settings_cls):
                super().__init__(settings_cls)
                self._data: Dict[str, Any] | None = None

            def _load(self) -> None:
                if self._data is not None:
                    return
                cfg_path = os.environ.get("CONFIG_FILE")
                path = Path(cfg_path) if cfg_path else Path.cwd() / "config.json"
                if not path.exists():
                    self._data = {}
                    return
                try:
                    with path.open("r", encoding="utf-8") as f:
                        data = json.load(f)
                except (OSError, ValueError) as e:
                    logger.warning(f"读取配置文件 {path} 失败: {e}")
                    self._data = {}
                    return
                self._data = data if isinstance(data, dict) else {}

            def __call__(self) -> Dict[str, Any]:
                self._load()
                return dict(self._data or {})

            def get_field_value(self, field, field_name):  # type: ignore[override]
                """为满足抽象基类要求，按键名/别名返回字段值。"""
                self._load()
                data = self._data or {}
                key_alias = field.alias or field_name
                if key_alias in data:
                    return data[key_alias], key_alias, True
                if field_name in data:
                    return data[field_name], field_name, True
                return None, field_name, False

        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonFileSettingsSource(settings_cls),
            file_secret_settings,
        )


def load_config(**overrides: Any) -> Config:
    """
    加载进程级配置。
    :param overrides: 直接传入的字段值，优先级最高。
    :return: 不可变的 Config 实例。
    :raises ConfigMissing: 必填字段缺失或取值非法。
    """
    try:
        return Config(**overrides)
    except ValidationError as e:
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]) or "<root>" for err in e.errors()
        )
        raise ConfigMissing(f"配置缺失或非法: {fields}") from e
