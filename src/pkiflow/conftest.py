"""
测试共用的夹具：脚本化输入、隔离的配置与存储目录、模拟的 keytool。
"""

import subprocess
from typing import Iterable, List

import pytest

from src.pkiflow.ca.services import CaIssuanceWorkflow
from src.pkiflow.config import Config
from src.pkiflow.identity.prompter import Prompter
from src.pkiflow.store.core import ArtifactStore

FAKE_KEYSTORE = b"\xfe\xed\xfe\xed fake keystore"


class ScriptedPrompter(Prompter):
    """按顺序返回预设回答；回答用尽时像 input() 一样抛出 EOFError。"""

    def __init__(self, answers: Iterable[str] = ()) -> None:
        self.answers: List[str] = list(answers)
        self.prompts: List[str] = []
        self.secret_prompts: List[str] = []
        self.output: List[str] = []

    def _next(self, prompt: str) -> str:
        if not self.answers:
            raise EOFError(f"脚本回答已用尽: {prompt}")
        return self.answers.pop(0)

    def ask_line(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self._next(prompt)

    def ask_secret(self, prompt: str) -> str:
        self.secret_prompts.append(prompt)
        return self._next(prompt)

    def say(self, text: str = "") -> None:
        self.output.append(text)

    @property
    def text(self) -> str:
        return "\n".join(self.output)


@pytest.fixture
def scripted():
    return ScriptedPrompter


@pytest.fixture
def config(tmp_path, monkeypatch) -> Config:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CONFIG_FILE", raising=False)
    return Config(
        ca_dir=tmp_path / "ca",
        cert_dir=tmp_path / "certs",
        ca_days=3650,
        leaf_days=365,
        country="CN",
        state="Guangdong",
        city="Shenzhen",
        organization="Example Org",
        organizational_unit="Ops",
        email="ops@example.com",
    )


@pytest.fixture
def store(config) -> ArtifactStore:
    return ArtifactStore(config)


@pytest.fixture
def make_ca(config, store):
    """通过完整的根 CA 流程创建一个 CA，返回 CaIssueResult。"""

    def _make(prefix: str = "root", common_name: str = "root.example.com", passphrase: str = "ca-secret"):
        prompter = ScriptedPrompter([prefix, passphrase, passphrase, common_name])
        return CaIssuanceWorkflow(config, prompter, store).run()

    return _make


@pytest.fixture
def fake_keytool(monkeypatch):
    """替换 keytool 调用：在 -destkeystore 指定的位置写入假 keystore，并记录调用。"""
    calls = []

    def _run(cmd, **kwargs):
        calls.append({"cmd": list(cmd), "env": kwargs.get("env") or {}})
        dest = cmd[cmd.index("-destkeystore") + 1]
        with open(dest, "wb") as f:
            f.write(FAKE_KEYSTORE)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr("src.pkiflow.provider.core.subprocess.run", _run)
    return calls
