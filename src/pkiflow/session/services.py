"""
会话控制：主菜单循环，同步分发到根 CA 与叶子证书两个签发流程。
"""

from typing import Callable

from loguru import logger

from src.pkiflow.ca.services import CaIssuanceWorkflow
from src.pkiflow.config import Config
from src.pkiflow.errors import ConflictDeclined
from src.pkiflow.identity.core import IdentityRequestBuilder
from src.pkiflow.identity.prompter import Prompter
from src.pkiflow.leaf.services import LeafIssuanceWorkflow
from src.pkiflow.store.core import ArtifactStore

MENU = (
    ("1", "创建根 CA"),
    ("2", "创建签名证书"),
    ("3", "退出"),
)


class SessionController:
    def __init__(
        self,
        prompter: Prompter,
        ca_workflow: CaIssuanceWorkflow,
        leaf_workflow: LeafIssuanceWorkflow,
    ) -> None:
        self.prompter = prompter
        self.ca_workflow = ca_workflow
        self.leaf_workflow = leaf_workflow

    def render_menu(self) -> None:
        self.prompter.say()
        for key, label in MENU:
            self.prompter.say(f"{key}) {label}")

    def run(self) -> int:
        """
        循环显示菜单直到选择退出。
        拒绝覆盖只结束当前流程；其他流程异常向上传播，由入口处理。
        :return: 退出码，正常退出为 0。
        """
        while True:
            self.render_menu()
            choice = self.prompter.ask_line("请选择: ").strip()
            if choice == "1":
                self._dispatch(self.ca_workflow.run)
            elif choice == "2":
                self._dispatch(self.leaf_workflow.run)
            elif choice == "3":
                logger.info("会话结束")
                return 0
            else:
                self.prompter.say(f"无效的选项: {choice!r}")

    def _dispatch(self, action: Callable[[], object]) -> None:
        try:
            action()
        except ConflictDeclined as e:
            logger.info(f"操作已取消: {e}")
            self.prompter.say(str(e))


def build_session(config: Config, prompter: Prompter) -> SessionController:
    """按配置组装存储与两个签发流程。"""
    store = ArtifactStore(config)
    identity = IdentityRequestBuilder(config, prompter)
    return SessionController(
        prompter,
        CaIssuanceWorkflow(config, prompter, store, identity),
        LeafIssuanceWorkflow(config, prompter, store, identity),
    )
