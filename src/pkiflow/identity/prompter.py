from __future__ import annotations

import getpass
from abc import ABC, abstractmethod
from typing import Mapping, TypeVar

T = TypeVar("T")


class Prompter(ABC):
    """交互输入输出的抽象，流程逻辑只依赖这一层，测试时可替换为脚本化实现。"""

    @abstractmethod
    def ask_line(self, prompt: str) -> str:
        ...

    @abstractmethod
    def ask_secret(self, prompt: str) -> str:
        """读取不回显的输入。"""

    @abstractmethod
    def say(self, text: str = "") -> None:
        ...

    def ask_choice(self, prompt: str, choices: Mapping[str, T]) -> T:
        """
        反复询问，直到回答（忽略大小写与首尾空白）落在 choices 的键中。
        :return: 对应键的值。
        """
        while True:
            answer = self.ask_line(prompt).strip().lower()
            if answer in choices:
                return choices[answer]
            self.say(f"无法识别的回答: {answer!r}，可选: {'/'.join(choices)}")


class ConsolePrompter(Prompter):
    def ask_line(self, prompt: str) -> str:
        return input(prompt)

    def ask_secret(self, prompt: str) -> str:
        return getpass.getpass(prompt)

    def say(self, text: str = "") -> None:
        print(text, flush=True)
