"""
产物冲突处理：名称已被占用时询问是否覆盖。
"""

from loguru import logger

from src.pkiflow.identity.prompter import Prompter
from src.pkiflow.identity.schemas import Decision

ANSWERS = {
    "y": Decision.PROCEED,
    "yes": Decision.PROCEED,
    "n": Decision.ABORT,
    "no": Decision.ABORT,
}


def resolve_conflict(prompter: Prompter, kind: str, name: str) -> Decision:
    """
    询问是否覆盖已存在的产物。只接受 y/yes/n/no，其他回答会重新询问。
    :param kind: 产物类型描述，如 "CA" 或 "证书"。
    :param name: 产物名称。
    :return: Decision.PROCEED 或 Decision.ABORT。调用方负责在继续前删除旧文件。
    """
    decision = prompter.ask_choice(f"{kind} {name} 已存在，是否覆盖? [y/n]: ", ANSWERS)
    logger.info(f"{kind} {name} 冲突处理结果: {decision.value}")
    return decision
