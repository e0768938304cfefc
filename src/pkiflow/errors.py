"""
签发流程的异常体系。

除 ConflictDeclined 外，所有异常都是致命的：流程本身只负责抛出，
由入口 run.main 统一转换为进程退出码。
"""


class PkiflowError(Exception):
    """所有流程异常的基类。"""

    fatal = True
    exit_code = 1


class ConfigMissing(PkiflowError):
    """进程级配置缺失或非法，在任何流程开始前终止。"""


class EmptyInput(PkiflowError, ValueError):
    """必填输入为空或仅包含空白。"""


class InvalidName(PkiflowError, ValueError):
    """名称无法安全地用作文件或目录名。"""


class RetriesExhausted(PkiflowError):
    """口令两次输入不一致的次数用尽。"""


class ConflictDeclined(PkiflowError):
    """操作者拒绝覆盖已存在的产物，返回主菜单。"""

    fatal = False
    exit_code = 0


class SignerFileNotFound(PkiflowError):
    """签发用的 CA 私钥或证书文件不存在。"""


class SignerMismatch(PkiflowError):
    """CA 私钥与 CA 证书不是同一对。"""


class ProviderOperationFailed(PkiflowError, RuntimeError):
    """密码学操作（生成密钥、签名、导出等）失败。"""
