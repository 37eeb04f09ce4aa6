"""面向调用方的异常"""


class BuddyError(RuntimeError):
    """可以直接展示给调用方的错误"""

    def __init__(self, message: str):
        self.message = str(message or "").strip() or "Unknown error."
        super().__init__(self.message)


class InputError(BuddyError, ValueError):
    """目标为空或候选列表为空，在打分之前拒绝"""


class InvalidOriginError(InputError):
    """站点 origin 无法解析"""
