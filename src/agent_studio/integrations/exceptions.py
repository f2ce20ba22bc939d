"""
外部集成异常定义
"""
from typing import Optional, Dict, Any


class IntegrationError(Exception):
    """集成层基础异常"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ModelAPIError(IntegrationError):
    """模型服务调用异常"""

    def __init__(self, provider: str, status: Optional[int], body: str = ""):
        self.provider = provider
        self.status = status
        self.body = body
        status_text = status if status is not None else "network error"
        super().__init__(
            f"{provider} API error ({status_text}): {body}",
            {"provider": provider, "status": status}
        )


class ModelConfigError(IntegrationError):
    """模型配置异常"""

    def __init__(self, message: str, config_field: Optional[str] = None):
        details = {}
        if config_field:
            details["config_field"] = config_field

        super().__init__(message, details)


class ToolNotFoundError(IntegrationError):
    """工具未找到异常"""

    def __init__(self, tool_id: str):
        self.tool_id = tool_id
        super().__init__(
            f"Tool not found: {tool_id}",
            {"tool_id": tool_id}
        )


class ToolExecutionError(IntegrationError):
    """工具执行异常"""

    def __init__(self, tool_id: str, message: str, cause: Optional[Exception] = None):
        self.tool_id = tool_id
        details = {"tool_id": tool_id}
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details)
