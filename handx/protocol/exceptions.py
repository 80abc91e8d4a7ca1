"""handx 协议异常定义

本模块定义了协议层的异常体系，为信封和载荷的解码错误提供明确的分类。
"""

from typing import Optional


class ProtocolException(Exception):
    """协议基础异常

    所有协议相关异常的基类。message_id 为出错消息的 id（如果已经解析出来）。
    """

    def __init__(self, message: str, message_id: Optional[str] = None):
        super().__init__(message)
        self.message_id = message_id


class SerializationException(ProtocolException):
    """序列化/反序列化错误

    当帧不是合法的 JSON 或者无法序列化时抛出。
    """

    pass


class MessageFormatException(ProtocolException):
    """消息格式错误

    当信封结构不正确时抛出（不是对象、缺少 type 等）。
    """

    pass


class ValidationException(ProtocolException):
    """载荷验证错误

    当载荷结构不符合 type 对应的协议规范时抛出。
    """

    pass


class UnknownMessageTypeException(ProtocolException):
    """未知消息类型

    当信封的 type 不在请求类型集合中时抛出。
    """

    def __init__(self, message_type: str, message_id: Optional[str] = None):
        super().__init__(f"Unknown message type: {message_type}", message_id)
        self.message_type = message_type
