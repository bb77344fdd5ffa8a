"""Models 模块 - AI 模型适配层。"""

from config import Config

from .base import ChatClient, ModelCallError, OpenAIChatModel


def get_client(config: Config) -> ChatClient:
    """按配置获取内容生成模型客户端。"""
    return OpenAIChatModel(
        api_key=config.api_key,
        base_url=config.base_url,
        missing_key_error="缺少模型服务 API Key，请设置 OPENAI_API_KEY（或 NOVEL_API_KEY_ENV 指定的变量）",
    )


__all__ = [
    "ChatClient",
    "ModelCallError",
    "OpenAIChatModel",
    "get_client",
]
