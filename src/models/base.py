"""共享模型基类，封装 OpenAI 兼容接口的通用逻辑。"""

import asyncio
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError


class ModelCallError(RuntimeError):
    """模型服务调用失败（不可达、报错或单次请求超时）。"""


class ChatClient:
    """对话模型边界：给定模型、系统指令与用户提示，返回生成文本。"""

    @staticmethod
    def _prepare_messages(
        system: str,
        user: str,
        history: Optional[List[Dict[str, Any]]] = None,
    ) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]
        if history:
            messages.extend(history)
        messages.append({"role": "user", "content": user})
        return messages

    async def chat(
        self,
        model: str,
        system: str,
        user: str,
        history: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        raise NotImplementedError

    async def chat_with_retry(
        self,
        model: str,
        system: str,
        user: str,
        max_attempts: int = 1,
        backoff: float = 0.0,
        history: Optional[List[Dict[str, Any]]] = None,
        request_timeout: Optional[float] = None,
    ) -> str:
        """
        固定间隔重试
        :param max_attempts: 最大尝试次数，至少 1 次
        :param backoff: 两次尝试之间的等待秒数（不抖动、不指数增长）
        :param request_timeout: 单次请求时限（秒），None 或非正值表示不限
        :return: 生成文本；全部失败时抛出最后一次的错误
        """
        attempts = max(1, int(max_attempts or 1))
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                if request_timeout and request_timeout > 0:
                    return await asyncio.wait_for(
                        self.chat(model, system, user, history=history),
                        timeout=request_timeout,
                    )
                return await self.chat(model, system, user, history=history)
            except asyncio.TimeoutError:
                last_error = ModelCallError(f"请求超时（{request_timeout}s）")
            except Exception as exc:
                last_error = exc
            # 外层截止时间到达时 sleep 会被取消，CancelledError 直接向上传播
            if attempt < attempts and backoff > 0:
                await asyncio.sleep(backoff)
        raise last_error


class OpenAIChatModel(ChatClient):
    """基于 OpenAI SDK 的通用对话模型封装。"""

    def __init__(self, api_key: Optional[str], base_url: str, missing_key_error: str = "OPENAI_API_KEY not found."):
        self.api_key = api_key
        self.base_url = base_url
        if not self.api_key:
            raise ValueError(missing_key_error)

        # 重试策略由 chat_with_retry 统一负责
        self.client = AsyncOpenAI(api_key=self.api_key, base_url=base_url, max_retries=0)

    async def chat(
        self,
        model: str,
        system: str,
        user: str,
        history: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        """异步对话接口。"""
        messages = self._prepare_messages(system, user, history)
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                stream=False,
            )
        except OpenAIError as exc:
            raise ModelCallError(f"{type(exc).__name__}: {exc}") from exc
        if not response.choices:
            raise ModelCallError("模型返回为空")
        return response.choices[0].message.content or ""
