"""
handx 配对令牌管理

签发、验证配对令牌，并周期性清理过期令牌
"""

import asyncio
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Union

from ..utils import get_logger


@dataclass
class TokenInfo:
    """令牌信息"""

    token: str
    created_at: datetime
    expires_at: datetime
    used: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict:
        return {
            "token": self.token,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "used": self.used,
        }


class TokenManager:
    """令牌管理器

    令牌表由独立的锁保护，不与连接中心共享任何锁。
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._tokens: Dict[str, TokenInfo] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._cleanup_task: Optional[asyncio.Task] = None

        self.logger = get_logger("handx.hub.auth")

    def issue(self, lifetime: Union[float, timedelta]) -> str:
        """签发新令牌

        Args:
            lifetime: 有效期（秒或 timedelta）

        Returns:
            令牌字符串（16 字节随机数的十六进制）
        """
        if not isinstance(lifetime, timedelta):
            lifetime = timedelta(seconds=lifetime)

        token = secrets.token_hex(16)
        now = self._clock()
        with self._lock:
            self._tokens[token] = TokenInfo(
                token=token, created_at=now, expires_at=now + lifetime
            )

        self.logger.info(f"签发配对令牌，有效期至 {(now + lifetime).isoformat()}")
        return token

    def validate(self, token: Optional[str]) -> bool:
        """验证令牌

        令牌不存在或已过期时返回 False。used 标记不影响验证结果。
        """
        if not token:
            return False

        with self._lock:
            info = self._tokens.get(token)
            if info is None:
                return False
            return not info.is_expired(self._clock())

    def mark_used(self, token: str) -> None:
        """标记令牌已使用（仅作记录）"""
        with self._lock:
            info = self._tokens.get(token)
            if info is not None:
                info.used = True

    def get_token_info(self, token: str) -> Optional[TokenInfo]:
        """获取令牌信息"""
        with self._lock:
            return self._tokens.get(token)

    def cleanup_expired(self) -> int:
        """清理过期令牌

        Returns:
            清理的令牌数量
        """
        now = self._clock()
        with self._lock:
            expired = [
                token for token, info in self._tokens.items() if info.is_expired(now)
            ]
            for token in expired:
                del self._tokens[token]

        if expired:
            self.logger.info(f"清理了 {len(expired)} 个过期令牌")
        return len(expired)

    def start_cleanup(self, interval: float) -> asyncio.Task:
        """启动周期清理任务

        清理间隔与令牌有效期无关，任务在进程整个生命周期内运行，
        直到 stop_cleanup() 被调用。必须在事件循环中调用。
        """
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return self._cleanup_task

        self._cleanup_task = asyncio.create_task(self._cleanup_loop(interval))
        return self._cleanup_task

    async def stop_cleanup(self) -> None:
        """停止周期清理任务"""
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self, interval: float) -> None:
        """令牌清理循环"""
        while True:
            await asyncio.sleep(interval)
            try:
                self.cleanup_expired()
            except Exception as e:
                self.logger.error(f"清理过期令牌出错: {e}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
