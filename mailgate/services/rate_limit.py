# mailgate/services/rate_limit.py
from __future__ import annotations

import time
from typing import Optional, Tuple

from redis.asyncio import Redis

from mailgate.core.config import settings


class LoginRateLimiter:
    """
    登入嘗試的 Redis 滑動視窗限流（ZSET，score = epoch 秒）。
    先看 IP 維度，再看 email+IP 維度；登入成功後清空 email+IP 的桶。
    """

    def __init__(
        self,
        redis_url: str,
        window_sec: int,
        max_per_ip: int,
        max_per_email_ip: int,
        enabled: bool = True,
    ):
        self.redis_url = redis_url
        self.window_sec = window_sec
        self.max_per_ip = max_per_ip
        self.max_per_email_ip = max_per_email_ip
        self.enabled = enabled
        self._redis: Optional[Redis] = None

    def _get_redis(self) -> Redis:
        if not self.enabled:
            # 停用時理論上不應呼叫；若被誤用，明確拋錯幫助定位
            raise RuntimeError("Rate limit is disabled in current environment")
        if self._redis is None:
            self._redis = Redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
        return self._redis

    @staticmethod
    def key_ip(ip: str) -> str:
        return f"rl:login:ip:{ip or 'unknown'}"

    @staticmethod
    def key_email_ip(email: str, ip: str) -> str:
        return f"rl:login:ei:{(email or '').lower()}|{ip or 'unknown'}"

    async def _over_limit(self, redis: Redis, key: str, limit: int, now_s: float) -> Optional[int]:
        """超出上限回傳 retry_after 秒數，否則 None"""
        await redis.zremrangebyscore(key, "-inf", now_s - self.window_sec)
        if int(await redis.zcard(key)) < limit:
            return None
        oldest = await redis.zrange(key, 0, 0, withscores=True)
        oldest_ts = float(oldest[0][1]) if oldest else now_s
        return max(1, int(self.window_sec - (now_s - oldest_ts)))

    async def _hit(self, redis: Redis, key: str, now_s: float) -> None:
        await redis.zadd(key, {f"{now_s:.6f}": now_s})
        await redis.expire(key, self.window_sec)

    async def check_and_hit(self, ip: str, email: Optional[str]) -> Tuple[bool, int]:
        """
        回傳 (allowed, retry_after_seconds)；允許時順便記一次嘗試。
        """
        if not self.enabled:
            return True, 0

        r = self._get_redis()
        now_s = time.time()

        retry_after = await self._over_limit(r, self.key_ip(ip), self.max_per_ip, now_s)
        if retry_after is None and email:
            retry_after = await self._over_limit(r, self.key_email_ip(email, ip), self.max_per_email_ip, now_s)
        if retry_after is not None:
            return False, retry_after

        await self._hit(r, self.key_ip(ip), now_s)
        if email:
            await self._hit(r, self.key_email_ip(email, ip), now_s)
        return True, 0

    async def reset_success(self, ip: str, email: Optional[str]) -> None:
        # IP 維度不清空，保留反掃號的保護力
        if not email or not self.enabled:
            return
        await self._get_redis().delete(self.key_email_ip(email, ip))

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


login_rate_limiter = LoginRateLimiter(
    redis_url=settings.REDIS_URL,
    window_sec=settings.RATE_LIMIT_WINDOW_SEC,
    max_per_ip=settings.RATE_LIMIT_MAX_PER_IP,
    max_per_email_ip=settings.RATE_LIMIT_MAX_PER_EMAIL_IP,
    enabled=settings.RATE_LIMIT_ENABLED,
)
