import redis.asyncio as redis
from medislot.core.config import settings

class RedisClient:
    def __init__(self, url: str = settings.REDIS_URL):
        self.redis = redis.from_url(url, encoding="utf-8", decode_responses=True)

    async def publish(self, channel: str, message: str) -> int:
        return await self.redis.publish(channel, message)

    async def close(self):
        await self.redis.aclose()

redis_client = RedisClient()
