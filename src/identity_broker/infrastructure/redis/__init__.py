from .client import RedisClient

__all__ = ["RedisClient"]
