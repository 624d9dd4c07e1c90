from microlend.utils.login_security import check_lockout, register_login_attempt
from microlend.utils.redis_client import get_redis_client, redis_key

__all__ = [
    "check_lockout",
    "get_redis_client",
    "redis_key",
    "register_login_attempt",
]
