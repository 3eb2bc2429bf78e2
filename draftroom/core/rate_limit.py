"""
draftroom.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~~~

REST 接口的限流配置。
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

# 基于客户端 IP 地址进行限流，进程内存储（单实例部署）
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)
