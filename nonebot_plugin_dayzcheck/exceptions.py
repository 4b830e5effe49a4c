class QueryError(Exception):
    """查询过程中出现的所有错误的基类"""


class ReadError(QueryError):
    """数据包读取越界，通常意味着响应被截断或格式错误"""


class QueryTimeout(QueryError, TimeoutError):
    """在超时时间内没有收到匹配的响应"""


class ChallengeRetryExceeded(QueryError):
    """服务器连续更换 challenge key，超过重试次数"""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Received too many challenge key responses ({attempts})")
        self.attempts = attempts


class MissingFragment(QueryError):
    """分包数量已满足，但缺少某个序号的分包"""

    def __init__(self, index: int) -> None:
        super().__init__(f"Missing packet #{index}")
        self.index = index


class InvalidCompressedPacket(QueryError):
    """分包重组后的 bzip2 数据无法解压"""
