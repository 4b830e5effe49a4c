import asyncio
from collections.abc import Callable
import socket
from typing import TypeVar

from nonebot import logger

from .exceptions import QueryTimeout

T = TypeVar("T")


class _DatagramQueue(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.queue: asyncio.Queue[bytes | Exception] = asyncio.Queue()

    def datagram_received(self, data: bytes, addr) -> None:
        self.queue.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        self.queue.put_nowait(exc)


class UdpTransport:
    """
    面向单个服务器的 UDP 收发端点，需要在 `async with` 中使用。

    :param address: 服务器 IP 地址。
    :param port: 服务器端口。
    :param timeout: 每次请求等待匹配响应的超时时间（秒）。
    :param use_ipv6: 是否使用 IPv6。
    """

    def __init__(
        self,
        address: str,
        port: int,
        timeout: float = 5,
        use_ipv6: bool = False,
    ) -> None:
        self.address = address
        self.port = port
        self.timeout = timeout
        self.use_ipv6 = use_ipv6
        self._transport: asyncio.DatagramTransport | None = None
        self._protocol: _DatagramQueue | None = None

    async def __aenter__(self) -> "UdpTransport":
        loop = asyncio.get_running_loop()
        self._transport, self._protocol = await loop.create_datagram_endpoint(
            _DatagramQueue,
            remote_addr=(self.address, self.port),
            family=socket.AF_INET6 if self.use_ipv6 else socket.AF_INET,
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._transport is not None:
            self._transport.close()
        self._transport = None
        self._protocol = None

    async def send(self, datagram: bytes, on_match: Callable[[bytes], T | None]) -> T:
        """
        发送一个数据包并等待响应。

        每收到一个数据包就调用一次 `on_match`，返回 None 表示继续等待；
        `on_match` 抛出的异常会直接向上传递。

        :raises QueryTimeout: 超时仍未得到匹配的响应。
        """
        if self._transport is None or self._protocol is None:
            raise RuntimeError("UdpTransport is not open")
        queue = self._protocol.queue

        # late replies to an earlier request
        while not queue.empty():
            queue.get_nowait()

        self._transport.sendto(datagram)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                item = await asyncio.wait_for(queue.get(), remaining)
            except asyncio.TimeoutError:
                break
            if isinstance(item, Exception):
                raise item
            result = on_match(item)
            if result is not None:
                return result

        logger.debug(f"Timed out waiting for {self.address}:{self.port}")
        raise QueryTimeout(f"No response from {self.address}:{self.port}")
