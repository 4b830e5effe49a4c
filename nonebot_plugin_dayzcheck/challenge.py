from collections.abc import Callable

from nonebot import logger

from .exceptions import ChallengeRetryExceeded, QueryTimeout
from .models import SessionState
from .packet import (
    S2C_CHALLENGE,
    PacketKind,
    SplitPacketAssembler,
    build_request,
    classify,
)
from .reader import BinaryReader

MAX_CHALLENGE_RETRIES = 3

_RENEWED = object()


class ChallengeRetryEngine:
    """
    发送请求并只返回期望类型的响应，顺带维护会话的 challenge key。

    :param transport: 提供 `send(datagram, on_match)` 的收发端点。
    :param session: 当前查询的会话状态。
    """

    def __init__(self, transport, session: SessionState) -> None:
        self.transport = transport
        self.session = session
        self.response_code: int | None = None
        """最近一次 `send` 返回的响应类型，超时时为 None"""

    async def send(
        self,
        command: int,
        payload: bytes | str | None,
        expect: int,
        allow_timeout: bool = False,
    ) -> bytes | None:
        """
        :params command: 命令字节。
        :params payload: 可选负载。
        :params expect: 期望的响应类型。
        :params allow_timeout: 超时时返回 None，而不是抛出 `QueryTimeout`。

        :returns: 去掉响应类型字节后的负载；类型不符且没有新 challenge 时
            原样返回整个负载；超时且允许超时时返回 None。
        """
        self.response_code = None
        for _ in range(MAX_CHALLENGE_RETRIES):
            renewed = False

            def on_response(data: bytes):
                nonlocal renewed
                reader = BinaryReader(data)
                code = reader.read_uint(1)
                logger.debug(f"Received {code:#x} expected {expect:#x}")
                if code == S2C_CHALLENGE:
                    key = reader.read_uint(4)
                    if self.session.challenge != key:
                        logger.debug(f"Received new challenge key: {key:#x}")
                        self.session.challenge = key
                        renewed = True
                if code == expect:
                    self.response_code = code
                    return reader.rest()
                if renewed:
                    return _RENEWED
                self.response_code = code
                return data

            try:
                response = await self._send_raw(command, payload, on_response)
            except QueryTimeout:
                if allow_timeout:
                    return None
                raise

            if response is not _RENEWED:
                return response

        raise ChallengeRetryExceeded(MAX_CHALLENGE_RETRIES)

    async def _send_raw(self, command: int, payload, on_response: Callable):
        """发送请求，并把单包或重组后的分包交给 `on_response`"""
        datagram = build_request(
            command,
            payload,
            challenge=self.session.challenge,
            byteorder=self.session.byteorder,
        )
        assembler = SplitPacketAssembler(
            goldsrc_splits=self.session.goldsrc_splits,
            skip_size_in_split_header=self.session.skip_size_in_split_header,
        )

        def on_packet(buffer: bytes):
            kind, reader = classify(buffer)
            if kind is PacketKind.SINGLE:
                logger.debug("Received full packet")
                return on_response(reader.rest())
            assembled = assembler.add(reader)
            if assembled is None:
                return None
            return on_response(assembled)

        return await self.transport.send(datagram, on_packet)
