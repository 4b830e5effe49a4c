import bz2
from enum import Enum
import struct
from time import monotonic
from typing import Literal

from nonebot import logger

from .exceptions import InvalidCompressedPacket, MissingFragment, QueryError
from .reader import BinaryReader

WHOLE = -1
"""单包响应的包头"""
SPLIT = -2
"""分包响应的包头，后面紧跟 4 字节的事务 ID"""

A2S_INFO = 0x54
A2S_INFO_PAYLOAD = b"Source Engine Query\x00"
A2S_INFO_REPLY = 0x49
A2S_INFO_OLD_REPLY = 0x6D
"""旧版 GoldSrc 服务器的信息响应"""
A2S_PLAYER = 0x55
A2S_PLAYER_REPLY = 0x44
A2S_RULES = 0x56
A2S_RULES_REPLY = 0x45
A2S_SERVERQUERY_GETCHALLENGE = 0x57
S2C_CHALLENGE = 0x41

NO_CHALLENGE = 0xFFFFFFFF
COMPRESSED_FLAG = 0x80000000


class PacketKind(Enum):
    def __str__(self) -> str:
        return str(self.name)

    SINGLE = -1
    """完整的单包响应"""

    SPLIT = -2
    """需要重组的分包"""


def build_request(
    command: int,
    payload: bytes | str | None = None,
    challenge: int | None = None,
    byteorder: Literal["little", "big"] = "little",
) -> bytes:
    """
    构造请求数据包。

    玩家 (0x55) 和规则 (0x56) 请求的 challenge 紧跟在命令字节后，
    未知时填 0xFFFFFFFF；信息 (0x54) 请求只有在已知 challenge 时
    才把它附加在 payload 之后。

    :params command: 命令字节。
    :params payload: 可选的负载，字符串按 latin-1 编码。
    :params challenge: 当前会话的 challenge key。
    :params byteorder: challenge 字段的字节序。
    """
    if isinstance(payload, str):
        payload = payload.encode("latin-1")

    challenge_at_beginning = command in (A2S_PLAYER, A2S_RULES)
    challenge_at_end = command == A2S_INFO and bool(challenge)
    key = (challenge or NO_CHALLENGE).to_bytes(4, byteorder)

    req_data = bytearray(struct.pack("<iB", WHOLE, command))
    if challenge_at_beginning:
        req_data += key
    if payload:
        req_data += payload
    if challenge_at_end:
        req_data += key
    return bytes(req_data)


def classify(datagram: bytes) -> tuple[PacketKind, BinaryReader]:
    """
    根据包头判断数据包类型，返回的读取器位于包头之后。
    """
    reader = BinaryReader(datagram)
    header = reader.read_int(4)
    if header == WHOLE:
        return PacketKind.SINGLE, reader
    if header == SPLIT:
        return PacketKind.SPLIT, reader
    raise QueryError(f"Unknown packet header {header}")


class SplitPacketAssembler:
    """
    分包重组器，按事务 ID 缓存分包，收齐后按序号拼接。

    只属于一次请求/响应交换；超过 `ttl` 秒没有新分包的事务会被丢弃。

    :param goldsrc_splits: 使用 GoldSrc 的单字节分包头。
    :param skip_size_in_split_header: 分包头中没有 2 字节的最大包长字段。
    :param ttl: 未完成事务的保留时间（秒）。
    """

    DEFAULT_TTL = 30.0

    def __init__(
        self,
        goldsrc_splits: bool = False,
        skip_size_in_split_header: bool = False,
        ttl: float = DEFAULT_TTL,
    ) -> None:
        self.goldsrc_splits = goldsrc_splits
        self.skip_size_in_split_header = skip_size_in_split_header
        self.ttl = ttl
        self.packets: dict[int, dict[int, bytes]] = {}
        self._last_seen: dict[int, float] = {}

    def _evict(self, now: float) -> None:
        for uid, seen in list(self._last_seen.items()):
            if now - seen > self.ttl:
                logger.debug(f"Dropping stale partial packets for uid: {uid:#x}")
                del self._last_seen[uid]
                self.packets.pop(uid, None)

    def add(self, reader: BinaryReader) -> bytes | None:
        """
        处理一个分包（读取器位于 -2 包头之后）。

        :returns: 收齐后返回去掉 4 字节包头的完整响应，否则返回 None。
        """
        now = monotonic()
        self._evict(now)

        uid = reader.read_uint(4)
        packets = self.packets.setdefault(uid, {})
        self._last_seen[uid] = now

        bzip = not self.goldsrc_splits and bool(uid & COMPRESSED_FLAG)

        if self.goldsrc_splits:
            packet_byte = reader.read_uint(1)
            num_packets = packet_byte & 0x0F
            packet_num = (packet_byte & 0xF0) >> 4
        else:
            num_packets = reader.read_uint(1)
            packet_num = reader.read_uint(1)
            if not self.skip_size_in_split_header:
                reader.skip(2)
            if packet_num == 0 and bzip:
                # decompressed size + crc32
                reader.skip(8)
        packets[packet_num] = reader.rest()

        logger.debug(f"Received partial packet uid: {uid:#x} num: {packet_num}")
        logger.debug(f"Received {len(packets)}/{num_packets} packets for this UID")

        if len(packets) != num_packets:
            return None

        del self.packets[uid]
        del self._last_seen[uid]
        return self._assemble(packets, num_packets, bzip)

    @staticmethod
    def _assemble(packets: dict[int, bytes], num_packets: int, bzip: bool) -> bytes:
        parts = []
        for i in range(num_packets):
            if i not in packets:
                raise MissingFragment(i)
            parts.append(packets[i])

        assembled = b"".join(parts)
        if bzip:
            logger.debug("BZIP DETECTED - Extracting packet...")
            try:
                assembled = bz2.decompress(assembled)
            except (OSError, ValueError) as e:
                raise InvalidCompressedPacket("Invalid bzip packet") from e

        reader = BinaryReader(assembled)
        reader.skip(4)  # header
        return reader.rest()
