# 基于 Source / GoldSrc 查询协议 (A2S) 的 DayZ 服务器状态查询
#
# 协议文档详见 https://developer.valvesoftware.com/wiki/Server_queries

from enum import Enum
from typing import Literal

from nonebot import logger

from .challenge import ChallengeRetryEngine
from .dayz import DAYZ_APP_ID, filter_mods, parse_dayz_tags, read_dayz_mods, read_rules
from .exceptions import QueryError
from .models import Player, Results, SessionState
from .packet import (
    A2S_INFO,
    A2S_INFO_OLD_REPLY,
    A2S_INFO_PAYLOAD,
    A2S_INFO_REPLY,
    A2S_PLAYER,
    A2S_PLAYER_REPLY,
    A2S_RULES,
    A2S_RULES_REPLY,
    A2S_SERVERQUERY_GETCHALLENGE,
    S2C_CHALLENGE,
)
from .reader import BinaryReader
from .transport import UdpTransport

SKIP_SIZE_APP_IDS = frozenset({215, 17550, 17700, 240})
"""协议号为 7 时，这些 2006 年引擎的游戏分包头中没有最大包长字段"""
GOLDSRC_PROTOCOL = 48


class ConnStatus(Enum):
    """
    包含可能的查询状态
    - `SUCCESS`：查询成功
    - `CONNFAIL`：无法建立套接字。地址或端口错误？
    - `TIMEOUT`：服务器没有在超时时间内响应
    - `UNKNOWN`：收到了响应，但无法解析
    """

    def __str__(self) -> str:
        return str(self.name)

    SUCCESS = 0
    """查询成功"""

    CONNFAIL = -1
    """无法建立套接字。（地址或端口错误？）"""

    TIMEOUT = -2
    """服务器没有在超时时间内响应（服务器离线？防火墙规则是否正确？）"""

    UNKNOWN = -3
    """收到了响应，但响应格式错误或不受支持"""


class DayZQuery:
    """
    依次执行 info → challenge → players → rules → cleanup 五个阶段。

    后面的阶段依赖前面阶段得到的会话状态（challenge、分包格式），
    因此同一个实例的各阶段必须顺序执行。

    :param transport: 提供 `send(datagram, on_match)` 的收发端点。
    :param legacy_challenge: 是否发送旧式 challenge 请求。
    :param goldsrc_info: 是否期待旧式 GoldSrc 信息响应。
    :param byteorder: challenge 字段的字节序。
    """

    DEFAULT_PORT = 27015
    """查询的默认 UDP 端口"""
    DEFAULT_TIMEOUT = 5
    """默认超时时间（秒）"""

    def __init__(
        self,
        transport,
        legacy_challenge: bool = False,
        goldsrc_info: bool = False,
        byteorder: Literal["little", "big"] = "little",
    ) -> None:
        self.session = SessionState(
            legacy_challenge=legacy_challenge,
            goldsrc_info=goldsrc_info,
            byteorder=byteorder,
        )
        self.engine = ChallengeRetryEngine(transport, self.session)

    async def run(self) -> Results:
        state = Results()
        await self.query_info(state)
        await self.query_challenge()
        await self.query_players(state)
        await self.query_rules(state)
        self.cleanup(state)
        return state

    async def query_info(self, state: Results) -> None:
        goldsrc_info = self.session.goldsrc_info
        logger.debug("Requesting info ...")
        expect = A2S_INFO_OLD_REPLY if goldsrc_info else A2S_INFO_REPLY
        b = await self.engine.send(A2S_INFO, A2S_INFO_PAYLOAD, expect, False)
        if self.engine.response_code != expect:
            raise QueryError(
                f"Unexpected info response {self.engine.response_code:#x}"
            )

        reader = BinaryReader(b)
        raw = state.raw

        if goldsrc_info:
            raw["address"] = reader.read_string()
        else:
            raw["protocol"] = reader.read_uint(1)

        state.name = reader.read_string()
        state.map = reader.read_string()
        raw["folder"] = reader.read_string()
        raw["game"] = reader.read_string()
        raw["app_id"] = reader.read_uint(2)
        raw["numplayers"] = reader.read_uint(1)
        state.maxplayers = reader.read_uint(1)

        if goldsrc_info:
            raw["protocol"] = reader.read_uint(1)
        else:
            raw["numbots"] = reader.read_uint(1)

        raw["listentype"] = reader.read_uint(1)
        raw["environment"] = reader.read_uint(1)
        if not goldsrc_info:
            raw["listentype"] = chr(raw["listentype"])
            raw["environment"] = chr(raw["environment"])

        state.password = bool(reader.read_uint(1))
        if goldsrc_info:
            raw["ismod"] = reader.read_uint(1)
            if raw["ismod"]:
                raw["modlink"] = reader.read_string()
                raw["moddownload"] = reader.read_string()
                reader.skip(1)
                raw["modversion"] = reader.read_uint(4)
                raw["modsize"] = reader.read_uint(4)
                raw["modtype"] = reader.read_uint(1)
                raw["moddll"] = reader.read_uint(1)
        raw["secure"] = reader.read_uint(1)

        if goldsrc_info:
            raw["numbots"] = reader.read_uint(1)
        else:
            raw["version"] = reader.read_string()
            self._read_extra_data(reader, state)

        if raw["protocol"] == 7 and raw["app_id"] in SKIP_SIZE_APP_IDS:
            self.session.skip_size_in_split_header = True
        logger.debug(f"INFO: {raw}")
        if raw["protocol"] == GOLDSRC_PROTOCOL:
            logger.debug("GOLDSRC DETECTED - USING MODIFIED SPLIT FORMAT")
            self.session.goldsrc_splits = True

    @staticmethod
    def _read_extra_data(reader: BinaryReader, state: Results) -> None:
        raw = state.raw
        extra_flag = reader.read_uint(1)
        if extra_flag & 0x80:
            state.game_port = reader.read_uint(2)
        if extra_flag & 0x10:
            raw["steamid"] = str(reader.read_uint(8))
        if extra_flag & 0x40:
            raw["sourcetvport"] = reader.read_uint(2)
            raw["sourcetvname"] = reader.read_string()
        if extra_flag & 0x20:
            raw["tags"] = reader.read_string().split(",")
            state.tags = set(raw["tags"])
        if extra_flag & 0x01:
            game_id = reader.read_uint(8)
            if better_app_id := game_id & 0xFFFFFF:
                raw["app_id"] = better_app_id

    async def query_challenge(self) -> None:
        if not self.session.legacy_challenge:
            return
        # the engine stores the key from the 0x41 response
        logger.debug("Requesting legacy challenge key ...")
        await self.engine.send(A2S_SERVERQUERY_GETCHALLENGE, None, S2C_CHALLENGE, True)

    async def query_players(self, state: Results) -> None:
        players: list[Player] = []
        state.raw["players"] = players

        logger.debug("Requesting player list ...")
        b = await self.engine.send(A2S_PLAYER, None, A2S_PLAYER_REPLY, True)
        if b is None:
            # Some servers never answer the player query (CSGO without
            # host_players_show 2, Conan Exiles)
            return
        if self.engine.response_code != A2S_PLAYER_REPLY:
            logger.debug(f"Ignoring player response {self.engine.response_code:#x}")
            return

        reader = BinaryReader(b)
        num = reader.read_uint(1)
        for _ in range(num):
            reader.skip(1)
            name = reader.read_string()
            score = reader.read_int(4)
            time = reader.read_float()

            logger.debug(f"Found player: {name} {score} {time}")

            # connecting players don't count as players
            if not name:
                continue
            players.append(Player(name=name, score=score, time=time))

    async def query_rules(self, state: Results) -> None:
        raw = state.raw
        dayz = raw.get("app_id") == DAYZ_APP_ID

        if dayz and raw.get("tags"):
            parse_dayz_tags(raw["tags"], raw)

        raw["rules"] = {}
        raw["dayz_mods"] = []
        logger.debug("Requesting rules ...")
        b = await self.engine.send(A2S_RULES, None, A2S_RULES_REPLY, True)
        if b is None:
            # timed out - the server probably has rules disabled
            return
        if self.engine.response_code != A2S_RULES_REPLY:
            logger.debug(f"Ignoring rules response {self.engine.response_code:#x}")
            return

        rules, payload = read_rules(BinaryReader(b), dayz)
        raw["rules"] = rules
        raw["dayz_mods"] = read_dayz_mods(payload)

    def cleanup(self, state: Results) -> None:
        raw = state.raw
        state.version = raw.get("version")
        state.first_person = raw.get("first_person")
        state.dlc_enabled = raw.get("dlc_enabled")
        state.private_hive = raw.get("private_hive")
        state.external = raw.get("external")

        state.numplayers = raw.get("numplayers", 0)
        state.queue = raw.get("queue")

        state.day_acceleration = raw.get("day_acceleration")
        state.night_acceleration = raw.get("night_acceleration")
        state.time = raw.get("time")

        state.mods = filter_mods(raw.get("dayz_mods", []))
        state.raw = None


async def query(
    address: str,
    port: int = 0,
    timeout: float = DayZQuery.DEFAULT_TIMEOUT,
    use_ipv6: bool = False,
    **options,
) -> Results:
    """
    查询一个服务器。

    :params address: 服务器的 IP 地址。
    :params port: 查询端口，为 0 时使用 27015。
    :params timeout: 每次请求的超时时间。
    :params use_ipv6: 是否使用 IPv6。
    :params options: 传递给 `DayZQuery` 的其他参数。
    """
    port = port or DayZQuery.DEFAULT_PORT
    async with UdpTransport(address, port, timeout, use_ipv6) as transport:
        return await DayZQuery(transport, **options).run()
