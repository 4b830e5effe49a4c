from typing import Any, Literal

from pydantic import BaseModel, Field


class Player(BaseModel):
    name: str
    score: int = 0
    time: float = 0.0
    """在线时长（秒）"""


class Mod(BaseModel):
    id: int | None = None
    """Steam 创意工坊 ID，DLC 和部分内置条目没有"""
    title: str


class Results(BaseModel):
    """一次查询的结果，`raw` 在 cleanup 阶段被丢弃"""

    name: str = ""
    map: str = ""
    maxplayers: int = 0
    numplayers: int = 0
    password: bool = False
    version: str | None = None
    game_port: int | None = None
    tags: set[str] = Field(default_factory=set)

    queue: int | None = None
    """DayZ 特有：排队人数"""
    day_acceleration: float | None = None
    """DayZ 特有：白天时间加速倍率"""
    night_acceleration: float | None = None
    """DayZ 特有：夜晚时间加速倍率"""
    time: str | None = None
    """DayZ 特有：服务器内时间，如 `14:23`"""
    dlc_enabled: bool | None = None
    first_person: bool | None = None
    private_hive: bool | None = None
    external: bool | None = None
    mods: list[Mod] = Field(default_factory=list)

    raw: dict[str, Any] | None = Field(default_factory=dict)
    """尚未提升为正式字段的原始数据"""


class SessionState:
    """
    单个查询目标的会话状态，只属于一个 `DayZQuery` 实例。

    :param legacy_challenge: 是否先发送旧式 challenge 请求 (0x57)
    :param goldsrc_info: 是否期待旧式 GoldSrc 信息响应 (0x6D)
    :param byteorder: 发送 challenge 时使用的字节序
    """

    def __init__(
        self,
        legacy_challenge: bool = False,
        goldsrc_info: bool = False,
        byteorder: Literal["little", "big"] = "little",
    ) -> None:
        self.challenge: int | None = None
        """服务器下发的 challenge key，未知时为 None"""
        self.goldsrc_splits: bool = False
        """使用 GoldSrc 的分包头格式，在 info 阶段根据协议号检测"""
        self.skip_size_in_split_header: bool = False
        """2006 年的引擎分包头中没有最大包长字段，在 info 阶段检测"""
        self.legacy_challenge: bool = legacy_challenge
        self.goldsrc_info: bool = goldsrc_info
        self.byteorder: Literal["little", "big"] = byteorder
