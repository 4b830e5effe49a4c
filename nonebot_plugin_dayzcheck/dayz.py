"""
DayZ 在 A2S_RULES 响应中嵌入的模组列表解码。

模组数据被拆分到若干条键为两个非零字节的规则中，值使用字节填充编码：
0x01 作为转义前缀，`01 01` 表示 1，`01 02` 表示 0，`01 03` 表示 0xFF，
因此值中不会出现 0x00。
"""

import re

from nonebot import logger

from .models import Mod
from .reader import BinaryReader

DAYZ_APP_ID = 221100

BUILTIN_DLC_TITLES = frozenset({"Livonia DLC"})
"""官方 DLC 也出现在模组列表里，结果中需要剔除"""

_LEADING_INT = re.compile(r"\s*[-+]?\d+")
_LEADING_FLOAT = re.compile(r"\s*[-+]?\d+(?:\.\d+)?")


def read_dayz_byte(reader: BinaryReader) -> int:
    byte = reader.read_uint(1)
    if byte != 1:
        return byte
    escaped = reader.read_uint(1)
    if escaped == 1:
        return 1
    if escaped == 2:
        return 0
    if escaped == 3:
        return 0xFF
    return 0


def read_dayz_uint(reader: BinaryReader, size: int) -> int:
    out = bytes(read_dayz_byte(reader) for _ in range(size))
    return int.from_bytes(out, "little")


def read_dayz_string(reader: BinaryReader) -> str:
    length = read_dayz_byte(reader)
    out = bytes(read_dayz_byte(reader) for _ in range(length))
    return out.decode("utf-8", errors="replace")


def read_dayz_mods_section(reader: BinaryReader, with_header: bool) -> list[Mod]:
    out = []
    count = read_dayz_byte(reader)
    for i in range(count):
        mod_id = None
        if with_header:
            read_dayz_uint(reader, 4)  # mod hash?
            if i != count - 1:
                # present on every entry except the last one
                read_dayz_byte(reader)
            mod_id = read_dayz_uint(reader, 4)
        out.append(Mod(id=mod_id, title=read_dayz_string(reader)))
    return out


def read_dayz_mods(buffer: bytes) -> list[Mod]:
    """
    解码从规则响应中收集到的模组数据。

    :params buffer: 所有模组规则值按顺序拼接后的字节。

    :returns: 带 ID 的模组在前，只有标题的条目在后。
    """
    if not buffer:
        return []

    logger.debug(f"DAYZ BUFFER {buffer.hex()}")

    reader = BinaryReader(buffer)
    version = read_dayz_byte(reader)
    overflow = read_dayz_byte(reader)
    dlc1 = read_dayz_byte(reader)
    dlc2 = read_dayz_byte(reader)
    logger.debug(f"version {version} overflow {overflow} dlc1 {dlc1} dlc2 {dlc2}")

    mods = read_dayz_mods_section(reader, True)
    mods += read_dayz_mods_section(reader, False)
    return mods


def filter_mods(mods: list[Mod]) -> list[Mod]:
    """去掉没有 ID 的条目和官方 DLC"""
    return [
        mod
        for mod in mods
        if mod.id is not None and mod.title not in BUILTIN_DLC_TITLES
    ]


def _tag_number(tag: str, prefix: str, pattern: re.Pattern) -> str | None:
    match = pattern.match(tag[len(prefix) :])
    return match[0] if match else None


def parse_dayz_tags(tags: list[str], raw: dict) -> None:
    """
    DayZ 把部分服务器信息塞进了 tags，例如
    `battleye,no3rd,external,privHive,shard000,lqs0,etm4.000000,entm8.000000,12:04`
    """
    raw["dlc_enabled"] = False
    raw["first_person"] = False
    raw["private_hive"] = False
    raw["external"] = False

    for tag in tags:
        if tag.startswith("lqs") and (value := _tag_number(tag, "lqs", _LEADING_INT)):
            raw["queue"] = int(value)
        if "no3rd" in tag:
            raw["first_person"] = True
        if "isDLC" in tag:
            raw["dlc_enabled"] = True
        if "privHive" in tag:
            raw["private_hive"] = True
        if "external" in tag:
            raw["external"] = True
        if ":" in tag:
            raw["time"] = tag
        if tag.startswith("etm") and (value := _tag_number(tag, "etm", _LEADING_FLOAT)):
            raw["day_acceleration"] = float(value)
        if tag.startswith("entm") and (
            value := _tag_number(tag, "entm", _LEADING_FLOAT)
        ):
            raw["night_acceleration"] = float(value)


def read_rules(reader: BinaryReader, dayz: bool) -> tuple[dict[str, str], bytes]:
    """
    解析规则列表。

    对 DayZ，开头若干条规则的前三个字节形如 (非零, 非零, 0)，它们是模组数据：
    三个字节之后直到下一个 0x00 的内容被收集起来。第一条不符合的规则会回退
    这三个字节，之后的所有规则都按普通的 key/value 解析。

    :returns: 规则字典和收集到的模组数据。
    """
    rules: dict[str, str] = {}
    payload = bytearray()
    payload_ended = not dayz

    num = reader.read_uint(2)
    for _ in range(num):
        if not payload_ended:
            one = reader.read_uint(1)
            two = reader.read_uint(1)
            three = reader.read_uint(1)
            if one != 0 and two != 0 and three == 0:
                while byte := reader.read_uint(1):
                    payload.append(byte)
                continue
            reader.skip(-3)
            payload_ended = True

        key = reader.read_string()
        rules[key] = reader.read_string()

    return rules, bytes(payload)
