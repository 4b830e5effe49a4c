import asyncio
import contextlib
import ipaddress
import re
import traceback
from typing import Literal

import dns.asyncresolver
import dns.exception
import dns.resolver
import idna
from nonebot import logger, require

from .config import config as plugin_config
from .configs import lang, lang_data
from .data_source import ConnStatus, DayZQuery, query
from .exceptions import QueryError, QueryTimeout
from .models import Results

require("nonebot_plugin_alconna")
require("nonebot_plugin_uninfo")
from nonebot_plugin_alconna import SupportScope, Text
from nonebot_plugin_uninfo import Uninfo


def handle_exception(e):
    error_message = str(e)
    logger.error(traceback.format_exc())
    return Text(f"[CrashHandle]{error_message}\n>>更多信息详见日志文件<<")


def change_language_to(language: str):
    global lang

    try:
        _ = lang_data[language]
    except KeyError:
        return f"No language named '{language}'!"
    else:
        if language == lang:
            return f"The language is already '{language}'!"
        lang = language
        return f"Change to '{language}' success!"


def _yes_no(value: bool | None) -> str:
    return lang_data[lang]["yes"] if value else lang_data[lang]["no"]


def _or_dash(value) -> str:
    return "-" if value is None else str(value)


def build_result(result: Results, address: str, ip: str, port: int) -> list[Text]:
    """
    构建查询结果消息。

    :params result: 查询结果。
    :params address: 用户输入的地址。
    :params ip: 实际查询的 IP。
    :params port: 实际查询的端口。
    """
    text = lang_data[lang]
    message = (
        f"{text['name']}{result.name}"
        f"\n{text['map']}{result.map}"
        f"\n{text['address']}{address}"
        f"\n{text['ip']}{ip}"
        f"\n{text['port']}{port}"
    )
    if result.game_port:
        message += f"\n{text['game_port']}{result.game_port}"
    if result.version:
        message += f"\n{text['version']}{result.version}"
    message += f"\n{text['players']}{result.numplayers}/{result.maxplayers}"
    if result.queue is not None:
        message += f"\n{text['queue']}{result.queue}"
    if result.time:
        message += f"\n{text['time']}{result.time}"
    if result.day_acceleration is not None or result.night_acceleration is not None:
        message += (
            f"\n{text['acceleration']}"
            f"{_or_dash(result.day_acceleration)}/{_or_dash(result.night_acceleration)}"
        )
    message += f"\n{text['password']}{_yes_no(result.password)}"
    if result.first_person is not None:
        message += (
            f"\n{text['first_person']}{_yes_no(result.first_person)}"
            f"\n{text['dlc']}{_yes_no(result.dlc_enabled)}"
            f"\n{text['private_hive']}{_yes_no(result.private_hive)}"
            f"\n{text['external']}{_yes_no(result.external)}"
        )
    mods = ", ".join(mod.title for mod in result.mods) or text["no_mods"]
    message += f"\n{text['mods']}{mods}"
    return [Text(message)]


async def get_dayz(
    ip: str, port: int, ip_type: str, timeout: float = DayZQuery.DEFAULT_TIMEOUT
) -> tuple[Results | None, ConnStatus]:
    """
    查询 DayZ / Source 服务器。

    :params ip: 服务器的IP地址。
    :params port: 服务器的查询端口。
    :params ip_type: 服务器的IP类型。
    :params timeout: 请求超时时间，默认为5秒。

    :returns:
    - Results实例，查询失败时为None。
    - ConnStatus实例，表示查询状态。
    """
    try:
        result = await query(
            ip,
            port,
            timeout,
            use_ipv6=ip_type == "IPv6",
            legacy_challenge=plugin_config.legacy_challenge,
            goldsrc_info=plugin_config.goldsrc_info,
            byteorder=plugin_config.byteorder,
        )
    except QueryTimeout:
        return None, ConnStatus.TIMEOUT
    except QueryError as e:
        logger.warning(f"Failed to parse response from {ip}:{port}: {e}")
        return None, ConnStatus.UNKNOWN
    except OSError:
        return None, ConnStatus.CONNFAIL
    return result, ConnStatus.SUCCESS


async def get_message_list(
    ip: str, port: int, timeout: float = DayZQuery.DEFAULT_TIMEOUT
) -> list[list[Text]]:
    """
    根据IP和端口获取消息列表。

    :params ip: 服务器的地址。
    :params port: 服务器的端口，为0时使用默认端口。
    :params timeout: 超时时间，默认为5秒。

    :returns: 包含消息的列表。
    """
    port = port or DayZQuery.DEFAULT_PORT
    ip_groups = await get_origin_address(ip, port)
    results = await asyncio.gather(
        *(get_dayz(group[0], group[1], group[2], timeout) for group in ip_groups)
    )

    messages = [
        build_result(result, ip, group[0], group[1])
        for group, (result, _) in zip(ip_groups, results)
        if result is not None
    ]
    if not messages:
        messages.append(
            [
                next(
                    (
                        Text(f"{lang_data[lang][str(status)]}")
                        for _, status in results
                        if status != ConnStatus.CONNFAIL
                    ),
                    Text(f"{lang_data[lang][str(ConnStatus.CONNFAIL)]}"),
                )
            ]
        )
    return messages


async def parse_host(host_name: str) -> tuple[str, int]:
    """
    解析主机名（可选端口）。

    如果主机名中未指定端口，则端口号为0。

    :params host_name: 主机名，可能包含端口，IPv6 地址需用方括号包裹。

    :returns: 一个元组，包含主机的地址和端口号。
    """
    pattern = r"(?:\[(.+?)\]|(.+?))(?:[:：](\d+))?$"
    if not (match := re.match(pattern, host_name)):
        return host_name, 0

    address = match[1] or match[2]
    port = int(match[3]) if match[3] else 0
    return address, port


def is_validity_address(address: str) -> bool:
    """
    判断给定的地址是否为有效的域名或IP地址。
    """
    return is_domain(address) or is_ipv4(address) or is_ipv6(address)


def is_domain(address: str) -> bool:
    """
    判断给定的地址是否为域名，支持国际化域名。
    """
    try:
        punycode_address = idna.encode(address).decode("utf-8")
    except idna.IDNAError:
        return False

    domain_pattern = re.compile(
        r"^(?!-)(?:[A-Za-z0-9-]{1,63}\.)+(?:[A-Za-z]{2,}|xn--[A-Za-z0-9-]{2,})$|^(localhost)$"
    )
    return bool(domain_pattern.match(punycode_address))


def is_ipv4(address: str) -> bool:
    try:
        ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return True


def is_ipv6(address: str) -> bool:
    try:
        ipaddress.IPv6Address(address)
    except ValueError:
        return False
    return True


def get_ip_type(address: str) -> Literal["IPv4", "IPv6", "Domain"]:
    """获取地址类型"""
    if not is_validity_address(address):
        raise ValueError("Invalid address")
    if is_ipv4(address):
        return "IPv4"
    elif is_ipv6(address):
        return "IPv6"
    else:
        return "Domain"


async def get_origin_address(
    domain: str, ip_port: int = 0
) -> list[tuple[str, int, Literal["IPv4", "IPv6"]]]:
    """
    获取域名所解析的A或AAAA记录，如果传入不是域名直接返回。

    :params domain: 需要解析的地址。
    :params ip_port: 端口号。

    :returns: 元组列表，每个元组包含解析后的IP地址、端口号和地址类型。
    """
    ip_type = get_ip_type(domain)
    if ip_type != "Domain":
        return [(domain, ip_port, ip_type)]
    data = []

    resolver = dns.asyncresolver.Resolver()
    resolver.timeout = 10
    resolver.retries = 3  # type: ignore

    async def resolve(rdtype: Literal["A", "AAAA"]):
        with contextlib.suppress(
            dns.resolver.NoAnswer,
            dns.resolver.NXDOMAIN,
            dns.exception.Timeout,
            dns.resolver.NoNameservers,
        ):
            response = await resolver.resolve(domain, rdtype)
            for rdata in response:
                ip_type = "IPv6" if rdtype == "AAAA" else "IPv4"
                data.append((str(rdata.address), ip_port, ip_type))  # type: ignore
                break

    await asyncio.gather(resolve("AAAA"), resolve("A"))
    return data


def is_qbot(session: Uninfo) -> bool:
    """判断bot是否为qq官bot

    参数:
        session: Uninfo

    返回:
        bool: 是否为官bot
    """
    return session.scope == SupportScope.qq_api
