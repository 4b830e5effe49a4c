from typing import Literal

from nonebot.plugin import get_plugin_config
from pydantic import BaseModel, Field


class ScopedConfig(BaseModel):
    language: str = Field(default="zh-cn")
    """插件回复所使用的语言"""
    timeout: float = Field(default=5)
    """每次请求的超时时间（秒）"""
    legacy_challenge: bool = Field(default=False)
    """是否先发送旧式 challenge 请求 (0x57)"""
    goldsrc_info: bool = Field(default=False)
    """是否期待旧式 GoldSrc 信息响应 (0x6D)"""
    byteorder: Literal["little", "big"] = Field(default="little")
    """challenge 字段的字节序"""


class Config(BaseModel):
    dayz: ScopedConfig = Field(default_factory=ScopedConfig)
    """DayZCheck Config"""


config: ScopedConfig = get_plugin_config(Config).dayz
