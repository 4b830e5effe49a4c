import struct

from .exceptions import ReadError


class BinaryReader:
    """
    顺序读取字节缓冲区的游标，所有整数均为小端序。

    读取越界时抛出 `ReadError`，而不是返回默认值。
    """

    def __init__(self, data: bytes | bytearray) -> None:
        self.data: bytes = bytes(data)
        self.offset: int = 0

    def _take(self, size: int) -> bytes:
        end = self.offset + size
        if size < 0 or end > len(self.data):
            raise ReadError(
                f"Cannot read {size} bytes at offset {self.offset}"
                f" (buffer length {len(self.data)})"
            )
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def read_uint(self, size: int) -> int:
        return int.from_bytes(self._take(size), "little", signed=False)

    def read_int(self, size: int) -> int:
        return int.from_bytes(self._take(size), "little", signed=True)

    def read_float(self) -> float:
        return struct.unpack("<f", self._take(4))[0]

    def read_string(self, encoding: str = "utf-8") -> str:
        """读取以 0x00 结尾的字符串，结尾的 0x00 会被消耗"""
        end = self.data.find(b"\x00", self.offset)
        if end == -1:
            raise ReadError(f"Unterminated string at offset {self.offset}")
        raw = self.data[self.offset : end]
        self.offset = end + 1
        return raw.decode(encoding, errors="replace")

    def skip(self, size: int) -> None:
        """跳过 `size` 个字节，允许为负数以回退"""
        target = self.offset + size
        if target < 0 or target > len(self.data):
            raise ReadError(f"Cannot skip {size} bytes at offset {self.offset}")
        self.offset = target

    def rest(self) -> bytes:
        chunk = self.data[self.offset :]
        self.offset = len(self.data)
        return chunk

    def done(self) -> bool:
        return self.offset >= len(self.data)
