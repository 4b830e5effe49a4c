import itertools
import random
import struct

import pytest

from nonebot_plugin_dayzcheck.exceptions import (
    InvalidCompressedPacket,
    MissingFragment,
    QueryError,
)
from nonebot_plugin_dayzcheck.packet import (
    PacketKind,
    SplitPacketAssembler,
    build_request,
    classify,
)
from nonebot_plugin_dayzcheck.reader import BinaryReader

from .packets import single, split_goldsrc, split_modern

FF = b"\xff\xff\xff\xff"


def feed(assembler: SplitPacketAssembler, fragment: bytes):
    kind, reader = classify(fragment)
    assert kind is PacketKind.SPLIT
    return assembler.add(reader)


def test_info_request_without_challenge():
    assert build_request(0x54, b"Source Engine Query\x00") == (
        FF + b"TSource Engine Query\x00"
    )


def test_info_request_appends_known_challenge():
    request = build_request(0x54, "Source Engine Query\x00", challenge=0x11223344)
    assert request == FF + b"TSource Engine Query\x00" + b"\x44\x33\x22\x11"


def test_player_and_rules_requests_put_challenge_first():
    assert build_request(0x55) == FF + b"U" + FF
    assert build_request(0x56, challenge=0x11223344) == FF + b"V\x44\x33\x22\x11"


def test_challenge_byteorder_big():
    request = build_request(0x56, challenge=0x11223344, byteorder="big")
    assert request == FF + b"V\x11\x22\x33\x44"


def test_legacy_challenge_request_has_no_challenge_field():
    assert build_request(0x57, challenge=0x11223344) == FF + b"W"


def test_classify():
    kind, reader = classify(FF + b"I\x11")
    assert kind is PacketKind.SINGLE
    assert reader.rest() == b"I\x11"

    kind, reader = classify(struct.pack("<iI", -2, 7))
    assert kind is PacketKind.SPLIT
    assert reader.read_uint(4) == 7

    with pytest.raises(QueryError):
        classify(struct.pack("<i", 5) + b"I")


def test_reassembly_is_order_independent():
    data = single(0x45, bytes(range(256)) * 3)
    fragments = split_modern(7, data, 300)
    assert len(fragments) == 3

    for order in itertools.permutations(fragments):
        assembler = SplitPacketAssembler()
        results = [feed(assembler, fragment) for fragment in order]
        assert results[:-1] == [None, None]
        assert results[-1] == data[4:]
        assert assembler.packets == {}


def test_fragments_of_other_transactions_do_not_mix():
    first = single(0x45, b"a" * 50)
    second = single(0x44, b"b" * 50)
    assembler = SplitPacketAssembler()

    a0, a1 = split_modern(1, first, 30)
    b0, b1 = split_modern(2, second, 30)
    assert feed(assembler, a0) is None
    assert feed(assembler, b1) is None
    assert feed(assembler, b0) == second[4:]
    assert feed(assembler, a1) == first[4:]


def test_compressed_reassembly():
    data = single(0x45, random.Random(0).randbytes(2000))
    fragments = split_modern(9, data, 500, compressed=True)
    assert len(fragments) > 1

    assembler = SplitPacketAssembler()
    results = [feed(assembler, fragment) for fragment in reversed(fragments)]
    assert results[-1] == data[4:]


def test_invalid_compressed_packet():
    fragment = struct.pack("<iIBBH", -2, 0x80000001, 1, 0, 1248)
    fragment += b"\x00" * 8 + b"definitely not bzip2"
    with pytest.raises(InvalidCompressedPacket):
        feed(SplitPacketAssembler(), fragment)


def test_missing_fragment():
    assembler = SplitPacketAssembler()
    assert feed(assembler, struct.pack("<iIBBH", -2, 5, 2, 0, 1248) + b"a") is None
    with pytest.raises(MissingFragment) as excinfo:
        feed(assembler, struct.pack("<iIBBH", -2, 5, 2, 3, 1248) + b"b")
    assert excinfo.value.index == 1


def test_duplicate_fragment_does_not_complete():
    data = single(0x45, b"x" * 40)
    f0, f1 = split_modern(3, data, 30)
    assembler = SplitPacketAssembler()
    assert feed(assembler, f0) is None
    assert feed(assembler, f0) is None
    assert feed(assembler, f1) == data[4:]


def test_split_header_without_size_field():
    data = single(0x45, b"y" * 70)
    assembler = SplitPacketAssembler(skip_size_in_split_header=True)
    results = [
        feed(assembler, fragment)
        for fragment in split_modern(4, data, 25, with_size=False)
    ]
    assert results[-1] == data[4:]


def test_goldsrc_split_format():
    data = single(0x45, b"z" * 90)
    # the top bit is not a compression flag in the GoldSrc format
    fragments = split_goldsrc(0x80000002, data, 40)
    assembler = SplitPacketAssembler(goldsrc_splits=True)
    results = [feed(assembler, fragment) for fragment in reversed(fragments)]
    assert results[:-1] == [None] * (len(fragments) - 1)
    assert results[-1] == data[4:]


def test_stale_transactions_are_evicted():
    assembler = SplitPacketAssembler(ttl=-1)
    first = split_modern(1, single(0x45, b"a" * 50), 30)
    second = split_modern(2, single(0x45, b"b" * 50), 30)
    feed(assembler, first[0])
    feed(assembler, second[0])
    assert 1 not in assembler.packets
    assert 2 in assembler.packets


def test_reader_negative_skip_and_bounds():
    reader = BinaryReader(b"\x01\x02\x03abc\x00")
    assert reader.read_uint(1) == 1
    reader.skip(-1)
    assert reader.read_uint(3) == 0x030201
    assert reader.read_string() == "abc"
    assert reader.done()
    with pytest.raises(QueryError):
        reader.read_uint(1)
