"""USB/IP command headers, ISO packet descriptors and unlink messages."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import BinaryIO, TypeVar

from . import stream
from .stream import ProtocolError

CMD_HEADER_LENGTH = 20
ISO_PACKET_DESCRIPTOR_LENGTH = 16
CMD_SUBMIT_STATIC_FIELDS_LENGTH = 28
RET_SUBMIT_STATIC_FIELDS_LENGTH = 28
CMD_UNLINK_STATIC_FIELDS_LENGTH = 28
RET_UNLINK_STATIC_FIELDS_LENGTH = 28
UNLINK_PADDING_LENGTH = 24

_HEADER = struct.Struct(">5I")
_ISO = struct.Struct(">4I")
_CMD_UNLINK = struct.Struct(f">I{UNLINK_PADDING_LENGTH}s")
_RET_UNLINK = struct.Struct(f">i{UNLINK_PADDING_LENGTH}s")

_E = TypeVar("_E", bound=IntEnum)


class Command(IntEnum):
    """Command code carried in every command header."""

    SUBMIT = 0x0000_0001
    UNLINK = 0x0000_0002
    RET_SUBMIT = 0x0000_0003
    RET_UNLINK = 0x0000_0004


class Direction(IntEnum):
    """Transfer direction as seen from the host."""

    OUT = 0x0000_0000
    IN = 0x0000_0001


def _as_enum(enum_type: type[_E], value: int) -> _E | int:
    try:
        return enum_type(value)
    except ValueError:
        return value


def _pack(packer: struct.Struct, *values) -> bytes:
    try:
        return packer.pack(*values)
    except struct.error as exc:
        raise ProtocolError(f"field value out of range: {exc}") from exc


def _check_padding(padding: bytes) -> bytes:
    padding = bytes(padding)
    if len(padding) != UNLINK_PADDING_LENGTH:
        raise ProtocolError(
            f"padding must be {UNLINK_PADDING_LENGTH} bytes, got {len(padding)}"
        )
    return padding


@dataclass
class CmdHeader:
    """Header shared by CMD_SUBMIT, RET_SUBMIT, CMD_UNLINK and RET_UNLINK."""

    command: int = 0
    seq_num: int = 0
    dev_id: int = 0
    direction: int = Direction.OUT
    endpoint_number: int = 0

    def encode(self, writer: BinaryIO) -> None:
        """Write the 20-byte header."""
        stream.write(
            writer,
            _pack(
                _HEADER,
                int(self.command),
                self.seq_num,
                self.dev_id,
                int(self.direction),
                self.endpoint_number,
            ),
        )

    @classmethod
    def decode(cls, reader: BinaryIO) -> CmdHeader:
        """Read a 20-byte header."""
        command, seq_num, dev_id, direction, endpoint = _HEADER.unpack(
            stream.read(reader, CMD_HEADER_LENGTH)
        )
        return cls(
            command=_as_enum(Command, command),
            seq_num=seq_num,
            dev_id=dev_id,
            direction=_as_enum(Direction, direction),
            endpoint_number=endpoint,
        )


@dataclass
class ISOPacketDescriptor:
    """Descriptor of one packet in an isochronous transfer."""

    offset: int = 0
    expected_length: int = 0
    actual_length: int = 0
    status: int = 0

    def encode(self, writer: BinaryIO) -> None:
        """Write the 16-byte descriptor."""
        stream.write(
            writer,
            _pack(_ISO, self.offset, self.expected_length, self.actual_length, self.status),
        )

    @classmethod
    def decode(cls, reader: BinaryIO) -> ISOPacketDescriptor:
        """Read a 16-byte descriptor."""
        offset, expected, actual, status = _ISO.unpack(
            stream.read(reader, ISO_PACKET_DESCRIPTOR_LENGTH)
        )
        return cls(offset, expected, actual, status)


@dataclass
class CmdUnlink:
    """Request to unlink a previously submitted URB."""

    header: CmdHeader = field(default_factory=CmdHeader)
    unlink_seq_num: int = 0
    padding: bytes = bytes(UNLINK_PADDING_LENGTH)

    def __post_init__(self) -> None:
        self.padding = _check_padding(self.padding)

    def encode(self, writer: BinaryIO) -> None:
        """Write the fields after the header."""
        stream.write(writer, _pack(_CMD_UNLINK, self.unlink_seq_num, self.padding))

    @classmethod
    def decode(cls, reader: BinaryIO, header: CmdHeader | None = None) -> CmdUnlink:
        """Read the fields after an already decoded header."""
        unlink_seq_num, padding = _CMD_UNLINK.unpack(
            stream.read(reader, CMD_UNLINK_STATIC_FIELDS_LENGTH)
        )
        return cls(
            header=header if header is not None else CmdHeader(),
            unlink_seq_num=unlink_seq_num,
            padding=padding,
        )


@dataclass
class RetUnlink:
    """Reply to an unlink request; status is -ECONNRESET when the URB was unlinked."""

    header: CmdHeader = field(default_factory=CmdHeader)
    status: int = 0
    padding: bytes = bytes(UNLINK_PADDING_LENGTH)

    def __post_init__(self) -> None:
        self.padding = _check_padding(self.padding)

    def encode(self, writer: BinaryIO) -> None:
        """Write the fields after the header."""
        stream.write(writer, _pack(_RET_UNLINK, self.status, self.padding))

    @classmethod
    def decode(cls, reader: BinaryIO, header: CmdHeader | None = None) -> RetUnlink:
        """Read the fields after an already decoded header."""
        status, padding = _RET_UNLINK.unpack(
            stream.read(reader, RET_UNLINK_STATIC_FIELDS_LENGTH)
        )
        return cls(
            header=header if header is not None else CmdHeader(),
            status=status,
            padding=padding,
        )