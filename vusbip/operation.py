"""USB/IP operation messages: headers, device lists and device import."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import BinaryIO, TypeVar

from . import stream
from .device_info import BUS_ID_LENGTH, DeviceInfo, DeviceInfoTruncated
from .stream import ProtocolError

VERSION = 0x0111
OP_HEADER_LENGTH = 8
DEVICE_COUNT_LENGTH = 4

_HEADER = struct.Struct(">HHI")
_DEVICE_COUNT = struct.Struct(">I")

_E = TypeVar("_E", bound=IntEnum)


class Operation(IntEnum):
    """Operation request and reply codes."""

    REQ_DEVLIST = 0x8005
    REP_DEVLIST = 0x0005
    REQ_IMPORT = 0x8003
    REP_IMPORT = 0x0003


class OperationStatus(IntEnum):
    """Status carried in an operation header."""

    OK = 0x0000_0000
    ERROR = 0x0000_0001


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


@dataclass
class OpHeader:
    """Header that starts every operation request and reply."""

    version: int = VERSION
    command_or_reply_code: int = 0
    status: int = OperationStatus.OK

    def encode(self, writer: BinaryIO) -> None:
        """Write the 8-byte header."""
        stream.write(
            writer,
            _pack(
                _HEADER,
                self.version,
                int(self.command_or_reply_code),
                int(self.status),
            ),
        )

    @classmethod
    def decode(cls, reader: BinaryIO) -> OpHeader:
        """Read an 8-byte header."""
        version, code, status = _HEADER.unpack(stream.read(reader, OP_HEADER_LENGTH))
        return cls(
            version=version,
            command_or_reply_code=_as_enum(Operation, code),
            status=_as_enum(OperationStatus, status),
        )


@dataclass
class OpRepDevList:
    """Reply listing the exported USB devices."""

    header: OpHeader = field(default_factory=OpHeader)
    devices: list[DeviceInfo] = field(default_factory=list)

    @property
    def device_count(self) -> int:
        """Number of devices in the list."""
        return len(self.devices)

    def encode(self, writer: BinaryIO) -> None:
        """Write the device count and every device, without the header."""
        stream.write(writer, _pack(_DEVICE_COUNT, self.device_count))
        for device in self.devices:
            device.encode(writer)

    @classmethod
    def decode(cls, reader: BinaryIO) -> OpRepDevList:
        """Read the device count and that many devices, without the header."""
        (count,) = _DEVICE_COUNT.unpack(stream.read(reader, DEVICE_COUNT_LENGTH))
        return cls(devices=[DeviceInfo.decode(reader) for _ in range(count)])


@dataclass
class OpReqImport:
    """Request to attach the device with the given zero-terminated bus id."""

    header: OpHeader = field(default_factory=OpHeader)
    bus_id: bytes = bytes(BUS_ID_LENGTH)

    def __post_init__(self) -> None:
        bus_id = bytes(self.bus_id)
        if len(bus_id) > BUS_ID_LENGTH:
            raise ProtocolError(
                f"bus_id must be at most {BUS_ID_LENGTH} bytes, got {len(bus_id)}"
            )
        self.bus_id = bus_id.ljust(BUS_ID_LENGTH, b"\x00")

    def encode(self, writer: BinaryIO) -> None:
        """Write the 32-byte bus id, without the header."""
        stream.write(writer, self.bus_id)

    @classmethod
    def decode(cls, reader: BinaryIO) -> OpReqImport:
        """Read the 32-byte bus id, without the header."""
        return cls(bus_id=stream.read(reader, BUS_ID_LENGTH))


@dataclass
class OpRepImport:
    """Reply to an import request, describing the attached device."""

    header: OpHeader = field(default_factory=OpHeader)
    device_info: DeviceInfoTruncated = field(default_factory=DeviceInfoTruncated)

    def encode(self, writer: BinaryIO) -> None:
        """Write the device record, without the header."""
        self.device_info.encode(writer)

    @classmethod
    def decode(cls, reader: BinaryIO) -> OpRepImport:
        """Read the device record, without the header."""
        return cls(device_info=DeviceInfoTruncated.decode(reader))