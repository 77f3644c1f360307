"""Descriptions of exported USB devices and their interfaces."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import BinaryIO

from . import stream
from .stream import ProtocolError

PATH_LENGTH = 256
BUS_ID_LENGTH = 32
DEVICE_INFO_TRUNCATED_LENGTH = 312
DEVICE_INTERFACE_LENGTH = 4

_TRUNCATED = struct.Struct(f">{PATH_LENGTH}s{BUS_ID_LENGTH}s3I3H6B")
_INTERFACE = struct.Struct(">4B")


def _pack(packer: struct.Struct, *values) -> bytes:
    try:
        return packer.pack(*values)
    except struct.error as exc:
        raise ProtocolError(f"field value out of range: {exc}") from exc


def _fixed(name: str, value: bytes, length: int) -> bytes:
    value = bytes(value)
    if len(value) > length:
        raise ProtocolError(f"{name} must be at most {length} bytes, got {len(value)}")
    return value.ljust(length, b"\x00")


@dataclass
class DeviceInfoTruncated:
    """Device information without the interface list.

    ``path`` and ``bus_id`` are zero-terminated strings, filled up with zero
    bytes to 256 and 32 bytes.
    """

    path: bytes = bytes(PATH_LENGTH)
    bus_id: bytes = bytes(BUS_ID_LENGTH)
    bus_num: int = 0
    dev_num: int = 0
    speed: int = 0
    id_vendor: int = 0
    id_product: int = 0
    bcd_device: int = 0
    b_device_class: int = 0
    b_device_subclass: int = 0
    b_device_protocol: int = 0
    b_configuration_value: int = 0
    b_num_configurations: int = 0
    b_num_interfaces: int = 0

    def __post_init__(self) -> None:
        self.path = _fixed("path", self.path, PATH_LENGTH)
        self.bus_id = _fixed("bus_id", self.bus_id, BUS_ID_LENGTH)

    def encode(self, writer: BinaryIO) -> None:
        """Write the 312-byte record."""
        stream.write(
            writer,
            _pack(
                _TRUNCATED,
                self.path,
                self.bus_id,
                self.bus_num,
                self.dev_num,
                self.speed,
                self.id_vendor,
                self.id_product,
                self.bcd_device,
                self.b_device_class,
                self.b_device_subclass,
                self.b_device_protocol,
                self.b_configuration_value,
                self.b_num_configurations,
                self.b_num_interfaces,
            ),
        )

    @classmethod
    def decode(cls, reader: BinaryIO) -> DeviceInfoTruncated:
        """Read a 312-byte record."""
        return cls(*_TRUNCATED.unpack(stream.read(reader, DEVICE_INFO_TRUNCATED_LENGTH)))


@dataclass
class DeviceInterface:
    """Class, subclass and protocol of one interface."""

    b_interface_class: int = 0
    b_interface_subclass: int = 0
    b_interface_protocol: int = 0
    padding_alignment: int = 0

    def encode(self, writer: BinaryIO) -> None:
        """Write the 4-byte record."""
        stream.write(
            writer,
            _pack(
                _INTERFACE,
                self.b_interface_class,
                self.b_interface_subclass,
                self.b_interface_protocol,
                self.padding_alignment,
            ),
        )

    @classmethod
    def decode(cls, reader: BinaryIO) -> DeviceInterface:
        """Read a 4-byte record."""
        return cls(*_INTERFACE.unpack(stream.read(reader, DEVICE_INTERFACE_LENGTH)))


@dataclass
class DeviceInfo:
    """Device information followed by one record per interface."""

    info: DeviceInfoTruncated = field(default_factory=DeviceInfoTruncated)
    interfaces: list[DeviceInterface] = field(default_factory=list)

    def encode(self, writer: BinaryIO) -> None:
        """Write the device record and its interfaces."""
        if self.info.b_num_interfaces != len(self.interfaces):
            raise ProtocolError(
                "expected number of interfaces does not match the actual, "
                f"expected {self.info.b_num_interfaces}, actual {len(self.interfaces)}"
            )
        self.info.encode(writer)
        for interface in self.interfaces:
            interface.encode(writer)

    @classmethod
    def decode(cls, reader: BinaryIO) -> DeviceInfo:
        """Read a device record and as many interfaces as it announces."""
        info = DeviceInfoTruncated.decode(reader)
        interfaces = [DeviceInterface.decode(reader) for _ in range(info.b_num_interfaces)]
        return cls(info=info, interfaces=interfaces)