"""USB/IP URB submission requests and their replies."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import BinaryIO

from . import stream
from .command import (
    CMD_SUBMIT_STATIC_FIELDS_LENGTH,
    RET_SUBMIT_STATIC_FIELDS_LENGTH,
    CmdHeader,
    Direction,
    ISOPacketDescriptor,
)
from .stream import ProtocolError

SETUP_LENGTH = 8
NON_ISO_PACKETS = 0xFFFF_FFFF

_CMD_SUBMIT = struct.Struct(f">5I{SETUP_LENGTH}s")
_RET_SUBMIT = struct.Struct(">5IQ")


def _pack(packer: struct.Struct, *values) -> bytes:
    try:
        return packer.pack(*values)
    except struct.error as exc:
        raise ProtocolError(f"field value out of range: {exc}") from exc


def _is_iso(number_of_packets: int) -> bool:
    return number_of_packets not in (0, NON_ISO_PACKETS)


def _check_iso(number_of_packets: int, descriptors: list[ISOPacketDescriptor]) -> None:
    if not _is_iso(number_of_packets):
        if descriptors:
            raise ProtocolError(
                "this is non-ISO transfer, but contains ISO packet descriptors"
            )
    elif number_of_packets != len(descriptors):
        raise ProtocolError(
            "number of packets does not match with actual ISO packet descriptor "
            f"length, expected {number_of_packets}, actual {len(descriptors)}"
        )


def _read_descriptors(reader: BinaryIO, number_of_packets: int) -> list[ISOPacketDescriptor]:
    if not _is_iso(number_of_packets):
        return []
    return [ISOPacketDescriptor.decode(reader) for _ in range(number_of_packets)]


def _write_descriptors(writer: BinaryIO, descriptors: list[ISOPacketDescriptor]) -> None:
    for descriptor in descriptors:
        descriptor.encode(writer)


@dataclass
class CmdSubmit:
    """Request to submit a URB to the device.

    The transfer buffer travels only for OUT transfers; ISO packet descriptors
    travel only when ``number_of_packets`` is neither 0 nor 0xFFFFFFFF.
    """

    header: CmdHeader = field(default_factory=CmdHeader)
    transfer_flags: int = 0
    transfer_buffer_length: int = 0
    start_frame: int = 0
    number_of_packets: int = 0
    interval: int = 0
    setup: bytes = bytes(SETUP_LENGTH)
    transfer_buffer: bytes = b""
    iso_packet_descriptors: list[ISOPacketDescriptor] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.setup = bytes(self.setup)
        if len(self.setup) != SETUP_LENGTH:
            raise ProtocolError(
                f"setup must be {SETUP_LENGTH} bytes, got {len(self.setup)}"
            )
        self.transfer_buffer = bytes(self.transfer_buffer)

    def encode(self, writer: BinaryIO) -> None:
        """Write the fields after the header, the OUT data and any ISO descriptors."""
        if (
            self.header.direction == Direction.OUT
            and len(self.transfer_buffer) != self.transfer_buffer_length
        ):
            raise ProtocolError(
                "actual transfer buffer length does not match TransferBufferLength "
                f"for DIR_OUT CmdSubmit; expected {self.transfer_buffer_length}, "
                f"actual {len(self.transfer_buffer)}"
            )
        _check_iso(self.number_of_packets, self.iso_packet_descriptors)

        stream.write(
            writer,
            _pack(
                _CMD_SUBMIT,
                self.transfer_flags,
                self.transfer_buffer_length,
                self.start_frame,
                self.number_of_packets,
                self.interval,
                self.setup,
            ),
        )
        if self.transfer_buffer:
            stream.write(writer, self.transfer_buffer)
        _write_descriptors(writer, self.iso_packet_descriptors)

    @classmethod
    def decode(cls, reader: BinaryIO, header: CmdHeader | None = None) -> CmdSubmit:
        """Read the fields after an already decoded header."""
        header = header if header is not None else CmdHeader()
        flags, length, start_frame, packets, interval, setup = _CMD_SUBMIT.unpack(
            stream.read(reader, CMD_SUBMIT_STATIC_FIELDS_LENGTH)
        )
        transfer_buffer = b""
        if length > 0 and header.direction == Direction.OUT:
            transfer_buffer = stream.read(reader, length)
        return cls(
            header=header,
            transfer_flags=flags,
            transfer_buffer_length=length,
            start_frame=start_frame,
            number_of_packets=packets,
            interval=interval,
            setup=setup,
            transfer_buffer=transfer_buffer,
            iso_packet_descriptors=_read_descriptors(reader, packets),
        )


@dataclass
class RetSubmit:
    """Reply to a submitted URB.

    The transfer buffer travels only for IN transfers; ISO packet descriptors
    travel only when ``number_of_packets`` is neither 0 nor 0xFFFFFFFF.
    """

    header: CmdHeader = field(default_factory=CmdHeader)
    status: int = 0
    actual_length: int = 0
    start_frame: int = 0
    number_of_packets: int = 0
    error_count: int = 0
    padding: int = 0
    transfer_buffer: bytes = b""
    iso_packet_descriptors: list[ISOPacketDescriptor] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.transfer_buffer = bytes(self.transfer_buffer)

    def encode(self, writer: BinaryIO) -> None:
        """Write the fields after the header, the data and any ISO descriptors."""
        if (
            self.header.direction == Direction.IN
            and len(self.transfer_buffer) != self.actual_length
        ):
            raise ProtocolError(
                "actual transfer buffer length does not match ActualLength for "
                f"DIR_IN RetSubmit; expected {self.actual_length}, "
                f"actual {len(self.transfer_buffer)}"
            )
        _check_iso(self.number_of_packets, self.iso_packet_descriptors)

        stream.write(
            writer,
            _pack(
                _RET_SUBMIT,
                self.status,
                self.actual_length,
                self.start_frame,
                self.number_of_packets,
                self.error_count,
                self.padding,
            ),
        )
        if self.actual_length > 0:
            stream.write(writer, self.transfer_buffer)
        _write_descriptors(writer, self.iso_packet_descriptors)

    @classmethod
    def decode(cls, reader: BinaryIO, header: CmdHeader | None = None) -> RetSubmit:
        """Read the fields after an already decoded header."""
        header = header if header is not None else CmdHeader()
        status, actual, start_frame, packets, errors, padding = _RET_SUBMIT.unpack(
            stream.read(reader, RET_SUBMIT_STATIC_FIELDS_LENGTH)
        )
        transfer_buffer = b""
        if actual > 0 and header.direction == Direction.IN:
            transfer_buffer = stream.read(reader, actual)
        return cls(
            header=header,
            status=status,
            actual_length=actual,
            start_frame=start_frame,
            number_of_packets=packets,
            error_count=errors,
            padding=padding,
            transfer_buffer=transfer_buffer,
            iso_packet_descriptors=_read_descriptors(reader, packets),
        )