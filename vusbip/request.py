"""Per-connection handling of USB/IP operation and command requests."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import BinaryIO

from .command import CmdHeader, CmdUnlink
from .operation import (
    VERSION,
    OpHeader,
    OpRepDevList,
    OpRepImport,
    OpReqImport,
    Operation,
    OperationStatus,
)
from .stream import ProtocolError
from .submit import CmdSubmit
from .worker import Device, WorkerPool


class HandlerLevel(IntEnum):
    """Which kind of message a connection expects next."""

    OP = 0
    CMD = 1


class DeviceRegistrar(ABC):
    """Source of the devices a server exports."""

    @abstractmethod
    def available_devices(self) -> list[Device]:
        """Devices that can currently be listed and imported."""

    @abstractmethod
    def get_device(self, bus_id: bytes) -> Device:
        """Device with the given 32-byte bus id; raises LookupError if there is none."""


class RequestHandler:
    """Reads requests from one connection and answers them.

    A connection starts at the operation level; a successful import moves it
    to the command level, where URBs go to the worker pool.
    """

    def __init__(
        self,
        conn: BinaryIO,
        registrar: DeviceRegistrar,
        worker: WorkerPool,
        logger: logging.Logger | None = None,
    ) -> None:
        self._conn = conn
        self._registrar = registrar
        self._worker = worker
        self._log = logger or logging.getLogger(__name__)
        self._level = HandlerLevel.OP

    @property
    def level(self) -> HandlerLevel:
        """Kind of message expected next."""
        return self._level

    def handle_op_header(self) -> OpHeader:
        """Read an operation header and check the protocol version."""
        header = OpHeader.decode(self._conn)
        if header.version != VERSION:
            raise ProtocolError(
                "unsupported USBIP protocol version, "
                f"expected: {VERSION:#06x}, actual: {header.version:#06x}"
            )
        return header

    def handle_cmd_header(self) -> CmdHeader:
        """Read a command header."""
        return CmdHeader.decode(self._conn)

    def handle_op_dev_list(self, op_header: OpHeader) -> None:
        """Reply with the list of available devices."""
        devices = self._registrar.available_devices()
        reply_header = OpHeader(
            version=op_header.version,
            command_or_reply_code=Operation.REP_DEVLIST,
            status=OperationStatus.OK,
        )
        reply = OpRepDevList(
            header=reply_header,
            devices=[device.device_info() for device in devices],
        )
        self._log.debug("OP_DEVLIST_REPLY: %s", reply)
        reply_header.encode(self._conn)
        reply.encode(self._conn)

    def handle_op_import(self, op_header: OpHeader) -> None:
        """Attach the requested device and switch to the command level.

        Raises EOFError after replying with an error status when the device
        is unknown, so that the connection is closed.
        """
        request = OpReqImport.decode(self._conn)
        request.header = op_header
        reply_header = OpHeader(
            version=op_header.version,
            command_or_reply_code=Operation.REP_IMPORT,
            status=OperationStatus.OK,
        )
        reply = OpRepImport(header=reply_header)
        try:
            device = self._registrar.get_device(request.bus_id)
        except LookupError as exc:
            self._log.error("unable to get USB device from registrar: %s", exc)
            reply_header.status = OperationStatus.ERROR
            device = None
        else:
            reply.device_info = device.device_info().info

        self._log.debug("OP_IMPORT_REPLY: %s", reply)
        reply_header.encode(self._conn)
        if device is None:
            raise EOFError("device import refused")

        reply.encode(self._conn)
        self._worker.set_device(device)
        self._worker.start()
        self._level = HandlerLevel.CMD

        self._log.info(
            "Device attached: busID=%s id=%04x:%04x",
            request.bus_id.hex(),
            reply.device_info.id_vendor,
            reply.device_info.id_product,
        )

    def handle_cmd_submit(self, cmd_header: CmdHeader) -> None:
        """Read the rest of a CMD_SUBMIT and hand it to the worker pool."""
        self._worker.publish_cmd_submit(CmdSubmit.decode(self._conn, cmd_header))

    def handle_cmd_unlink(self, cmd_header: CmdHeader) -> None:
        """Read the rest of a CMD_UNLINK and hand it to the worker pool."""
        self._worker.unlink(CmdUnlink.decode(self._conn, cmd_header))