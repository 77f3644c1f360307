import socket
from contextlib import contextmanager

import pytest

from vusbip.command import CmdHeader, Command, Direction
from vusbip.device_info import DeviceInfo, DeviceInfoTruncated, DeviceInterface
from vusbip.operation import (
    VERSION,
    OpHeader,
    OpRepDevList,
    OpRepImport,
    OpReqImport,
    Operation,
    OperationStatus,
)
from vusbip.request import DeviceRegistrar
from vusbip.server import ServerConfig, USBIPServer
from vusbip.submit import NON_ISO_PACKETS, CmdSubmit, RetSubmit
from vusbip.worker import Device, WorkerPoolProfile

BUS_ID = b"1-1"


class CountingDevice(Device):
    def __init__(self):
        self._info = DeviceInfo(
            info=DeviceInfoTruncated(
                path=b"/sys/devices/virtual/usb1/1-1",
                bus_id=BUS_ID,
                bus_num=1,
                dev_num=1,
                id_vendor=0xABCD,
                id_product=0xDCBA,
                b_num_configurations=1,
                b_num_interfaces=1,
            ),
            interfaces=[DeviceInterface(0x03, 0x01, 0x01, 0)],
        )

    def process(self, submit):
        length = submit.transfer_buffer_length
        return RetSubmit(
            header=CmdHeader(
                command=Command.RET_SUBMIT,
                seq_num=submit.header.seq_num,
                direction=submit.header.direction,
            ),
            actual_length=length,
            number_of_packets=NON_ISO_PACKETS,
            transfer_buffer=bytes(range(length)),
        )

    def worker_pool_profile(self):
        return WorkerPoolProfile(1, 1, 1)

    def device_info(self):
        return self._info


class Registrar(DeviceRegistrar):
    def __init__(self, devices):
        self._devices = devices

    def available_devices(self):
        return list(self._devices)

    def get_device(self, bus_id):
        for device in self._devices:
            if device.device_info().info.bus_id == bus_id:
                return device
        raise LookupError("unknown device")


@pytest.fixture
def device():
    return CountingDevice()


@pytest.fixture
def server(device):
    srv = USBIPServer(
        ServerConfig(listen_address="127.0.0.1:0", max_tcp_connection=4),
        Registrar([device]),
    )
    srv.open()
    yield srv
    srv.close()


@contextmanager
def connect(srv):
    sock = socket.create_connection(srv.address, timeout=5)
    with sock, sock.makefile("rwb") as channel:
        yield channel


def test_dev_list_then_connection_closes(server, device):
    with connect(server) as channel:
        OpHeader(version=VERSION, command_or_reply_code=Operation.REQ_DEVLIST).encode(channel)
        header = OpHeader.decode(channel)
        assert header == OpHeader(
            version=VERSION,
            command_or_reply_code=Operation.REP_DEVLIST,
            status=OperationStatus.OK,
        )
        assert OpRepDevList.decode(channel).devices == [device.device_info()]
        assert channel.read(1) == b""


def test_import_and_submit(server, device):
    with connect(server) as channel:
        OpHeader(version=VERSION, command_or_reply_code=Operation.REQ_IMPORT).encode(channel)
        OpReqImport(bus_id=BUS_ID).encode(channel)
        header = OpHeader.decode(channel)
        assert header.command_or_reply_code == Operation.REP_IMPORT
        assert header.status == OperationStatus.OK
        assert OpRepImport.decode(channel).device_info == device.device_info().info

        submit = CmdSubmit(
            header=CmdHeader(
                command=Command.SUBMIT,
                seq_num=7,
                dev_id=0x00010001,
                direction=Direction.IN,
                endpoint_number=1,
            ),
            transfer_buffer_length=4,
            number_of_packets=NON_ISO_PACKETS,
        )
        submit.header.encode(channel)
        submit.encode(channel)

        reply_header = CmdHeader.decode(channel)
        assert reply_header.command == Command.RET_SUBMIT
        assert reply_header.seq_num == 7
        reply = RetSubmit.decode(channel, reply_header)
        assert reply.actual_length == 4
        assert reply.transfer_buffer == bytes(range(4))


def test_import_of_unknown_device_closes_connection(server):
    with connect(server) as channel:
        OpHeader(version=VERSION, command_or_reply_code=Operation.REQ_IMPORT).encode(channel)
        OpReqImport(bus_id=b"9-9").encode(channel)
        header = OpHeader.decode(channel)
        assert header.status == OperationStatus.ERROR
        assert channel.read(1) == b""


def test_unknown_operation_closes_connection(server):
    with connect(server) as channel:
        OpHeader(version=VERSION, command_or_reply_code=0x1234).encode(channel)
        assert channel.read(1) == b""


def test_wrong_version_closes_connection(server):
    with connect(server) as channel:
        OpHeader(version=0x0100, command_or_reply_code=Operation.REQ_DEVLIST).encode(channel)
        assert channel.read(1) == b""


def test_connection_limit_drops_connections(device):
    srv = USBIPServer(
        ServerConfig(listen_address="127.0.0.1:0", max_tcp_connection=0),
        Registrar([device]),
    )
    srv.open()
    try:
        with connect(srv) as channel:
            assert channel.read(1) == b""
    finally:
        srv.close()


def test_closed_server_refuses_connections(device):
    srv = USBIPServer(
        ServerConfig(listen_address="127.0.0.1:0", max_tcp_connection=1),
        Registrar([device]),
    )
    srv.open()
    address = srv.address
    srv.close()
    assert address[0] == "127.0.0.1"
    assert address[1] > 0
    with pytest.raises(OSError):
        socket.create_connection(address, timeout=5).close()


def test_invalid_listen_address_is_rejected(device):
    srv = USBIPServer(
        ServerConfig(listen_address="no-port-here", max_tcp_connection=1),
        Registrar([device]),
    )
    with pytest.raises(ValueError):
        srv.open()


def test_close_without_open_raises(device):
    srv = USBIPServer(
        ServerConfig(listen_address="127.0.0.1:0", max_tcp_connection=1),
        Registrar([device]),
    )
    with pytest.raises(RuntimeError):
        srv.close()