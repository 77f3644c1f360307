import io

import pytest

from vusbip.device_info import DeviceInfo, DeviceInfoTruncated, DeviceInterface
from vusbip.operation import (
    VERSION,
    OpHeader,
    Operation,
    OperationStatus,
    OpRepDevList,
    OpRepImport,
    OpReqImport,
)
from vusbip.stream import IncompleteReadError, ProtocolError

_PATTERN = bytes([0x11, 0x22, 0x33, 0x44, 0x55, 0x66, 0x77, 0x88, 0x99, 0xAA])
PATH = _PATTERN * 25 + b"\xbb" * 6
BUS_ID = _PATTERN * 3 + b"\xbb\xbb"

TRUNCATED_BYTES = (
    PATH
    + BUS_ID
    + bytes(
        [
            0x00, 0x00, 0x00, 0x01,
            0x00, 0x00, 0x00, 0x05,
            0x00, 0x00, 0x00, 0x02,
            0xAB, 0xCD,
            0xDC, 0xBA,
            0x00, 0x7F,
            0x03,
            0x01,
            0x01,
            0x01,
            0x03,
            0x03,
        ]
    )
)


def _truncated() -> DeviceInfoTruncated:
    return DeviceInfoTruncated(
        path=PATH,
        bus_id=BUS_ID,
        bus_num=1,
        dev_num=5,
        speed=2,
        id_vendor=0xABCD,
        id_product=0xDCBA,
        bcd_device=127,
        b_device_class=3,
        b_device_subclass=1,
        b_device_protocol=1,
        b_configuration_value=1,
        b_num_configurations=3,
        b_num_interfaces=3,
    )


def test_op_header_encode_and_decode():
    header = OpHeader(
        version=VERSION,
        command_or_reply_code=Operation.REQ_DEVLIST,
        status=OperationStatus.ERROR,
    )
    buf = io.BytesIO()
    header.encode(buf)
    assert buf.getvalue() == bytes([0x01, 0x11, 0x80, 0x05, 0x00, 0x00, 0x00, 0x01])

    buf.seek(0)
    decoded = OpHeader.decode(buf)
    assert decoded == header
    assert decoded.command_or_reply_code is Operation.REQ_DEVLIST


def test_op_header_unknown_code_is_kept_as_int():
    buf = io.BytesIO(bytes([0x01, 0x11, 0x12, 0x34, 0x00, 0x00, 0x00, 0x00]))
    decoded = OpHeader.decode(buf)
    assert decoded.command_or_reply_code == 0x1234
    assert decoded.status == OperationStatus.OK


def test_op_header_short_read():
    with pytest.raises(IncompleteReadError):
        OpHeader.decode(io.BytesIO(b"\x01\x11\x80"))


def test_op_header_empty_stream():
    with pytest.raises(EOFError):
        OpHeader.decode(io.BytesIO(b""))


def test_op_rep_dev_list_encode_and_decode():
    reply = OpRepDevList(
        devices=[
            DeviceInfo(
                info=_truncated(),
                interfaces=[
                    DeviceInterface(3, 1, 2, 0),
                    DeviceInterface(1, 0xAB, 0xFF, 0),
                    DeviceInterface(0x10, 0xAA, 0xFE, 0),
                ],
            ),
            DeviceInfo(
                info=_truncated(),
                interfaces=[
                    DeviceInterface(3, 1, 2, 0),
                    DeviceInterface(1, 0xA1, 0xF1, 0),
                    DeviceInterface(0x10, 0xA2, 0xF2, 0),
                ],
            ),
        ]
    )
    expected = (
        bytes([0x00, 0x00, 0x00, 0x02])
        + TRUNCATED_BYTES
        + bytes([0x03, 0x01, 0x02, 0x00])
        + bytes([0x01, 0xAB, 0xFF, 0x00])
        + bytes([0x10, 0xAA, 0xFE, 0x00])
        + TRUNCATED_BYTES
        + bytes([0x03, 0x01, 0x02, 0x00])
        + bytes([0x01, 0xA1, 0xF1, 0x00])
        + bytes([0x10, 0xA2, 0xF2, 0x00])
    )
    buf = io.BytesIO()
    reply.encode(buf)
    assert buf.getvalue() == expected
    assert reply.device_count == 2

    buf.seek(0)
    assert OpRepDevList.decode(buf) == reply


def test_op_rep_dev_list_empty():
    buf = io.BytesIO()
    OpRepDevList().encode(buf)
    assert buf.getvalue() == b"\x00\x00\x00\x00"
    buf.seek(0)
    assert OpRepDevList.decode(buf).devices == []


def test_op_rep_dev_list_missing_devices():
    with pytest.raises(EOFError):
        OpRepDevList.decode(io.BytesIO(b"\x00\x00\x00\x01"))


def test_op_req_import_encode_and_decode():
    request = OpReqImport(bus_id=BUS_ID)
    buf = io.BytesIO()
    request.encode(buf)
    assert buf.getvalue() == BUS_ID

    buf.seek(0)
    assert OpReqImport.decode(buf) == request


def test_op_req_import_pads_short_bus_id():
    request = OpReqImport(bus_id=b"1-1")
    assert request.bus_id == b"1-1" + bytes(29)


def test_op_req_import_rejects_long_bus_id():
    with pytest.raises(ProtocolError):
        OpReqImport(bus_id=bytes(33))


def test_op_rep_import_encode_and_decode():
    reply = OpRepImport(device_info=_truncated())
    buf = io.BytesIO()
    reply.encode(buf)
    assert buf.getvalue() == TRUNCATED_BYTES

    buf.seek(0)
    assert OpRepImport.decode(buf) == reply