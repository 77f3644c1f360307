# vusbip

vusbip is a Python library for the USB/IP protocol. With it, a program can
export *virtual* USB devices over TCP, and a standard USB/IP client can then
list those devices and attach to them.

## Modules

- `vusbip.stream` provides the `read(reader, length)` and `write(writer, data)`
  helpers, which read or write an exact number of bytes.
  - `read` raises `EOFError` when the stream is empty.
  - `read` raises `IncompleteReadError` when only part of the data arrives.
  - `read` raises `StreamError` when the reader fails.
  - `write` raises `StreamError` when the writer fails, and
    `IncompleteWriteError` when the write is short.
  - `ProtocolError` is a `ValueError`. The encoders raise it when a message
    contradicts its own fields.
- `vusbip.command` provides `CmdHeader`, `ISOPacketDescriptor`, `CmdUnlink`
  and `RetUnlink`, together with the `Command` and `Direction` enums.
- `vusbip.submit` provides `CmdSubmit` and `RetSubmit`, the URB submission
  request and its reply.
  - The transfer buffer goes on the wire only for OUT submissions and IN
    replies.
  - ISO packet descriptors go on the wire only when `number_of_packets` is
    neither `0` nor `0xFFFFFFFF`.
- `vusbip.device_info` provides `DeviceInfoTruncated`, `DeviceInterface` and
  `DeviceInfo`. `DeviceInfo` holds the device record in `info` and its
  interfaces in `interfaces`.
- `vusbip.operation` provides `OpHeader`, `OpRepDevList`, `OpReqImport` and
  `OpRepImport`, together with the `Operation` and `OperationStatus` enums.
  In `OpRepDevList`, `device_count` is worked out from `devices`.
- `vusbip.worker` provides the `Device` abstract base class,
  `WorkerPoolProfile`, `UrbStatus` and `WorkerPool`. The pool runs submitted
  URBs through `Device.process` on worker threads. It writes `RetSubmit` and
  `RetUnlink` replies to the connection and skips the reply for any URB that
  was unlinked first.
- `vusbip.request` provides `RequestHandler`, which steps one connection
  through its two phases.
  - The operation phase handles the device list and import requests.
  - After a successful import, the command phase handles submit and unlink
    requests. The `level` property (`HandlerLevel.OP` or `HandlerLevel.CMD`)
    shows which phase the connection is in.
  - Devices are looked up in a `DeviceRegistrar`.
- `vusbip.server` provides `USBIPServer` and `ServerConfig`. The server is a
  threaded TCP server.

## Encoding and decoding messages

All messages are big-endian. `encode(writer)` writes to any binary file-like
object, and the `decode` classmethods read from one.

Messages that follow a header are encoded without that header. Their
`decode` methods take a header that has already been decoded:

```python
import io
from vusbip.command import CmdHeader, CmdUnlink, Command

buf = io.BytesIO()
msg = CmdUnlink(header=CmdHeader(command=Command.UNLINK, seq_num=2), unlink_seq_num=1)
msg.header.encode(buf)
msg.encode(buf)

buf.seek(0)
header = CmdHeader.decode(buf)
decoded = CmdUnlink.decode(buf, header)
assert decoded == msg
```

## Serving devices

1. Subclass `vusbip.worker.Device` and implement:
   - `process(submit)`, which takes a `CmdSubmit` and returns a `RetSubmit`
   - `worker_pool_profile()`, which returns a `WorkerPoolProfile` with the
     number of threads for each kind of work
   - `device_info()`, which returns a `DeviceInfo`
2. Subclass `vusbip.request.DeviceRegistrar` and implement:
   - `available_devices()`
   - `get_device(bus_id)`, which raises `LookupError` for an unknown bus id.
     The server then replies with an error status and closes the connection.
3. Start the server:

```python
from vusbip.server import ServerConfig, USBIPServer

config = ServerConfig(listen_address="127.0.0.1:3240", max_tcp_connection=4)
with USBIPServer(config, registrar) as server:
    print("listening on", server.address)
    ...
```

Notes on the server:

- Use port `0` to let the operating system choose a free port.
- Connections beyond `max_tcp_connection` are dropped as soon as they are
  accepted.
- After a device list reply, the server closes the connection.
- After a successful import, the connection stays open for URB traffic.
- `close()` waits until every connection has ended, so detach all
  client-side devices first.

## What the package does not do

- It has no command-line program.
- It ships no concrete virtual devices and no device registrar; you supply
  both.
- It provides no client side, so it cannot attach to remote devices.

## Running the tests

```
pip install -e .[test]
pytest
```