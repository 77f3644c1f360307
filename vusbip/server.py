"""TCP server that exports virtual USB devices over USB/IP."""

from __future__ import annotations

import logging
import socket
import threading
from dataclasses import dataclass
from typing import BinaryIO

from .command import Command
from .operation import Operation
from .request import DeviceRegistrar, HandlerLevel, RequestHandler
from .stream import ProtocolError
from .worker import WorkerPool

_ACCEPT_POLL_INTERVAL = 0.2


@dataclass
class ServerConfig:
    """Listening address as ``host:port`` and connection limits."""

    listen_address: str
    max_tcp_connection: int
    tcp_connection_timeout: float | None = None


def _parse_address(address: str) -> tuple[str, int]:
    host, sep, port_text = address.rpartition(":")
    if not sep or not port_text.isdigit() or int(port_text) > 0xFFFF:
        raise ValueError(f"invalid listen address {address!r}, expected host:port")
    return host.strip("[]"), int(port_text)


class USBIPServer:
    """Accepts USB/IP clients and serves each connection in its own thread."""

    def __init__(
        self,
        config: ServerConfig,
        registrar: DeviceRegistrar,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._registrar = registrar
        self._log = logger or logging.getLogger(__name__)
        self._listener: socket.socket | None = None
        self._acceptor: threading.Thread | None = None
        self._quit = threading.Event()
        self._lock = threading.Lock()
        self._conn_count = 0
        self._conn_threads: set[threading.Thread] = set()

    def __enter__(self) -> USBIPServer:
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def address(self) -> tuple[str, int]:
        """Host and port the server is listening on."""
        if self._listener is None:
            raise RuntimeError("server is not open")
        host, port = self._listener.getsockname()[:2]
        return host, port

    def open(self) -> None:
        """Start listening and accepting connections in the background."""
        if self._listener is not None:
            raise RuntimeError("server is already open")
        host, port = _parse_address(self._config.listen_address)
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        try:
            listener = socket.create_server((host, port), family=family)
        except OSError as exc:
            raise OSError(
                f"unable to listen to address {self._config.listen_address}: {exc}"
            ) from exc
        listener.settimeout(_ACCEPT_POLL_INTERVAL)
        self._listener = listener
        self._quit.clear()
        self._acceptor = threading.Thread(target=self._accept_loop, daemon=True)
        self._acceptor.start()

    def close(self) -> None:
        """Stop accepting and wait until every connection has ended."""
        if self._listener is None or self._acceptor is None:
            raise RuntimeError("server is not open")
        self._quit.set()
        self._acceptor.join()
        error: OSError | None = None
        try:
            self._listener.close()
        except OSError as exc:
            error = exc
        self._log.info(
            "Closing server, waiting for all devices to be disconnected. Please make "
            "sure that USB/IP client-side devices are all unbinded and disconnected "
            "from USB/IP server"
        )
        with self._lock:
            threads = list(self._conn_threads)
        for thread in threads:
            thread.join()
        self._listener = None
        self._acceptor = None
        self._log.info("Server closed, bye.")
        if error is not None:
            raise OSError(f"cannot close TCP listener: {error}") from error

    def _accept_loop(self) -> None:
        while not self._quit.is_set():
            try:
                conn, addr = self._listener.accept()
            except TimeoutError:
                continue
            except OSError as exc:
                if self._quit.is_set():
                    return
                self._log.error(
                    "unable to accept request: address=%s err=%s",
                    self._config.listen_address,
                    exc,
                )
                continue
            conn.settimeout(None)
            with self._lock:
                if self._conn_count + 1 > self._config.max_tcp_connection:
                    self._log.error(
                        "maximum TCP connection reached, drop the connection: count=%d",
                        self._conn_count,
                    )
                    conn.close()
                    continue
                self._conn_count += 1
                thread = threading.Thread(target=self._serve, args=(conn, addr), daemon=True)
                self._conn_threads.add(thread)
            thread.start()

    def _serve(self, conn: socket.socket, addr) -> None:
        self._log.info("new connection established: %s", addr)
        try:
            with conn, conn.makefile("rwb") as channel:
                self._handle_connection(channel)
        finally:
            with self._lock:
                self._conn_count -= 1
                self._conn_threads.discard(threading.current_thread())
            self._log.info("connection closed: %s", addr)

    def _handle_connection(self, channel: BinaryIO) -> None:
        worker = WorkerPool(channel, self._log)
        handler = RequestHandler(channel, self._registrar, worker, self._log)
        try:
            while True:
                level = handler.level
                try:
                    if level is HandlerLevel.OP:
                        if not self._handle_op(handler):
                            return
                    else:
                        self._handle_cmd(handler)
                except EOFError:
                    return
                except Exception as exc:
                    kind = "Op" if level is HandlerLevel.OP else "Cmd"
                    self._log.error("unable to handle %s request: %s", kind, exc)
                    return
        finally:
            worker.stop()

    @staticmethod
    def _handle_op(handler: RequestHandler) -> bool:
        """Handle one operation; return whether the connection stays open."""
        header = handler.handle_op_header()
        if header.command_or_reply_code == Operation.REQ_DEVLIST:
            handler.handle_op_dev_list(header)
            return False
        if header.command_or_reply_code == Operation.REQ_IMPORT:
            handler.handle_op_import(header)
            return True
        raise ProtocolError(f"unknown operation: {int(header.command_or_reply_code):x}")

    def _handle_cmd(self, handler: RequestHandler) -> None:
        header = handler.handle_cmd_header()
        self._log.debug("Got CmdHeader: %s", header)
        if header.command == Command.SUBMIT:
            handler.handle_cmd_submit(header)
        elif header.command == Command.UNLINK:
            handler.handle_cmd_unlink(header)
        else:
            raise ProtocolError(f"unknown command: {int(header.command):x}")