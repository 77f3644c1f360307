"""Thread pool that processes submitted URBs and writes the replies."""

from __future__ import annotations

import io
import logging
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Callable, Union

from . import stream
from .command import Command, CmdHeader, CmdUnlink, RetUnlink
from .device_info import DeviceInfo
from .stream import ProtocolError, StreamError
from .submit import CmdSubmit, RetSubmit

URB_QUEUE_SIZE = 1024

# Status values on the wire are Linux errno values.
_LINUX_ECONNRESET = 104

_STOP = object()


@dataclass
class WorkerPoolProfile:
    """How many threads a device wants for each kind of work."""

    maximum_proc_workers: int = 1
    maximum_reply_workers: int = 1
    maximum_unlink_reply_workers: int = 1


class UrbStatus(IntEnum):
    """Where a URB is in its life inside the pool."""

    UNLINKING = 0
    PROCESSING = 1
    REPLYING = 2


class Device(ABC):
    """A virtual USB device that can be exported."""

    @abstractmethod
    def process(self, submit: CmdSubmit) -> RetSubmit:
        """Handle one submitted URB and return its reply."""

    @abstractmethod
    def worker_pool_profile(self) -> WorkerPoolProfile:
        """Thread counts to use when serving this device."""

    @abstractmethod
    def device_info(self) -> DeviceInfo:
        """Description of the device as listed to clients."""


class WorkerPool:
    """Processes CmdSubmit requests on a device and writes RetSubmit and RetUnlink replies."""

    def __init__(self, reply_writer: BinaryIO, logger: logging.Logger | None = None) -> None:
        self._writer = reply_writer
        self._log = logger or logging.getLogger(__name__)
        self._device: Device | None = None
        self._profile: WorkerPoolProfile | None = None

        self._cmd_queue: queue.Queue = queue.Queue(URB_QUEUE_SIZE)
        self._ret_queue: queue.Queue = queue.Queue(URB_QUEUE_SIZE)
        self._unlink_queue: queue.Queue = queue.Queue(URB_QUEUE_SIZE)

        self._urbs: dict[int, UrbStatus] = {}
        self._urbs_lock = threading.Lock()
        self._write_lock = threading.Lock()

        self._proc_threads: list[threading.Thread] = []
        self._reply_threads: list[threading.Thread] = []
        self._unlink_threads: list[threading.Thread] = []

    def __enter__(self) -> WorkerPool:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def _mark_as_processing(self, seq_num: int) -> bool:
        with self._urbs_lock:
            if seq_num in self._urbs:
                return False
            self._urbs[seq_num] = UrbStatus.PROCESSING
            return True

    def _mark_as_unlink(self, seq_num: int) -> bool:
        with self._urbs_lock:
            if seq_num not in self._urbs:
                return False
            self._urbs[seq_num] = UrbStatus.UNLINKING
            return True

    def _mark_as_replying(self, seq_num: int) -> bool:
        """Move a URB to REPLYING; forget it if it was unlinked meanwhile."""
        with self._urbs_lock:
            if self._urbs.get(seq_num) == UrbStatus.PROCESSING:
                self._urbs[seq_num] = UrbStatus.REPLYING
                return True
            self._urbs.pop(seq_num, None)
            return False

    def _mark_as_replied(self, seq_num: int) -> bool:
        """Forget a URB; report whether it was still waiting for its reply."""
        with self._urbs_lock:
            return self._urbs.pop(seq_num, None) == UrbStatus.REPLYING

    def unlink(self, cmd: CmdUnlink) -> None:
        """Cancel the URB named by ``cmd`` and queue the RetUnlink reply."""
        self._log.debug("Unlink request received: %s", cmd)
        reply = RetUnlink(header=CmdHeader(command=Command.RET_UNLINK, seq_num=cmd.header.seq_num))
        if self._mark_as_unlink(cmd.unlink_seq_num):
            reply.status = -_LINUX_ECONNRESET
        else:
            self._log.debug(
                "Unlink is ignored, does not receive CmdSubmit yet: seqNum=%d unlinkSeqNum=%d",
                cmd.header.seq_num,
                cmd.unlink_seq_num,
            )
        self._unlink_queue.put(reply)

    def publish_cmd_submit(self, urb: CmdSubmit) -> None:
        """Queue a URB for processing; duplicates of an in-flight URB are dropped."""
        self._log.debug("Received CmdSubmit: %s", urb)
        if not self._mark_as_processing(urb.header.seq_num):
            self._log.error("Found duplicated URB, ignoring: %s", urb)
            return
        self._cmd_queue.put(urb)

    def set_device(self, device: Device) -> None:
        """Use ``device`` to process URBs."""
        self._device = device

    def start(self) -> None:
        """Start the processing and reply threads."""
        if self._device is None:
            raise RuntimeError("device does not exist in this worker pool")
        self._profile = self._device.worker_pool_profile()
        self._proc_threads = [
            self._spawn(self._process_loop) for _ in range(self._profile.maximum_proc_workers)
        ]
        self._reply_threads = [
            self._spawn(self._drain, self._ret_queue, self._reply_submit)
            for _ in range(self._profile.maximum_reply_workers)
        ]
        self._unlink_threads = [
            self._spawn(self._drain, self._unlink_queue, self._reply_unlink)
            for _ in range(self._profile.maximum_unlink_reply_workers)
        ]

    def stop(self) -> None:
        """Finish queued work, then stop all threads."""
        self._shutdown(self._cmd_queue, self._proc_threads)
        self._shutdown(self._ret_queue, self._reply_threads)
        self._shutdown(self._unlink_queue, self._unlink_threads)
        self._proc_threads, self._reply_threads, self._unlink_threads = [], [], []
        self._profile = None

    @staticmethod
    def _spawn(target: Callable, *args) -> threading.Thread:
        thread = threading.Thread(target=target, args=args, daemon=True)
        thread.start()
        return thread

    @staticmethod
    def _shutdown(work: queue.Queue, threads: list[threading.Thread]) -> None:
        for _ in threads:
            work.put(_STOP)
        for thread in threads:
            thread.join()

    @staticmethod
    def _drain(work: queue.Queue, handle: Callable) -> None:
        for item in iter(work.get, _STOP):
            handle(item)

    def _process_loop(self) -> None:
        for urb in iter(self._cmd_queue.get, _STOP):
            seq_num = urb.header.seq_num
            if not self._mark_as_replying(seq_num):
                self._log.debug("Unlinked URB detected before processing it, ignoring: %d", seq_num)
                continue
            try:
                reply = self._device.process(urb)
            except Exception:
                self._log.exception("device failed to process URB %d", seq_num)
                self._mark_as_replied(seq_num)
                continue
            self._ret_queue.put(reply)

    def _reply_submit(self, reply: RetSubmit) -> None:
        if not self._mark_as_replied(reply.header.seq_num):
            self._log.debug("Unlinked URB detected, ignoring: %d", reply.header.seq_num)
            return
        self._log.debug("Replying RetSubmit: %s", reply)
        self._send(reply, "RetSubmit")

    def _reply_unlink(self, reply: RetUnlink) -> None:
        self._log.debug("Replying RetUnlink: %s", reply)
        self._send(reply, "RetUnlink")

    def _send(self, message: Union[RetSubmit, RetUnlink], kind: str) -> None:
        # Header and body are buffered first so they reach the stream together.
        buf = io.BytesIO()
        try:
            message.header.encode(buf)
            message.encode(buf)
        except ProtocolError as exc:
            self._log.error(
                "unable to encode %s: %s (seqNum=%d)", kind, exc, message.header.seq_num
            )
        try:
            with self._write_lock:
                stream.write(self._writer, buf.getvalue())
        except StreamError as exc:
            self._log.error(
                "unable to write %s to stream: %s (seqNum=%d)", kind, exc, message.header.seq_num
            )