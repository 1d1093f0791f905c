"""
QLab OSC Transport and Request/Reply Coordinator

Handles all OSC traffic with a running QLab instance (default port 53000).

QLab answers every request on "/reply" + the request address, sent back to
the UDP port the request came from. The controller therefore sends from the
same socket its listener is bound to; a background thread decodes inbound
datagrams and routes them:

  /reply/...   -> the oldest pending waiter registered for that address
  /update/...  -> the optional on_update callback (push notifications)

Requests are synchronous from the caller's side: send_with_retry() blocks
until the correlated reply arrives or the timeout elapses. Timeouts are
returned as OscReply values, never raised.

Example:
  ctrl = QLabController("127.0.0.1", 53000)
  ctrl.start()
  reply = ctrl.send_with_retry("/connect", "1234")
  if reply.ok:
      ctrl.set_workspace_id(reply.workspace_id)
"""

import itertools
import logging
import random
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from pythonosc.dispatcher import Dispatcher
from pythonosc.osc_message_builder import OscMessageBuilder
from pythonosc.osc_server import ThreadingOSCUDPServer

from . import addresses
from .replies import OscReply

logger = logging.getLogger("qlab.controller")

DEFAULT_TIMEOUT = 10.0
RETRY_BACKOFF = 0.1
DISCONNECT_THRESHOLD = 2


class _ReplyWaiter:
    """One in-flight request waiting for its /reply message."""

    __slots__ = ("address", "request_id", "event", "reply")

    def __init__(self, address: str, request_id: int):
        self.address = address
        self.request_id = request_id
        self.event = threading.Event()
        self.reply: Optional[OscReply] = None


class QLabController:
    """Request/reply OSC client for one QLab workspace connection"""

    def __init__(self,
                 host: str = "127.0.0.1",
                 port: int = 53000,
                 timeout: float = DEFAULT_TIMEOUT,
                 max_retries: int = 0,
                 dry_run: bool = False,
                 listen_host: str = "0.0.0.0",
                 listen_port: int = 0,
                 on_disconnect: Optional[Callable[[], None]] = None,
                 on_update: Optional[Callable[[str, List[Any]], None]] = None):
        """
        Args:
            host: QLab machine address
            port: QLab OSC port (default: 53000)
            timeout: Seconds to wait for each reply (raise to 60+ for very
                large workspaces)
            max_retries: Extra attempts after a timeout (default: 0)
            dry_run: Answer write operations locally instead of sending them
            listen_host / listen_port: Local socket for send + receive
                (port 0 picks a free port)
            on_disconnect: Called once after repeated timeouts on a live
                connection
            on_update: Called with (address, args) for /update pushes
        """
        self.host = host
        self.port = port
        self.timeout = timeout
        self.max_retries = max_retries
        self.dry_run = dry_run
        self.listen_host = listen_host
        self.listen_port = listen_port
        self.on_disconnect = on_disconnect
        self.on_update = on_update

        self.workspace_id: Optional[str] = None

        self._server: Optional[ThreadingOSCUDPServer] = None
        self._server_thread: Optional[threading.Thread] = None

        # reply address + "#" + request id -> waiter, in registration order
        self._handlers: Dict[str, _ReplyWaiter] = {}
        self._lock = threading.Lock()
        self._request_ids = itertools.count(1)

        self.consecutive_errors = 0
        self.was_connected = False

    # ==================== LIFECYCLE ====================

    def start(self):
        """Bind the local socket and start the listener thread."""
        if self._server is not None:
            return
        dispatcher = Dispatcher()
        dispatcher.set_default_handler(self._handle_message)
        self._server = ThreadingOSCUDPServer((self.listen_host, self.listen_port), dispatcher)
        self.listen_port = self._server.server_address[1]
        self._server_thread = threading.Thread(
            target=self._server.serve_forever, name="qlab-osc-listener", daemon=True
        )
        self._server_thread.start()
        logger.debug("OSC listener on %s:%d -> QLab %s:%d",
                     self.listen_host, self.listen_port, self.host, self.port)

    def shutdown(self):
        """Stop the listener and release any pending waiters."""
        server = self._server
        self._server = None
        if server is not None:
            server.shutdown()
            server.server_close()
        self._server_thread = None
        with self._lock:
            pending = list(self._handlers.values())
            self._handlers.clear()
        for waiter in pending:
            waiter.event.set()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
        return False

    @property
    def running(self) -> bool:
        return self._server is not None

    def set_workspace_id(self, workspace_id: Optional[str]):
        self.workspace_id = workspace_id

    def resolve(self, address: str) -> str:
        return addresses.resolve_address(address, self.workspace_id)

    # ==================== SENDING ====================

    def _transmit(self, address: str, args: List[Any]):
        """Encode and send one OSC message from the listener socket."""
        if self._server is None:
            self.start()
        builder = OscMessageBuilder(address=address)
        for arg in args:
            builder.add_arg(arg)
        message = builder.build()
        self._server.socket.sendto(message.dgram, (self.host, self.port))

    def send(self, address: str, *args):
        """Fire-and-forget send (no reply expected)."""
        resolved = self.resolve(address)
        if self.dry_run and addresses.is_write(resolved, bool(args)):
            logger.info("[DRY RUN] would send %s %s", resolved, list(args))
            return
        logger.debug("OSC send %s %s", resolved, list(args))
        self._transmit(resolved, list(args))

    def send_with_retry(self,
                        address: str,
                        *args,
                        timeout: Optional[float] = None,
                        max_retries: Optional[int] = None) -> OscReply:
        """
        Send a request and block until its reply arrives.

        Args:
            address: Workspace-relative or absolute OSC address
            *args: OSC arguments
            timeout: Per-attempt timeout in seconds (default: self.timeout)
            max_retries: Extra attempts after a timeout (default: self.max_retries)

        Returns:
            OscReply: parsed reply, or a TIMEOUT reply after the last attempt
        """
        resolved = self.resolve(address)
        if timeout is None:
            timeout = self.timeout
        if max_retries is None:
            max_retries = self.max_retries

        if self.dry_run and addresses.is_write(resolved, bool(args)):
            return self._dry_run_reply(resolved, list(args))

        expected = addresses.reply_address(resolved)
        for attempt in range(max_retries + 1):
            waiter = self._register(expected)
            logger.debug("OSC request %s %s (attempt %d/%d, id %d)",
                         resolved, list(args), attempt + 1, max_retries + 1, waiter.request_id)
            self._transmit(resolved, list(args))

            if waiter.event.wait(timeout) and waiter.reply is not None:
                self.consecutive_errors = 0
                self.was_connected = True
                return waiter.reply

            self._unregister(expected, waiter.request_id)
            if attempt < max_retries:
                logger.debug("Timeout on %s, retrying", resolved)
                time.sleep(RETRY_BACKOFF)

        self._record_timeout(resolved, timeout, max_retries)
        return OscReply.timeout(resolved)

    def _record_timeout(self, address: str, timeout: float, max_retries: int):
        self.consecutive_errors += 1
        logger.warning("No reply from QLab for %s after %d attempt(s) (%.1fs timeout)",
                       address, max_retries + 1, timeout)
        if address.endswith("/cueLists"):
            logger.warning("Large workspaces can take a while to list; "
                           "increase QLAB_TIMEOUT or QLAB_MAX_RETRIES")

        if self.was_connected and self.consecutive_errors >= DISCONNECT_THRESHOLD:
            self.was_connected = False
            logger.error("QLab stopped responding (%d consecutive timeouts)", self.consecutive_errors)
            if self.on_disconnect is not None:
                self.on_disconnect()

    def _dry_run_reply(self, address: str, args: List[Any]) -> OscReply:
        logger.info("[DRY RUN] %s %s", address, args)
        data: Any = "ok"
        if address.endswith("/new"):
            data = "DRYRUN-%08X" % random.getrandbits(32)
        return OscReply(address=address, data=data, workspace_id=self.workspace_id)

    # ==================== REPLY ROUTING ====================

    def _register(self, reply_addr: str) -> _ReplyWaiter:
        with self._lock:
            request_id = next(self._request_ids)
            waiter = _ReplyWaiter(reply_addr, request_id)
            self._handlers[f"{reply_addr}#{request_id}"] = waiter
        return waiter

    def _unregister(self, reply_addr: str, request_id: int):
        with self._lock:
            self._handlers.pop(f"{reply_addr}#{request_id}", None)

    def pending_requests(self) -> int:
        with self._lock:
            return len(self._handlers)

    def _handle_message(self, address: str, *args):
        """Dispatcher default handler, runs on the listener thread."""
        if address.startswith(addresses.UPDATE_PREFIX):
            logger.debug("OSC update %s %s", address, list(args))
            if self.on_update is not None:
                self.on_update(address, list(args))
            return

        if not address.startswith(addresses.REPLY_PREFIX):
            logger.debug("Ignoring unsolicited OSC message %s", address)
            return

        with self._lock:
            match_key = None
            for key, waiter in self._handlers.items():
                if self._reply_matches(waiter.address, address):
                    match_key = key
                    break
            waiter = self._handlers.pop(match_key) if match_key else None

        if waiter is None:
            logger.debug("Reply with no waiter: %s", address)
            return

        payload = args[0] if args else ""
        waiter.reply = OscReply.from_json(address[len(addresses.REPLY_PREFIX):], payload)
        waiter.event.set()

    @staticmethod
    def _reply_matches(expected: str, received: str) -> bool:
        if expected == received:
            return True
        # QLab answers app-level requests under the workspace it connected to
        prefix = addresses.REPLY_PREFIX + "/workspace/"
        if received.startswith(prefix):
            rest = received[len(prefix):]
            slash = rest.find("/")
            if slash >= 0:
                return addresses.REPLY_PREFIX + rest[slash:] == expected
        return False
