"""
H2SProxy Server
Description: H2SProxy is a forward HTTP proxy that routes each request either
             directly or through a SOCKS5 upstream, depending on which CIDR
             rule the destination host falls into.
"""

import logging
import re
import signal
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

from urllib3 import HTTPHeaderDict

from .Core.ProxyDispatcher import ProxyDispatcher, ResponseWriter
from .Core.TransportSelector import TransportSelector
from .Core.errors import MalformedRequestBody
from .Core.types import InboundRequest
from .Profile import Profile

MAX_LINE = 65536
CHUNK_SIZE_RE = re.compile(rb"[0-9a-fA-F]+")
CONTENT_LENGTH_RE = re.compile(r"[0-9]+")


class ProxyRequestHandler(BaseHTTPRequestHandler, ResponseWriter):
    """
    Adapts one client connection to the dispatcher.

    Responses without a Content-Length are re-framed with chunked encoding for
    HTTP/1.1 clients, and delimited by closing the connection otherwise.
    """

    protocol_version = "HTTP/1.1"
    server_version = "H2SProxy"

    def do_GET(self):
        self.proxy_request()

    do_HEAD = do_GET
    do_POST = do_GET
    do_PUT = do_GET
    do_PATCH = do_GET
    do_DELETE = do_GET
    do_OPTIONS = do_GET

    def proxy_request(self):
        self._head_sent = False
        self._chunked = False

        headers = HTTPHeaderDict()
        for name, value in self.headers.items():
            headers.add(name, value)
        try:
            body = self._read_body()
        except MalformedRequestBody as e:
            self.server.logger.error(f"failed to read request body from {self.address_string()}: {e}")
            self.send_error(e.status, e.client_message)
            return
        if "Transfer-Encoding" in self.headers:
            # Transfer-Encoding overrides Content-Length; the decoded body is
            # re-framed by the outbound client
            headers.discard("Content-Length")

        request = InboundRequest(
            method=self.command,
            url=self.path,
            headers=headers,
            client_host=self.client_address[0],
            body=body,
            request_uri=self.path,
            remote_addr=f"{self.client_address[0]}:{self.client_address[1]}",
        )
        self.server.dispatcher.handle(request, self)

    def _read_body(self) -> Optional[bytes]:
        """
        Read the whole request body.

        Raises:
            MalformedRequestBody: Bad Content-Length, unsupported transfer
                coding or broken chunked framing
        """
        transfer_encoding = self.headers.get("Transfer-Encoding")
        if transfer_encoding is not None:
            if transfer_encoding.strip().lower() != "chunked":
                raise MalformedRequestBody("unsupported transfer encoding", HTTPStatus.NOT_IMPLEMENTED)
            return self._read_chunked_body() or None

        lengths = set(v.strip() for v in self.headers.get_all("Content-Length") or [])
        if len(lengths) > 1 or not all(CONTENT_LENGTH_RE.fullmatch(v) for v in lengths):
            raise MalformedRequestBody("invalid Content-Length")
        length = int(lengths.pop()) if lengths else 0
        if length == 0:
            return None
        data = self.rfile.read(length)
        if len(data) < length:
            raise MalformedRequestBody("truncated request body")
        return data

    def _read_chunked_body(self) -> bytes:
        data = bytearray()
        while True:
            line = self.rfile.readline(MAX_LINE)
            size_field = line.split(b";", 1)[0].strip()
            if not CHUNK_SIZE_RE.fullmatch(size_field):
                raise MalformedRequestBody("invalid chunked body")
            size = int(size_field, 16)
            if size == 0:
                # Discard trailers
                while True:
                    line = self.rfile.readline(MAX_LINE)
                    if not line:
                        raise MalformedRequestBody("truncated chunked body")
                    if line in (b"\r\n", b"\n"):
                        return bytes(data)
            chunk = self.rfile.read(size)
            if len(chunk) < size:
                raise MalformedRequestBody("truncated chunked body")
            data += chunk
            if self.rfile.readline(MAX_LINE) not in (b"\r\n", b"\n"):
                raise MalformedRequestBody("invalid chunked body")

    # ---- ResponseWriter ----

    def send_error(self, code, message=None, explain=None):
        """Send a plain-text error response and close the connection."""
        if getattr(self, "_head_sent", False):
            self.close_connection = True
            return
        code = HTTPStatus(code)
        body = f"{message or code.phrase}\n".encode("utf-8", "replace")
        self.send_response(code)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("X-Content-Type-Options", "nosniff")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)
        self.close_connection = True

    def write_head(self, status: int, reason: str, headers: HTTPHeaderDict):
        self.send_response_only(status, reason or None)
        for name, value in headers.iteritems():
            self.send_header(name, value)

        no_body = self.command == "HEAD" or 100 <= status < 200 or status in (204, 304)
        if not no_body and "Content-Length" not in headers:
            if self.request_version == "HTTP/1.1":
                self.send_header("Transfer-Encoding", "chunked")
                self._chunked = True
            else:
                self.send_header("Connection", "close")
                self.close_connection = True
        self.end_headers()
        self._head_sent = True

    def write(self, data: bytes):
        if not data:
            return
        if self._chunked:
            self.wfile.write(b"%x\r\n%s\r\n" % (len(data), data))
        else:
            self.wfile.write(data)

    def close_body(self):
        if self._chunked:
            self.wfile.write(b"0\r\n\r\n")

    def abort(self):
        self.close_connection = True

    def log_message(self, format, *args):
        self.server.logger.debug(f"{self.address_string()} - {format % args}")


class ProxyHTTPServer(ThreadingHTTPServer):
    """Threading HTTP server handing every request to one shared dispatcher."""

    daemon_threads = True

    def __init__(self, server_address, dispatcher: ProxyDispatcher, logger: logging.Logger):
        self.dispatcher = dispatcher
        self.logger = logger
        super().__init__(server_address, ProxyRequestHandler)


class H2SProxyServer:
    """
    A forward proxy server routing requests by destination CIDR rules.

    Attributes:
        profile (Profile): Listen address, routing rules and upstream timeout
        dispatcher (ProxyDispatcher): Shared, stateless request dispatcher
        httpd (ProxyHTTPServer): The listening HTTP server, once bound
        running (bool): Flag indicating if the server is running
    """

    def __init__(self, profile: Profile, logger: Optional[logging.Logger] = None):
        """
        Initialize the H2SProxy server.

        Args:
            profile (Profile): Startup configuration, read once
            logger (Logger): Logger to use (default: "h2sproxy")
        """
        self.profile = profile
        self.logger = logger or logging.getLogger("h2sproxy")
        self.dispatcher = ProxyDispatcher(
            profile.rule_set,
            TransportSelector(timeout=profile.timeout),
            logger=self.logger.getChild("dispatcher"),
        )
        self.httpd = None
        self.running = False

    @property
    def server_address(self):
        return self.httpd.server_address if self.httpd else None

    def bind(self):
        """
        Bind the listening socket to the profile's address.

        Raises:
            ValueError: Port is not a number
            OSError: Address cannot be bound
        """
        binding = self.profile.binding
        port = int(binding.port) if binding.port else 0
        self.httpd = ProxyHTTPServer((binding.host, port), self.dispatcher, self.logger)
        return self.server_address

    def signal_handler(self, sig, frame):
        """
        Handle shutdown signals and gracefully shut down the server.

        Args:
            sig (int): Signal number
            frame: Current stack frame
        """
        self.logger.info("Shutting down the server...")
        # shutdown() blocks until serve_forever returns, so it can't run here
        threading.Thread(target=self.stop, daemon=True).start()

    def start(self, install_signal_handlers: bool = True):
        """
        Start the proxy server and serve until stopped.

        Args:
            install_signal_handlers (bool): Stop on SIGINT/SIGTERM; only
                possible from the main thread
        """
        if self.httpd is None:
            self.bind()
        self.running = True

        if install_signal_handlers:
            signal.signal(signal.SIGINT, self.signal_handler)
            signal.signal(signal.SIGTERM, self.signal_handler)

        host, port = self.server_address[:2]
        self.logger.info(f"H2SProxy server started on {host}:{port}")
        try:
            self.httpd.serve_forever()
        finally:
            self.cleanup()

    def stop(self):
        """
        Stop the proxy server gracefully.
        """
        self.running = False
        if self.httpd:
            self.httpd.shutdown()

    def cleanup(self):
        """
        Release the listening socket.
        """
        self.running = False
        if self.httpd:
            self.httpd.server_close()
            self.logger.info("H2SProxy server stopped")
