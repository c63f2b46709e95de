# Mock link peer for testing
import socket
import struct
import threading
import time
import logging

logger = logging.getLogger(__name__)


class MockLinkServer:
    """
    In-process TCP peer standing in for the hardware bridge.

    Listens on an ephemeral port, accepts one client at a time, records
    everything it receives and can push raw bytes to the client.
    """

    def __init__(self, host='127.0.0.1'):
        self.host = host
        self.port = None
        self.running = False
        self.received = bytearray()
        self.connections = 0
        # when False the peer stops reading, so the client's writes back up
        self.reading = True
        self._client = None
        self._server = None
        self._lock = threading.Lock()
        self._connected = threading.Event()

    def start(self):
        """Start listening; returns the bound port."""
        self._server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._server.bind((self.host, 0))
        self._server.listen(4)
        self._server.settimeout(0.2)
        self.port = self._server.getsockname()[1]
        self.running = True

        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()
        logger.info(f"Mock link server started on {self.host}:{self.port}")
        return self.port

    def _run(self):
        while self.running:
            try:
                client, addr = self._server.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            logger.info(f"Connection from {addr}")
            client.settimeout(0.2)
            with self._lock:
                self._client = client
                self.connections += 1
            self._connected.set()
            self._serve(client)

    def _serve(self, client):
        while self.running:
            if not self.reading:
                time.sleep(0.05)
                continue
            try:
                data = client.recv(1024)
            except socket.timeout:
                continue
            except OSError:
                break
            if not data:
                break
            with self._lock:
                self.received.extend(data)

        with self._lock:
            if self._client is client:
                self._client = None
        self._connected.clear()
        try:
            client.close()
        except OSError:
            pass

    def wait_for_client(self, timeout=2.0):
        return self._connected.wait(timeout)

    def wait_for_bytes(self, count, timeout=2.0):
        """Wait until at least ``count`` bytes were received."""
        deadline = time.time() + timeout
        while time.time() < deadline:
            with self._lock:
                if len(self.received) >= count:
                    return bytes(self.received)
            time.sleep(0.01)
        with self._lock:
            return bytes(self.received)

    def send(self, data):
        """Push raw bytes to the connected client."""
        with self._lock:
            client = self._client
        if client is None:
            raise RuntimeError("No client connected")
        client.sendall(data)

    def drop_client(self):
        """Close the current client connection from the server side."""
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            try:
                client.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            client.close()

    def reset_client(self):
        """Abort the current client connection with a TCP reset."""
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            client.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack('ii', 1, 0))
            client.close()

    def stop(self):
        self.running = False
        self.drop_client()
        if self._server:
            self._server.close()
        logger.info("Mock link server stopped")


def wait_until(predicate, timeout=2.0, interval=0.01):
    """Poll predicate until it is true or the timeout elapses."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
