import argparse
import logging
import socket
import threading
from typing import Optional

from afap.common.crypto import DEFAULT_KEY_SIZE, DEFAULT_PADDING, PADDING_HELP, PADDING_SCHEMES, rsa_generate, rsa_public_pem
from afap.common.errors import TransferError
from afap.common.messages import FileTransfer, SessionState
from afap.common.protocol import (CONFIRMATION, DEFAULT_HOST, DEFAULT_PORT, DEFAULT_RECEIVE_ROOT,
                                  DEFAULT_TIMEOUT, StreamReader, send_all)
from afap.server.reassembler import Reassembler
from afap.server.state import ServerConfig, ServerSession

log = logging.getLogger(__name__)


def handle_client(conn: socket.socket, addr, config: ServerConfig) -> Optional[FileTransfer]:
    ''' This function runs one session on an accepted connection
        Inputs:
        - conn: socket object representing the client connection
        - addr: address of the connected client
        - config: shared read-only server configuration
        Output: the completed transfer, or None if the session failed
    '''
    session = ServerSession(config=config, conn=conn, addr=addr)
    t = session.transfer
    log.info("New connection from: %s", session.peer)
    try:
        conn.settimeout(config.timeout)
        # Fresh key pair for this connection only
        session.private_key = rsa_generate(config.key_size)
        send_all(conn, rsa_public_pem(session.private_key))
        t.advance(SessionState.KEY_EXCHANGED)

        reader = StreamReader(conn)
        Reassembler(reader, session.private_key, config.codec(), config.receive_root, transfer=t).run()

        send_all(conn, CONFIRMATION)
        t.advance(SessionState.CONFIRMED)
        log.info("Received and decrypted file '%s' from %s (%d bytes)", t.name, session.peer, t.done)
        return t
    except (TransferError, OSError) as exc:
        t.abort()
        log.error("Session with %s aborted: %s", session.peer, exc)
        log.debug("Session failure details", exc_info=True)
        return None
    finally:
        session.private_key = None
        try:
            conn.close()
        except OSError:
            pass


class FileServer:
    ''' Accepts connections and runs each session on its own thread '''

    def __init__(self, config: ServerConfig):
        self.config = config
        self.sock: Optional[socket.socket] = None
        self._closing = threading.Event()

    def __enter__(self):
        if self.sock is None:
            self.bind()
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def address(self):
        return self.sock.getsockname()[:2]

    def bind(self):
        self.sock = socket.create_server((self.config.host, self.config.port))
        log.info("Server started on %s:%s", *self.address)
        return self.address

    def serve_forever(self):
        if self.sock is None:
            self.bind()
        while not self._closing.is_set():
            try:
                conn, addr = self.sock.accept()
            except OSError as exc:
                if self._closing.is_set():
                    break
                log.warning("Error accepting connection: %s", exc)
                continue
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            threading.Thread(target=handle_client, args=(conn, addr, self.config), daemon=True).start()

    def close(self):
        self._closing.set()
        if self.sock:
            try:
                # Wake up a thread blocked in accept()
                self.sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self.sock.close()


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="afap-server", description="Receive files sent with afap.")
    ap.add_argument("host", nargs="?", default=DEFAULT_HOST, help="Bind address")
    ap.add_argument("port", nargs="?", type=int, default=DEFAULT_PORT, help="Bind port")
    ap.add_argument("--root", default=DEFAULT_RECEIVE_ROOT, help="Directory received files are written to")
    ap.add_argument("--key-size", type=int, default=DEFAULT_KEY_SIZE, help="RSA key size per session, in bits")
    ap.add_argument("--padding", choices=PADDING_SCHEMES, default=DEFAULT_PADDING, help=PADDING_HELP)
    ap.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT,
                    help="Seconds a read or write may block (0 disables)")
    ap.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    return ap


def main(argv=None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        config = ServerConfig(host=args.host, port=args.port, receive_root=args.root,
                              key_size=args.key_size, padding=args.padding,
                              timeout=args.timeout or None)
    except ValueError as exc:
        ap.error(str(exc))

    server = FileServer(config)
    try:
        server.bind()
    except OSError as exc:
        log.error("Failed to start server: %s", exc)
        return 1
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        log.info("Shutting down")
    finally:
        server.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
