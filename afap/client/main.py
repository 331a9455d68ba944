"""
Main entry point for the afap client.
Send one file to an afap server, encrypted with the key the server hands out
for this connection, then wait for the server's confirmation.
"""
import argparse
import logging
import sys

from afap.common.crypto import DEFAULT_PADDING, PADDING_HELP, PADDING_SCHEMES, FrameCodec
from afap.common.errors import FilesystemError, TransferError
from afap.common.protocol import DEFAULT_PORT, DEFAULT_TIMEOUT
from .net import check_source, send_file

log = logging.getLogger(__name__)


def parse_address(address: str):
    """
    Split "host:port" into its parts; the port defaults to DEFAULT_PORT.
    IPv6 literals are written in brackets, e.g. "[::1]:8080".
    """
    host, sep, port = address.rpartition(":")
    if not sep or address.endswith("]") or host.count(":") and not host.startswith("["):
        host, port = address, ""
    host = host.strip("[]")
    if not host:
        raise ValueError(f"missing host in {address!r}")
    if not port:
        return host, DEFAULT_PORT
    if not port.isdigit() or not 0 < int(port) <= 65535:
        raise ValueError(f"invalid port in {address!r}")
    return host, int(port)


def print_progress(done: int, total: int):
    percent = done / total * 100 if total else 100.0
    print(f"\rSending: {percent:.1f}% complete ({done}/{total} bytes)", end="", flush=True)


def main(argv=None) -> int:
    """
    Send a file.

    Step 1: Validate the address and the file before connecting
    Step 2: Run the session (key exchange, frames, confirmation)
    Step 3: Report the server's response
    """
    ap = argparse.ArgumentParser(prog="afap", description="Send a file to an afap server.",
                                 epilog="Example: afap localhost:8080 ./myfile.txt")
    ap.add_argument("address", help="Server address as host[:port]")
    ap.add_argument("file", help="Path of the file to send")
    ap.add_argument("--padding", choices=PADDING_SCHEMES, default=DEFAULT_PADDING, help=PADDING_HELP)
    ap.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT,
                    help="Seconds a read or write may block (0 disables)")
    ap.add_argument("--quiet", action="store_true", help="Do not print progress")
    ap.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    args = ap.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")

    # Step 1: pre-flight checks
    try:
        host, port = parse_address(args.address)
        check_source(args.file)
    except (ValueError, FilesystemError) as exc:
        log.error("%s", exc)
        return 1

    # Step 2: the session itself; any failure ends the process
    try:
        transfer, reply = send_file(host, port, args.file, codec=FrameCodec(args.padding),
                                    timeout=args.timeout or None,
                                    on_progress=None if args.quiet else print_progress)
    except TransferError as exc:
        if not args.quiet:
            print()
        log.error("Transfer failed: %s", exc)
        return 1

    # Step 3
    if not args.quiet:
        print()
    print(f"File sent successfully: {transfer.name} ({transfer.done} bytes)")
    if reply is not None:
        print(f"Server response: {reply}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
