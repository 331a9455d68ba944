class TransferError(Exception):
    """Base class for every failure that ends a transfer session."""
    pass


class PeerConnectionError(TransferError, ConnectionError):
    """Raised when dialing, accepting, reading or writing the stream fails."""
    pass


class TransferTimeoutError(PeerConnectionError, TimeoutError):
    """Raised when a blocking read or write runs past its deadline."""
    pass


class KeyExchangeError(TransferError):
    """Raised when the session key cannot be generated, encoded or parsed."""
    pass


class CryptoError(TransferError):
    """Raised when a frame cannot be encrypted or decrypted."""
    pass


class FilesystemError(TransferError, OSError):
    """Raised when the source file cannot be read or the output cannot be written."""
    pass


class SessionStateError(TransferError):
    """Raised when a session is moved on after it has already ended."""
    pass
