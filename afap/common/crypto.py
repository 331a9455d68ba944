from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa, padding
from cryptography.hazmat.primitives import hashes, serialization

from afap.common.errors import CryptoError, KeyExchangeError

DEFAULT_KEY_SIZE = 2048
MIN_KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537

PEM_END = b"-----END PUBLIC KEY-----\n"   # last line of every envelope

PKCS1V15 = "pkcs1v15"
OAEP = "oaep"
PADDING_SCHEMES = (OAEP, PKCS1V15)
DEFAULT_PADDING = OAEP
PADDING_HELP = ("Must match on both ends. pkcs1v15 gives larger chunks but cannot "
                "detect a wrong key or a corrupted frame")


def rsa_generate(bits: int = DEFAULT_KEY_SIZE):
    '''
    The function generates a fresh RSA private key for one session.
        Input: key size in bits (default 2048, at least MIN_KEY_SIZE)
        Output: private key object
    '''
    if bits < MIN_KEY_SIZE:
        raise KeyExchangeError(f"key size {bits} is below the minimum of {MIN_KEY_SIZE} bits")
    try:
        return rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=bits)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise KeyExchangeError(f"cannot generate {bits}-bit key: {exc}") from exc

def rsa_public_pem(priv) -> bytes:
    '''
    The function returns the public key envelope for a private key.
    Input:
        - RSA private key object
    Output:
        - PEM bytes of the public key (SubjectPublicKeyInfo)
    '''
    try:
        return priv.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo
        )
    except (ValueError, TypeError, AttributeError) as exc:
        raise KeyExchangeError(f"cannot serialize public key: {exc}") from exc

def load_public_pem(data: bytes) -> rsa.RSAPublicKey:
    '''
    This function decodes a public key envelope received from the server.
    The key is accepted as-is: nothing ties it to the server's identity.
    Input:
        - data: PEM bytes as read from the stream
    Output: RSA public key object
    '''
    try:
        pub = serialization.load_pem_public_key(data)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyExchangeError(f"cannot decode server public key: {exc}") from exc
    if not isinstance(pub, rsa.RSAPublicKey):
        raise KeyExchangeError(f"server key is not an RSA public key ({type(pub).__name__})")
    if pub.key_size < MIN_KEY_SIZE:
        raise KeyExchangeError(f"server key is too small ({pub.key_size} bits)")
    return pub


def frame_size(key_size: int) -> int:
    ''' This function returns the fixed on-wire length of one frame for a key size in bits '''
    return (key_size + 7) // 8


class FrameCodec:
    ''' Encrypts one bounded plaintext unit into exactly one fixed-size frame and back '''

    def __init__(self, scheme: str = DEFAULT_PADDING):
        if scheme not in PADDING_SCHEMES:
            raise ValueError(f"unknown padding scheme: {scheme!r}")
        self.scheme = scheme

    def __repr__(self):
        return f"FrameCodec({self.scheme!r})"

    def _padding(self):
        if self.scheme == OAEP:
            return padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()),
                                algorithm=hashes.SHA256(),
                                label=None)
        return padding.PKCS1v15()

    @property
    def overhead(self) -> int:
        ''' Bytes of each frame taken by padding '''
        if self.scheme == OAEP:
            return 2 * hashes.SHA256.digest_size + 2
        return 11

    def max_chunk_size(self, key_size: int) -> int:
        '''
        This function returns the largest plaintext unit one frame can carry.
        Input: key size in bits
        Output: byte count (190 for a 2048-bit key with OAEP, 245 with PKCS#1 v1.5)
        '''
        return frame_size(key_size) - self.overhead

    def encode_frame(self, plaintext: bytes, public_key) -> bytes:
        '''
        This function encrypts one plaintext unit with the session's public key.
        Padding is randomized, so equal units give different frames.
        Input:
            - plaintext: at most max_chunk_size(public_key.key_size) bytes
            - public_key: RSA public key object
        Output: ciphertext of exactly frame_size(public_key.key_size) bytes
        '''
        limit = self.max_chunk_size(public_key.key_size)
        if len(plaintext) > limit:
            raise CryptoError(f"plaintext unit of {len(plaintext)} bytes exceeds {limit}")
        try:
            return public_key.encrypt(plaintext, self._padding())
        except ValueError as exc:
            raise CryptoError(f"cannot encrypt frame: {exc}") from exc

    def decode_frame(self, ciphertext: bytes, private_key) -> bytes:
        '''
        This function decrypts one frame with the session's private key.
        Input:
            - ciphertext: one complete frame
            - private_key: RSA private key object
        Output: the plaintext unit
        '''
        expected = frame_size(private_key.key_size)
        if len(ciphertext) != expected:
            raise CryptoError(f"frame is {len(ciphertext)} bytes, expected {expected}")
        try:
            return private_key.decrypt(ciphertext, self._padding())
        except ValueError as exc:
            raise CryptoError(f"cannot decrypt frame: {exc}") from exc
