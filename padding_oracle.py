import base64
import binascii
import logging
from secrets import token_bytes
from typing import Optional, Sequence, Tuple, Union

from block import BLOCK_SIZE, Block
from util import PaddingError, aes_cbc_decrypt_raw, aes_cbc_encrypt, unpad_pkcs7

"""
A CBC padding oracle

Models the server side of a padding oracle: something that holds a key, decrypts whatever IV and ciphertext it is
handed, and leaks one bit - whether the PKCS#7 padding of the result was good. Any other kind of failure is not a
"no", it's a fault, and is raised as CipherFault so that the attack can never mistake it for information.
"""


log = logging.getLogger(__name__)

AES_KEY_SIZES = (16, 24, 32)


class KeySizeError(ValueError):
    pass


class CipherFault(Exception):
    pass


BlockLike = Union[Block, bytes, bytearray]


class PaddingOracle:
    """
    >>> oracle = PaddingOracle(b"YELLOW SUBMARINE")
    >>> iv, ct = oracle.encrypt(b"Hack the planet")
    >>> oracle.check_padding([Block(iv), Block(ct)])
    True
    >>> oracle.check_padding([Block(iv).with_byte(15, iv[15] ^ 0x01 ^ 0x11), Block(ct)])
    False
    >>> oracle.check_padding([Block(iv), ct[:15]])
    Traceback (most recent call last):
    padding_oracle.CipherFault: Ciphertext length 15 is not a multiple of 16
    >>> oracle
    PaddingOracle(key_size=16)
    """
    _key: bytes

    def __init__(self, key: bytes, key_size: int = BLOCK_SIZE):
        """
        @param key: Raw AES key bytes
        @param key_size: The expected key length. Defaults to AES-128, pass 24 or 32 explicitly for wider keys

        >>> PaddingOracle(bytes(32))
        Traceback (most recent call last):
        padding_oracle.KeySizeError: Expected a 16 byte key, got 32 bytes
        >>> PaddingOracle(bytes(32), key_size=32)
        PaddingOracle(key_size=32)
        >>> PaddingOracle(bytes(20), key_size=20)
        Traceback (most recent call last):
        padding_oracle.KeySizeError: Unsupported AES key size 20, expected one of (16, 24, 32)
        """
        if key_size not in AES_KEY_SIZES:
            raise KeySizeError(f"Unsupported AES key size {key_size}, expected one of {AES_KEY_SIZES}")
        if len(key) != key_size:
            raise KeySizeError(f"Expected a {key_size} byte key, got {len(key)} bytes")
        self._key = bytes(key)

    @classmethod
    def from_key_file(cls, path: str, key_size: int = BLOCK_SIZE) -> "PaddingOracle":
        """
        Load the oracle's key from a file holding one line of Base64
        """
        with open(path, "r") as f:
            b64_key = f.readline().strip()
        try:
            key = base64.b64decode(b64_key, validate=True)
        except binascii.Error as e:
            raise KeySizeError(f"Key file {path} does not hold Base64 key material: {e}") from e
        log.debug("Loaded a %d byte key from %s", len(key), path)
        return cls(key, key_size=key_size)

    def __repr__(self):
        return f"{type(self).__name__}(key_size={len(self._key)})"

    def encrypt(self, plaintext: bytes, iv: Optional[bytes] = None) -> Tuple[bytes, bytes]:
        """
        PKCS#7 pad and CBC encrypt plaintext under the oracle's key, return (iv, ciphertext)

        Uses a random IV unless one is given
        """
        iv = iv if iv is not None else token_bytes(BLOCK_SIZE)
        return iv, aes_cbc_encrypt(plaintext, key=self._key, iv=iv)

    def check_padding(self, sequence: Sequence[BlockLike]) -> bool:
        """
        @param sequence: The IV followed by one or more ciphertext blocks
        @return: True if the decryption has valid PKCS#7 padding, False if it doesn't
        @raise CipherFault: on any failure that isn't a padding failure
        """
        if len(sequence) < 2:
            raise CipherFault(f"Need an IV and at least one ciphertext block, got {len(sequence)} block(s)")

        iv = bytes(sequence[0])
        ciphertext = b"".join(bytes(b) for b in sequence[1:])
        if len(iv) != BLOCK_SIZE:
            raise CipherFault(f"IV must be {BLOCK_SIZE} bytes, got {len(iv)}")
        if len(ciphertext) % BLOCK_SIZE:
            raise CipherFault(f"Ciphertext length {len(ciphertext)} is not a multiple of {BLOCK_SIZE}")

        try:
            plaintext = aes_cbc_decrypt_raw(ciphertext, key=self._key, iv=iv)
        except ValueError as e:
            raise CipherFault(f"Decryption failed: {e}") from e

        try:
            unpad_pkcs7(plaintext)
        except PaddingError:
            return False
        return True
