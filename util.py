import base64
from typing import Generator

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes


AES_BLOCK_SIZE = 16


def fixed_xor(b1: bytes, b2: bytes) -> bytes:
    """
    Take two bytes arguments of equal length, return their XOR

    >>> arg1 = bytes.fromhex('1c0111001f010100061a024b53535009181c')
    >>> arg2 = bytes.fromhex('686974207468652062756c6c277320657965')
    >>> fixed_xor(arg1, arg2).hex()
    '746865206b696420646f6e277420706c6179'

    >>> fixed_xor(b"AAAA", b"AAA")
    Traceback (most recent call last):
    ValueError: Arguments are of different length
    """
    if len(b1) != len(b2):
        raise ValueError("Arguments are of different length")
    return bytes(a ^ b for a, b in zip(b1, b2))


def chunkify(b: bytes, chunk_size: int) -> Generator[bytes, None, None]:
    """
    Yield chunk_size sized chunks from b

    >>> list(chunkify(b"ABCD", 2))
    [b'AB', b'CD']

    >>> list(chunkify(b"ABCDE", 2))
    [b'AB', b'CD', b'E']
    """
    for i in range(0, len(b), chunk_size):
        yield b[i:i + chunk_size]


def b64_line(data: bytes) -> str:
    """
    >>> b64_line(b"YELLOW SUBMARINE")
    'WUVMTE9XIFNVQk1BUklORQ=='
    """
    return base64.b64encode(data).decode()


def pad_pkcs7(data: bytes, block_size: int = AES_BLOCK_SIZE) -> bytes:
    """
    >>> pad_pkcs7(b"YELLOW SUBMARINE", 20)
    b'YELLOW SUBMARINE\\x04\\x04\\x04\\x04'
    >>> pad_pkcs7(b"YELLOW SUBMARINE", 17)
    b'YELLOW SUBMARINE\\x01'
    >>> len(pad_pkcs7(b"YELLOW SUBMARINE"))
    32
    """
    num_padding_bytes = block_size - len(data) % block_size
    return data + bytes([num_padding_bytes] * num_padding_bytes)


class PaddingError(Exception):
    pass


def unpad_pkcs7(data: bytes, block_size: int = AES_BLOCK_SIZE) -> bytes:
    """
    Strip PKCS#7 padding. The last byte p must be in [1, block_size] and the last p bytes must all equal p

    >>> unpad_pkcs7(b"Hello, world!\\x03\\x03\\x03")
    b'Hello, world!'
    >>> unpad_pkcs7(pad_pkcs7(b"Beware of the hazmat"))
    b'Beware of the hazmat'
    >>> unpad_pkcs7(b"Hello, world!\\x02\\x03")
    Traceback (most recent call last):
    util.PaddingError: Bad padding in b'Hello, world!\\x02\\x03'
    >>> unpad_pkcs7(b"A" * 15 + b"\\x00")
    Traceback (most recent call last):
    util.PaddingError: Bad padding length 0
    >>> unpad_pkcs7(b"A" * 15 + b"\\x11")
    Traceback (most recent call last):
    util.PaddingError: Bad padding length 17
    """
    if not data:
        raise PaddingError("Nothing to unpad")
    num_padding_bytes = data[-1]
    if not 1 <= num_padding_bytes <= min(block_size, len(data)):
        raise PaddingError(f"Bad padding length {num_padding_bytes}")
    if any(b != num_padding_bytes for b in data[-num_padding_bytes:]):
        raise PaddingError(f"Bad padding in {data!r}")
    return data[:-num_padding_bytes]


def aes_cbc_decrypt_raw(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
    """
    Decrypt ciphertext using AES in CBC mode with the given key, leaving any padding in place

    >>> key = b"YELLOW SUBMARINE"
    >>> iv = bytes(16)
    >>> aes_cbc_decrypt_raw(aes_cbc_encrypt(b"Play that funky music", key=key, iv=iv), key=key, iv=iv)
    b'Play that funky music\\x0b\\x0b\\x0b\\x0b\\x0b\\x0b\\x0b\\x0b\\x0b\\x0b\\x0b'

    >>> aes_cbc_decrypt_raw(b"too short", key=bytes(16), iv=bytes(16))
    Traceback (most recent call last):
    ValueError: The length of the provided data is not a multiple of the block length.

    >>> aes_cbc_decrypt_raw(b"A"*16, key=b"too short", iv=bytes(16))
    Traceback (most recent call last):
    ValueError: Invalid key size (72) for AES.
    """
    cipher = Cipher(algorithms.AES(key), modes.CBC(iv))
    decryptor = cipher.decryptor()
    return decryptor.update(ciphertext) + decryptor.finalize()


def aes_cbc_encrypt(plaintext: bytes, key: bytes, iv: bytes) -> bytes:
    """
    Encrypt plaintext using AES in CBC mode with the given key

    Automatically pads plaintext using PKCS#7

    >>> key = b"YELLOW SUBMARINE"
    >>> iv = bytes(16)
    >>> plaintext = b"That's a lotta words, too bad I ain't reading em"
    >>> ciphertext = aes_cbc_encrypt(plaintext, key=key, iv=iv)
    >>> len(ciphertext)
    64
    >>> unpad_pkcs7(aes_cbc_decrypt_raw(ciphertext, key=key, iv=iv)) == plaintext
    True
    """
    cipher = Cipher(algorithms.AES(key), modes.CBC(iv))
    encryptor = cipher.encryptor()
    return encryptor.update(pad_pkcs7(plaintext)) + encryptor.finalize()


def aes_ecb_decrypt_block(block: bytes, key: bytes) -> bytes:
    """
    The raw AES decryption of one block, i.e. the CBC intermediate value before XOR with the previous block

    >>> key = b"YELLOW SUBMARINE"
    >>> iv = bytes(range(16))
    >>> ct = aes_cbc_encrypt(b"A" * 15, key=key, iv=iv)
    >>> fixed_xor(aes_ecb_decrypt_block(ct, key), iv)
    b'AAAAAAAAAAAAAAA\\x01'
    """
    cipher = Cipher(algorithms.AES(key), modes.ECB())
    decryptor = cipher.decryptor()
    return decryptor.update(block) + decryptor.finalize()
