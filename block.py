from dataclasses import dataclass
from typing import List

from util import AES_BLOCK_SIZE, chunkify, fixed_xor


BLOCK_SIZE = AES_BLOCK_SIZE


class SizeError(ValueError):
    pass


def _check_index(idx: int) -> None:
    if not 0 <= idx < BLOCK_SIZE:
        raise IndexError(f"Block index {idx} out of range [0, {BLOCK_SIZE - 1}]")


@dataclass(frozen=True)
class Block:
    """
    An immutable 16 byte ciphertext/message block. Anything that "modifies" a block returns a new one

    >>> b = Block.from_bytes(b"YELLOW SUBMARINE")
    >>> b.byte_at(0)
    89
    >>> b.with_byte(0, ord("M")).to_bytes()
    b'MELLOW SUBMARINE'
    >>> b.to_bytes()
    b'YELLOW SUBMARINE'
    >>> b.xor(b) == Block.zero()
    True
    >>> Block.from_bytes(b"too short")
    Traceback (most recent call last):
    block.SizeError: Blocks must be 16 bytes in size, got 9
    """
    data: bytes

    def __post_init__(self):
        if not isinstance(self.data, bytes):
            # Snapshot bytearrays/memoryviews so the caller can't mutate us later
            object.__setattr__(self, "data", bytes(self.data))
        if len(self.data) != BLOCK_SIZE:
            raise SizeError(f"Blocks must be {BLOCK_SIZE} bytes in size, got {len(self.data)}")

    @classmethod
    def zero(cls) -> "Block":
        return cls(bytes(BLOCK_SIZE))

    @classmethod
    def from_bytes(cls, buf: bytes) -> "Block":
        return cls(bytes(buf))

    def xor(self, other: "Block") -> "Block":
        return Block(fixed_xor(self.data, other.data))

    def with_byte(self, idx: int, value: int) -> "Block":
        """
        >>> Block.zero().with_byte(16, 1)
        Traceback (most recent call last):
        IndexError: Block index 16 out of range [0, 15]
        >>> Block.zero().with_byte(-1, 1)
        Traceback (most recent call last):
        IndexError: Block index -1 out of range [0, 15]
        >>> Block.zero().with_byte(0, 256)
        Traceback (most recent call last):
        ValueError: Byte value 256 out of range [0, 255]
        """
        _check_index(idx)
        if not 0 <= value <= 0xff:
            raise ValueError(f"Byte value {value} out of range [0, 255]")
        data = bytearray(self.data)
        data[idx] = value
        return Block(bytes(data))

    def byte_at(self, idx: int) -> int:
        _check_index(idx)
        return self.data[idx]

    def to_bytes(self) -> bytes:
        return bytes(self.data)

    def __bytes__(self) -> bytes:
        return self.to_bytes()

    def __len__(self) -> int:
        return BLOCK_SIZE

    def __repr__(self):
        return f"Block({self.data.hex()})"

    def __str__(self):
        """
        >>> print(Block.from_bytes(bytes(range(16))))
        0x00 0x01 0x02 0x03 0x04 0x05 0x06 0x07 0x08 0x09 0x0a 0x0b 0x0c 0x0d 0x0e 0x0f
        """
        return " ".join(f"0x{b:02x}" for b in self.data)


def blocks_from_bytes(iv: bytes, ciphertext: bytes) -> List[Block]:
    """
    Build a block sequence: the IV first, then each ciphertext block in order

    >>> blocks = blocks_from_bytes(bytes(16), b"A" * 32)
    >>> len(blocks)
    3
    >>> blocks[0] == Block.zero()
    True
    >>> blocks_from_bytes(bytes(16), b"A" * 20)
    Traceback (most recent call last):
    block.SizeError: Ciphertext must be a positive multiple of 16 bytes, got 20
    """
    if not ciphertext or len(ciphertext) % BLOCK_SIZE:
        raise SizeError(f"Ciphertext must be a positive multiple of {BLOCK_SIZE} bytes, got {len(ciphertext)}")
    return [Block.from_bytes(iv), *(Block(chunk) for chunk in chunkify(ciphertext, BLOCK_SIZE))]
