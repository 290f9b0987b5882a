from concurrent.futures import ThreadPoolExecutor
from secrets import token_bytes
from typing import List, Sequence

import pytest

from block import BLOCK_SIZE, Block, blocks_from_bytes
from padding_oracle import CipherFault, PaddingOracle
from recovery import RecoveryFailure, recover, recover_block, recover_intermediate
from util import aes_cbc_encrypt, aes_ecb_decrypt_block, fixed_xor


KEY = b"YELLOW SUBMARINE"
IV = bytes(range(16))
MAX_QUERIES_PER_BLOCK = 16 * 256 + 256


class CountingOracle:
    """
    Passes queries through to a real oracle, keeping every sequence it was asked about
    """
    def __init__(self, oracle: PaddingOracle):
        self.oracle = oracle
        self.queries: List[Sequence[Block]] = []

    def check_padding(self, sequence: Sequence[Block]) -> bool:
        self.queries.append(list(sequence))
        return self.oracle.check_padding(sequence)


class NeverOracle:
    def check_padding(self, sequence: Sequence[Block]) -> bool:
        return False


class FaultyOracle:
    def check_padding(self, sequence: Sequence[Block]) -> bool:
        raise CipherFault("cipher exploded")


def test_hello_world():
    plaintext = b"HELLO WORLD!!!!!"
    # 16 bytes of plaintext gets a whole block of padding; only attack the block that holds the message
    ciphertext = aes_cbc_encrypt(plaintext, key=KEY, iv=IV)[:BLOCK_SIZE]
    oracle = PaddingOracle(KEY)
    assert recover_block(Block(IV), Block(ciphertext), oracle) == plaintext


def test_hello_world_with_padding_block():
    plaintext = b"HELLO WORLD!!!!!"
    ciphertext = aes_cbc_encrypt(plaintext, key=KEY, iv=IV)
    assert recover(blocks_from_bytes(IV, ciphertext), PaddingOracle(KEY)) == plaintext


@pytest.mark.parametrize("length", range(1, 65))
def test_recovers_any_length(length):
    key, iv, plaintext = token_bytes(16), token_bytes(16), token_bytes(length)
    ciphertext = aes_cbc_encrypt(plaintext, key=key, iv=iv)
    assert recover(blocks_from_bytes(iv, ciphertext), PaddingOracle(key)) == plaintext


@pytest.mark.parametrize("key_size", [24, 32])
def test_recovers_with_wider_keys(key_size):
    key = token_bytes(key_size)
    plaintext = b"Attack at dawn, bring snacks"
    ciphertext = aes_cbc_encrypt(plaintext, key=key, iv=IV)
    assert recover(blocks_from_bytes(IV, ciphertext), PaddingOracle(key, key_size=key_size)) == plaintext


def test_threaded_matches_sequential():
    plaintext = b"The quick brown fox jumped over the lazy dog"
    ciphertext = aes_cbc_encrypt(plaintext, key=KEY, iv=IV)
    blocks = blocks_from_bytes(IV, ciphertext)
    oracle = PaddingOracle(KEY)
    assert recover(blocks, oracle, workers=8) == recover(blocks, oracle) == plaintext


def test_query_bound_per_block():
    for _ in range(5):
        key = token_bytes(16)
        ciphertext = aes_cbc_encrypt(token_bytes(15), key=key, iv=IV)
        oracle = CountingOracle(PaddingOracle(key))
        recover_block(Block(IV), Block(ciphertext), oracle)
        assert 0 < len(oracle.queries) <= MAX_QUERIES_PER_BLOCK


def test_only_two_block_probes_against_the_target():
    ciphertext = aes_cbc_encrypt(b"A" * 40, key=KEY, iv=IV)
    blocks = blocks_from_bytes(IV, ciphertext)
    original = list(blocks)
    oracle = CountingOracle(PaddingOracle(KEY))
    recover(blocks, oracle)

    assert blocks == original
    assert all(len(q) == 2 for q in oracle.queries)
    assert {q[1] for q in oracle.queries} == set(blocks[1:])
    # The real previous blocks are never needed by the oracle
    assert not any(q[0] == blocks[0] for q in oracle.queries)


def find_ambiguous_block(key: bytes) -> Block:
    """
    Find a ciphertext block whose intermediate value has I[14] == 0x02 and bit 1 of I[15] set. Against a zeroed
    crafted block, X[15] = I[15] ^ 0x02 then gives (coincidental) 0x02 0x02 padding, and is tried before the
    X[15] = I[15] ^ 0x01 that gives real 0x01 padding
    """
    for i in range(1 << 16):
        candidate = i.to_bytes(BLOCK_SIZE, "big")
        intermediate = aes_ecb_decrypt_block(candidate, key)
        if intermediate[14] == 0x02 and intermediate[15] & 0x02:
            return Block(candidate)
    raise AssertionError("No ambiguous block found")


def test_last_byte_ambiguity_picks_single_byte_padding():
    oracle = PaddingOracle(KEY)
    target = find_ambiguous_block(KEY)
    intermediate = aes_ecb_decrypt_block(target.to_bytes(), KEY)

    two_byte_guess = intermediate[15] ^ 0x02
    one_byte_guess = intermediate[15] ^ 0x01
    assert two_byte_guess < one_byte_guess
    accepted = [g for g in range(256) if oracle.check_padding([Block.zero().with_byte(15, g), target])]
    assert accepted == [two_byte_guess, one_byte_guess]

    assert recover_intermediate(target, oracle).to_bytes() == intermediate
    prev = Block(token_bytes(BLOCK_SIZE))
    assert recover_block(prev, target, oracle) == fixed_xor(intermediate, prev.to_bytes())


def test_last_byte_ambiguity_threaded():
    oracle = PaddingOracle(KEY)
    target = find_ambiguous_block(KEY)
    intermediate = aes_ecb_decrypt_block(target.to_bytes(), KEY)

    with ThreadPoolExecutor(max_workers=4) as executor:
        assert recover_intermediate(target, oracle, executor).to_bytes() == intermediate


def test_exhausted_guesses_raise():
    with pytest.raises(RecoveryFailure):
        recover([Block.zero(), Block.zero()], NeverOracle())


def test_cipher_fault_propagates():
    with pytest.raises(CipherFault):
        recover([Block.zero(), Block.zero()], FaultyOracle())


def test_bad_final_padding_raises():
    # A perfectly good oracle, but the "ciphertext" was never padded: a single 16 byte block encrypted raw
    oracle = PaddingOracle(KEY)
    ciphertext = aes_cbc_encrypt(b"A" * 15 + b"\x00", key=KEY, iv=IV)[:BLOCK_SIZE]
    with pytest.raises(RecoveryFailure):
        recover([Block(IV), Block(ciphertext)], oracle)


@pytest.mark.parametrize("blocks", [[], [Block.zero()]])
def test_needs_a_ciphertext_block(blocks):
    with pytest.raises(ValueError):
        recover(blocks, PaddingOracle(KEY))


def test_needs_a_worker():
    with pytest.raises(ValueError):
        recover([Block.zero(), Block.zero()], PaddingOracle(KEY), workers=0)
