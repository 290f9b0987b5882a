import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import ExitStack
from typing import Iterable, Iterator, List, Optional, Sequence

from block import BLOCK_SIZE, Block
from util import PaddingError, unpad_pkcs7

"""
Byte-at-a-time plaintext recovery against a CBC padding oracle

For a target ciphertext block C and the block before it C', CBC decryption gives P = D(C) ^ C'. We don't know D(C),
the "intermediate" value I, but we can hand the oracle [X, C] for an X of our choosing, and it will tell us whether
I ^ X ends in valid padding. Walk j from the last byte to the first: with the bytes after j already forced to the
padding value 16 - j, exactly one value of X[j] makes the padding valid, and that value gives away I[j]. Then
P[j] = I[j] ^ C'[j].

The one catch is the very first byte we try. X[15] ^ I[15] == 0x01 is valid padding, but so is 0x02 if the byte
before it happens to decrypt to 0x02 (or 0x03 0x03 before a 0x03, and so on). So an acceptance at j == 15 is
double checked by disturbing X[14]: real single byte padding doesn't care, the coincidental longer padding breaks.
"""


log = logging.getLogger(__name__)

GUESSES = range(256)
LAST = BLOCK_SIZE - 1


class RecoveryFailure(Exception):
    pass


def _probes(oracle, target: Block, crafted: Block, j: int, executor: Optional[Executor]) -> Iterator[int]:
    """
    Yield the guesses for byte j of crafted that the oracle accepts, in ascending order

    Uses the executor to run a round's probes in parallel if there is one. Closing the generator cancels whatever
    probes haven't started yet
    """
    def probe(guess: int) -> bool:
        return oracle.check_padding([crafted.with_byte(j, guess), target])

    if executor is None:
        results: Iterable[bool] = map(probe, GUESSES)
    else:
        results = executor.map(probe, GUESSES)

    try:
        for guess, accepted in zip(GUESSES, results):
            if accepted:
                yield guess
    finally:
        close = getattr(results, "close", None)
        if close is not None:
            close()


def _is_single_byte_padding(oracle, target: Block, crafted: Block) -> bool:
    """
    The oracle accepted crafted at j == 15. Flip a bit of byte 14: if that breaks the padding, the padding was
    longer than one byte and the acceptance was a coincidence
    """
    disturbed = crafted.with_byte(LAST - 1, crafted.byte_at(LAST - 1) ^ 0x01)
    if oracle.check_padding([disturbed, target]):
        return True
    log.debug("Discarding guess %#04x for the last byte of %r, it only gave longer padding",
              crafted.byte_at(LAST), target)
    return False


def recover_intermediate(target: Block, oracle, executor: Optional[Executor] = None) -> Block:
    """
    @param target: A block of CBC ciphertext
    @param oracle: Anything with a check_padding(sequence) -> bool method
    @param executor: Optional executor used to run each guess round's probes concurrently
    @return: The raw block cipher decryption of target, before the CBC XOR
    @raise RecoveryFailure: if some byte position has no guess the oracle accepts
    """
    intermediate = bytearray(BLOCK_SIZE)

    for j in reversed(range(BLOCK_SIZE)):
        pad = BLOCK_SIZE - j
        crafted = Block.zero()
        for k in range(j + 1, BLOCK_SIZE):
            crafted = crafted.with_byte(k, pad ^ intermediate[k])

        accepted = _probes(oracle, target, crafted, j, executor)
        try:
            if j == LAST:
                guess = next((g for g in accepted
                              if _is_single_byte_padding(oracle, target, crafted.with_byte(j, g))), None)
            else:
                guess = next(accepted, None)
        finally:
            accepted.close()

        if guess is None:
            raise RecoveryFailure(f"No guess for byte {j} of {target!r} gave valid padding")

        intermediate[j] = guess ^ pad
        log.debug("Byte %d of %r: guess=%#04x pad=%#04x intermediate=%#04x",
                  j, target, guess, pad, intermediate[j])

    return Block(bytes(intermediate))


def recover_block(prev: Block, target: Block, oracle, executor: Optional[Executor] = None) -> bytes:
    """
    Recover the plaintext of target, where prev is the block (or IV) that precedes it in the real ciphertext

    Only [crafted, target] pairs are ever sent to the oracle; prev itself is just XORed in at the end
    """
    return recover_intermediate(target, oracle, executor).xor(prev).to_bytes()


def recover(sequence: Sequence[Block], oracle, workers: int = 1) -> bytes:
    """
    @param sequence: The IV followed by the ciphertext blocks
    @param oracle: A padding oracle over the key the ciphertext was produced with
    @param workers: How many oracle queries may be in flight at once within a guess round
    @return: The plaintext, with its PKCS#7 padding removed

    >>> from padding_oracle import PaddingOracle
    >>> from block import blocks_from_bytes
    >>> oracle = PaddingOracle(b"YELLOW SUBMARINE")
    >>> iv, ct = oracle.encrypt(b"Hack the planet")
    >>> recover(blocks_from_bytes(iv, ct), oracle)
    b'Hack the planet'
    >>> recover(blocks_from_bytes(iv, ct)[:1], oracle)
    Traceback (most recent call last):
    ValueError: Need an IV and at least one ciphertext block, got 1 block(s)
    """
    if len(sequence) < 2:
        raise ValueError(f"Need an IV and at least one ciphertext block, got {len(sequence)} block(s)")
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")

    plaintext: List[bytes] = []
    with ExitStack() as stack:
        executor = stack.enter_context(ThreadPoolExecutor(max_workers=workers)) if workers > 1 else None
        for i in range(1, len(sequence)):
            plaintext.append(recover_block(sequence[i - 1], sequence[i], oracle, executor))
            log.info("Recovered block %d/%d: %r", i, len(sequence) - 1, plaintext[-1])

    padded = b"".join(plaintext)
    try:
        return unpad_pkcs7(padded)
    except PaddingError as e:
        raise RecoveryFailure(f"Recovered plaintext does not end in valid padding: {padded[-BLOCK_SIZE:]!r}") from e
