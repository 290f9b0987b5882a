#!/usr/bin/env python3
import argparse
import base64
import binascii
import logging
import os
import sys
from secrets import token_bytes
from typing import List, Optional, Tuple

from block import BLOCK_SIZE, Block, SizeError, blocks_from_bytes
from padding_oracle import AES_KEY_SIZES, CipherFault, KeySizeError, PaddingOracle
from recovery import RecoveryFailure, recover
from util import b64_line

"""
Run a padding oracle attack against a CBC encrypted ciphertext

The oracle is a local one built from the key file. The attack itself never sees the key, it only ever asks the oracle
whether a crafted ciphertext has good padding.

    cbc-attack --key <keyfile> --ctxt <ciphertext file>
"""


log = logging.getLogger(__name__)

USAGE = """usage:
  cbc-attack --key <keyfile> --ctxt <ciphertext file>
  cbc-attack --help
options:
  -k, --key        Specify the decryption key file for the oracle.
  -c, --ctxt       Specify the ciphertext file to attack.
  -w, --workers    Number of oracle queries to run at once (default 1).
  --key-size       Key size in bytes, one of 16, 24, 32 (default 16).
  -v, --verbose    Log each recovered byte.
  -h, --help       Display this message."""


class ConfigurationError(Exception):
    pass


class ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        raise ConfigurationError(message)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    >>> parse_arguments(["--key", "k.txt", "--ctxt", "c.txt"]).workers
    1
    >>> parse_arguments(["--key", "k.txt"])
    Traceback (most recent call last):
    attack.ConfigurationError: Missing ciphertext file to attack.
    >>> parse_arguments(["--help", "--key", "k.txt"])
    Traceback (most recent call last):
    attack.ConfigurationError: --help can't be combined with other options
    """
    parser = ArgumentParser(prog="cbc-attack", add_help=False)
    parser.add_argument("-h", "--help", action="store_true")
    parser.add_argument("-k", "--key")
    parser.add_argument("-c", "--ctxt")
    parser.add_argument("-w", "--workers", type=int, default=1)
    parser.add_argument("--key-size", type=int, choices=AES_KEY_SIZES, default=BLOCK_SIZE)
    parser.add_argument("-v", "--verbose", action="store_true")

    args = parser.parse_args(argv)

    if args.help:
        if args.key is not None or args.ctxt is not None:
            raise ConfigurationError("--help can't be combined with other options")
        return args
    if args.key is None:
        raise ConfigurationError("Missing key file.")
    if args.ctxt is None:
        raise ConfigurationError("Missing ciphertext file to attack.")
    if args.workers < 1:
        raise ConfigurationError(f"--workers must be at least 1, got {args.workers}")
    return args


def load_ciphertext(path: str) -> List[Block]:
    """
    Read a ciphertext file (line 1 the Base64 IV, line 2 the Base64 ciphertext) into a block sequence
    """
    if not os.path.isfile(path):
        raise ConfigurationError(f"Ciphertext file {path} does not exist!")
    with open(path, "r") as f:
        lines = [line.strip() for line in f.readlines()]
    if len(lines) < 2:
        raise ConfigurationError(f"Ciphertext file {path} must hold an IV line and a ciphertext line")
    try:
        iv, ciphertext = (base64.b64decode(line, validate=True) for line in lines[:2])
    except binascii.Error as e:
        raise ConfigurationError(f"Ciphertext file {path} is not Base64: {e}") from e
    return blocks_from_bytes(iv, ciphertext)


def load_oracle(path: str, key_size: int = BLOCK_SIZE) -> PaddingOracle:
    if not os.path.isfile(path):
        raise ConfigurationError(f"Key File {path} does not exist.")
    return PaddingOracle.from_key_file(path, key_size=key_size)


def write_challenge(key_path: str, ctxt_path: str, plaintext: bytes,
                    key: Optional[bytes] = None) -> Tuple[bytes, bytes, bytes]:
    """
    Encrypt plaintext under key (a random AES-128 key if none is given) and write out a key file and a ciphertext
    file that this tool can attack. Returns (key, iv, ciphertext)
    """
    key = key if key is not None else token_bytes(BLOCK_SIZE)
    iv, ciphertext = PaddingOracle(key, key_size=len(key)).encrypt(plaintext)
    with open(key_path, "w") as f:
        f.write(b64_line(key) + "\n")
    with open(ctxt_path, "w") as f:
        f.write(b64_line(iv) + "\n")
        f.write(b64_line(ciphertext) + "\n")
    return key, iv, ciphertext


def main(argv: Optional[List[str]] = None) -> int:
    try:
        args = parse_arguments(argv)
    except ConfigurationError as e:
        print(e)
        print(USAGE)
        return 1

    if args.help:
        print(USAGE)
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        oracle = load_oracle(args.key, key_size=args.key_size)
        blocks = load_ciphertext(args.ctxt)
        plaintext = recover(blocks, oracle, workers=args.workers)
    except (ConfigurationError, KeySizeError, SizeError) as e:
        print(e)
        return 1
    except (CipherFault, RecoveryFailure) as e:
        log.error("Attack failed: %s", e)
        return 1

    print(plaintext.decode("utf-8", errors="replace"))
    return 0


if __name__ == "__main__":
    sys.exit(main())
