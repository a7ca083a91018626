"""
Rescue permutation and keyed block cipher over the Curve25519 base field.

Parameters:
- field modulus P = 2^255 - 19
- state width 5, S-box x^5 (5 is coprime with P - 1, so x -> x^5 is a permutation)
- Cauchy MDS matrix, 10 double rounds
- round constants expanded from SHAKE-256 so every party derives the same tables

`RescueBlockCipher` is the keyed variant used in counter mode by
`shroud.crypto_core.cipher`; `rescue_hash` is the sponge used for the MAC tag.
"""
from __future__ import annotations

import hashlib
from typing import List, Sequence

P = 2**255 - 19
STATE_WIDTH = 5
RATE = 4
CAPACITY = STATE_WIDTH - RATE
ALPHA = 5
ALPHA_INV = pow(ALPHA, -1, P - 1)
N_ROUNDS = 10

_CONSTANTS_TAG = b"shroud-rescue-v1|round-constants"


def _expand_field_elements(tag: bytes, count: int) -> List[int]:
    # 48 bytes per element keeps the reduction bias below 2^-128
    raw = hashlib.shake_256(tag).digest(48 * count)
    return [int.from_bytes(raw[48 * i: 48 * (i + 1)], "little") % P for i in range(count)]


def _cauchy_mds(width: int) -> List[List[int]]:
    xs = list(range(width))
    ys = list(range(width, 2 * width))
    return [[pow((x - y) % P, -1, P) for y in ys] for x in xs]


MDS = _cauchy_mds(STATE_WIDTH)

_flat = _expand_field_elements(_CONSTANTS_TAG, STATE_WIDTH * (2 * N_ROUNDS + 1))
ROUND_CONSTANTS: List[List[int]] = [
    _flat[STATE_WIDTH * i: STATE_WIDTH * (i + 1)] for i in range(2 * N_ROUNDS + 1)
]
del _flat


def sbox(state: Sequence[int]) -> List[int]:
    return [pow(x, ALPHA, P) for x in state]


def sbox_inv(state: Sequence[int]) -> List[int]:
    return [pow(x, ALPHA_INV, P) for x in state]


def mds_mul(state: Sequence[int]) -> List[int]:
    return [sum(row[j] * state[j] for j in range(STATE_WIDTH)) % P for row in MDS]


def add(a: Sequence[int], b: Sequence[int]) -> List[int]:
    return [(x + y) % P for x, y in zip(a, b)]


def _rounds(state: Sequence[int], keys: Sequence[Sequence[int]]) -> List[int]:
    s = add(state, keys[0])
    for r in range(N_ROUNDS):
        s = add(mds_mul(sbox(s)), keys[2 * r + 1])
        s = add(mds_mul(sbox_inv(s)), keys[2 * r + 2])
    return s


def permute(state: Sequence[int]) -> List[int]:
    """Unkeyed Rescue permutation (round constants act as round keys)."""
    if len(state) != STATE_WIDTH:
        raise ValueError(f"Rescue state must have {STATE_WIDTH} elements")
    return _rounds([x % P for x in state], ROUND_CONSTANTS)


def rescue_hash(elements: Sequence[int]) -> int:
    """
    Sponge over `permute`: absorb `RATE` elements at a time, squeeze one.

    The input length is written into the capacity element before absorbing and the
    message is padded with a single 1 followed by zeros.
    """
    state = [0] * STATE_WIDTH
    state[-1] = len(elements) % P
    padded = [x % P for x in elements] + [1]
    while len(padded) % RATE:
        padded.append(0)
    for i in range(0, len(padded), RATE):
        chunk = padded[i: i + RATE]
        state = add(state, chunk + [0] * CAPACITY)
        state = permute(state)
    return state[0]


class RescueBlockCipher:
    """Rescue keyed with a 5-element key; the key schedule runs the same rounds."""

    def __init__(self, key: Sequence[int]):
        if len(key) != STATE_WIDTH:
            raise ValueError(f"Rescue key must have {STATE_WIDTH} elements")
        self.round_keys = self._key_schedule([k % P for k in key])

    @staticmethod
    def _key_schedule(key: List[int]) -> List[List[int]]:
        k = add(key, ROUND_CONSTANTS[0])
        keys = [k]
        for r in range(N_ROUNDS):
            k = add(mds_mul(sbox(k)), ROUND_CONSTANTS[2 * r + 1])
            keys.append(k)
            k = add(mds_mul(sbox_inv(k)), ROUND_CONSTANTS[2 * r + 2])
            keys.append(k)
        return keys

    def encrypt_block(self, block: Sequence[int]) -> List[int]:
        if len(block) != STATE_WIDTH:
            raise ValueError(f"Rescue block must have {STATE_WIDTH} elements")
        return _rounds([x % P for x in block], self.round_keys)
