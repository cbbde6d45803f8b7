"""
MurmurHash64 as used by Azure Resource Manager's uniqueString(), and the
13-character base32 token derived from it.
"""

_MASK32 = 0xFFFFFFFF
_MASK64 = 0xFFFFFFFFFFFFFFFF

_C1 = 0x239B961B
_C2 = 0xAB0E9789

TOKEN_ALPHABET = "abcdefghijklmnopqrstuvwxyz234567"
TOKEN_LENGTH = 13


def _rotl32(x: int, r: int) -> int:
    return ((x << r) | (x >> (32 - r))) & _MASK32


def _fmix32(h: int) -> int:
    h = ((h ^ (h >> 16)) * 0x85EBCA6B) & _MASK32
    h = ((h ^ (h >> 13)) * 0xC2B2AE35) & _MASK32
    return h ^ (h >> 16)


def _mix_k1(k1: int) -> int:
    k1 = (k1 * _C1) & _MASK32
    k1 = _rotl32(k1, 15)
    return (k1 * _C2) & _MASK32


def _mix_k2(k2: int) -> int:
    k2 = (k2 * _C2) & _MASK32
    k2 = _rotl32(k2, 17)
    return (k2 * _C1) & _MASK32


def murmurhash64(data: bytes, seed: int = 0) -> int:
    """
    Return the 64-bit digest of ``data``.

    Blocks of 8 bytes are read as two little-endian 32-bit words, one per lane.
    The result is ``h2 << 32 | h1``.
    """
    seed &= _MASK32
    h1 = seed
    h2 = seed
    length = len(data)

    index = 0
    while index + 7 < length:
        k1 = int.from_bytes(data[index:index + 4], "little")
        k2 = int.from_bytes(data[index + 4:index + 8], "little")

        h1 ^= _mix_k1(k1)
        h1 = _rotl32(h1, 19)
        h1 = (h1 + h2) & _MASK32
        h1 = (h1 * 5 + 0x561CCD1B) & _MASK32

        h2 ^= _mix_k2(k2)
        h2 = _rotl32(h2, 13)
        h2 = (h2 + h1) & _MASK32
        h2 = (h2 * 5 + 0x0BCAA747) & _MASK32

        index += 8

    tail = length - index
    if tail > 0:
        h1 ^= _mix_k1(int.from_bytes(data[index:index + min(tail, 4)], "little"))
        if tail > 4:
            h2 ^= _mix_k2(int.from_bytes(data[index + 4:length], "little"))

    h1 ^= length & _MASK32
    h2 ^= length & _MASK32

    h1 = (h1 + h2) & _MASK32
    h2 = (h2 + h1) & _MASK32

    h1 = _fmix32(h1)
    h2 = _fmix32(h2)

    h1 = (h1 + h2) & _MASK32
    h2 = (h2 + h1) & _MASK32

    return (h2 << 32) | h1


def base32_token(value: int) -> str:
    """Encode the top 65 bit positions of a 64-bit value as 13 lowercase chars."""
    value &= _MASK64
    chars = []
    for _ in range(TOKEN_LENGTH):
        chars.append(TOKEN_ALPHABET[value >> 59])
        value = (value << 5) & _MASK64
    return "".join(chars)
