"""
Counter-mode cipher over field elements.

    encrypt(v, k, c) = v + H(k, c)
    decrypt(e, k, c) = e - H(k, c)

The cipher is unauthenticated; tampering only surfaces when a decrypted
opening fails to reconstruct its commitment downstream.
"""

from enum import IntEnum

from shielded_ledger.crypto import Field, Point, hash_fields

U32_MAX = 2**32 - 1


class Counter(IntEnum):
    AMOUNT = 0
    TOKEN = 1
    PERSONAL_C_TOT_X = 3
    PERSONAL_C_TOT_Y = 4
    NULLIFIER = 6


def keystream(key: Field, counter: int) -> Field:
    if not 0 <= int(counter) <= U32_MAX:
        raise ValueError(f"counter {counter} is not a u32")
    return hash_fields(key, int(counter))


def encrypt(value, key: Field, counter: int) -> Field:
    return Field(value) + keystream(key, counter)


def decrypt(ciphertext, key: Field, counter: int) -> Field:
    return Field(ciphertext) - keystream(key, counter)


def encrypt_point(point: Point, key: Field) -> tuple[Field, Field]:
    x, y = point.xy
    return (
        encrypt(x, key, Counter.PERSONAL_C_TOT_X),
        encrypt(y, key, Counter.PERSONAL_C_TOT_Y),
    )


def decrypt_point(ciphertext: tuple, key: Field) -> tuple[Field, Field]:
    """
    Returns the decrypted coordinates without validating them: a wrong key
    yields garbage that is generally not on the curve.
    """
    x, y = ciphertext
    return (
        decrypt(x, key, Counter.PERSONAL_C_TOT_X),
        decrypt(y, key, Counter.PERSONAL_C_TOT_Y),
    )


def opens_to(ciphertext: tuple, key: Field, point: Point) -> bool:
    return decrypt_point(ciphertext, key) == point.xy
