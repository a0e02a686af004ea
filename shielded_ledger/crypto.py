"""
Field, curve and commitment primitives.

!Important! Everything here must agree bit-for-bit with the proving system.
Noir with Barretenberg embeds the Grumpkin curve in the BN254 scalar field, so
`Field` is Noir's native field and points live on y^2 = x^3 - 17 over it.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from hashlib import sha256
from itertools import product

from keum import PrimeFiniteField, grumpkin


class Field(grumpkin.Fq):
    """BN254 scalar field element that also accepts plain ints as operands."""

    def __init__(self, v=0):
        if isinstance(v, PrimeFiniteField):
            v = v.v
        super().__init__(v % self.ORDER)

    @classmethod
    def random(cls) -> Field:
        return cls(secrets.randbelow(cls.ORDER))

    def inverse(self) -> Field:
        if self.is_zero():
            raise ValueError("Zero has no inverse")
        return Field(pow(self.v, -1, self.ORDER))

    def hex(self) -> str:
        return f"0x{self.v:064x}"

    def __int__(self):
        return self.v

    def __eq__(self, other):
        if isinstance(other, (int, PrimeFiniteField)):
            return self.v == Field(other).v
        return NotImplemented

    def __hash__(self):
        return hash(self.v)

    def __add__(self, other):
        return super().__add__(Field(other))

    def __sub__(self, other):
        return super().__sub__(Field(other))

    def __mul__(self, other):
        return super().__mul__(Field(other))

    def __radd__(self, other):
        return Field(other) + self

    def __rsub__(self, other):
        return Field(other) - self

    def __rmul__(self, other):
        return Field(other) * self

    def __neg__(self):
        return Field(-self.v)


class Point(grumpkin.AffineWeierstrass):
    """
    Affine point on Grumpkin.

    The identity has no affine coordinates; at the ledger boundary it is
    encoded as (0, 0), and `from_xy(0, 0)` decodes it back.
    """

    Fq = Field
    A = Field(0)
    B = Field(-17)
    GENERATOR_X = Field(1)
    # sqrt(-16)
    GENERATOR_Y = Field(
        0x0000000000000002CF135E7506A45D632D270D45F1181294833FC48D823F272C
    )

    @classmethod
    def from_xy(cls, x, y) -> Point:
        x, y = Field(x), Field(y)
        if x == 0 and y == 0:
            return cls.zero()
        try:
            return cls.from_coordinates_exn(x, y)
        except ValueError:
            raise ValueError(f"({x.hex()}, {y.hex()}) is not on the curve") from None

    @classmethod
    def random(cls) -> Point:
        return cls.generator().mul(Field.random())

    @property
    def xy(self) -> tuple[Field, Field]:
        if self.is_zero():
            return (Field(0), Field(0))
        return (self.x, self.y)

    def mul(self, scalar) -> Point:
        # keum's recursive ladder halves the scalar with float division, which
        # loses precision on 254 bit scalars
        if isinstance(scalar, PrimeFiniteField):
            scalar = scalar.v
        k = Field(scalar).v
        acc, addend = Point.zero(), self
        while k:
            if k & 1:
                acc = acc + addend
            addend = addend.double()
            k >>= 1
        return acc

    def __sub__(self, other: Point) -> Point:
        return self + other.negate()

    def __neg__(self) -> Point:
        return self.negate()

    def __eq__(self, other):
        if not isinstance(other, Point):
            return NotImplemented
        return super().__eq__(other)

    def __hash__(self):
        return hash(self.to_ints())

    def to_ints(self) -> tuple[int, int]:
        x, y = self.xy
        return (x.v, y.v)

    def __repr__(self):
        if self.is_zero():
            return "Point(identity)"
        return f"Point({self.x.hex()}, {self.y.hex()})"


# Grumpkin's canonical generator, (1, sqrt(-16)). Public keys and DH use it.
GENERATOR = Point.generator()

# derive_generators("PEDERSEN_COMMITMENT", 0)
PEDERSEN_G = Point.from_xy(
    0x25630136FE1C61CBFAF1C6ACB59EDD53CEBF87D0DC341132A6A2AF3C077AFB4F,
    0x0EBE7C8574896E51AC5D1140A74E3D4CBDA2B338C4E2A9F1E1E94DCA28A60747,
)
PEDERSEN_H = Point.from_xy(
    0x25EDC94B5B4B8BDB0601895D7D51A098EE051E4AED3837B23B2F7510893D613D,
    0x18DFD2D181D3272513698220AC5FB371004335FFA6702AADE8B647DBE0B3DCE1,
)
PEDERSEN_D = Point.from_xy(
    0x02B0B4E69873F1551D49F57E25B587289CE25CF5F641722EC1D8FA44495EFF81,
    0x19AC5F9BD16C9DEDFD6CC4384E2105C1A87EC67974C83B52C4A2846D093D21D2,
)

# derive_generators("PEDERSEN_COMMITMENT_PERSONAL", 0)
PERSONAL_G = Point.from_xy(
    0x06B0FC2FB449823A0D49E53C9430C82C3E01D9A3F6DB0D2E24B8E7C5F8D1899C,
    0x10AFFC120285B6213E315ACD916BA137464BA4F0FA22DDF2E17D92D0273E810A,
)
PERSONAL_D = Point.from_xy(
    0x0F5C1A8BC1A944BA846FD82D761BEEFC1E9BE60231957FBEBC546748524932BE,
    0x26EB0172758293804416AA211812ABB25E70E275C7DF20C4F34DC814BF87C757,
)

# Field.ORDER * base for each pedersen_positive base. Opening scalars are reduced
# mod Field.ORDER, which is not the order of the curve group.
ORDER_MULTIPLES = tuple(
    base.mul(Field.ORDER - 1) + base for base in (PEDERSEN_G, PEDERSEN_H, PEDERSEN_D)
)


def fake_algebraic_hash(data) -> Field:
    """
    HACK: stand-in for the circuit's algebraic hash: sha256 over the 32 byte
    big-endian encodings, reduced mod Field.ORDER.
    """
    data = b"".join(d.v.to_bytes(32, "big") for d in data)
    return Field(int.from_bytes(sha256(data).digest(), "big"))


# Swap for the circuit's Poseidon2 when proving against real circuits.
HASH = fake_algebraic_hash


def hash_fields(*elements) -> Field:
    return HASH([Field(e) for e in elements])


def pedersen_positive(m, r, d) -> Point:
    return PEDERSEN_G.mul(m) + PEDERSEN_H.mul(r) + PEDERSEN_D.mul(d)


def pedersen_non_hiding(m, r) -> Point:
    return PERSONAL_G.mul(m) + PERSONAL_D.mul(r)


@dataclass(frozen=True)
class Opening:
    """The (m, r, d) scalars that rebuild a `pedersen_positive` commitment."""

    m: Field
    r: Field
    d: Field

    @classmethod
    def of(cls, m, r, d) -> Opening:
        return cls(Field(m), Field(r), Field(d))

    def commit(self) -> Point:
        return pedersen_positive(self.m, self.r, self.d)

    def __add__(self, other: Opening) -> Opening:
        return Opening(self.m + other.m, self.r + other.r, self.d + other.d)

    def __sub__(self, other: Opening) -> Opening:
        return Opening(self.m - other.m, self.r - other.r, self.d - other.d)

    def to_ints(self) -> tuple[int, int, int]:
        return (self.m.v, self.r.v, self.d.v)

    def split_totals(self) -> set[Point]:
        """
        Every `a.commit() + b.commit()` with `a + b == self`.

        Both halves hold scalars below Field.ORDER, so a coordinate whose
        halves overflow the field adds Field.ORDER * base on top of
        `self.commit()`.
        """
        base = self.commit()
        totals = set()
        for overflowed in product((False, True), repeat=3):
            total = base
            for multiple, overflow in zip(ORDER_MULTIPLES, overflowed):
                if overflow:
                    total = total + multiple
            totals.add(total)
        return totals
