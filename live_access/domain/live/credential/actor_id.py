"""Deterministic identity -> numeric actor id mapping.

Media platforms address participants by a small unsigned integer. The actor id
is a 31-bit polynomial rolling hash of the identity, so reconnecting callers get
the same id back. Distinct identities may collide; nothing here detects that.
"""

ANONYMOUS_ACTOR_ID = 0
MAX_ACTOR_ID = 2**31 - 2

_MODULUS = 2**31 - 1
_MASK_32 = 0xFFFFFFFF


def _utf16_code_units(identity: str):
    data = identity.encode("utf-16-le", errors="surrogatepass")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def derive_actor_id(identity: str) -> int:
    """Map an identity to an actor id in ``[0, 2**31 - 2]``.

    ``acc = acc * 31 + code`` over UTF-16 code units with 32-bit signed
    wraparound, then ``abs(acc) % (2**31 - 1)``. The empty identity maps to 0.
    """
    if not identity:
        return ANONYMOUS_ACTOR_ID

    acc = 0
    for code in _utf16_code_units(identity):
        acc = (acc * 31 + code) & _MASK_32

    if acc >= 2**31:
        acc -= 2**32

    return abs(acc) % _MODULUS
