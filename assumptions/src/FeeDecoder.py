"""FeeDecoder: Heuristic decoding of an on-chain fee of unknown scale.

The network fee view returns an integer whose unit is not known a priori: it
may be basis points, a whole percent, or a fixed-point number with an
unspecified number of decimals. Decoding runs two ordered strategy lists and
commits to the first match of each:

Return layout (bytes -> integer):
    1. single ``uint256`` return
    2. ``(uint256 value, uint256 blockNumber)`` return
    3. manual slice of the first (and optional second) 32-byte word

Scale (integer -> percent as a decimal):
    1. basis points: ``n <= 10_000_000`` and ``n / 100`` percent in (0, 1)
    2. whole percent: ``0 < n <= 100``
    3. fixed point at 18, 8, 6, 4 decimals with a value in (0, 1)
    4. fixed point at 18, 8, 6, 4 decimals with a value in [1, 100], as percent
    5. no match: ``percent_decimal`` stays None

.. code-block:: python

    >>> classify_fee(25).scale
    'basis-points'
    >>> classify_fee(100).percent_decimal
    1.0
    >>> classify_fee(5 * 10**15).scale
    'fixed-point-18'
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from .models import NetworkFeeSample

WORD_SIZE = 32

# Fee amounts are 18-decimal token units per block; 12-second blocks.
TOKEN_DECIMALS = 18
BLOCKS_PER_YEAR = 365 * 24 * 60 * 60 // 12

BASIS_POINTS_MAX_RAW = 10_000_000
WHOLE_PERCENT_MAX_RAW = 100
FIXED_POINT_DECIMALS = (18, 8, 6, 4)


@dataclass(frozen=True)
class DecodedReturn:
    """Integer(s) extracted from raw return data.

    :ivar value: The fee integer.
    :ivar block_number: Block number, if the return carried one.
    :ivar layout: Name of the layout strategy that matched.
    """

    value: int
    block_number: int | None
    layout: str


@dataclass(frozen=True)
class FeeScale:
    """A committed scale interpretation of a raw fee integer."""

    percent_decimal: float
    scale: str


def _decode_single(raw: bytes) -> DecodedReturn | None:
    if len(raw) != WORD_SIZE:
        return None
    (value,) = abi_decode(["uint256"], raw)
    return DecodedReturn(value=value, block_number=None, layout="uint256")


def _decode_pair(raw: bytes) -> DecodedReturn | None:
    if len(raw) != 2 * WORD_SIZE:
        return None
    value, block_number = abi_decode(["uint256", "uint256"], raw)
    return DecodedReturn(value=value, block_number=block_number, layout="uint256,uint256")


def _slice_words(raw: bytes) -> DecodedReturn | None:
    if len(raw) < WORD_SIZE:
        return None
    value = int.from_bytes(raw[:WORD_SIZE], "big")
    block_number = None
    if len(raw) >= 2 * WORD_SIZE:
        block_number = int.from_bytes(raw[WORD_SIZE : 2 * WORD_SIZE], "big")
    return DecodedReturn(value=value, block_number=block_number, layout="word-slice")


RETURN_LAYOUTS: list[Callable[[bytes], DecodedReturn | None]] = [
    _decode_single,
    _decode_pair,
    _slice_words,
]


def decode_return_data(raw: bytes) -> DecodedReturn | None:
    """Extract the fee integer from raw ``eth_call`` return data.

    :param raw: Return data bytes.
    :returns: DecodedReturn from the first layout that matches, or None.
    """
    for strategy in RETURN_LAYOUTS:
        try:
            decoded = strategy(raw)
        except DecodingError:
            continue
        if decoded is not None:
            return decoded
    return None


def _as_basis_points(n: int) -> FeeScale | None:
    if n > BASIS_POINTS_MAX_RAW:
        return None
    percent = n / 100
    if 0 < percent < 1:
        return FeeScale(percent_decimal=n / 10_000, scale="basis-points")
    return None


def _as_whole_percent(n: int) -> FeeScale | None:
    if 0 < n <= WHOLE_PERCENT_MAX_RAW:
        return FeeScale(percent_decimal=n / 100, scale="percent-integer")
    return None


def _as_fixed_point_fraction(n: int) -> FeeScale | None:
    for decimals in FIXED_POINT_DECIMALS:
        value = n / 10**decimals
        if 0 < value < 1:
            return FeeScale(percent_decimal=value, scale=f"fixed-point-{decimals}")
    return None


def _as_fixed_point_percent(n: int) -> FeeScale | None:
    for decimals in FIXED_POINT_DECIMALS:
        value = n / 10**decimals
        if 1 <= value <= 100:
            return FeeScale(percent_decimal=value / 100, scale=f"fixed-point-{decimals}-percent")
    return None


SCALE_STRATEGIES: list[Callable[[int], FeeScale | None]] = [
    _as_basis_points,
    _as_whole_percent,
    _as_fixed_point_fraction,
    _as_fixed_point_percent,
]


def classify_fee(n: int) -> FeeScale | None:
    """Pick the scale interpretation of a raw fee integer.

    :param n: Raw integer from the contract.
    :returns: FeeScale from the first matching strategy, or None.
    """
    if n < 0:
        return None
    for strategy in SCALE_STRATEGIES:
        result = strategy(n)
        if result is not None:
            return result
    return None


def annualize_raw(n: int) -> tuple[float, float]:
    """Read ``n`` as an 18-decimal per-block amount and annualize it.

    :returns: Tuple of (per_block_amount, per_year_amount).
    """
    per_block = n / 10**TOKEN_DECIMALS
    return per_block, per_block * BLOCKS_PER_YEAR


def decode_network_fee(raw: bytes, block_number: int | None = None) -> NetworkFeeSample | None:
    """Decode raw return data into a NetworkFeeSample.

    :param raw: Return data bytes from the fee view.
    :param block_number: Block the call was made at, used when the return
        data does not carry one.
    :returns: NetworkFeeSample (``percent_decimal`` None if no scale matched),
        or None if the bytes hold no integer at all.
    """
    decoded = decode_return_data(raw)
    if decoded is None:
        return None

    scale = classify_fee(decoded.value)
    per_block, per_year = annualize_raw(decoded.value)
    return NetworkFeeSample(
        raw_value=decoded.value,
        percent_decimal=scale.percent_decimal if scale else None,
        decoding_scale=scale.scale if scale else None,
        per_block_amount=per_block,
        per_year_amount=per_year,
        observed_at_block=decoded.block_number if decoded.block_number else block_number,
        return_layout=decoded.layout,
    )
