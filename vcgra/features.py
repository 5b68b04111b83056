# Static description of the four cache types, shared by the caches (which need
# their geometry) and the memory access engine (which needs to know how to
# stream a whole line).

from vcgra import CacheType, CACHE_TYPES, BLOCK_PLACE, LINE_BITS, calc_num_bytes

# Default stream width between shared memory and the configuration caches.
CONF_STREAM_WIDTH = 8

class CacheFeature:
    """Geometry of one cache type.

    Parameters
    ----------
    line_bytes (integer): size of one cache line in bytes.
    lines (integer): number of cache lines.
    data_width (integer): for data caches, the width of one element in bits;
        for configuration caches, the width of the whole line in bits.
    """
    def __init__(self, line_bytes, lines, data_width):
        self.line_bytes = line_bytes
        self.lines = lines
        self.data_width = data_width

    @property
    def line_bits(self):
        return self.line_bytes * 8

    def __eq__(self, other):
        return isinstance(other, CacheFeature) and (
            (self.line_bytes, self.lines, self.data_width)
            == (other.line_bytes, other.lines, other.data_width)
        )

    def __repr__(self):
        return (f"CacheFeature(line_bytes={self.line_bytes}, "
                f"lines={self.lines}, data_width={self.data_width})")

class CacheFeatures:
    """The feature table for all four cache types.

    The table is given as a flat sequence of exactly twelve integers, three per
    cache type in the order DATA_INPUT, DATA_OUTPUT, CONF_PE, CONF_CC:

        line size in bytes, number of lines, data width in bits

    Anything else is a configuration error and raises ValueError.

    Parameters
    ----------
    values (sequence of integer): the twelve table entries.
    stream_width (integer): bits moved per transfer to or from a
        configuration cache.
    """
    def __init__(self, values, *, stream_width = CONF_STREAM_WIDTH):
        values = list(values)
        expected = 3 * len(CACHE_TYPES)
        if len(values) != expected:
            raise ValueError(
                f"cache feature table needs {expected} entries, got {len(values)}")
        for v in values:
            if not isinstance(v, int) or v <= 0:
                raise ValueError(f"cache feature entries must be positive integers: {v!r}")
        if stream_width <= 0 or stream_width % 8 != 0:
            raise ValueError(f"stream width must be a whole number of bytes: {stream_width}")

        self.stream_width = stream_width
        self._table = {}
        for i, ctype in enumerate(CACHE_TYPES):
            feature = CacheFeature(*values[3 * i:3 * i + 3])
            if not 2 <= feature.lines <= 2 ** LINE_BITS:
                raise ValueError(
                    f"{ctype.name} cache has {feature.lines} lines, but needs "
                    f"two to double buffer and the line field only addresses "
                    f"{2 ** LINE_BITS}")
            if is_data_cache(ctype) and feature.data_width % 8 != 0:
                raise ValueError(
                    f"{ctype.name} element width must be a whole number of bytes: "
                    f"{feature.data_width}")
            if is_data_cache(ctype) and feature.line_bits < feature.data_width:
                raise ValueError(
                    f"{ctype.name} line is narrower than one element")
            if is_data_cache(ctype) and feature.line_bits // feature.data_width >= BLOCK_PLACE:
                raise ValueError(
                    f"{ctype.name} line has more places than the place field can name")
            if not is_data_cache(ctype) and feature.data_width % stream_width != 0:
                raise ValueError(
                    f"{ctype.name} line width {feature.data_width} is not a "
                    f"multiple of the stream width {stream_width}")
            self._table[ctype] = feature

    def __getitem__(self, ctype):
        return self._table[CacheType(ctype)]

    def __iter__(self):
        return iter(CACHE_TYPES)

    def as_list(self):
        out = []
        for ctype in CACHE_TYPES:
            f = self._table[ctype]
            out += [f.line_bytes, f.lines, f.data_width]
        return out

    def granularity(self, ctype):
        """Bits moved by one streaming transfer for this cache type."""
        if is_data_cache(ctype):
            return self[ctype].data_width
        return self.stream_width

    def places(self, ctype):
        """Number of addressable elements in one line of a data cache."""
        assert is_data_cache(ctype), f"{ctype} has no places"
        f = self[ctype]
        return f.line_bits // f.data_width

    def block_count(self, ctype):
        """Value loaded into the remaining-transfer counter for a whole-line
        transfer. The count is one less when the line is an exact multiple of
        the granularity; the engine performs one more handshake than the
        count, so such a line is covered exactly.

        For example a 48-bit PE line in 8-bit steps gives a count of 5: six
        handshakes, five BLOCK steps, and an address that ends 5 bytes past
        where it started."""
        bits = self[ctype].line_bits
        gran = self.granularity(ctype)
        count = -(-bits // gran)
        if bits % gran == 0:
            count -= 1
        return count

    def step(self, ctype):
        """Address increment in bytes between block transfers."""
        return self.granularity(ctype) // 8

    def line_width(self, ctype):
        """Width in bits of the storage for one line of this cache type."""
        if is_data_cache(ctype):
            return self.places(ctype) * self[ctype].data_width
        return self[ctype].data_width

    def max_transfer_bytes(self):
        return max(self.step(ctype) for ctype in CACHE_TYPES)

    def max_block_count(self):
        return max(self.block_count(ctype) for ctype in CACHE_TYPES)

def is_data_cache(ctype):
    return CacheType(ctype) in (CacheType.DATA_INPUT, CacheType.DATA_OUTPUT)

DEFAULT_FEATURES = CacheFeatures([
    # DATA_INPUT: eight 16-bit values per line
    calc_num_bytes(16 * 8), 2, 16,
    # DATA_OUTPUT: four 16-bit results per line
    calc_num_bytes(16 * 4), 2, 16,
    # CONF_PE
    calc_num_bytes(64), 2, 64,
    # CONF_CC
    calc_num_bytes(80), 2, 80,
])
