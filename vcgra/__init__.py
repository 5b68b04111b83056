from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.enum import Enum
from amaranth.lib.wiring import In, Out

from functools import reduce

class AlwaysReady(wiring.Signature):
    def __init__(self, payload_shape):
        super().__init__({
            'payload': Out(payload_shape),
            'valid': Out(1),
        })

# Instruction field widths. The address field also bounds the shared memory
# to 64 KiB.
ADDRESS_BITS = 16
LINE_BITS = 3
PLACE_BITS = 7
OPCODE_BITS = 6

# Place value that requests a whole cache line instead of a single element.
BLOCK_PLACE = 0b111_1111

class CacheType(Enum, shape = 3):
    DATA_INPUT = 0
    DATA_OUTPUT = 1
    CONF_PE = 2
    CONF_CC = 3
    NONE = 4

# The four cache types that actually exist, in feature-table order.
CACHE_TYPES = (
    CacheType.DATA_INPUT,
    CacheType.DATA_OUTPUT,
    CacheType.CONF_PE,
    CacheType.CONF_CC,
)

class Opcode(Enum, shape = OPCODE_BITS):
    NOOP = 0
    START = 1
    WAIT_READY = 2
    LOADD = 3
    LOADDA = 4
    STORED = 5
    STOREDA = 6
    LOADPC = 7
    LOADCC = 8
    SLCT_DIN_LINE = 9
    SLCT_DOUT_LINE = 10
    SLCT_PECC_LINE = 11
    SLCT_CHCC_LINE = 12
    FINISH = 13

class Fault(Enum, shape = 4):
    """Conditions reported on the fault ports. Everything except DESYNC is
    non-fatal: the component keeps going and still produces the ack/ready its
    peer is waiting for."""
    NONE = 0
    LINE_RANGE = 1
    PLACE_RANGE = 2
    LINE_IN_USE = 3
    SELECT_BLOCKED = 4
    ADDRESS_RANGE = 5
    CACHE_TYPE = 6
    OPCODE = 7
    DESYNC = 8

def calc_bitwidth(lines):
    """Number of select bits needed to address `lines` cache lines."""
    assert lines > 0, "a cache needs at least one line"
    return (lines - 1).bit_length()

def calc_num_bytes(bits):
    return (bits + 7) // 8

# Builds a mux but out of AND and OR, which often generates cheaper logic on
# 4LUT devices.
def mux(select, one, zero):
    if isinstance(one, Enum):
        one = one.value
    if isinstance(one, int):
        one = Const(one)
    if isinstance(zero, Enum):
        zero = zero.value
    if isinstance(zero, int):
        zero = Const(zero)
    n = max(one.shape().width, zero.shape().width)
    select = select.any() # force to 1 bit
    return (
        (select.replicate(n) & one) | (~select.replicate(n) & zero)
    )

# Builds a chained mux that selects between a set of options, which must be
# mutually exclusive.
#
# 'options' is a list of pairs. The first element in each pair is evaluated as a
# boolean condition. If 1, the second element is OR'd into the result.
#
# This means if more than one condition is true simultaneously, the result will
# bitwise OR the results together. It is up to you to ensure that all
# conditions are mutually exclusive.
#
# If a default is provided, it will be used when no other conditions match.
# Otherwise, the default is zero.
def oneof(options, default = None):
    assert len(options) > 0
    output = []
    matches = []
    for (condition, result) in options:
        if isinstance(condition, int):
            condition = Const(condition)
        if isinstance(result, Enum):
            result = result.value
        if isinstance(result, int):
            result = Const(result)

        matches.append(condition.any())

        case = condition.any().replicate(result.shape().width) & result

        output.append(case)

    if default is not None:
        if isinstance(default, Enum):
            default = default.value
        if isinstance(default, int):
            default = Const(default)
        no_match = ~reduce(lambda a, b: a|b, matches)
        output.append(no_match.replicate(default.shape().width) & default)

    return reduce(lambda a, b: a|b, output)
