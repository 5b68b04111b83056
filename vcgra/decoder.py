# Combinational decode logic.

from amaranth import *
from amaranth.lib.wiring import *
from amaranth.lib.data import *

from vcgra import (
    Opcode, BLOCK_PLACE, ADDRESS_BITS, LINE_BITS, PLACE_BITS, OPCODE_BITS,
)

class DecodeSignals(Struct):
    inst: unsigned(32)

    opcode: unsigned(OPCODE_BITS)
    place: unsigned(PLACE_BITS)
    line: unsigned(LINE_BITS)
    address: unsigned(ADDRESS_BITS)

    # derived signals
    is_block: unsigned(1)
    is_known: unsigned(1)

class InstructionDecoder(Component):
    """The InstructionDecoder splits an instruction word into its fields.

    The word layout is:

        [31:16] address in shared memory
        [15:13] cache line
        [12:6]  place within the line (127 selects the whole line)
        [5:0]   opcode

    Attributes
    ----------
    inst (input): instruction word.
    out (output): group of decode signals, see DecodeSignals struct.
    """
    inst: In(32)

    out: Out(DecodeSignals)

    def elaborate(self, platform):
        m = Module()

        opcode = Signal(OPCODE_BITS)
        place = Signal(PLACE_BITS)
        m.d.comb += [
            opcode.eq(self.inst[0:6]),
            place.eq(self.inst[6:13]),
        ]

        m.d.comb += [
            self.out.inst.eq(self.inst),
            self.out.opcode.eq(opcode),
            self.out.place.eq(place),
            self.out.line.eq(self.inst[13:16]),
            self.out.address.eq(self.inst[16:32]),

            self.out.is_block.eq(place == BLOCK_PLACE),
            self.out.is_known.eq(opcode <= max(op.value for op in Opcode)),
        ]

        return m

def encode_instruction(opcode, *, line = 0, place = 0, address = 0):
    """Packs instruction fields into a 32-bit word."""
    opcode = opcode.value if isinstance(opcode, Opcode) else opcode
    assert 0 <= opcode < 2 ** OPCODE_BITS, f"opcode out of range: {opcode}"
    assert 0 <= line < 2 ** LINE_BITS, f"line out of range: {line}"
    assert 0 <= place < 2 ** PLACE_BITS, f"place out of range: {place}"
    assert 0 <= address < 2 ** ADDRESS_BITS, f"address out of range: {address}"
    return (address << 16) | (line << 13) | (place << 6) | opcode

def decode_instruction(word):
    """Software mirror of InstructionDecoder. Returns (opcode, place, line,
    address); the opcode is an Opcode member when it is a known one."""
    opcode = word & 0x3F
    try:
        opcode = Opcode(opcode)
    except ValueError:
        pass
    return (
        opcode,
        (word >> 6) & 0x7F,
        (word >> 13) & 0x7,
        (word >> 16) & 0xFFFF,
    )
