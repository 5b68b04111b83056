# The control unit: fetches controller instructions and sequences the memory
# access engine, the caches and the compute array.

from amaranth import *
from amaranth.lib.wiring import *
from amaranth.lib.enum import *
from amaranth.lib.memory import Memory

from vcgra import (
    CacheType, Opcode, Fault, BLOCK_PLACE, ADDRESS_BITS, LINE_BITS, PLACE_BITS,
    mux,
)
from vcgra.decoder import InstructionDecoder, encode_instruction

class Activity(Enum, shape = 3):
    PAUSE = 0
    RUN = 1
    STOP = 2
    WAIT = 3
    ERROR = 4

class InstrState(Enum, shape = 5):
    NOOP = 0
    ADAPT_PP = 1
    FETCH = 2
    DECODE = 3
    WAIT_READY = 4
    LOADD = 5
    LOADDA = 6
    STORED = 7
    STOREDA = 8
    LOADPC = 9
    LOADCC = 10
    START = 11
    FINISH = 12
    WAIT_MMU = 13
    CONT_MMU = 14
    SLCT_DIN_LINE = 15
    SLCT_DOUT_LINE = 16
    SLCT_PECC_LINE = 17
    SLCT_CHCC_LINE = 18

# Port name prefix of each cache's line selectors.
CACHE_PREFIX = {
    CacheType.DATA_INPUT: "din",
    CacheType.DATA_OUTPUT: "dout",
    CacheType.CONF_PE: "pe",
    CacheType.CONF_CC: "cc",
}

# Opcodes handed to the memory access engine, with the cache they address and
# whether they move the whole line.
MEMORY_OPS = {
    Opcode.LOADD: (CacheType.DATA_INPUT, False),
    Opcode.LOADDA: (CacheType.DATA_INPUT, True),
    Opcode.STORED: (CacheType.DATA_OUTPUT, False),
    Opcode.STOREDA: (CacheType.DATA_OUTPUT, True),
    Opcode.LOADPC: (CacheType.CONF_PE, True),
    Opcode.LOADCC: (CacheType.CONF_CC, True),
}

# Opcodes that only move a cache's output selection.
SELECT_OPS = {
    Opcode.SLCT_DIN_LINE: CacheType.DATA_INPUT,
    Opcode.SLCT_DOUT_LINE: CacheType.DATA_OUTPUT,
    Opcode.SLCT_PECC_LINE: CacheType.CONF_PE,
    Opcode.SLCT_CHCC_LINE: CacheType.CONF_CC,
}

# What the fetch stage sees past the end of the program.
END_OF_PROGRAM = encode_instruction(Opcode.FINISH)

class ControlUnit(Component):
    """Runs a controller program out of an instruction ROM.

    The unit has two layers of state. The activity state says whether it's
    running at all:

    - STOP: after boot and after a reset. A rising edge on `run` starts the
      program from the current program pointer.
    - RUN: one instruction step per tick. Holding `pause` moves to PAUSE.
    - PAUSE: frozen until `pause` falls.
    - WAIT: waiting on the memory access engine or the compute array.
    - ERROR: the engine signaled ready when nobody asked. Sticky; only a new
      design (or simulation) gets out of it.

    The instruction state says where in the current instruction it is. Memory
    operations pulse `mmu_start` and wait for the engine's ready pulse to end.
    A ready pulse from the compute array is latched in an interrupt flag, so a
    WAIT_READY that comes late still sees it.

    A falling edge on `rst` stops the unit and rewinds the program. FINISH
    holds `finish` high until `run` drops, then rewinds the program as well.

    Parameters
    ----------
    program (list of integer): 32-bit instruction words.
    depth (integer): ROM capacity in words; defaults to the program length.
        Fetching past the end behaves like a FINISH instruction.

    Attributes
    ----------
    run, pause, rst (input): operator controls, see above.
    finish (output): program reached FINISH.
    mmu_start (output): one-tick request pulse to the engine.
    mmu_ready (input): engine done.
    cache_select, address, place (output): engine request.
    {din,dout,pe,cc}_select_in (output): line the engine may work on, per
        cache.
    {din,dout,pe,cc}_select_out (output): requested output line, per cache.
    array_start (output): one-tick start pulse to the compute array.
    array_ready (input): compute array done.
    activity (output): activity state.
    state (output): instruction state.
    pc (output): program pointer.
    fault (output): condition detected this tick, if any.
    """
    def __init__(self, *, program, depth = None):
        if depth is None:
            depth = max(len(program), 1)
        assert len(program) <= depth, "program larger than instruction memory"
        for word in program:
            assert 0 <= word < 2 ** 32, f"not an instruction word: {word:#x}"
        self.depth = depth

        selectors = {}
        for prefix in CACHE_PREFIX.values():
            selectors[f"{prefix}_select_in"] = Out(LINE_BITS)
            selectors[f"{prefix}_select_out"] = Out(LINE_BITS, init = 1)

        super().__init__(Signature({
            'run': In(1),
            'pause': In(1),
            'rst': In(1),
            'finish': Out(1),

            'mmu_start': Out(1),
            'mmu_ready': In(1),
            'cache_select': Out(CacheType, init = CacheType.NONE),
            'address': Out(ADDRESS_BITS),
            'place': Out(PLACE_BITS),
            **selectors,

            'array_start': Out(1),
            'array_ready': In(1),

            'activity': Out(Activity, init = Activity.STOP),
            'state': Out(InstrState, init = InstrState.NOOP),
            'pc': Out(range(depth + 1)),
            'fault': Out(Fault),
        }))

        self.rom = Memory(shape = 32, depth = depth, init = program)

        self.instr = Signal(32)
        self.irq = Signal(1)

        # Previous-tick values for edge detection.
        self.run_q = Signal(1)
        self.pause_q = Signal(1)
        self.rst_q = Signal(1)
        self.mmu_ready_q = Signal(1)
        self.array_ready_q = Signal(1)

    def select_in(self, ctype):
        return getattr(self, f"{CACHE_PREFIX[ctype]}_select_in")

    def select_out(self, ctype):
        return getattr(self, f"{CACHE_PREFIX[ctype]}_select_out")

    def elaborate(self, platform):
        m = Module()

        m.submodules.rom = self.rom
        m.submodules.decoder = decoder = InstructionDecoder()

        rom_port = self.rom.read_port(domain = "comb")
        m.d.comb += [
            rom_port.addr.eq(self.pc),
            decoder.inst.eq(self.instr),
        ]

        m.d.sync += [
            self.run_q.eq(self.run),
            self.pause_q.eq(self.pause),
            self.rst_q.eq(self.rst),
            self.mmu_ready_q.eq(self.mmu_ready),
            self.array_ready_q.eq(self.array_ready),
        ]

        run_rise = self.run & ~self.run_q
        pause_fall = ~self.pause & self.pause_q
        rst_fall = ~self.rst & self.rst_q
        mmu_done = ~self.mmu_ready & self.mmu_ready_q
        array_done = self.array_ready & ~self.array_ready_q

        waiting_on_mmu = (
            (self.activity == Activity.WAIT)
            & (self.state == InstrState.WAIT_MMU)
        )

        m.d.comb += self.finish.eq(self.state == InstrState.FINISH)

        # Pulses.
        m.d.sync += [
            self.mmu_start.eq(0),
            self.array_start.eq(0),
        ]

        with m.If(self.activity == Activity.ERROR):
            pass
        with m.Elif(mmu_done & ~waiting_on_mmu):
            m.d.comb += self.fault.eq(Fault.DESYNC)
            m.d.sync += self.activity.eq(Activity.ERROR)
        with m.Elif(rst_fall):
            m.d.sync += [
                self.activity.eq(Activity.STOP),
                self.state.eq(InstrState.NOOP),
                self.pc.eq(0),
                self.irq.eq(0),
            ]
        with m.Elif(run_rise):
            m.d.sync += [
                self.activity.eq(Activity.RUN),
                self.state.eq(InstrState.FETCH),
            ]
        with m.Else():
            with m.Switch(self.activity):
                with m.Case(Activity.RUN):
                    with m.If(self.pause):
                        m.d.sync += self.activity.eq(Activity.PAUSE)
                    with m.Else():
                        self.step(m, decoder.out, rom_port.data)

                with m.Case(Activity.PAUSE):
                    with m.If(pause_fall):
                        m.d.sync += self.activity.eq(Activity.RUN)

                with m.Case(Activity.WAIT):
                    with m.Switch(self.state):
                        with m.Case(InstrState.WAIT_MMU):
                            with m.If(mmu_done):
                                m.d.sync += [
                                    self.activity.eq(Activity.RUN),
                                    self.state.eq(InstrState.CONT_MMU),
                                ]
                        with m.Case(InstrState.WAIT_READY):
                            with m.If(self.irq):
                                m.d.sync += [
                                    self.irq.eq(0),
                                    self.activity.eq(Activity.RUN),
                                    self.state.eq(InstrState.ADAPT_PP),
                                ]

        # A new ready pulse wins over consuming the old one.
        with m.If(array_done):
            m.d.sync += self.irq.eq(1)

        return m

    def step(self, m, decoded, fetched):
        """Adds the logic for one instruction step in the RUN state."""
        with m.Switch(self.state):
            with m.Case(InstrState.NOOP):
                pass

            with m.Case(InstrState.FETCH):
                past_end = self.pc >= self.depth
                m.d.sync += [
                    self.instr.eq(mux(past_end, END_OF_PROGRAM, fetched)),
                    self.state.eq(InstrState.DECODE),
                ]

            with m.Case(InstrState.DECODE):
                with m.Switch(decoded.opcode):
                    for op in Opcode:
                        with m.Case(op.value):
                            if op == Opcode.NOOP:
                                m.d.sync += self.state.eq(InstrState.ADAPT_PP)
                            else:
                                m.d.sync += self.state.eq(InstrState[op.name])
                    with m.Default():
                        m.d.comb += self.fault.eq(Fault.OPCODE)
                        m.d.sync += self.state.eq(InstrState.ADAPT_PP)

            with m.Case(InstrState.ADAPT_PP):
                m.d.sync += [
                    self.pc.eq(self.pc + 1),
                    self.state.eq(InstrState.FETCH),
                ]

            for op, (ctype, whole_line) in MEMORY_OPS.items():
                with m.Case(InstrState[op.name]):
                    m.d.sync += [
                        self.cache_select.eq(ctype),
                        self.address.eq(decoded.address),
                        self.place.eq(BLOCK_PLACE if whole_line else decoded.place),
                        self.select_in(ctype).eq(decoded.line),
                        self.mmu_start.eq(1),
                        self.activity.eq(Activity.WAIT),
                        self.state.eq(InstrState.WAIT_MMU),
                    ]

            with m.Case(InstrState.CONT_MMU):
                m.d.sync += self.state.eq(InstrState.ADAPT_PP)

            for op, ctype in SELECT_OPS.items():
                with m.Case(InstrState[op.name]):
                    m.d.sync += [
                        self.select_out(ctype).eq(decoded.line),
                        self.state.eq(InstrState.ADAPT_PP),
                    ]

            with m.Case(InstrState.START):
                m.d.sync += [
                    self.array_start.eq(1),
                    self.state.eq(InstrState.ADAPT_PP),
                ]

            with m.Case(InstrState.WAIT_READY):
                with m.If(self.irq):
                    m.d.sync += [
                        self.irq.eq(0),
                        self.state.eq(InstrState.ADAPT_PP),
                    ]
                with m.Else():
                    m.d.sync += self.activity.eq(Activity.WAIT)

            with m.Case(InstrState.FINISH):
                with m.If(~self.run):
                    m.d.sync += [
                        self.state.eq(InstrState.NOOP),
                        self.pc.eq(0),
                    ]
