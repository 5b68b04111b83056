# The memory access engine. It owns the shared memory and moves data between
# it and whichever cache the control unit points it at.

from amaranth import *
from amaranth.lib.wiring import *
from amaranth.lib.enum import *
from amaranth.lib.memory import Memory

from vcgra import (
    CacheType, CACHE_TYPES, Fault, BLOCK_PLACE, ADDRESS_BITS, PLACE_BITS, mux,
)
from vcgra.bus import BusPort
from vcgra.features import DEFAULT_FEATURES

class EngineState(Enum, shape = 4):
    AWAIT = 0
    DECODE = 1
    VALIDATE = 2
    PROCESS = 3
    WRITE_DATA = 4
    WRITE_EN = 5
    WAIT_ACK = 6
    READ_DATA = 7
    BLOCK = 8
    FINISH = 9

class MemoryAccessEngine(Component):
    """Streams data between shared memory and the caches.

    A transfer starts when `start` is seen high while `ready` is low. The
    engine latches cache_select, address and place and then either moves a
    single element (or configuration chunk) or, if place is 127, a whole cache
    line as a series of granularity-sized transfers. Each transfer is one
    write/ack handshake with the cache. When everything is done the engine
    raises `ready` and holds it until `start` is low, then for one more tick.

    Data moved to and from memory is little-endian: byte `address + i` is
    bits [8i, 8i+8) of the stream word.

    Errors are never fatal. An out-of-range place rejects the transfer, an
    out-of-range address turns that one transfer into a no-op, and an unknown
    cache type aborts. All of them show up on `fault` for a tick and all of
    them still end with a ready pulse. A drain the data-output cache refuses
    also leaves memory untouched.

    Parameters
    ----------
    features (CacheFeatures): geometry of the four cache types.
    mem_size (integer): bytes of shared memory, at most 64 KiB.
    contents (list of integer): initial memory bytes, zero-padded.

    Attributes
    ----------
    start (input): request strobe from the control unit.
    cache_select (input): which cache to work with.
    address (input): shared memory address of the first byte.
    place (input): element within the line, or 127 for the whole line.
    ready (output): transfer finished.
    target (output): latched cache type, for routing the handshake.
    write_enable (output): request strobe to the target cache.
    ack (input): acknowledge from the target cache.
    reject (input): the target cache refused the request it is taking.
        Sampled while waiting for ack; a refused drain leaves memory alone.
    cache_place (output): element the target cache should use.
    stream_out (output): data toward the cache (memory reads).
    stream_in (input): data from the data-output cache (memory writes).
    fault (output): condition detected this tick, if any.
    inspect (port): byte-wide side door into the shared memory for loading
        and checking it from outside. Reads are combinational.
    """
    def __init__(self, *,
                 features = DEFAULT_FEATURES,
                 mem_size = 2 ** ADDRESS_BITS,
                 contents = []):
        assert 0 < mem_size <= 2 ** ADDRESS_BITS, \
                f"shared memory must fit the address field: {mem_size}"
        assert len(contents) <= mem_size, "initial contents larger than memory"

        self.features = features
        self.mem_size = mem_size
        # Widest transfer in bytes. Narrower transfers use the low lanes.
        self.lanes = features.max_transfer_bytes()

        super().__init__(Signature({
            'start': In(1),
            'cache_select': In(CacheType),
            'address': In(ADDRESS_BITS),
            'place': In(PLACE_BITS),
            'ready': Out(1),

            'target': Out(CacheType),
            'write_enable': Out(1),
            'ack': In(1),
            'reject': In(1),
            'cache_place': Out(PLACE_BITS),
            'stream_out': Out(8 * self.lanes),
            'stream_in': In(8 * self.lanes),

            'fault': Out(Fault),
            'inspect': In(BusPort(addr = ADDRESS_BITS, data = 8)),
        }))

        self.mem = Memory(shape = 8, depth = mem_size, init = contents)

        # Transfer context.
        self.state = Signal(EngineState, init = EngineState.AWAIT)
        self.ctype = Signal(CacheType, init = CacheType.NONE)
        # One spare bit so a block transfer running off the top of memory
        # fails the bounds check instead of wrapping to address 0.
        self.addr = Signal(ADDRESS_BITS + 1)
        self.line_place = Signal(PLACE_BITS)
        self.rejected = Signal(1)
        self.block = Signal(1)
        self.count = Signal(range(max(features.max_block_count(), 1) + 1))
        self.step = Signal(range(self.lanes + 1))

    def elaborate(self, platform):
        m = Module()

        m.submodules.mem = self.mem

        f = self.features

        m.d.comb += [
            self.target.eq(self.ctype),
            self.cache_place.eq(self.line_place),
        ]

        # Bytes per transfer for the latched cache type, and whether that many
        # bytes at addr are inside the memory.
        nbytes = Signal(range(self.lanes + 1))
        with m.Switch(self.ctype):
            for ctype in CACHE_TYPES:
                with m.Case(ctype):
                    m.d.comb += nbytes.eq(f.step(ctype))
        in_bounds = Signal(1)
        m.d.comb += in_bounds.eq(self.addr + nbytes <= self.mem_size)

        # One read and one write port per byte lane.
        gathered = []
        writeback = Signal(1)
        for i in range(self.lanes):
            rp = self.mem.read_port(domain = "comb")
            wp = self.mem.write_port()
            m.d.comb += [
                rp.addr.eq(self.addr + i),
                wp.addr.eq(self.addr + i),
                wp.data.eq(self.stream_in[8 * i:8 * (i + 1)]),
                wp.en.eq(writeback & (nbytes > i)),
            ]
            gathered.append(mux(nbytes > i, rp.data, 0))

        irp = self.mem.read_port(domain = "comb")
        iwp = self.mem.write_port()
        m.d.comb += [
            irp.addr.eq(self.inspect.cmd.payload.addr),
            self.inspect.resp.eq(irp.data),
            iwp.addr.eq(self.inspect.cmd.payload.addr),
            iwp.data.eq(self.inspect.cmd.payload.data),
            iwp.en.eq(self.inspect.cmd.valid & self.inspect.cmd.payload.lanes[0]),
        ]

        with m.Switch(self.state):
            with m.Case(EngineState.AWAIT):
                with m.If(self.start & ~self.ready):
                    m.d.sync += [
                        self.ctype.eq(self.cache_select),
                        self.addr.eq(self.address),
                        self.line_place.eq(self.place),
                        self.state.eq(EngineState.DECODE),
                    ]

            # Work out how many transfers this request takes.
            with m.Case(EngineState.DECODE):
                with m.If(self.line_place == BLOCK_PLACE):
                    m.d.sync += self.line_place.eq(0)
                    with m.Switch(self.ctype):
                        for ctype in CACHE_TYPES:
                            count = f.block_count(ctype)
                            with m.Case(ctype):
                                m.d.sync += [
                                    self.block.eq(int(count > 0)),
                                    self.count.eq(count),
                                    self.step.eq(f.step(ctype)),
                                ]
                        with m.Default():
                            m.d.sync += [
                                self.block.eq(0),
                                self.count.eq(0),
                                self.step.eq(0),
                            ]
                with m.Else():
                    m.d.sync += [
                        self.block.eq(0),
                        self.count.eq(1),
                    ]
                m.d.sync += self.state.eq(EngineState.VALIDATE)

            with m.Case(EngineState.VALIDATE):
                m.d.sync += self.state.eq(EngineState.PROCESS)
                for ctype in (CacheType.DATA_INPUT, CacheType.DATA_OUTPUT):
                    with m.If((self.ctype == ctype)
                              & (self.line_place >= f.places(ctype))):
                        m.d.comb += self.fault.eq(Fault.PLACE_RANGE)
                        m.d.sync += [
                            self.ready.eq(1),
                            self.state.eq(EngineState.FINISH),
                        ]

            with m.Case(EngineState.PROCESS):
                with m.Switch(self.ctype):
                    # Cache to memory.
                    with m.Case(CacheType.DATA_OUTPUT):
                        m.d.sync += self.state.eq(EngineState.WRITE_EN)
                    # Memory to cache.
                    with m.Case(CacheType.DATA_INPUT, CacheType.CONF_PE,
                                CacheType.CONF_CC):
                        m.d.sync += self.state.eq(EngineState.WRITE_DATA)
                    with m.Default():
                        m.d.comb += self.fault.eq(Fault.CACHE_TYPE)
                        m.d.sync += [
                            self.ready.eq(1),
                            self.state.eq(EngineState.FINISH),
                        ]

            with m.Case(EngineState.WRITE_DATA):
                with m.If(in_bounds):
                    m.d.sync += self.stream_out.eq(Cat(*gathered))
                with m.Else():
                    m.d.comb += self.fault.eq(Fault.ADDRESS_RANGE)
                    m.d.sync += self.stream_out.eq(0)
                m.d.sync += self.state.eq(EngineState.WRITE_EN)

            with m.Case(EngineState.WRITE_EN):
                m.d.sync += [
                    self.write_enable.eq(1),
                    self.state.eq(EngineState.WAIT_ACK),
                ]

            with m.Case(EngineState.WAIT_ACK):
                with m.If(self.ack):
                    with m.If(self.ctype == CacheType.DATA_OUTPUT):
                        # Keep write_enable up; the value is on stream_in now.
                        m.d.sync += self.state.eq(EngineState.READ_DATA)
                    with m.Else():
                        m.d.sync += self.write_enable.eq(0)
                        self._next_transfer(m)
                with m.Else():
                    m.d.sync += self.rejected.eq(self.reject)

            with m.Case(EngineState.READ_DATA):
                m.d.comb += writeback.eq(in_bounds & ~self.rejected)
                with m.If(~in_bounds):
                    m.d.comb += self.fault.eq(Fault.ADDRESS_RANGE)
                m.d.sync += self.write_enable.eq(0)
                self._next_transfer(m)

            with m.Case(EngineState.BLOCK):
                m.d.sync += [
                    self.addr.eq(self.addr + self.step),
                    self.line_place.eq(self.line_place + 1),
                    self.count.eq(self.count - 1),
                    self.state.eq(EngineState.PROCESS),
                ]
                with m.If(self.count == 1):
                    m.d.sync += self.block.eq(0)

            # Hold ready until the requester lets go of start, so a start that
            # is still high can't be mistaken for a new request.
            with m.Case(EngineState.FINISH):
                with m.If(~self.start):
                    m.d.sync += [
                        self.ready.eq(0),
                        self.block.eq(0),
                        self.count.eq(0),
                        self.state.eq(EngineState.AWAIT),
                    ]

        return m

    def _next_transfer(self, m):
        with m.If(self.block):
            m.d.sync += self.state.eq(EngineState.BLOCK)
        with m.Else():
            m.d.sync += [
                self.ready.eq(1),
                self.state.eq(EngineState.FINISH),
            ]
