# The complete controller: control unit, memory access engine and caches.

from amaranth import *
from amaranth.lib.wiring import *

from vcgra import CacheType, Fault, ADDRESS_BITS, oneof
from vcgra.bus import BusPort
from vcgra.cache import build_caches
from vcgra.control import ControlUnit, Activity, InstrState, CACHE_PREFIX
from vcgra.engine import MemoryAccessEngine
from vcgra.features import DEFAULT_FEATURES

class Controller(Component):
    """Wires up a ControlUnit, a MemoryAccessEngine and the four caches, and
    presents the interface the compute array sees.

    Parameters
    ----------
    program (list of integer): controller program, see ControlUnit.
    features (CacheFeatures): cache geometry.
    mem_size (integer): bytes of shared memory.
    contents (list of integer): initial shared memory bytes.
    depth (integer): instruction memory capacity, if larger than the program.

    Attributes
    ----------
    run, pause, rst (input): operator controls.
    finish (output): program reached FINISH.
    array_start (output): start pulse to the compute array.
    array_ready (input): ready pulse from the compute array.
    pe_config (output): selected PE configuration line.
    cc_config (output): selected CC configuration line.
    values (output): selected input data line.
    results (input): result line from the compute array.
    update (input): store `results` into the selected output data line.
    inspect (port): byte access to shared memory.
    activity, state, pc (output): control unit status.
    control_fault, engine_fault (output): per-unit fault codes.
    {din,dout,pe,cc}_write_fault, {din,dout,pe,cc}_select_fault (output):
        per-cache fault codes.
    """
    def __init__(self, *,
                 program,
                 features = DEFAULT_FEATURES,
                 mem_size = 2 ** ADDRESS_BITS,
                 contents = [],
                 depth = None):
        self.features = features

        self.control = ControlUnit(program = program, depth = depth)
        self.engine = MemoryAccessEngine(
            features = features,
            mem_size = mem_size,
            contents = contents,
        )
        self.caches = build_caches(features)

        din = self.caches[CacheType.DATA_INPUT]
        dout = self.caches[CacheType.DATA_OUTPUT]
        pe = self.caches[CacheType.CONF_PE]
        cc = self.caches[CacheType.CONF_CC]

        cache_faults = {}
        for prefix in CACHE_PREFIX.values():
            cache_faults[f"{prefix}_write_fault"] = Out(Fault)
            cache_faults[f"{prefix}_select_fault"] = Out(Fault)

        super().__init__(Signature({
            'run': In(1),
            'pause': In(1),
            'rst': In(1),
            'finish': Out(1),

            'array_start': Out(1),
            'array_ready': In(1),
            'pe_config': Out(pe.width),
            'cc_config': Out(cc.width),
            'values': Out(din.width),
            'results': In(dout.width),
            'update': In(1),

            'inspect': In(BusPort(addr = ADDRESS_BITS, data = 8)),

            'activity': Out(Activity, init = Activity.STOP),
            'state': Out(InstrState),
            'pc': Out(range(self.control.depth + 1)),
            'control_fault': Out(Fault),
            'engine_fault': Out(Fault),
            **cache_faults,
        }))

    def elaborate(self, platform):
        m = Module()

        m.submodules.control = control = self.control
        m.submodules.engine = engine = self.engine
        for ctype, cache in self.caches.items():
            m.submodules[CACHE_PREFIX[ctype]] = cache

        din = self.caches[CacheType.DATA_INPUT]
        dout = self.caches[CacheType.DATA_OUTPUT]
        pe = self.caches[CacheType.CONF_PE]
        cc = self.caches[CacheType.CONF_CC]

        # Control unit to engine.
        m.d.comb += [
            engine.start.eq(control.mmu_start),
            engine.cache_select.eq(control.cache_select),
            engine.address.eq(control.address),
            engine.place.eq(control.place),
            control.mmu_ready.eq(engine.ready),
        ]

        # The engine talks to one cache at a time, named by its target. Only
        # that cache sees write_enable, and only its ack gets back.
        for ctype, cache in self.caches.items():
            m.d.comb += [
                cache.write.eq(engine.write_enable & (engine.target == ctype)),
                cache.select_in.eq(control.select_in(ctype)),
                cache.select_out.eq(control.select_out(ctype)),
            ]
        m.d.comb += engine.ack.eq(oneof([
            (engine.target == ctype, cache.ack)
            for ctype, cache in self.caches.items()
        ]))
        m.d.comb += engine.reject.eq(oneof([
            (engine.target == ctype, cache.write_fault != Fault.NONE)
            for ctype, cache in self.caches.items()
        ]))

        # Data paths. Configuration caches take the low byte lane(s) of the
        # engine's stream.
        m.d.comb += [
            din.place.eq(engine.cache_place),
            dout.place.eq(engine.cache_place),
            din.stream_in.eq(engine.stream_out),
            pe.stream_in.eq(engine.stream_out),
            cc.stream_in.eq(engine.stream_out),
            engine.stream_in.eq(dout.stream_out),
        ]

        # Compute array side.
        m.d.comb += [
            self.array_start.eq(control.array_start),
            control.array_ready.eq(self.array_ready),
            self.pe_config.eq(pe.current),
            self.cc_config.eq(cc.current),
            self.values.eq(din.values),
            dout.results.eq(self.results),
            dout.update.eq(self.update),
        ]

        # Operator controls and status.
        m.d.comb += [
            control.run.eq(self.run),
            control.pause.eq(self.pause),
            control.rst.eq(self.rst),
            self.finish.eq(control.finish),

            self.activity.eq(control.activity),
            self.state.eq(control.state),
            self.pc.eq(control.pc),
            self.control_fault.eq(control.fault),
            self.engine_fault.eq(engine.fault),
        ]
        for ctype, cache in self.caches.items():
            prefix = CACHE_PREFIX[ctype]
            m.d.comb += [
                getattr(self, f"{prefix}_write_fault").eq(cache.write_fault),
                getattr(self, f"{prefix}_select_fault").eq(cache.select_fault),
            ]

        connect(m, flipped(self.inspect), engine.inspect)

        return m
