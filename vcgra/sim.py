# Simulation harness: a stand-in compute array, a fault monitor, helpers for
# poking shared memory through the inspect port, and a one-call program runner.

import logging
from collections import namedtuple

from amaranth import *
from amaranth.lib.wiring import *
from amaranth.sim import Simulator

from vcgra import Fault, ADDRESS_BITS
from vcgra.control import Activity, CACHE_PREFIX
from vcgra.features import DEFAULT_FEATURES
from vcgra.top import Controller

logger = logging.getLogger(__name__)

class ControllerError(Exception):
    """The controller hit a fatal condition during simulation."""

class ArrayModel(Component):
    """Stand-in for the compute array.

    `latency` ticks after seeing `start`, it copies the low bits of `values`
    to `results` and pulses `ready` and `update` together for one tick. It
    computes nothing, but it behaves like the real array at the controller's
    interface.
    """
    def __init__(self, *, values_width, results_width, latency = 4):
        assert latency > 0, "the array needs at least one tick"
        self.latency = latency
        super().__init__(Signature({
            'start': In(1),
            'ready': Out(1),
            'values': In(values_width),
            'results': Out(results_width),
            'update': Out(1),
        }))

    def elaborate(self, platform):
        m = Module()

        busy = Signal(1)
        remaining = Signal(range(self.latency + 1))

        m.d.sync += [
            self.ready.eq(0),
            self.update.eq(0),
        ]
        with m.If(busy):
            m.d.sync += remaining.eq(remaining - 1)
            with m.If(remaining == 1):
                m.d.sync += [
                    busy.eq(0),
                    self.results.eq(self.values),
                    self.ready.eq(1),
                    self.update.eq(1),
                ]
        with m.Elif(self.start):
            m.d.sync += [
                busy.eq(1),
                remaining.eq(self.latency),
            ]

        return m

def fault_ports(dut):
    """Returns (name, signal) for every fault output of a Controller."""
    ports = [
        ("control", dut.control_fault),
        ("engine", dut.engine_fault),
    ]
    for prefix in CACHE_PREFIX.values():
        ports.append((f"{prefix} write", getattr(dut, f"{prefix}_write_fault")))
        ports.append((f"{prefix} select", getattr(dut, f"{prefix}_select_fault")))
    return ports

class FaultMonitor:
    """Testbench that watches a Controller's fault outputs.

    Each time a fault output changes to something other than NONE, it's
    logged as a warning and recorded in `events` as (tick, port name, Fault).
    If the control unit ever enters ERROR, the monitor raises
    ControllerError, which ends the simulation.

    Add it with `sim.add_testbench(monitor.testbench, background = True)`.
    """
    def __init__(self, dut):
        self.dut = dut
        self.ports = fault_ports(dut)
        self.events = []

    def faults(self, port = None):
        return [f for (_, name, f) in self.events if port is None or name == port]

    async def testbench(self, ctx):
        previous = [Fault.NONE] * len(self.ports)
        tick = 0
        signals = [signal for (_, signal) in self.ports]
        async for _, _, activity, *values in ctx.tick().sample(
                self.dut.activity, *signals):
            for i, ((name, _), value) in enumerate(zip(self.ports, values)):
                fault = Fault(value)
                if fault != previous[i] and fault != Fault.NONE:
                    logger.warning("tick %d: %s fault %s", tick, name, fault.name)
                    self.events.append((tick, name, fault))
                previous[i] = fault
            if Activity(activity) == Activity.ERROR:
                raise ControllerError(
                    f"control unit entered ERROR at tick {tick}: "
                    "memory access engine finished a transfer nobody was "
                    "waiting for")
            tick += 1

async def write_byte(ctx, port, addr, value):
    """Writes one byte through an inspect port. Takes one tick."""
    ctx.set(port.cmd.payload.addr, addr)
    ctx.set(port.cmd.payload.data, value)
    ctx.set(port.cmd.payload.lanes, 1)
    ctx.set(port.cmd.valid, 1)
    await ctx.tick()
    ctx.set(port.cmd.valid, 0)
    ctx.set(port.cmd.payload.lanes, 0)

async def load_bytes(ctx, port, addr, data):
    for i, b in enumerate(data):
        await write_byte(ctx, port, addr + i, b)

def read_byte(ctx, port, addr):
    """Reads one byte through an inspect port. Reads are combinational, so
    this doesn't advance time."""
    ctx.set(port.cmd.payload.addr, addr)
    return ctx.get(port.resp)

def dump_bytes(ctx, port, addr, count):
    return bytes(read_byte(ctx, port, addr + i) for i in range(count))

RunResult = namedtuple("RunResult", ["finished", "ticks", "memory", "faults"])

def run_program(program, *,
                contents = [],
                features = DEFAULT_FEATURES,
                mem_size = 2 ** ADDRESS_BITS,
                max_ticks = 100_000,
                latency = 4,
                dump = None,
                vcd = None):
    """Simulates a Controller running `program` against an ArrayModel.

    Raises `run`, waits for `finish` or `max_ticks`, drops `run`, and reads
    back shared memory. `dump` is an (address, length) pair limiting how much
    memory is read back; by default all of it is. Raises ControllerError if
    the control unit hits a fatal error.

    Returns a RunResult of (finished, ticks, memory, faults), where faults is
    the FaultMonitor's event list.
    """
    if dump is None:
        dump = (0, mem_size)

    m = Module()
    m.submodules.dut = dut = Controller(
        program = program,
        features = features,
        mem_size = mem_size,
        contents = contents,
    )
    m.submodules.array = array = ArrayModel(
        values_width = len(dut.values),
        results_width = len(dut.results),
        latency = latency,
    )
    m.d.comb += [
        array.start.eq(dut.array_start),
        array.values.eq(dut.values),
        dut.array_ready.eq(array.ready),
        dut.results.eq(array.results),
        dut.update.eq(array.update),
    ]

    monitor = FaultMonitor(dut)
    outcome = {}

    async def bench(ctx):
        ctx.set(dut.run, 1)
        ticks = 0
        while not ctx.get(dut.finish) and ticks < max_ticks:
            await ctx.tick()
            ticks += 1
        finished = bool(ctx.get(dut.finish))
        if finished:
            logger.info("program finished after %d ticks", ticks)
        else:
            logger.warning("program still running after %d ticks", ticks)
        ctx.set(dut.run, 0)
        await ctx.tick()

        outcome['finished'] = finished
        outcome['ticks'] = ticks
        outcome['memory'] = dump_bytes(ctx, dut.inspect, *dump)

    sim = Simulator(m)
    sim.add_clock(1e-6)
    sim.add_testbench(monitor.testbench, background = True)
    sim.add_testbench(bench)
    if vcd is not None:
        with sim.write_vcd(vcd):
            sim.run()
    else:
        sim.run()

    return RunResult(
        finished = outcome['finished'],
        ticks = outcome['ticks'],
        memory = outcome['memory'],
        faults = monitor.events,
    )
