import logging

import pytest
from amaranth.sim import Simulator

from vcgra import Fault
from vcgra.asm import assemble
from vcgra.control import Activity
from vcgra.features import CacheFeatures
from vcgra.sim import run_program, FaultMonitor, ControllerError
from vcgra.top import Controller

# Default table with a 6-byte PE configuration line.
SMALL_PE = CacheFeatures([16, 2, 16, 8, 2, 16, 6, 2, 48, 10, 2, 80])

def run_to_finish(dut, check, *, limit = 2000):
    """Runs `dut` until it finishes, then calls `check(ctx)`. Returns the
    fault monitor."""
    monitor = FaultMonitor(dut)

    async def bench(ctx):
        ctx.set(dut.run, 1)
        ticks = 0
        while not ctx.get(dut.finish):
            await ctx.tick()
            ticks += 1
            assert ticks < limit, "program never finished"
        check(ctx)

    sim = Simulator(dut)
    sim.add_clock(1e-6)
    sim.add_testbench(monitor.testbench, background = True)
    sim.add_testbench(bench)
    sim.run()
    return monitor

def test_single_data_load():
    dut = Controller(
        program = assemble("""
            LOADD 0 3 16
            SLCT_DIN_LINE 0
            FINISH
        """),
        mem_size = 256,
        contents = [0] * 16 + [0x34, 0x12],
    )

    def check(ctx):
        assert ctx.get(dut.values) == 0x1234 << (3 * 16)

    monitor = run_to_finish(dut, check)
    assert monitor.events == []

def test_whole_line_configuration_load():
    dut = Controller(
        program = assemble("""
            SLCT_PECC_LINE 0
            LOADPC 1 127 80
            SLCT_PECC_LINE 1
            FINISH
        """),
        features = SMALL_PE,
        mem_size = 256,
        contents = [0] * 80 + [1, 2, 3, 4, 5, 6],
    )

    def check(ctx):
        # First byte in memory ends up most significant.
        assert ctx.get(dut.pe_config) == 0x010203040506

    monitor = run_to_finish(dut, check)
    assert monitor.events == []

def test_load_into_shown_line_is_refused():
    dut = Controller(
        program = assemble("""
            LOADD 1 0 0
            FINISH
        """),
        mem_size = 256,
        contents = [0xFF, 0xFF],
    )

    def check(ctx):
        assert ctx.get(dut.values) == 0

    monitor = run_to_finish(dut, check)
    assert monitor.faults() == [Fault.LINE_IN_USE]
    assert monitor.faults("din write") == [Fault.LINE_IN_USE]

PIPELINE = """
    LOADDA 0 0 0x00     ; inputs into line 0
    SLCT_DIN_LINE 0
    SLCT_DOUT_LINE 0    ; results go to line 0
    START
    WAIT_READY
    SLCT_DOUT_LINE 1    ; so line 0 can be drained
    STOREDA 0 0 0x40
    FINISH
"""

def test_pipeline():
    contents = list(range(0x10, 0x20))
    result = run_program(assemble(PIPELINE), contents = contents, mem_size = 256)
    assert result.finished
    assert result.faults == []
    assert len(result.memory) == 256
    # The stand-in array passes the first four inputs through.
    assert result.memory[0x40:0x48] == bytes(contents[:8])
    assert result.memory[0x48:0x50] == bytes(8)

def test_pipeline_dump_window():
    contents = list(range(0x10, 0x20))
    result = run_program(assemble(PIPELINE), contents = contents,
                         mem_size = 256, dump = (0x3C, 8), latency = 1)
    assert result.memory == bytes(4) + bytes(contents[:4])

def test_faults_are_logged(caplog):
    program = assemble("""
        .word 0x3f
        LOADD 0 0 255
        FINISH
    """)
    with caplog.at_level(logging.WARNING, logger = "vcgra.sim"):
        result = run_program(program, mem_size = 256, dump = (0, 0))
    assert result.finished
    assert [(port, fault) for (_, port, fault) in result.faults] == [
        ("control", Fault.OPCODE),
        ("engine", Fault.ADDRESS_RANGE),
    ]
    assert "OPCODE" in caplog.text
    assert "ADDRESS_RANGE" in caplog.text

def test_tick_limit():
    result = run_program(assemble("WAIT_READY"), mem_size = 16, max_ticks = 50)
    assert not result.finished
    assert result.ticks == 50

def test_reset_during_transfer_is_fatal():
    dut = Controller(
        program = assemble("""
            LOADDA 0 127 0
            FINISH
        """),
        mem_size = 256,
    )
    monitor = FaultMonitor(dut)

    async def bench(ctx):
        ctx.set(dut.run, 1)
        while ctx.get(dut.activity) != Activity.WAIT:
            await ctx.tick()
        # Stop the control unit while the engine is still busy; the engine's
        # ready then arrives out of the blue.
        ctx.set(dut.rst, 1)
        await ctx.tick()
        ctx.set(dut.rst, 0)
        for _ in range(200):
            await ctx.tick()

    sim = Simulator(dut)
    sim.add_clock(1e-6)
    sim.add_testbench(monitor.testbench, background = True)
    sim.add_testbench(bench)
    with pytest.raises(ControllerError):
        sim.run()
    assert monitor.faults("control") == [Fault.DESYNC]

def test_refused_store_leaves_memory_alone():
    # Line 1 is the one the array sees after reset, so draining it is refused.
    result = run_program(assemble("""
        STORED 1 0 0x40
        FINISH
    """), contents = [0xAA] * 256, mem_size = 256)
    assert result.finished
    assert [(port, fault) for (_, port, fault) in result.faults] == [
        ("dout write", Fault.LINE_IN_USE),
    ]
    assert result.memory == bytes([0xAA] * 256)

def test_block_store_skips_places_past_the_line():
    # Five-byte output lines hold two 16-bit results, but take four 16-bit
    # transfers to stream. The last two are refused by the cache.
    features = CacheFeatures([16, 2, 16, 5, 2, 16, 8, 2, 64, 10, 2, 80])
    contents = list(range(0x10, 0x20)) + [0xAA] * 240
    result = run_program(assemble(PIPELINE), features = features,
                         contents = contents, mem_size = 256)
    assert result.finished
    assert [(port, fault) for (_, port, fault) in result.faults] == [
        ("dout write", Fault.PLACE_RANGE),
        ("dout write", Fault.PLACE_RANGE),
    ]
    assert result.memory[0x40:0x48] == bytes(contents[:4]) + bytes([0xAA] * 4)

@pytest.mark.parametrize("load, store, place, src, dst, size", [
    ("LOADD", "STORED", 0, 0x00, 0x80, 2),
    ("LOADD", "STORED", 3, 0x31, 0xFE, 2),
    ("LOADD", "STORED", 2, 0xF0, 0x07, 2),
    ("LOADDA", "STOREDA", 127, 0x20, 0x61, 8),
])
def test_memory_round_trip(load, store, place, src, dst, size):
    contents = [(7 * i + 3) & 0xFF for i in range(256)]
    result = run_program(assemble(f"""
        {load} 0 {place} {src}
        SLCT_DIN_LINE 0
        SLCT_DOUT_LINE 0
        START
        WAIT_READY
        SLCT_DOUT_LINE 1
        {store} 0 {place} {dst}
        FINISH
    """), contents = contents, mem_size = 256)
    assert result.finished
    assert result.faults == []
    expected = list(contents)
    expected[dst:dst + size] = contents[src:src + size]
    assert result.memory == bytes(expected)
