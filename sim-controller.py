# Runs a controller program in simulation against a stand-in compute array and
# prints what it did to shared memory.

import argparse
import logging
from pathlib import Path

from vcgra.asm import assemble, disassemble_word, AsmError
from vcgra.features import CacheFeatures, DEFAULT_FEATURES
from vcgra.sim import run_program, ControllerError
from vcgra import CACHE_TYPES, ADDRESS_BITS

def parse_range(text):
    start, _, length = text.partition(":")
    return (int(start, 0), int(length, 0))

parser = argparse.ArgumentParser(
    prog = "sim-controller",
    description = "Simulate a controller program",
)
parser.add_argument('program', help = 'assembly source of the controller program')
parser.add_argument('image', help = 'raw binary image loaded at address 0 of shared memory',
                    nargs = '?')
parser.add_argument('--mem-size', help = 'shared memory size in bytes',
                    type = lambda s: int(s, 0), default = 2 ** ADDRESS_BITS)
parser.add_argument('--features', help = 'cache feature table: twelve integers',
                    type = int, nargs = 12, metavar = 'N')
parser.add_argument('--ticks', help = 'give up after this many ticks',
                    type = int, default = 100_000)
parser.add_argument('--latency', help = 'ticks the stand-in array takes per start',
                    type = int, default = 4)
parser.add_argument('--dump', help = 'memory range to print, as START:LENGTH',
                    type = parse_range, default = (0, 256))
parser.add_argument('--vcd', help = 'write a waveform to this file')
parser.add_argument('-v', '--verbose', help = 'log every fault as it happens',
                    action = 'store_true')
args = parser.parse_args()

logging.basicConfig(
    level = logging.INFO if args.verbose else logging.ERROR,
    format = "%(levelname)s %(name)s: %(message)s",
)

try:
    program = assemble(Path(args.program).read_text())
except AsmError as e:
    parser.error(f"{args.program}: {e}")

if args.features is not None:
    try:
        features = CacheFeatures(args.features)
    except ValueError as e:
        parser.error(str(e))
else:
    features = DEFAULT_FEATURES

contents = []
if args.image is not None:
    contents = list(Path(args.image).read_bytes())
    if len(contents) > args.mem_size:
        parser.error(f"image is {len(contents)} bytes but memory is {args.mem_size}")

start, length = args.dump
if start < 0 or length < 0 or start + length > args.mem_size:
    parser.error(f"dump range {start:#x}:{length:#x} is outside memory")

print(f"program: {len(program)} instructions")
for i, word in enumerate(program):
    print(f"  {i:3}  {word:08x}  {disassemble_word(word)}")
print(f"shared memory: {args.mem_size} bytes, {len(contents)} preloaded")
for ctype in CACHE_TYPES:
    f = features[ctype]
    print(f"{ctype.name:12} {f.lines} lines x {f.line_bytes} bytes, "
          f"{features.granularity(ctype)}-bit transfers, "
          f"{features.block_count(ctype)} block steps")

try:
    result = run_program(
        program,
        contents = contents,
        features = features,
        mem_size = args.mem_size,
        max_ticks = args.ticks,
        latency = args.latency,
        dump = args.dump,
        vcd = args.vcd,
    )
except ControllerError as e:
    print(f"FATAL: {e}")
    raise SystemExit(1)

if result.finished:
    print(f"finished after {result.ticks} ticks")
else:
    print(f"gave up after {result.ticks} ticks")
print(f"{len(result.faults)} faults")
for (tick, port, fault) in result.faults:
    print(f"  tick {tick:6}: {port} {fault.name}")

for offset in range(0, length, 16):
    row = result.memory[offset:offset + 16]
    print(f"{start + offset:04x}  {row.hex(' ')}")

if not result.finished:
    raise SystemExit(1)
