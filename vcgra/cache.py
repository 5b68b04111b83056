# Double-buffered line caches sitting between the memory access engine and the
# compute array.

from amaranth import *
from amaranth.lib.wiring import *

from vcgra import CacheType, Fault, LINE_BITS, PLACE_BITS, calc_bitwidth
from vcgra.features import CacheFeatures

class LineCache(Component):
    """Common line storage and handshake for all cache flavors.

    A cache holds `lines` lines of `width` bits. One line is "output-selected"
    and visible to the compute array; the memory access engine works on the
    line named by select_in. The engine may never touch the output-selected
    line, and the output selection may never move onto the line the engine is
    writing, so the compute array cannot observe a torn line.

    Engine handshake: the engine raises `write` and holds it. On the first edge
    with write high and ack low, the cache serves the request (or rejects it
    with a fault) and raises ack. Ack drops on the first edge after write
    drops. Rejected requests are acknowledged like good ones so the engine
    never stalls.

    Parameters
    ----------
    width (integer): bits per line.
    lines (integer): number of lines, at most 8.
    members (dict): extra ports of the concrete cache.

    Attributes
    ----------
    write (input): engine request strobe, held until ack.
    ack (output): acknowledge, see above.
    select_in (input): line the engine is working on.
    select_out (input): requested output line. Takes effect on the next edge
        if allowed.
    selected (output): committed output line. Line 1 after reset.
    write_fault (output): reason the current request was rejected, if any.
    select_fault (output): reason the requested output line was refused, if
        any.
    """
    def __init__(self, *, width, lines, members = {}):
        assert lines > 1, "a double-buffered cache needs at least two lines"
        assert calc_bitwidth(lines) <= LINE_BITS, f"unsupported line count: {lines}"
        self.width = width
        self.lines = lines

        super().__init__(Signature({
            'write': In(1),
            'ack': Out(1),
            'select_in': In(LINE_BITS),
            'select_out': In(LINE_BITS, init = 1),
            'selected': Out(LINE_BITS, init = 1),
            'write_fault': Out(Fault),
            'select_fault': Out(Fault),
            **members,
        }))

        self.storage = [Signal(width, name = f"line{i}") for i in range(lines)]

    def output_blocked(self):
        """Condition that prevents the output selection from moving this
        tick. The engine's write target is always off limits."""
        return self.write & (self.select_in == self.select_out)

    def place_out_of_range(self):
        """Condition for rejecting the current request for a bad place, or
        None if this cache has no places."""
        return None

    def serve(self, m, line):
        """Adds the sync logic that carries out an accepted engine request
        against `line`."""
        raise NotImplementedError()

    def elaborate(self, platform):
        m = Module()

        # Output line switch.
        with m.If(self.select_out != self.selected):
            with m.If(self.select_out >= self.lines):
                m.d.comb += self.select_fault.eq(Fault.LINE_RANGE)
            with m.Elif(self.output_blocked()):
                m.d.comb += self.select_fault.eq(Fault.SELECT_BLOCKED)
            with m.Else():
                m.d.sync += self.selected.eq(self.select_out)

        # Engine requests.
        bad_place = self.place_out_of_range()
        with m.If(self.write & ~self.ack):
            m.d.sync += self.ack.eq(1)

            with m.If(self.select_in >= self.lines):
                m.d.comb += self.write_fault.eq(Fault.LINE_RANGE)
            if bad_place is not None:
                with m.Elif(bad_place):
                    m.d.comb += self.write_fault.eq(Fault.PLACE_RANGE)
            with m.Elif(self.select_in == self.selected):
                m.d.comb += self.write_fault.eq(Fault.LINE_IN_USE)
            with m.Else():
                for i, line in enumerate(self.storage):
                    with m.If(self.select_in == i):
                        self.serve(m, line)
        with m.Elif(~self.write & self.ack):
            m.d.sync += self.ack.eq(0)

        self.elaborate_array_side(m)

        return m

    def elaborate_array_side(self, m):
        pass

class ConfigurationCache(LineCache):
    """Cache for configuration bitstreams.

    A line is assembled from repeated narrow writes: each accepted write
    rotates the line left by the stream width and ORs the new chunk into the
    bottom, so the most significant chunk must be sent first.

    Parameters
    ----------
    width (integer): configuration bits per line; a multiple of stream_width.
    lines (integer): number of lines.
    stream_width (integer): bits delivered per write.

    Attributes
    ----------
    stream_in (input): chunk to merge.
    current (output): the output-selected configuration.
    """
    def __init__(self, *, width, lines = 2, stream_width = 8):
        assert width % stream_width == 0, \
                f"line width {width} is not a multiple of the stream width {stream_width}"
        self.stream_width = stream_width
        super().__init__(width = width, lines = lines, members = {
            'stream_in': In(stream_width),
            'current': Out(width),
        })

    def serve(self, m, line):
        m.d.sync += line.eq(line.rotate_left(self.stream_width) | self.stream_in)

    def elaborate_array_side(self, m):
        m.d.comb += self.current.eq(Array(self.storage)[self.selected])

class DataInCache(LineCache):
    """Cache of input values for the compute array. Each engine write stores
    one element.

    Parameters
    ----------
    element_width (integer): bits per value.
    places (integer): values per line.
    lines (integer): number of lines.

    Attributes
    ----------
    place (input): element the engine is writing.
    stream_in (input): the value to store.
    values (output): the output-selected line, element 0 in the low bits.
    """
    def __init__(self, *, element_width, places, lines = 2):
        assert places <= 2 ** PLACE_BITS - 1, f"too many places: {places}"
        self.element_width = element_width
        self.places = places
        super().__init__(width = element_width * places, lines = lines, members = {
            'place': In(PLACE_BITS),
            'stream_in': In(element_width),
            'values': Out(element_width * places),
        })

    def place_out_of_range(self):
        return self.place >= self.places

    def serve(self, m, line):
        w = self.element_width
        for j in range(self.places):
            with m.If(self.place == j):
                m.d.sync += line[j * w:(j + 1) * w].eq(self.stream_in)

    def elaborate_array_side(self, m):
        m.d.comb += self.values.eq(Array(self.storage)[self.selected])

class DataOutCache(LineCache):
    """Cache of results coming out of the compute array.

    The compute array stores a full line of results into the output-selected
    line with an `update` pulse. The engine drains other lines one element
    per request: an accepted request places the element on stream_out, valid
    from the edge that raises ack.

    Parameters
    ----------
    element_width (integer): bits per value.
    places (integer): values per line.
    lines (integer): number of lines.

    Attributes
    ----------
    place (input): element the engine is reading.
    stream_out (output): the element read.
    results (input): result line from the compute array.
    update (input): store `results` into the output-selected line.
    """
    def __init__(self, *, element_width, places, lines = 2):
        assert places <= 2 ** PLACE_BITS - 1, f"too many places: {places}"
        self.element_width = element_width
        self.places = places
        super().__init__(width = element_width * places, lines = lines, members = {
            'place': In(PLACE_BITS),
            'stream_out': Out(element_width),
            'results': In(element_width * places),
            'update': In(1),
        })

    def output_blocked(self):
        # Don't pull the line out from under an update either.
        return super().output_blocked() | self.update

    def place_out_of_range(self):
        return self.place >= self.places

    def serve(self, m, line):
        w = self.element_width
        for j in range(self.places):
            with m.If(self.place == j):
                m.d.sync += self.stream_out.eq(line[j * w:(j + 1) * w])

    def elaborate_array_side(self, m):
        with m.If(self.update):
            for i, line in enumerate(self.storage):
                with m.If(self.selected == i):
                    m.d.sync += line.eq(self.results)

def build_caches(features: CacheFeatures):
    """Instantiates the four caches described by a feature table, keyed by
    CacheType."""
    din = features[CacheType.DATA_INPUT]
    dout = features[CacheType.DATA_OUTPUT]
    pe = features[CacheType.CONF_PE]
    cc = features[CacheType.CONF_CC]
    return {
        CacheType.DATA_INPUT: DataInCache(
            element_width = din.data_width,
            places = features.places(CacheType.DATA_INPUT),
            lines = din.lines,
        ),
        CacheType.DATA_OUTPUT: DataOutCache(
            element_width = dout.data_width,
            places = features.places(CacheType.DATA_OUTPUT),
            lines = dout.lines,
        ),
        CacheType.CONF_PE: ConfigurationCache(
            width = pe.data_width,
            lines = pe.lines,
            stream_width = features.stream_width,
        ),
        CacheType.CONF_CC: ConfigurationCache(
            width = cc.data_width,
            lines = cc.lines,
            stream_width = features.stream_width,
        ),
    }
