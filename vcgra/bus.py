from amaranth import *
from amaranth.lib.wiring import *

from vcgra import AlwaysReady

class BusCmd(Signature):
    def __init__(self, *, addr, data):
        if isinstance(data, int):
            lanes = (data + 7) // 8
        else:
            lanes = (data.width + 7) // 8
        super().__init__({
            'addr': Out(addr),
            'lanes': Out(lanes),
            'data': Out(data)
        })

class BusPort(Signature):
    """A command/response port. A command with all lanes clear is a read,
    otherwise the selected byte lanes are written. The response carries the
    read data."""
    def __init__(self, *, addr, data):
        super().__init__({
            'cmd': Out(AlwaysReady(BusCmd(addr=addr, data=data))),
            'resp': In(data),
        })
