import pytest

from vcgra import CacheType, calc_bitwidth, calc_num_bytes
from vcgra.features import CacheFeatures, CacheFeature, DEFAULT_FEATURES

# Default table with a 6-byte PE configuration line.
SMALL_PE = [16, 2, 16, 8, 2, 16, 6, 2, 48, 10, 2, 80]

def test_default_geometry():
    f = DEFAULT_FEATURES
    assert f.places(CacheType.DATA_INPUT) == 8
    assert f.places(CacheType.DATA_OUTPUT) == 4
    assert f.granularity(CacheType.DATA_INPUT) == 16
    assert f.granularity(CacheType.CONF_CC) == 8
    assert f.step(CacheType.DATA_OUTPUT) == 2
    assert f.step(CacheType.CONF_PE) == 1
    assert f.max_transfer_bytes() == 2
    assert f.line_width(CacheType.DATA_INPUT) == 128
    assert f.line_width(CacheType.CONF_CC) == 80

def test_block_count_exact_multiple_is_reduced():
    f = CacheFeatures(SMALL_PE)
    # 48 bits in 8-bit steps: six transfers, counter starts at five.
    assert f.block_count(CacheType.CONF_PE) == 5
    assert DEFAULT_FEATURES.block_count(CacheType.DATA_INPUT) == 7
    assert DEFAULT_FEATURES.block_count(CacheType.DATA_OUTPUT) == 3
    assert DEFAULT_FEATURES.block_count(CacheType.CONF_CC) == 9
    assert DEFAULT_FEATURES.max_block_count() == 9

def test_block_count_partial_step_rounds_up():
    # 40-bit line in 16-bit steps.
    f = CacheFeatures([5, 2, 16, 8, 2, 16, 8, 2, 64, 10, 2, 80])
    assert f.block_count(CacheType.DATA_INPUT) == 3

def test_lookup_and_list():
    f = CacheFeatures(SMALL_PE)
    assert f[CacheType.CONF_PE] == CacheFeature(6, 2, 48)
    assert f[2] == CacheFeature(6, 2, 48)
    assert f.as_list() == SMALL_PE
    assert list(f) == [
        CacheType.DATA_INPUT, CacheType.DATA_OUTPUT,
        CacheType.CONF_PE, CacheType.CONF_CC,
    ]

@pytest.mark.parametrize("count", [0, 11, 13, 24])
def test_wrong_entry_count(count):
    with pytest.raises(ValueError, match="12 entries"):
        CacheFeatures([8] * count)

@pytest.mark.parametrize("values", [
    # zero entry
    [16, 2, 16, 8, 2, 16, 8, 2, 0, 10, 2, 80],
    # one line can't double buffer
    [16, 1, 16, 8, 2, 16, 8, 2, 64, 10, 2, 80],
    # more lines than the line field holds
    [16, 9, 16, 8, 2, 16, 8, 2, 64, 10, 2, 80],
    # element width not whole bytes
    [16, 2, 12, 8, 2, 16, 8, 2, 64, 10, 2, 80],
    # element wider than the line
    [1, 2, 16, 8, 2, 16, 8, 2, 64, 10, 2, 80],
    # 127 places collides with the whole-line marker
    [127, 2, 8, 8, 2, 16, 8, 2, 64, 10, 2, 80],
    # configuration width not a multiple of the stream width
    [16, 2, 16, 8, 2, 16, 8, 2, 60, 10, 2, 80],
])
def test_bad_tables(values):
    with pytest.raises(ValueError):
        CacheFeatures(values)

def test_wider_stream():
    f = CacheFeatures([16, 2, 16, 8, 2, 16, 8, 2, 64, 10, 2, 80], stream_width = 16)
    assert f.granularity(CacheType.CONF_PE) == 16
    assert f.block_count(CacheType.CONF_PE) == 3
    with pytest.raises(ValueError):
        CacheFeatures([16, 2, 16, 8, 2, 16, 8, 2, 64, 10, 2, 80], stream_width = 12)
    with pytest.raises(ValueError):
        # 80 isn't a multiple of 32
        CacheFeatures([16, 2, 16, 8, 2, 16, 8, 2, 64, 10, 2, 80], stream_width = 32)

def test_size_helpers():
    assert [calc_bitwidth(n) for n in (1, 2, 3, 4, 5, 8)] == [0, 1, 2, 2, 3, 3]
    assert [calc_num_bytes(b) for b in (1, 8, 9, 48, 80)] == [1, 1, 2, 6, 10]
