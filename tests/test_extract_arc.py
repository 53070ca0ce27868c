import struct

import pytest

from kt_extract_arc import decompress_lz, read_arc_toc, extract_arc, find_model_entries
from lib_ktbin import IntegrityError, OutOfRange
from synth import compress_lz, build_arc

sample = (b"KTMODEL " * 20) + bytes(range(64)) + b"\x00" * 100 + b"abcabcabcabcabcd" * 7

def test_reference_encoding_round_trips():
    cmp_data = compress_lz(sample)
    assert len(cmp_data) < len(sample)
    assert decompress_lz(cmp_data, len(sample)) == sample

def test_overlapping_back_reference():
    # literal 'a', then copy 5 bytes from 1 back
    cmp_data = bytes([0b01]) + b'a' + struct.pack(">H", (1 << 4) | (5 - 3))
    assert decompress_lz(cmp_data, 6) == b'aaaaaa'

def test_longest_back_reference():
    # literals 'ab', then copy 18 bytes (length field 0xF) from 2 back
    cmp_data = bytes([0b011]) + b'ab' + struct.pack(">H", (2 << 4) | 0xF)
    assert decompress_lz(cmp_data, 20) == b'ab' * 10

def test_long_runs_round_trip():
    raw = b'z' * 100 + bytes(range(256)) + b'z' * 37
    cmp_data = compress_lz(raw)
    assert len(cmp_data) < len(raw)
    assert decompress_lz(cmp_data, len(raw)) == raw

def test_back_reference_before_start_emits_zeros():
    cmp_data = bytes([0]) + struct.pack(">H", (5 << 4) | 0)
    assert decompress_lz(cmp_data, 3) == b'\x00\x00\x00'

def test_zero_flag_ends_stream():
    cmp_data = bytes([0b01]) + b'a' + b'\x00\x00' + b'trailing'
    assert decompress_lz(cmp_data, 1) == b'a'

def test_length_mismatch_is_fatal():
    with pytest.raises(IntegrityError):
        decompress_lz(compress_lz(sample), len(sample) + 1)

def test_truncated_flag_is_fatal():
    with pytest.raises(OutOfRange):
        decompress_lz(b'\x00\x10', 3)

def test_read_arc_toc():
    # Incompressible entries are stored as is
    arc = build_arc([('pl/a.b2it', b'12345678'), ('pl/a.model', sample)])
    toc = read_arc_toc(arc)
    assert [x['name'] for x in toc] == ['pl/a.b2it', 'pl/a.model']
    assert toc[0]['stored_size'] == toc[0]['raw_size'] == 8
    assert toc[1]['raw_size'] == len(sample)
    assert toc[1]['stored_size'] < len(sample)

def test_extract_arc_handles_stored_and_compressed_entries():
    arc = build_arc([('pl/a.b2it', b'12345678'), ('pl/a.model', sample)])
    files = extract_arc(arc)
    assert files == [{'name': 'pl/a.b2it', 'data': b'12345678'}, {'name': 'pl/a.model', 'data': sample}]

def test_extract_arc_entry_past_end():
    arc = build_arc([('pl/a.model', sample)])
    with pytest.raises(OutOfRange):
        extract_arc(arc[:-10])

def test_find_model_entries():
    files = [{'name': 'a.tex', 'data': b''}, {'name': 'a.b2it', 'data': b'1'}, {'name': 'a.model', 'data': b'2'}]
    b2it_file, model_file = find_model_entries(files)
    assert b2it_file['data'] == b'1'
    assert model_file['data'] == b'2'

@pytest.mark.parametrize('names', [
    ['a.model'],
    ['a.b2it'],
    ['a.b2it', 'b.b2it', 'a.model'],
    ['a.b2it', 'a.model', 'b.model'],
])
def test_find_model_entries_requires_exactly_one_of_each(names):
    with pytest.raises(IntegrityError):
        find_model_entries([{'name': x, 'data': b''} for x in names])
