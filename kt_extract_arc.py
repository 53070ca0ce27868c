# Tool to unpack the .arc archives that hold KT skinned models.
#
# Archive layout (little endian):
#   0x00  magic, version, file count, reserved (4 x u32)
#   0x10  file count x {name offset, data offset, raw size, stored size} (4 x u32)
# Entries whose stored size differs from their raw size are LZ compressed
# (see decompress_lz).
#
# Everything works on bytes already in memory; reading and writing files is
# left to the caller.

from lib_ktbin import BinReader, IntegrityError

arc_header_layout = {'magic': (0x0, 'I'), 'version': (0x4, 'I'), 'num_files': (0x8, 'I'), 'reserved': (0xC, 'I')}
arc_entry_layout = {'name_offset': (0x0, 'I'), 'offset': (0x4, 'I'), 'raw_size': (0x8, 'I'), 'stored_size': (0xC, 'I')}
arc_entry_stride = 0x10

def decompress_lz (cmp_data, raw_size):
    # Back-references are big endian, everything else is single bytes
    f = BinReader(cmp_data, 'compressed stream', endian = '>')
    output = bytearray()
    control_code = 0
    while f.remaining() > 0:
        if not control_code & 0x100:
            control_code = f.u8() | 0xFF00 # High byte marks when the 8 flag bits are used up
        if control_code & 1:
            output.append(f.u8())
        else:
            flag = f.u16()
            if flag == 0:
                break
            offset = flag >> 4
            length = (flag & 0xF) + 3
            for _ in range(length):
                src = len(output) - offset
                # Unverified: zero fill for references before the start of output.  Kept for exact output.
                output.append(output[src] if src >= 0 else 0)
        control_code >>= 1
    if len(output) != raw_size:
        raise IntegrityError("Decompressed size mismatch: got 0x{0:X} bytes, expected 0x{1:X}".format(len(output), raw_size))
    return(bytes(output))

def read_arc_toc (arc_data):
    f = BinReader(arc_data, 'archive')
    header = f.read_fields(arc_header_layout)
    toc = []
    for i in range(header['num_files']):
        toc_entry = f.read_fields(arc_entry_layout, 0x10 + i * arc_entry_stride)
        toc_entry['name'] = f.cstring(toc_entry['name_offset'])
        toc.append(toc_entry)
    return(toc)

def extract_arc (arc_data):
    f = BinReader(arc_data, 'archive')
    files = []
    for toc_entry in read_arc_toc(arc_data):
        print("Extracting {}...".format(toc_entry['name']))
        f.seek(toc_entry['offset'])
        stored = f.read(toc_entry['stored_size'])
        if toc_entry['stored_size'] == toc_entry['raw_size']:
            data = stored
        else:
            data = decompress_lz(stored, toc_entry['raw_size'])
        files.append({'name': toc_entry['name'], 'data': data})
    return(files)

def find_model_entries (files):
    # Exactly one bone name index and one model per archive
    b2it_files = [x for x in files if x['name'].endswith('.b2it')]
    model_files = [x for x in files if x['name'].endswith('.model')]
    for ext, matches in [('.b2it', b2it_files), ('.model', model_files)]:
        if len(matches) != 1:
            raise IntegrityError("Expected exactly one {0} entry in archive, found {1}".format(ext, len(matches)))
    return(b2it_files[0], model_files[0])
