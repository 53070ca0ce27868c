# Builders for synthetic .arc / .b2it / .model blobs used by the tests.

import struct

def compress_lz (raw):
    # Greedy reference encoder for kt_extract_arc.decompress_lz
    items = []
    i = 0
    while i < len(raw):
        best_len, best_off = 0, 0
        for off in range(1, min(i, 0xFFF) + 1):
            length = 0
            while length < 18 and i + length < len(raw) and raw[i + length - off] == raw[i + length]:
                length += 1
            if length > best_len:
                best_len, best_off = length, off
        if best_len >= 3:
            items.append((False, struct.pack(">H", (best_off << 4) | (best_len - 3))))
            i += best_len
        else:
            items.append((True, raw[i:i+1]))
            i += 1
    cmp_data = bytearray()
    for k in range(0, len(items), 8):
        group = items[k:k+8]
        cmp_data.append(sum([1 << bit for bit in range(len(group)) if group[bit][0]]))
        for _, chunk in group:
            cmp_data.extend(chunk)
    return(bytes(cmp_data))

def build_arc (files, compress = True):
    # files is a list of (name, data)
    header_sz = 0x10 + 0x10 * len(files)
    name_block = bytearray()
    name_offsets = []
    for name, _ in files:
        name_offsets.append(header_sz + len(name_block))
        name_block.extend(name.encode('utf-8') + b'\x00')
    data_block = bytearray()
    entries = bytearray()
    data_start = header_sz + len(name_block)
    for i in range(len(files)):
        raw = files[i][1]
        stored = compress_lz(raw) if compress else raw
        if len(stored) >= len(raw):
            stored = raw
        entries.extend(struct.pack("<4I", name_offsets[i], data_start + len(data_block), len(raw), len(stored)))
        data_block.extend(stored)
    header = struct.pack("<4I", 0x435241, 1, len(files), 0)
    return(bytes(header + entries + name_block + data_block))

def build_b2it (names, index):
    num_names = len(names)
    index_offset = 0x20 + 4 * num_names
    string_start = index_offset + 4 * num_names
    string_block = bytearray()
    name_offsets = []
    for name in names:
        name_offsets.append(string_start + len(string_block))
        string_block.extend(name.encode('utf-8') + b'\x00')
    header = bytearray(0x20)
    struct.pack_into("<I", header, 0x10, num_names)
    struct.pack_into("<I", header, 0x18, index_offset)
    return(bytes(header + struct.pack("<{}I".format(num_names), *name_offsets)
        + struct.pack("<{}I".format(num_names), *index) + string_block))

def make_vertex (pos, blend_idx = (0, 0, 0, 0), weights = (0.0, 0.0, 0.0), nrm = (0.0, 1.0, 0.0),
        uv = (0.0, 0.0), tan = None, bitan = None):
    return({'pos': pos, 'blend_idx': blend_idx, 'weights': weights, 'nrm': nrm, 'uv': uv,
        'tan': tan or (1.0, 0.0, 0.0), 'bitan': bitan or (0.0, 0.0, 1.0)})

def pack_vertex (vert, stride):
    block = struct.pack("<3f4B3f3f", *vert['pos'], *vert['blend_idx'], *vert['weights'], *vert['nrm'])
    if stride == 68:
        block += struct.pack("<6f", *vert['tan'], *vert['bitan'])
    return(block + struct.pack("<2e", *vert['uv']))

def build_model (bones, sections, remap_tables, num_batches = None):
    # bones: list of (pos, parent index or -1)
    # sections: list of {'verts': [make_vertex(...)], 'faces': [(a, b, c)], 'stride': 44 or 68}
    bone_offset = 0x40
    section_offset = bone_offset + 0xB0 * len(bones)
    data_offset = section_offset + 0x40 * len(sections)
    records = bytearray()
    data_block = bytearray()
    for i in range(len(sections)):
        stride = sections[i].get('stride', 44)
        record_offset = section_offset + 0x40 * i
        vert_start = data_offset + len(data_block)
        for vert in sections[i]['verts']:
            data_block.extend(pack_vertex(vert, stride))
        while len(data_block) % 4:
            data_block.append(0)
        face_start = data_offset + len(data_block)
        for face in sections[i]['faces']:
            data_block.extend(struct.pack("<3H", *face))
        while len(data_block) % 4:
            data_block.append(0)
        record = bytearray(0x40)
        struct.pack_into("<2I", record, 0x0, vert_start - record_offset, len(sections[i]['verts']))
        struct.pack_into("<B", record, 0x9, stride)
        struct.pack_into("<2I", record, 0x20, face_start - (record_offset + 0x20), len(sections[i]['faces']) * 3)
        records.extend(record)
    remap_offset = data_offset + len(data_block)
    remap_block = b''.join([struct.pack("<{}H".format(len(x)), *x) for x in remap_tables])
    header = bytearray(0x40)
    struct.pack_into("<6I", header, 0x18, len(bones), bone_offset,
        len(remap_tables) if num_batches is None else num_batches, remap_offset, len(sections), 0)
    struct.pack_into("<I", header, 0x34, section_offset)
    bone_block = bytearray()
    for pos, parent in bones:
        record = bytearray(0xB0)
        struct.pack_into("<3f", record, 0x40, *pos)
        struct.pack_into("<i", record, 0xAC, parent)
        bone_block.extend(record)
    return(bytes(header + bone_block + records + data_block + remap_block))
