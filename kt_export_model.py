# Tool to convert KT skinned models into PMX.
#
# A model archive (.arc) carries a bone name index (.b2it) and the model
# itself (.model).  convert_arc() takes the archive bytes and returns the
# output name and the PMX bytes; reading and writing the files is up to the
# caller.
#
# Sections in a .model number their bones locally.  Sections are grouped into
# batches, and each batch has a table in the file translating its local bone
# numbers into skeleton indices.  The file does not store which batch a
# section belongs to, so it is rebuilt from the bones each section uses (see
# next_batch_state).
#
# Requires numpy, lib_ktbin.py, lib_pmx.py and kt_extract_arc.py, put in the
# same directory

try:
    import numpy
    from lib_ktbin import BinReader, IntegrityError, UnsupportedVariant, OutOfRange
    from lib_pmx import new_pmx, default_material, default_bone, write_pmx,\
        scale_pmx, right_hand, linear_four_weight
    from kt_extract_arc import extract_arc, find_model_entries
except ModuleNotFoundError as e:
    print("Python module missing! {}".format(e.msg))
    raise

# The game's units are much smaller than MMD's, change the following line to adjust the output size
pmx_scale_default = 12.5
pmx_extension = '.pmx'

b2it_header_layout = {'num_names': (0x10, 'I'), 'index_offset': (0x18, 'I')}
b2it_name_offsets = 0x20

model_header_layout = {'num_bones': (0x18, 'I'), 'bone_offset': (0x1C, 'I'),
    'num_batches': (0x20, 'I'), 'remap_table_offset': (0x24, 'I'),
    'num_sections': (0x28, 'I'), 'section_offset': (0x34, 'I')}

# 0x00-0x3F is a 4x4 matrix, unused here
bone_record_layout = {'pos': (0x40, '3f'), 'parent': (0xAC, 'i')}
bone_record_stride = 0xB0

section_record_layout = {'vert_offset': (0x0, 'I'), 'num_verts': (0x4, 'I'), 'stride': (0x9, 'B'),
    'face_offset': (0x20, 'I'), 'num_idx': (0x24, 'I')}
section_record_stride = 0x40

# Vertex strides, and whether they carry tangent + bitangent
vertex_strides = {44: False, 68: True}

def read_b2it (b2it_data):
    f = BinReader(b2it_data, 'b2it')
    header = f.read_fields(b2it_header_layout)
    num_names = header['num_names']
    name_offsets = f.unpack_from("{}I".format(num_names), b2it_name_offsets)
    names = [f.cstring(x) for x in name_offsets]
    index = f.unpack_from("{}I".format(num_names), header['index_offset'])
    bone_names = [None] * num_names
    for i in range(num_names):
        if index[i] >= num_names:
            raise OutOfRange("Bone name {0} placed at slot {1}, only {2} slots {3}".format(i, index[i],
                num_names, f.context(header['index_offset'] + i * 4)))
        if bone_names[index[i]] is not None:
            raise IntegrityError("Bone name slot {0} assigned twice {1}".format(index[i],
                f.context(header['index_offset'] + i * 4)))
        bone_names[index[i]] = names[i]
    return(bone_names)

def read_skeleton (f, header, bone_names):
    skel_struct = []
    for i in range(header['num_bones']):
        bone = f.read_fields(bone_record_layout, header['bone_offset'] + i * bone_record_stride)
        skel_struct.append({'pos': bone['pos'], 'parent': None if bone['parent'] == -1 else bone['parent']})
    if len(bone_names) != len(skel_struct):
        raise IntegrityError("Bone name table has {0} names, model has {1} bones".format(len(bone_names), len(skel_struct)))
    for i in range(len(skel_struct)):
        skel_struct[i]['name'] = bone_names[i]
        if skel_struct[i]['parent'] is not None and not skel_struct[i]['parent'] in range(len(skel_struct)):
            raise OutOfRange("Bone {0} has parent {1}, only {2} bones {3}".format(i, skel_struct[i]['parent'],
                len(skel_struct), f.context(header['bone_offset'] + i * bone_record_stride + bone_record_layout['parent'][0])))
    return(skel_struct)

def read_vertex (f, has_tangents):
    vert = {'pos': f.vec3(), 'blend_idx': list(f.unpack("4B"))}
    # First weight is not stored, derive it in single precision so full weights come out as exactly 0
    stored = numpy.array(f.vec3(), dtype=numpy.float32)
    first = numpy.float32(1.0) - stored[0] - stored[1] - stored[2]
    vert['weights'] = [float(first)] + stored.tolist()
    vert['nrm'] = f.vec3()
    if has_tangents:
        vert['tan'] = f.vec3()
        vert['bitan'] = f.vec3()
    else:
        vert['tan'] = [0.0, 0.0, 0.0]
        vert['bitan'] = [0.0, 0.0, 0.0]
    vert['uv'] = numpy.frombuffer(f.read(4), dtype='<f2').astype(numpy.float32).tolist()
    return(vert)

def read_sections (f, header):
    meshes, bone_sets = [], []
    for i in range(header['num_sections']):
        record_offset = header['section_offset'] + i * section_record_stride
        section = f.read_fields(section_record_layout, record_offset)
        stride = section['stride']
        if stride not in vertex_strides:
            raise UnsupportedVariant("Section {0} has vertex stride {1}, expected one of {2} {3}".format(i, stride,
                sorted(vertex_strides), f.context(record_offset + section_record_layout['stride'][0])))
        mesh = {'pos': [], 'blend_idx': [], 'weights': [], 'nrm': [], 'tan': [], 'bitan': [], 'uv': [], 'faces': []}
        bone_set = set()
        vert_offset = record_offset + section['vert_offset']
        f.check_range(vert_offset, section['num_verts'] * stride)
        for j in range(section['num_verts']):
            f.seek(vert_offset + j * stride)
            vert = read_vertex(f, vertex_strides[stride])
            for key in vert:
                mesh[key].append(vert[key])
            # Slot 0 is always used, a zero in slots 1-3 means unused
            bone_set.add(vert['blend_idx'][0])
            bone_set.update([x for x in vert['blend_idx'][1:] if x != 0])
        # Face offsets count from the face offset field, not the start of the record
        face_offset = record_offset + section_record_layout['face_offset'][0] + section['face_offset']
        for j in range(section['num_idx'] // 3):
            mesh['faces'].append(list(f.unpack_from("3H", face_offset + j * 6)))
        meshes.append(mesh)
        bone_sets.append(frozenset(bone_set))
    return(meshes, bone_sets)

def next_batch_state (state, bone_set):
    # state is None before the first section, then (batch id, local bones used by the batch so far).
    # A section using exactly bones 0..n-1 starts a new batch, any other section joins the running one.
    if len(bone_set) == 0:
        raise IntegrityError("Section references no bones")
    if max(bone_set) + 1 == len(bone_set):
        batch_id = 0 if state is None else state[0] + 1
        return((batch_id, frozenset(bone_set)), batch_id)
    if state is None:
        raise IntegrityError("First section uses bones {} which do not start a batch".format(sorted(bone_set)))
    return((state[0], state[1] | frozenset(bone_set)), state[0])

def assign_batches (bone_sets):
    state = None
    batch_sets, section_to_batch = [], []
    for bone_set in bone_sets:
        state, batch_id = next_batch_state(state, bone_set)
        if batch_id == len(batch_sets):
            batch_sets.append(state[1])
        else:
            batch_sets[batch_id] = state[1]
        section_to_batch.append(batch_id)
    return(batch_sets, section_to_batch)

def read_bone_remap_tables (f, header, batch_sets):
    f.seek(header['remap_table_offset'])
    remap_tables = []
    for i in range(len(batch_sets)):
        if max(batch_sets[i]) + 1 != len(batch_sets[i]):
            raise IntegrityError("Batch {0} uses bones {1}, which is not a contiguous range from 0".format(i,
                sorted(batch_sets[i])))
        remap_tables.append(list(f.unpack("{}H".format(len(batch_sets[i])))))
    return(remap_tables)

def read_model (model_data, bone_names):
    f = BinReader(model_data, 'model')
    header = f.read_fields(model_header_layout)
    skel_struct = read_skeleton(f, header, bone_names)
    meshes, bone_sets = read_sections(f, header)
    batch_sets, section_to_batch = assign_batches(bone_sets)
    if len(batch_sets) != header['num_batches']:
        raise IntegrityError("Found {0} bone batches, header declares {1} {2}".format(len(batch_sets),
            header['num_batches'], f.context(model_header_layout['num_batches'][0])))
    remap_tables = read_bone_remap_tables(f, header, batch_sets)
    return({'skel_struct': skel_struct, 'meshes': meshes, 'section_to_batch': section_to_batch,
        'remap_tables': remap_tables})

def remap_bone_indices (meshes, section_to_batch, remap_tables, num_bones):
    for i in range(len(meshes)):
        batch = section_to_batch[i]
        if batch >= len(remap_tables):
            raise OutOfRange("Section {0} assigned to batch {1}, only {2} remap tables".format(i, batch, len(remap_tables)))
        table = remap_tables[batch]
        for j in range(len(meshes[i]['blend_idx'])):
            for local in meshes[i]['blend_idx'][j]:
                if local >= len(table):
                    raise OutOfRange("Section {0} vertex {1} uses local bone {2}, batch {3} maps only {4}".format(
                        i, j, local, batch, len(table)))
                if table[local] >= num_bones:
                    raise OutOfRange("Batch {0} maps local bone {1} to bone {2}, skeleton has {3}".format(
                        batch, local, table[local], num_bones))
            meshes[i]['blend_idx'][j] = [table[x] for x in meshes[i]['blend_idx'][j]]
    return

def build_pmx (skel_struct, meshes, save_path):
    pmx = new_pmx('ktmdl', save_path)
    vert_start = 0
    for i in range(len(meshes)):
        for j in range(len(meshes[i]['pos'])):
            pmx['verts'].append({'pos': meshes[i]['pos'][j], 'nrm': meshes[i]['nrm'][j], 'uv': meshes[i]['uv'][j],
                'weight': {'type': 'BDEF4', 'bones': list(meshes[i]['blend_idx'][j]),
                'weights': list(meshes[i]['weights'][j])}, 'edge_scale': 1.0})
        pmx['faces'].extend([[x + vert_start for x in face] for face in meshes[i]['faces']])
        vert_start += len(meshes[i]['pos'])
        pmx['mats'].append(dict(default_material(), name = str(i), face_count = len(meshes[i]['faces'])))
    for bone in skel_struct:
        pmx['bones'].append(dict(default_bone(), name = bone['name'], name_en = bone['name'],
            pos = list(bone['pos']), parent = bone['parent']))
    return(pmx)

def convert_model (model_data, bone_names, save_path, scale = pmx_scale_default):
    model = read_model(model_data, bone_names)
    remap_bone_indices(model['meshes'], model['section_to_batch'], model['remap_tables'], len(model['skel_struct']))
    pmx = build_pmx(model['skel_struct'], model['meshes'], save_path)
    scale_pmx(pmx, scale)
    right_hand(pmx)
    linear_four_weight(pmx)
    return(write_pmx(pmx))

def convert_arc (arc_data, scale = pmx_scale_default):
    b2it_file, model_file = find_model_entries(extract_arc(arc_data))
    print("Processing {}...".format(model_file['name']))
    bone_names = read_b2it(b2it_file['data'])
    pmx_data = convert_model(model_file['data'], bone_names, model_file['name'], scale = scale)
    return(model_file['name'] + pmx_extension, pmx_data)
