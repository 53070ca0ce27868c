# PMX 2.0 reader / writer, plus the fix-up passes needed to move a model
# between the game's conventions and MikuMikuDance's (scale, handedness,
# weight layout, IK link order).
#
# A model is a plain dict (see new_pmx) of lists of dicts.  Variant records
# carry a 'type' key: vertex weights ('BDEF1', 'BDEF2', 'BDEF4', 'SDEF',
# 'QDEF'), material toon references ('texture', 'shared'), bone tails
# ('bone', 'pos') and display frame items ('bone', 'morph').
#
# The writer only produces what the converter needs: UTF-8 text, 4-byte
# indices, BDEF1/BDEF4 weights, no morphs / rigid bodies / joints.  The reader
# understands the rest of the format so that existing PMX files can be checked
# against converted ones.
#
# Requires numpy.

try:
    import struct, numpy
    from lib_ktbin import BinReader, IntegrityError, UnsupportedVariant
except ModuleNotFoundError as e:
    print("Python module missing! {}".format(e.msg))
    raise

# Global variable, do not edit
e = '<'

pmx_magic = b'PMX '

weight_types = ['BDEF1', 'BDEF2', 'BDEF4', 'SDEF', 'QDEF']
blend_modes = ['DISABLE', 'MUL', 'ADD', 'OTHER']
rigidbody_shapes = ['SPHERE', 'BOX', 'CAPSULE']
rigidbody_modes = ['KINEMATIC', 'DYNAMIC', 'DYNAMIC_BONE']
morph_categories = {0: 'group', 1: 'vertex', 2: 'bone', 3: 'uv', 4: 'uv1', 5: 'uv2', 6: 'uv3', 7: 'uv4',
    8: 'material', 9: 'flip', 10: 'impulse'}

# Material draw flags
DRAW_NO_CULL = 0x01
DRAW_GROUND_SHADOW = 0x02
DRAW_CAST_SHADOW = 0x04
DRAW_RECEIVE_SHADOW = 0x08
DRAW_HAS_EDGE = 0x10
DRAW_VERTEX_COLOR = 0x20
DRAW_POINT = 0x40
DRAW_LINE = 0x80

# Bone flags
BONE_INDEXED_TAIL = 0x0001
BONE_ROTATABLE = 0x0002
BONE_TRANSLATABLE = 0x0004
BONE_VISIBLE = 0x0008
BONE_ENABLED = 0x0010
BONE_IK = 0x0020
BONE_INHERIT_ROTATION = 0x0100
BONE_INHERIT_TRANSLATION = 0x0200
BONE_FIXED_AXIS = 0x0400
BONE_LOCAL_AXIS = 0x0800
BONE_PHYSICS_AFTER_DEFORM = 0x1000
BONE_EXTERNAL_PARENT = 0x2000
BONE_KNOWN_FLAGS = 0x3F3F

flip_z = numpy.array([1.0, 1.0, -1.0])
flip_xy = numpy.array([-1.0, -1.0, 1.0])

def new_pmx (name = '', comment = ''):
    return({'name': name, 'name_en': name, 'comment': comment, 'comment_en': comment,
        'verts': [], 'faces': [], 'texs': [], 'mats': [], 'bones': [], 'iks': [],
        'morphs': [], 'display_frames': [], 'rigidbodies': [], 'joints': []})

def default_material ():
    return({'name': 'Mat', 'name_en': 'Mat', 'diffuse': [1.0, 1.0, 1.0, 1.0], 'specular': [0.0, 0.0, 0.0],
        'specular_strength': 5.0, 'ambient': [1.0, 1.0, 1.0], 'draw_flags': DRAW_NO_CULL,
        'edge_color': [0.0, 0.0, 0.0, 1.0], 'edge_scale': 1.0, 'tex_index': -1, 'env_index': -1,
        'env_blend_mode': 'MUL', 'toon': {'type': 'texture', 'index': -1}, 'comment': '', 'face_count': 0})

def default_bone ():
    return({'name': 'センター', 'name_en': 'center', 'pos': [0.0, 0.0, 0.0], 'parent': None, 'layer': 0,
        'flags': 0, 'tail': {'type': 'pos', 'pos': [0.0, 0.0, 0.0]}, 'inherit': None,
        'fixed_axis': None, 'local_axis': None, 'external_parent': None})

#Reading
def read_text (f, header):
    length = f.i32()
    if length < 0:
        raise IntegrityError("Negative string length {0} {1}".format(length, f.context(f.tell() - 4)))
    raw = f.read(length)
    encoding = 'utf-8' if header['utf8'] else 'utf-16-le'
    try:
        return(raw.decode(encoding))
    except UnicodeDecodeError as err:
        raise IntegrityError("Invalid {0} text {1}: {2}".format(encoding, f.context(f.tell() - length), err)) from err

def read_index (f, size, unsigned = False):
    # Vertex indices are unsigned at 1 and 2 bytes, every other index is signed (-1 = none)
    if size == 1:
        return f.u8() if unsigned else f.i8()
    elif size == 2:
        return f.u16() if unsigned else f.i16()
    elif size == 4:
        return f.i32()
    raise UnsupportedVariant("Unsupported index size {0} {1}".format(size, f.context()))

def read_header (f):
    magic = f.read(4)
    if magic != pmx_magic:
        raise IntegrityError("Not a PMX file (magic {0!r}) {1}".format(magic, f.context(0)))
    version = f.f32()
    num_globals = f.u8()
    if num_globals < 8:
        raise IntegrityError("PMX header declares {0} globals, need 8 {1}".format(num_globals, f.context()))
    pmx_globals = f.unpack("{}B".format(num_globals))
    if pmx_globals[0] not in [0, 1]:
        raise UnsupportedVariant("Unknown text encoding {0} {1}".format(pmx_globals[0], f.context()))
    if pmx_globals[1] != 0:
        raise UnsupportedVariant("Additional UVs ({0}) are not supported {1}".format(pmx_globals[1], f.context()))
    for size in pmx_globals[2:8]:
        if size not in [1, 2, 4]:
            raise UnsupportedVariant("Unsupported index size {0} {1}".format(size, f.context()))
    return({'version': version, 'utf8': pmx_globals[0] == 1, 'appendix_uv': pmx_globals[1],
        'vertex_index_size': pmx_globals[2], 'texture_index_size': pmx_globals[3],
        'material_index_size': pmx_globals[4], 'bone_index_size': pmx_globals[5],
        'morph_index_size': pmx_globals[6], 'rigidbody_index_size': pmx_globals[7]})

def read_weight (f, header):
    bis = header['bone_index_size']
    weight_type = f.u8()
    if weight_type == 0:
        return({'type': 'BDEF1', 'bones': [read_index(f, bis)]})
    elif weight_type == 1:
        bones = [read_index(f, bis) for _ in range(2)]
        return({'type': 'BDEF2', 'bones': bones, 'weight': f.f32()})
    elif weight_type == 2:
        bones = [read_index(f, bis) for _ in range(4)]
        return({'type': 'BDEF4', 'bones': bones, 'weights': f.vec4()})
    elif weight_type == 3:
        bones = [read_index(f, bis) for _ in range(2)]
        weight = f.f32()
        return({'type': 'SDEF', 'bones': bones, 'weight': weight, 'c': f.vec3(), 'r0': f.vec3(), 'r1': f.vec3()})
    elif weight_type == 4:
        bones = [read_index(f, bis) for _ in range(4)]
        return({'type': 'QDEF', 'bones': bones, 'weights': f.vec4()})
    raise UnsupportedVariant("Unknown vertex weight type {0} {1}".format(weight_type, f.context(f.tell() - 1)))

def read_verts (f, header):
    verts = []
    for _ in range(f.u32()):
        pos = f.vec3()
        nrm = f.vec3()
        uv = f.vec2()
        weight = read_weight(f, header)
        verts.append({'pos': pos, 'nrm': nrm, 'uv': uv, 'weight': weight, 'edge_scale': f.f32()})
    return(verts)

def read_faces (f, header):
    num_idx = f.u32()
    if num_idx % 3:
        raise IntegrityError("Face index count {0} is not a multiple of 3 {1}".format(num_idx, f.context(f.tell() - 4)))
    vis = header['vertex_index_size']
    return([[read_index(f, vis, unsigned = True) for _ in range(3)] for _ in range(num_idx // 3)])

def read_texs (f, header):
    return([read_text(f, header) for _ in range(f.u32())])

def read_mats (f, header):
    tis = header['texture_index_size']
    mats = []
    for _ in range(f.u32()):
        mat = {'name': read_text(f, header), 'name_en': read_text(f, header)}
        mat['diffuse'] = f.vec4()
        mat['specular'] = f.vec3()
        mat['specular_strength'] = f.f32()
        mat['ambient'] = f.vec3()
        mat['draw_flags'] = f.u8()
        mat['edge_color'] = f.vec4()
        mat['edge_scale'] = f.f32()
        mat['tex_index'] = read_index(f, tis)
        mat['env_index'] = read_index(f, tis)
        blend_mode = f.u8()
        if blend_mode >= len(blend_modes):
            raise UnsupportedVariant("Unknown environment blend mode {0} {1}".format(blend_mode, f.context(f.tell() - 1)))
        mat['env_blend_mode'] = blend_modes[blend_mode]
        toon_ref = f.u8()
        if toon_ref == 0:
            mat['toon'] = {'type': 'texture', 'index': read_index(f, tis)}
        elif toon_ref == 1:
            mat['toon'] = {'type': 'shared', 'index': f.u8()}
        else:
            raise UnsupportedVariant("Unknown toon reference {0} {1}".format(toon_ref, f.context(f.tell() - 1)))
        mat['comment'] = read_text(f, header)
        mat['face_count'] = f.i32() // 3 # Stored as a count of indices
        mats.append(mat)
    return(mats)

def read_bones (f, header):
    bis = header['bone_index_size']
    bones, iks = [], []
    for i in range(f.u32()):
        bone = {'name': read_text(f, header), 'name_en': read_text(f, header)}
        bone['pos'] = f.vec3()
        parent = read_index(f, bis)
        bone['parent'] = parent if parent >= 0 else None
        bone['layer'] = f.i32()
        flags_offset = f.tell()
        bone['flags'] = f.u16()
        if bone['flags'] & ~BONE_KNOWN_FLAGS:
            raise UnsupportedVariant("Unknown bone flags 0x{0:04X} {1}".format(bone['flags'], f.context(flags_offset)))
        if bone['flags'] & BONE_INDEXED_TAIL:
            bone['tail'] = {'type': 'bone', 'index': read_index(f, bis)}
        else:
            bone['tail'] = {'type': 'pos', 'pos': f.vec3()}
        bone['inherit'], bone['fixed_axis'], bone['local_axis'], bone['external_parent'] = None, None, None, None
        if bone['flags'] & (BONE_INHERIT_ROTATION | BONE_INHERIT_TRANSLATION):
            inherit_parent = read_index(f, bis)
            bone['inherit'] = {'parent': inherit_parent, 'ratio': f.f32()}
        if bone['flags'] & BONE_FIXED_AXIS:
            bone['fixed_axis'] = f.vec3()
        if bone['flags'] & BONE_LOCAL_AXIS:
            local_x = f.vec3()
            bone['local_axis'] = {'x': local_x, 'z': f.vec3()}
        if bone['flags'] & BONE_EXTERNAL_PARENT:
            bone['external_parent'] = f.i32()
        if bone['flags'] & BONE_IK:
            ik = {'bone': i, 'target': read_index(f, bis), 'loop_count': f.i32(), 'limit_angle': f.f32(), 'links': []}
            for _ in range(f.i32()):
                link = {'bone': read_index(f, bis), 'limit': None}
                if f.u8() == 1:
                    limit_min = f.vec3()
                    link['limit'] = {'min': limit_min, 'max': f.vec3()}
                ik['links'].append(link)
            iks.append(ik)
        bones.append(bone)
    return(bones, iks)

def read_morph_items (f, header, category, count):
    vis, mis = header['vertex_index_size'], header['material_index_size']
    bis, mois, ris = header['bone_index_size'], header['morph_index_size'], header['rigidbody_index_size']
    items = []
    for _ in range(count):
        if category in ['group', 'flip']:
            index = read_index(f, mois)
            items.append({'index': index, 'ratio': f.f32()})
        elif category == 'vertex':
            index = read_index(f, vis, unsigned = True)
            items.append({'index': index, 'offset': f.vec3()})
        elif category == 'bone':
            index = read_index(f, bis)
            offset = f.vec3()
            items.append({'index': index, 'offset': offset, 'rotation': f.vec4()})
        elif category == 'uv':
            index = read_index(f, vis, unsigned = True)
            items.append({'index': index, 'offset': f.vec4()})
        elif category == 'material':
            item = {'index': read_index(f, mis)}
            operation = f.u8()
            if operation not in [0, 1]:
                raise UnsupportedVariant("Unknown material morph operation {0} {1}".format(operation, f.context(f.tell() - 1)))
            item['operation'] = ['MUL', 'ADD'][operation]
            item['diffuse'] = f.vec4()
            item['specular'] = f.vec3()
            item['specular_strength'] = f.f32()
            item['ambient'] = f.vec3()
            item['edge_color'] = f.vec4()
            item['edge_scale'] = f.f32()
            item['texture_tint'] = f.vec4()
            item['environment_tint'] = f.vec4()
            item['toon_tint'] = f.vec4()
            items.append(item)
        elif category == 'impulse':
            index = read_index(f, ris)
            local = f.u8() == 1
            velocity = f.vec3()
            items.append({'index': index, 'local': local, 'velocity': velocity, 'torque': f.vec3()})
    return(items)

def read_morphs (f, header):
    morphs = []
    for _ in range(f.u32()):
        morph = {'name': read_text(f, header), 'name_en': read_text(f, header)}
        morph['panel'] = f.i8()
        category_offset = f.tell()
        category = f.i8()
        count = f.i32()
        if category not in morph_categories or category in [4, 5, 6, 7]:
            # Additional UV morphs need additional UVs, which read_header already rejected
            raise UnsupportedVariant("Unsupported morph category {0} {1}".format(category, f.context(category_offset)))
        morph['category'] = morph_categories[category]
        morph['items'] = read_morph_items(f, header, morph['category'], count)
        morphs.append(morph)
    return(morphs)

def read_display_frames (f, header):
    frames = []
    for _ in range(f.u32()):
        frame = {'name': read_text(f, header), 'name_en': read_text(f, header)}
        frame['special'] = f.u8() == 1
        frame['items'] = []
        for _ in range(f.i32()):
            item_type = f.u8()
            if item_type == 0:
                frame['items'].append({'type': 'bone', 'index': read_index(f, header['bone_index_size'])})
            elif item_type == 1:
                frame['items'].append({'type': 'morph', 'index': read_index(f, header['morph_index_size'])})
            else:
                raise UnsupportedVariant("Unknown display frame item {0} {1}".format(item_type, f.context(f.tell() - 1)))
        frames.append(frame)
    return(frames)

def read_rigidbodies (f, header):
    rigidbodies = []
    for _ in range(f.u32()):
        rb = {'name': read_text(f, header), 'name_en': read_text(f, header)}
        rb['bone'] = read_index(f, header['bone_index_size'])
        rb['group'] = f.u8()
        rb['collision_mask'] = f.u16()
        shape = f.u8()
        if shape >= len(rigidbody_shapes):
            raise UnsupportedVariant("Unknown rigid body shape {0} {1}".format(shape, f.context(f.tell() - 1)))
        rb['shape'] = rigidbody_shapes[shape]
        rb['size'] = f.vec3()
        rb['pos'] = f.vec3()
        rb['rot'] = f.vec3()
        rb['mass'], rb['linear_damping'], rb['angular_damping'], rb['restitution'], rb['friction'] = f.unpack("5f")
        mode = f.u8()
        if mode >= len(rigidbody_modes):
            raise UnsupportedVariant("Unknown rigid body mode {0} {1}".format(mode, f.context(f.tell() - 1)))
        rb['mode'] = rigidbody_modes[mode]
        rigidbodies.append(rb)
    return(rigidbodies)

def read_joints (f, header):
    joints = []
    for _ in range(f.u32()):
        joint = {'name': read_text(f, header), 'name_en': read_text(f, header)}
        joint_type = f.u8()
        if joint_type != 0:
            raise UnsupportedVariant("Unsupported joint type {0} {1}".format(joint_type, f.context(f.tell() - 1)))
        joint['rigidbody_a'] = read_index(f, header['rigidbody_index_size'])
        joint['rigidbody_b'] = read_index(f, header['rigidbody_index_size'])
        for key in ['pos', 'rot', 'pos_min', 'pos_max', 'rot_min', 'rot_max', 'pos_spring', 'rot_spring']:
            joint[key] = f.vec3()
        joints.append(joint)
    return(joints)

def read_pmx (pmx_data):
    f = BinReader(pmx_data, 'pmx')
    header = read_header(f)
    pmx = new_pmx()
    pmx['header'] = header
    for key in ['name', 'name_en', 'comment', 'comment_en']:
        pmx[key] = read_text(f, header)
    pmx['verts'] = read_verts(f, header)
    pmx['faces'] = read_faces(f, header)
    pmx['texs'] = read_texs(f, header)
    pmx['mats'] = read_mats(f, header)
    pmx['bones'], pmx['iks'] = read_bones(f, header)
    pmx['morphs'] = read_morphs(f, header)
    pmx['display_frames'] = read_display_frames(f, header)
    pmx['rigidbodies'] = read_rigidbodies(f, header)
    pmx['joints'] = read_joints(f, header)
    return(pmx)

#Writing
def pack_text (text):
    raw = text.encode('utf-8')
    return(struct.pack("{}I".format(e), len(raw)) + raw)

def create_vert_block (verts):
    vert_block = bytearray(struct.pack("{}I".format(e), len(verts)))
    for i in range(len(verts)):
        vert_block.extend(struct.pack("{}3f".format(e), *verts[i]['pos']))
        vert_block.extend(struct.pack("{}3f".format(e), *verts[i]['nrm']))
        vert_block.extend(struct.pack("{}2f".format(e), *verts[i]['uv']))
        weight = verts[i]['weight']
        if weight['type'] == 'BDEF1':
            vert_block.extend(struct.pack("{}Bi".format(e), 0, weight['bones'][0]))
        elif weight['type'] == 'BDEF4':
            vert_block.extend(struct.pack("{}B4i4f".format(e), 2, *weight['bones'], *weight['weights']))
        else:
            raise UnsupportedVariant("Vertex {0} has {1} weights, only BDEF1/BDEF4 can be written (run linear_four_weight first)".format(i, weight['type']))
        vert_block.extend(struct.pack("{}f".format(e), verts[i]['edge_scale']))
    return(vert_block)

def create_face_block (faces):
    face_block = bytearray(struct.pack("{}I".format(e), len(faces) * 3))
    for face in faces:
        face_block.extend(struct.pack("{}3I".format(e), *face))
    return(face_block)

def create_tex_block (texs):
    tex_block = bytearray(struct.pack("{}I".format(e), len(texs)))
    for tex in texs:
        tex_block.extend(pack_text(tex))
    return(tex_block)

def create_mat_block (mats, num_faces):
    if num_faces == 0:
        return(bytearray(struct.pack("{}I".format(e), 0)))
    if len(mats) == 0:
        mats = [dict(default_material(), face_count = num_faces)]
    mat_block = bytearray(struct.pack("{}I".format(e), len(mats)))
    for mat in mats:
        mat_block.extend(pack_text(mat['name']))
        mat_block.extend(pack_text(mat['name_en']))
        mat_block.extend(struct.pack("{}4f".format(e), *mat['diffuse']))
        mat_block.extend(struct.pack("{}3f".format(e), *mat['specular']))
        mat_block.extend(struct.pack("{}f".format(e), mat['specular_strength']))
        mat_block.extend(struct.pack("{}3f".format(e), *mat['ambient']))
        mat_block.extend(struct.pack("{}B".format(e), mat['draw_flags']))
        mat_block.extend(struct.pack("{}4f".format(e), *mat['edge_color']))
        mat_block.extend(struct.pack("{}f".format(e), mat['edge_scale']))
        mat_block.extend(struct.pack("{}2iB".format(e), mat['tex_index'], mat['env_index'],
            blend_modes.index(mat['env_blend_mode'])))
        if mat['toon']['type'] == 'texture':
            mat_block.extend(struct.pack("{}Bi".format(e), 0, mat['toon']['index']))
        elif mat['toon']['type'] == 'shared':
            mat_block.extend(struct.pack("{}2B".format(e), 1, mat['toon']['index']))
        else:
            raise UnsupportedVariant("Unknown toon reference type {}".format(mat['toon']['type']))
        mat_block.extend(pack_text(mat['comment']))
        mat_block.extend(struct.pack("{}I".format(e), mat['face_count'] * 3))
    return(mat_block)

def create_bone_block (bones):
    if len(bones) == 0:
        bones = [default_bone()]
    bone_block = bytearray(struct.pack("{}I".format(e), len(bones)))
    for bone in bones:
        bone_block.extend(pack_text(bone['name']))
        bone_block.extend(pack_text(bone['name_en']))
        bone_block.extend(struct.pack("{}3f".format(e), *bone['pos']))
        bone_block.extend(struct.pack("{}2i".format(e), -1 if bone['parent'] is None else bone['parent'], bone['layer']))
        # IK, inheritance, axis limits and external parents are never written
        flags = BONE_ROTATABLE | BONE_TRANSLATABLE | BONE_VISIBLE | BONE_ENABLED
        if bone['tail']['type'] == 'bone':
            bone_block.extend(struct.pack("{}Hi".format(e), flags | BONE_INDEXED_TAIL, bone['tail']['index']))
        else:
            bone_block.extend(struct.pack("{}H3f".format(e), flags, *bone['tail']['pos']))
    return(bone_block)

def create_display_frame_block ():
    frames = [{'name': 'Root', 'name_en': 'Root', 'special': True, 'items': [{'type': 'bone', 'index': 0}]},
        {'name': '表情', 'name_en': 'Exp', 'special': True, 'items': []}]
    frame_block = bytearray(struct.pack("{}I".format(e), len(frames)))
    for frame in frames:
        frame_block.extend(pack_text(frame['name']))
        frame_block.extend(pack_text(frame['name_en']))
        frame_block.extend(struct.pack("{}Bi".format(e), 1 if frame['special'] else 0, len(frame['items'])))
        for item in frame['items']:
            frame_block.extend(struct.pack("{}Bi".format(e), {'bone': 0, 'morph': 1}[item['type']], item['index']))
    return(frame_block)

def write_pmx (pmx):
    pmx_data = bytearray(pmx_magic)
    # version, 8 globals: utf-8, no additional uvs, 4-byte vertex/texture/material/bone/morph/rigid body indices
    pmx_data.extend(struct.pack("{}f9B".format(e), 2.0, 8, 1, 0, 4, 4, 4, 4, 4, 4))
    for key in ['name', 'name_en', 'comment', 'comment_en']:
        pmx_data.extend(pack_text(pmx[key]))
    pmx_data.extend(create_vert_block(pmx['verts']))
    pmx_data.extend(create_face_block(pmx['faces']))
    pmx_data.extend(create_tex_block(pmx['texs']))
    pmx_data.extend(create_mat_block(pmx['mats'], len(pmx['faces'])))
    pmx_data.extend(create_bone_block(pmx['bones']))
    pmx_data.extend(struct.pack("{}I".format(e), 0)) # Morphs
    pmx_data.extend(create_display_frame_block())
    pmx_data.extend(struct.pack("{}2I".format(e), 0, 0)) # Rigid bodies, joints
    return(bytes(pmx_data))

#Compatibility passes, these modify the model in place
def scale_pmx (pmx, scale):
    def scaled (vec):
        return((numpy.array(vec) * scale).tolist())
    for vert in pmx['verts']:
        vert['pos'] = scaled(vert['pos'])
        if vert['weight']['type'] == 'SDEF':
            for key in ['c', 'r0', 'r1']:
                vert['weight'][key] = scaled(vert['weight'][key])
    for bone in pmx['bones']:
        bone['pos'] = scaled(bone['pos'])
        if bone['tail']['type'] == 'pos':
            bone['tail']['pos'] = scaled(bone['tail']['pos'])
        if bone['fixed_axis'] is not None:
            bone['fixed_axis'] = scaled(bone['fixed_axis'])
        if bone['local_axis'] is not None:
            bone['local_axis'] = {'x': scaled(bone['local_axis']['x']), 'z': scaled(bone['local_axis']['z'])}
    for rb in pmx['rigidbodies']:
        rb['size'] = scaled(rb['size'])
        rb['pos'] = scaled(rb['pos'])
    for joint in pmx['joints']:
        for key in ['pos', 'pos_min', 'pos_max']:
            joint[key] = scaled(joint[key])
    return

def right_hand (pmx):
    def mirrored (vec, mask = flip_z):
        return((numpy.array(vec) * mask).tolist())
    for vert in pmx['verts']:
        vert['pos'] = mirrored(vert['pos'])
        vert['nrm'] = mirrored(vert['nrm'])
        if vert['weight']['type'] == 'SDEF':
            for key in ['c', 'r0', 'r1']:
                vert['weight'][key] = mirrored(vert['weight'][key])
    for face in pmx['faces']:
        face[1], face[2] = face[2], face[1] # Keep winding after the mirror
    for bone in pmx['bones']:
        bone['pos'] = mirrored(bone['pos'])
        if bone['tail']['type'] == 'pos':
            bone['tail']['pos'] = mirrored(bone['tail']['pos'])
        if bone['fixed_axis'] is not None:
            bone['fixed_axis'] = mirrored(bone['fixed_axis'])
        if bone['local_axis'] is not None:
            bone['local_axis'] = {'x': mirrored(bone['local_axis']['x']), 'z': mirrored(bone['local_axis']['z'])}
    for body in pmx['rigidbodies'] + pmx['joints']:
        body['pos'] = mirrored(body['pos'])
        body['rot'] = mirrored(body['rot'], flip_xy)
    return

def linear_four_weight (pmx):
    def single (bone):
        return({'type': 'BDEF4', 'bones': [bone, -1, -1, -1], 'weights': [1.0, 0.0, 0.0, 0.0]})
    for vert in pmx['verts']:
        weight = vert['weight']
        if weight['type'] == 'BDEF1':
            vert['weight'] = single(weight['bones'][0])
        elif weight['type'] in ['BDEF2', 'SDEF']:
            if weight['weight'] == 0.0:
                vert['weight'] = single(weight['bones'][1])
            elif weight['weight'] == 1.0:
                vert['weight'] = single(weight['bones'][0])
            else:
                vert['weight'] = {'type': 'BDEF4', 'bones': [weight['bones'][0], weight['bones'][1], -1, -1],
                    'weights': [weight['weight'], 1.0 - weight['weight'], 0.0, 0.0]}
        elif weight['type'] == 'QDEF':
            vert['weight'] = {'type': 'BDEF4', 'bones': list(weight['bones']), 'weights': list(weight['weights'])}
        elif weight['type'] == 'BDEF4':
            weight['bones'] = [weight['bones'][i] if weight['weights'][i] != 0.0 else -1 for i in range(4)]
        else:
            raise UnsupportedVariant("Unknown vertex weight type {}".format(weight['type']))
    return

def reverse_ik_joints (pmx):
    for ik in pmx['iks']:
        ik['links'].reverse()
    return

def flip_uv (pmx):
    for vert in pmx['verts']:
        vert['uv'] = [vert['uv'][0], 1.0 - vert['uv'][1]]
    return

def read_pmx_with_preset (pmx_data):
    pmx = read_pmx(pmx_data)
    reverse_ik_joints(pmx)
    linear_four_weight(pmx)
    scale_pmx(pmx, 0.08)
    right_hand(pmx)
    return(pmx)
