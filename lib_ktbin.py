# Shared binary helpers for the KT model tools.  Every read is bounds checked
# against the buffer it was handed, and every fatal condition is raised as one
# of the three exceptions below, with the byte offset where it was detected.
#
# Record layouts are declared once as dicts of {field: (offset, struct code)}
# and read with BinReader.read_fields(), so parsers never recompute offsets
# inline.

import struct

class KTModelError(Exception):
    pass

# Length, magic, permutation or count mismatch
class IntegrityError(KTModelError):
    pass

# Unknown tag, enum or stride value
class UnsupportedVariant(KTModelError):
    pass

# Index or offset exceeds its bound
class OutOfRange(KTModelError):
    pass

class BinReader:
    """Little-endian cursor over an immutable byte buffer.

    name is only used in error messages, so failures read e.g.
    "need 4 bytes at 0x1A4 in model (size 0x1A6)".
    """

    def __init__(self, data, name = 'buffer', endian = '<'):
        self.data = bytes(data)
        self.name = name
        self.e = endian
        self.pos = 0

    def __len__(self):
        return len(self.data)

    def context(self, offset = None):
        return "at 0x{0:X} in {1}".format(self.pos if offset is None else offset, self.name)

    def tell(self):
        return self.pos

    def remaining(self):
        return len(self.data) - self.pos

    def seek(self, offset):
        if offset < 0 or offset > len(self.data):
            raise OutOfRange("Seek outside of buffer {0} (size 0x{1:X})".format(self.context(offset), len(self.data)))
        self.pos = offset
        return

    def skip(self, count):
        self.seek(self.pos + count)
        return

    def check_range(self, offset, size):
        if offset < 0 or offset + size > len(self.data):
            raise OutOfRange("Need {0} bytes {1} (size 0x{2:X})".format(size, self.context(offset), len(self.data)))
        return

    def read(self, size):
        self.check_range(self.pos, size)
        chunk = self.data[self.pos:self.pos + size]
        self.pos += size
        return(chunk)

    def unpack(self, fmt):
        fmt = self.e + fmt
        size = struct.calcsize(fmt)
        self.check_range(self.pos, size)
        values = struct.unpack_from(fmt, self.data, self.pos)
        self.pos += size
        return(values)

    def unpack_from(self, fmt, offset):
        fmt = self.e + fmt
        self.check_range(offset, struct.calcsize(fmt))
        return(struct.unpack_from(fmt, self.data, offset))

    def u8(self):
        return self.unpack("B")[0]

    def i8(self):
        return self.unpack("b")[0]

    def u16(self):
        return self.unpack("H")[0]

    def i16(self):
        return self.unpack("h")[0]

    def u32(self):
        return self.unpack("I")[0]

    def i32(self):
        return self.unpack("i")[0]

    def f32(self):
        return self.unpack("f")[0]

    def vec2(self):
        return list(self.unpack("2f"))

    def vec3(self):
        return list(self.unpack("3f"))

    def vec4(self):
        return list(self.unpack("4f"))

    def cstring(self, offset, encoding = 'utf-8'):
        self.check_range(offset, 1)
        end = self.data.find(b'\x00', offset)
        if end == -1:
            raise OutOfRange("Unterminated string {}".format(self.context(offset)))
        try:
            return(self.data[offset:end].decode(encoding))
        except UnicodeDecodeError as err:
            raise IntegrityError("Invalid {0} string {1}: {2}".format(encoding, self.context(offset), err)) from err

    def read_fields(self, layout, base = 0):
        fields = {}
        for field_name, (offset, code) in layout.items():
            value = self.unpack_from(code, base + offset)
            fields[field_name] = value[0] if len(value) == 1 else list(value)
        return(fields)
