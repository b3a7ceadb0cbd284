# Pure Python OpenPGP key packets <http://tools.ietf.org/html/rfc4880>
# for moving RSA keys between GnuPG keyrings and Tor hidden services

from struct import pack, unpack, error as struct_error
from time import time
import base64
import textwrap as _textwrap # hide implementation details
import hashlib
import re

def unarmor(text):
    """ Convert ASCII-armored data into binary
        http://tools.ietf.org/html/rfc4880#section-6
        http://tools.ietf.org/html/rfc2045

        Returns a list of (headers, data) tuples, one per armored block.
    """
    if hasattr(text, 'decode'):
        text = text.decode('utf-8', 'replace') # Headers may carry UTF-8 text
    result = []
    chunks = re.findall(r'\n-----BEGIN [^-]+-----\n(.*?)\n-----END [^-]+-----\n', "\n" + text.replace("\r\n", "\n").replace("\r", "\n") + "\n", re.S)

    for chunk in chunks:
        lines = chunk.split("\n")
        if "" not in lines:
            raise OnionPGPException('Armor headers are not terminated by an empty line')
        blank = lines.index("")
        headers = "\n".join(lines[:blank])
        body = [l.strip() for l in lines[blank + 1:] if l.strip()]
        crc = None
        if body and body[-1].startswith('='):
            crc = body.pop() # The checksum line is optional
        try:
            data = base64.b64decode(''.join(body).encode('ascii'))
            crc = crc and unpack('!L', b'\0' + base64.b64decode(crc[1:].encode('ascii')))[0]
        except (ValueError, struct_error) as e:
            raise OnionPGPException('Armored block is not base64: %s' % e)
        if crc is not None and crc24(data) != crc:
            raise OnionPGPException('CRC24 check failed')
        result.append((headers, data))

    return result


def crc24(data):
    """
        http://tools.ietf.org/html/rfc4880#section-6
        http://tools.ietf.org/html/rfc4880#section-6.1
    """
    crc = 0x00b704ce
    for octet in bytearray(data):
        crc ^= octet << 16
        for j in range(0, 8):
            crc <<= 1
            if (crc & 0x01000000):
                crc ^= 0x01864cfb
    return crc & 0x00ffffff


def enarmor(data, marker = 'PUBLIC KEY BLOCK', headers = None, lineWidth = 64):
    """
    @see http://tools.ietf.org/html/rfc4880#section-6.2 OpenPGP Message Format / Ascii Armor

    @param data: binary data to encode
    @type  data: bytes

    @param marker: PUBLIC KEY BLOCK, PRIVATE KEY BLOCK, SIGNATURE, ...
    @type  marker: str

    @param headers: key value, e.g {'Comment' : 'hidden service key'}
    @type  headers: None | dict | [(str, str)]

    @param lineWidth: GnuPG uses 64, RFC4880 limits to 76
    @type  lineWidth: int

    @rtype: str
    """

    def _iter_enarmor(data):
        yield '-----BEGIN PGP ' + str(marker).upper() + '-----'
        if hasattr(headers, 'items'):
            headerItems = sorted(headers.items())
        else:
            headerItems = list(headers or []) # already list of key-value pairs
        for (key, value) in headerItems:
            yield "%(key)s: %(value)s" % locals()
        yield '' # empty line

        text = base64.b64encode(data).decode('ascii')
        for line in _textwrap.wrap(text, width = lineWidth):
            yield line
        # only the last 3 bytes of the big endian checksum
        crc = pack('>L', crc24(data))
        yield '=' + base64.b64encode(crc[1:]).decode('ascii')
        yield '-----END PGP ' + str(marker).upper() + '-----'
        yield '' # final line break

    return "\n".join(_iter_enarmor(data))


def bitlength(data):
    """ http://tools.ietf.org/html/rfc4880#section-12.2 """
    return int.from_bytes(data, byteorder='big').bit_length()


def checksum(data):
    return sum(bytearray(data)) % 65536


def split_mpis(data, count):
    """ Read count MPIs off the front of data, return them and the rest
        http://tools.ietf.org/html/rfc4880#section-3.2
    """
    mpis = []
    for i in range(0, count):
        if len(data) < 2:
            raise OnionPGPException("Not enough bytes for MPI")
        size = (unpack('!H', data[0:2])[0] + 7) // 8
        if len(data) < 2 + size:
            raise OnionPGPException("Not enough bytes for MPI")
        mpis.append(data[2:2 + size])
        data = data[2 + size:]
    return mpis, data


def _gen_one(i):
    yield i

def _ensure_bytes(n, chunk, g):
    while len(chunk) < n:
        chunk += next(g)
    return chunk

def _slurp(g):
    return b''.join(g)


class OnionPGPException(Exception):
    pass # Everything inherited

class ParseError(OnionPGPException):
    """ A key specifier could not be understood """

class InvalidIdentifierLength(ParseError):
    """ A key specifier is empty or a hex key id of the wrong length """

class NoMatch(OnionPGPException):
    """ No key in the keyring matches a specifier """

class AmbiguousMatch(OnionPGPException):
    """ More than one candidate where exactly one is required """
    def __init__(self, message, candidates = ()):
        super(AmbiguousMatch, self).__init__(message)
        self.candidates = list(candidates)

class NoSuitableSubkey(OnionPGPException):
    pass

class FormatError(OnionPGPException):
    pass

class MalformedBlock(FormatError):
    """ The BEGIN/END markers of a PEM block are missing """

class InvalidEncoding(FormatError):
    """ A PEM block body is not a base64 encoded PKCS#1 RSA key """

class AddressError(OnionPGPException):
    pass

class UnlockFailed(OnionPGPException):
    pass

class SubkeyUnlockFailed(UnlockFailed):
    pass

class NoPrivateKeyData(UnlockFailed):
    pass

class SigningError(OnionPGPException):
    pass


class S2K(object):
    """ String-to-key specifier
        http://tools.ietf.org/html/rfc4880#section-3.7
    """
    GNU_EXTENSION = 101 # GnuPG stubs: secret part not present (gnu-dummy) or on a card

    def __init__(self, salt = None, hash_algorithm = 2, count = 65536, type = 3, gnu_mode = None):
        self.type = type
        self.hash_algorithm = hash_algorithm
        self.salt = salt
        self.count = count
        self.gnu_mode = gnu_mode

    def to_bytes(self):
        bs = pack('!B', self.type)
        if self.type == self.GNU_EXTENSION:
            return bs + pack('!B', self.hash_algorithm) + b'GNU' + pack('!B', self.gnu_mode)
        if self.type in [0, 1, 3]:
            bs += pack('!B', self.hash_algorithm)
        if self.type in [1, 3]:
            bs += self.salt
        if self.type in [3]:
            bs += pack('!B', self.encode_s2k_count(self.count))
        return bs

    def _hasher(self):
        try:
            name = SignaturePacket.hash_algorithms[self.hash_algorithm].lower()
        except KeyError:
            raise OnionPGPException("Unsupported S2K hash algorithm: %d" % self.hash_algorithm)
        return hashlib.new(name)

    def raw_hash(self, s, prefix = b''):
        hasher = self._hasher()
        hasher.update(prefix)
        hasher.update(s)
        return hasher.digest()

    def iterate(self, s, prefix = b''):
        hasher = self._hasher()
        hasher.update(prefix)
        remaining = max(self.count, len(s))
        # GnuPG counts run to tens of megabytes, so feed whole repetitions
        block = s * max(1, 65536 // len(s))
        while remaining >= len(block):
            hasher.update(block)
            remaining -= len(block)
        hasher.update(block[0:remaining])
        return hasher.digest()

    def sized_hash(self, hasher, s, size):
        hsh = hasher(s)
        prefix = b'\0'
        while len(hsh) < size:
            hsh += hasher(s, prefix)
            prefix += b'\0'

        return hsh[0:size]

    def make_key(self, passphrase, size):
        if self.type == 0:
            return self.sized_hash(self.raw_hash, passphrase, size)
        elif self.type == 1:
            return self.sized_hash(self.raw_hash, self.salt + passphrase, size)
        elif self.type == 3:
            return self.sized_hash(self.iterate, self.salt + passphrase, size)
        raise OnionPGPException("S2K type %d cannot make a key" % self.type)

    @classmethod
    def parse(cls, input_or_g):
        if hasattr(input_or_g, '__next__'):
            g = PushbackGenerator(input_or_g)
        else:
            g = PushbackGenerator(_gen_one(input_or_g))

        chunk = _ensure_bytes(1, next(g), g)
        s2k_type = ord(chunk[0:1])
        if s2k_type == 0:
            chunk = _ensure_bytes(2, chunk, g)
            if len(chunk) > 2:
                g.push(chunk[2:])
            return (cls(b'', ord(chunk[1:2]), 0, s2k_type), 2)
        elif s2k_type == 1:
            chunk = _ensure_bytes(10, chunk, g)
            if len(chunk) > 10:
                g.push(chunk[10:])
            return (cls(chunk[2:10], ord(chunk[1:2]), 0, s2k_type), 10)
        elif s2k_type == 3:
            chunk = _ensure_bytes(11, chunk, g)
            if len(chunk) > 11:
                g.push(chunk[11:])
            return (cls(chunk[2:10], ord(chunk[1:2]), cls.decode_s2k_count(ord(chunk[10:11])), s2k_type), 11)
        elif s2k_type == cls.GNU_EXTENSION:
            chunk = _ensure_bytes(6, chunk, g)
            if len(chunk) > 6:
                g.push(chunk[6:])
            if chunk[2:5] != b'GNU':
                raise OnionPGPException("Unknown S2K extension")
            return (cls(None, ord(chunk[1:2]), 0, s2k_type, ord(chunk[5:6])), 6)
        raise OnionPGPException("Unsupported S2K type: %d" % s2k_type)

    @classmethod
    def decode_s2k_count(cls, c):
        return int(16 + (c & 15)) << ((c >> 4) + 6)

    @classmethod
    def encode_s2k_count(cls, iterations):
        if iterations >= 65011712:
            return 255

        count = iterations >> 6
        c = 0
        while count >= 32:
            count = count >> 1
            c += 1

        result = (c << 4) | (count - 16)

        if cls.decode_s2k_count(result) < iterations:
            return result + 1

        return result

    def __repr__(self):
        return "%s: %s" % (type(self), self.__dict__.__repr__())

    def __eq__(self, other):
        if type(other) is type(self):
            return self.__dict__ == other.__dict__
        return False

    def __ne__(self, other):
        return not self.__eq__(other)

class PushbackGenerator(object):
    def __init__(self, g):
        self._g = g
        self._pushback = []

    def __iter__(self):
        return self

    def __next__(self):
        if len(self._pushback):
            return self._pushback.pop(0)
        return next(self._g)

    def hasNext(self):
        if len(self._pushback) > 0:
            return True
        try:
            chunk = next(self)
            self.push(chunk)
            return True
        except StopIteration:
            return False

    def push(self, i):
        if hasattr(self._g, 'push'):
            self._g.push(i)
        else:
            self._pushback.insert(0, i)

class Message(object):
    """ Represents an OpenPGP message (set of packets)
        http://tools.ietf.org/html/rfc4880#section-4.1
        http://tools.ietf.org/html/rfc4880#section-11
    """
    @classmethod
    def parse(cls, input_data):
        """ http://tools.ietf.org/html/rfc4880#section-4.1
            http://tools.ietf.org/html/rfc4880#section-4.2
        """
        m = Message([]) # Nothing parsed yet
        if hasattr(input_data, '__next__'):
            m._input = PushbackGenerator(input_data)
        else:
            m._input = PushbackGenerator(_gen_one(input_data))

        return m

    def __init__(self, packets = None):
        self._packets_start = list(packets or [])
        self._packets_end = []
        self._input = None

    def to_bytes(self):
        return b''.join(p.to_bytes() for p in self)

    def force(self):
        return list(self)

    def __iter__(self):
        # Already parsed packets
        for p in self._packets_start:
            yield p

        if self._input:
            while self._input.hasNext():
                packet = Packet.parse(self._input)
                if packet:
                    self._packets_start.append(packet)
                    yield packet
                else:
                    raise OnionPGPException("Parsing is stuck")
            self._input = None # Parsing done

        # Appended packets
        for p in self._packets_end:
            yield p

    def __getitem__(self, item):
        i = 0
        for p in self:
            if i == item:
                return p
            i += 1

    def append(self, item):
        self._packets_end.append(item)

    def __repr__(self):
        return "%s: %s" % (type(self), self.__dict__.__repr__())

    def __eq__(self, other):
        if type(other) is type(self):
            return self.force() == other.force()
        return False

    def __ne__(self, other):
        return not self.__eq__(other)

class Packet(object):
    """ OpenPGP packet.
        http://tools.ietf.org/html/rfc4880#section-4.1
        http://tools.ietf.org/html/rfc4880#section-4.3
    """

    @classmethod
    def parse(cls, input_data):
        if hasattr(input_data, '__next__'):
            g = PushbackGenerator(input_data)
        else:
            g = PushbackGenerator(_gen_one(input_data))

        packet = None
        chunk = _ensure_bytes(1, next(g), g)
        if not ord(chunk[0:1]) & 0x80:
            raise OnionPGPException("Not an OpenPGP packet header")
        try:
            # Parse header
            if ord(chunk[0:1]) & 64:
                tag, data_length = Packet.parse_new_format(chunk, g)
            else:
                tag, data_length = Packet.parse_old_format(chunk, g)

            if data_length is None:
                chunk = _slurp(g)
                data_length = len(chunk)
                g.push(chunk)

            if tag:
                packet_class = Packet.tags.get(tag, Packet)
                packet = packet_class()
                packet.tag = tag
                packet.input = g
                packet.length = data_length
                packet.read()
                packet.read_bytes(packet.length) # Remove excess bytes
                packet.input = None
                packet.length = None
        except StopIteration:
            raise OnionPGPException("Not enough bytes")

        return packet

    @classmethod
    def parse_new_format(cls, chunk, g):
        """ Parses a new-format (RFC 4880) OpenPGP packet.
            http://tools.ietf.org/html/rfc4880#section-4.2.2
        """
        chunk = _ensure_bytes(2, chunk, g)
        tag = ord(chunk[0:1]) & 63
        length = ord(chunk[1:2])

        if length < 192: # One octet length
            if len(chunk) > 2:
                g.push(chunk[2:])
            return (tag, length)
        if length > 191 and length < 224: # Two octet length
            chunk = _ensure_bytes(3, chunk, g)
            if len(chunk) > 3:
                g.push(chunk[3:])
            return (tag, ((length - 192) << 8) + ord(chunk[2:3]) + 192)
        if length == 255: # Five octet length
            chunk = _ensure_bytes(6, chunk, g)
            if len(chunk) > 6:
                g.push(chunk[6:])
            return (tag, unpack('!L', chunk[2:6])[0])
        # Keyrings never use partial body lengths
        raise OnionPGPException("Partial body lengths are not supported")

    @classmethod
    def parse_old_format(cls, chunk, g):
        """ Parses an old-format (PGP 2.6.x) OpenPGP packet.
            http://tools.ietf.org/html/rfc4880#section-4.2.1
        """
        chunk = _ensure_bytes(1, chunk, g)
        tag = ord(chunk[0:1])
        length = tag & 3
        tag = (tag >> 2) & 15
        if length == 0: # The packet has a one-octet length. The header is 2 octets long.
            head_length = 2
            chunk = _ensure_bytes(head_length, chunk, g)
            data_length = ord(chunk[1:2])
        elif length == 1: # The packet has a two-octet length. The header is 3 octets long.
            head_length = 3
            chunk = _ensure_bytes(head_length, chunk, g)
            data_length = unpack('!H', chunk[1:3])[0]
        elif length == 2: # The packet has a four-octet length. The header is 5 octets long.
            head_length = 5
            chunk = _ensure_bytes(head_length, chunk, g)
            data_length = unpack('!L', chunk[1:5])[0]
        else: # The packet is of indeterminate length. The header is 1 octet long.
            head_length = 1
            data_length = None

        if len(chunk) > head_length:
            g.push(chunk[head_length:])
        return (tag, data_length)

    def __init__(self, data = None):
        for tag in Packet.tags:
            if Packet.tags[tag] == self.__class__:
                self.tag = tag
                break
        self.data = data

    def read(self):
        # Will normally be overridden by subclasses
        self.data = self.read_bytes(self.length)

    def body(self):
        return self.data # Will normally be overridden by subclasses

    def header_and_body(self):
        body = self.body() or b'' # Get body first, we will need its length
        tag = pack('!B', self.tag | 0xC0) # First two bits are 1 for new packet format
        return {'header': tag + self.encode_length(len(body)), 'body': body}

    @classmethod
    def encode_length(cls, length):
        """ http://tools.ietf.org/html/rfc4880#section-4.2.2 """
        if length < 192:
            return pack('!B', length)
        if length < 8384:
            length -= 192
            return pack('!B', (length >> 8) + 192) + pack('!B', length & 0xFF)
        return pack('!B', 255) + pack('!L', length)

    def to_bytes(self):
        data = self.header_and_body()
        return data['header'] + data['body']

    def read_timestamp(self):
        """ http://tools.ietf.org/html/rfc4880#section-3.5 """
        return self.read_unpacked(4, '!L')

    def read_mpi(self):
        """ http://tools.ietf.org/html/rfc4880#section-3.2 """
        length = self.read_unpacked(2, '!H') # length in bits
        return self.read_bytes((length + 7) // 8)

    def read_unpacked(self, count, fmt):
        """ http://docs.python.org/library/struct.html """
        return unpack(fmt, self.read_bytes(count))[0]

    def read_byte(self):
        byte = self.read_bytes(1)
        return byte and byte[0:1] or None

    def read_bytes(self, count):
        if count <= 0:
            return b''
        chunk = _ensure_bytes(count, b'', self.input)
        if len(chunk) > count:
            self.input.push(chunk[count:])
        self.length -= count
        return chunk[:count]

    tags = {} # Actual data at end of file

    def _state(self):
        return dict((k, v) for k, v in self.__dict__.items() if not k.startswith('_'))

    def __repr__(self):
        return "%s: %s" % (type(self), self._state().__repr__())

    def __eq__(self, other):
        if type(other) is type(self):
            return self._state() == other._state()
        return False

    def __ne__(self, other):
        return not self.__eq__(other)

class SignaturePacket(Packet):
    """ OpenPGP Signature packet (tag 2).
        http://tools.ietf.org/html/rfc4880#section-5.2
    """
    SUBKEY_BINDING = 0x18
    PRIMARY_KEY_BINDING = 0x19
    SUBKEY_REVOCATION = 0x28

    def __init__(self, data = None, key_algorithm = None, hash_algorithm = None, signature_type = None):
        super(SignaturePacket, self).__init__()
        self.version = 4 # Default to version 4 sigs
        self.signature_type = signature_type
        self.hash_algorithm = hash_algorithm
        self.hashed_subpackets = []
        self.unhashed_subpackets = []
        if isinstance(self.hash_algorithm, str):
            for a in SignaturePacket.hash_algorithms:
                if SignaturePacket.hash_algorithms[a] == self.hash_algorithm:
                    self.hash_algorithm = a
                    break
        self.key_algorithm = key_algorithm
        if isinstance(self.key_algorithm, str):
            for a in PublicKeyPacket.algorithms:
                if PublicKeyPacket.algorithms[a] == self.key_algorithm:
                    self.key_algorithm = a
                    break
        self.data = data # Store to-be-signed data in here until the signing happens
        self.trailer = None
        self.hash_head = None

    def sign_data(self, signers):
        """ self.data must be set to the data to sign
            signers is formatted like {'RSA': {'SHA256': CALLBACK}}, the callback
            takes the bytes to sign and returns a list of MPIs
        """
        self.trailer = self.calculate_trailer()
        signer = signers[self.key_algorithm_name()][self.hash_algorithm_name()]
        hashed = self.data + self.trailer
        data = signer(hashed)
        self.data = []
        for mpi in data:
            if isinstance(mpi, int):
                mpi = mpi.to_bytes((mpi.bit_length() + 7) // 8, byteorder='big')
            self.data.append(mpi.lstrip(b'\0')) # MPIs have no leading zeros
        # Left 16 bits of the signed hash value
        digest = hashlib.new(self.hash_algorithm_name().lower(), hashed).digest()
        self.hash_head = unpack('!H', digest[0:2])[0]

    def read(self):
        self.version = ord(self.read_byte())
        if self.version == 2 or self.version == 3:
            if ord(self.read_byte()) != 5:
                raise OnionPGPException("Bad v3 signature hashed material length")
            self.signature_type = ord(self.read_byte())
            creation_time = self.read_timestamp()
            keyid = self.read_bytes(8)
            keyidHex = ''.join('%02X' % octet for octet in bytearray(keyid))

            self.hashed_subpackets = []
            self.unhashed_subpackets = [
                SignaturePacket.SignatureCreationTimePacket(creation_time),
                SignaturePacket.IssuerPacket(keyidHex)
            ]

            self.key_algorithm = ord(self.read_byte())
            self.hash_algorithm = ord(self.read_byte())
            self.hash_head = self.read_unpacked(2, '!H')
            self.data = []
            while self.length > 0:
                self.data += [self.read_mpi()]
        elif self.version == 4:
            self.signature_type = ord(self.read_byte())
            self.key_algorithm = ord(self.read_byte())
            self.hash_algorithm = ord(self.read_byte())
            self.trailer = pack('!B', 4) + pack('!B', self.signature_type) + pack('!B', self.key_algorithm) + pack('!B', self.hash_algorithm)

            hashed_size = self.read_unpacked(2, '!H')
            hashed_subpackets = self.read_bytes(hashed_size)
            self.trailer += pack('!H', hashed_size) + hashed_subpackets
            self.hashed_subpackets = self.get_subpackets(hashed_subpackets)

            self.trailer += pack('!B', 4) + pack('!B', 0xff) + pack('!L', 6 + hashed_size)

            unhashed_size = self.read_unpacked(2, '!H')
            self.unhashed_subpackets = self.get_subpackets(self.read_bytes(unhashed_size))

            self.hash_head = self.read_unpacked(2, '!H')
            self.data = []
            while self.length > 0:
                self.data += [self.read_mpi()]
        else:
            raise OnionPGPException("Unsupported signature version: %d" % self.version)

    def calculate_trailer(self):
        # The trailer is the hashed top of the body plus its length
        body = self.body_start()
        return body + pack('!B', 4) + pack('!B', 0xff) + pack('!L', len(body))

    def body_start(self):
        body = pack('!B', 4) + pack('!B', self.signature_type) + pack('!B', self.key_algorithm) + pack('!B', self.hash_algorithm)

        hashed_subpackets = b''.join(p.to_bytes() for p in self.hashed_subpackets)
        body += pack('!H', len(hashed_subpackets)) + hashed_subpackets

        return body

    def body(self):
        if self.version == 2 or self.version == 3:
            body = pack('!B', self.version) + pack('!B', 5) + pack('!B', self.signature_type)

            for p in self.unhashed_subpackets:
                if isinstance(p, SignaturePacket.SignatureCreationTimePacket):
                    body += pack('!L', p.data)
                    break

            for p in self.unhashed_subpackets:
                if isinstance(p, SignaturePacket.IssuerPacket):
                    body += p.body()
                    break

            body += pack('!B', self.key_algorithm)
            body += pack('!B', self.hash_algorithm)
            body += pack('!H', self.hash_head)

            for mpi in self.data:
                body += pack('!H', bitlength(mpi)) + mpi

            return body
        else:
            if not self.trailer:
                self.trailer = self.calculate_trailer()
            body = self.trailer[0:-6]

            unhashed_subpackets = b''.join(p.to_bytes() for p in self.unhashed_subpackets)
            body += pack('!H', len(unhashed_subpackets)) + unhashed_subpackets

            body += pack('!H', self.hash_head)
            for mpi in self.data:
                body += pack('!H', bitlength(mpi)) + mpi

            return body

    def key_algorithm_name(self):
        return PublicKeyPacket.algorithms[self.key_algorithm]

    def hash_algorithm_name(self):
        return self.hash_algorithms[self.hash_algorithm]

    def issuer(self):
        for p in self.hashed_subpackets + self.unhashed_subpackets:
            if isinstance(p, self.IssuerPacket):
                return p.data
        return None

    def creation_time(self):
        for p in self.hashed_subpackets + self.unhashed_subpackets:
            if isinstance(p, self.SignatureCreationTimePacket):
                return p.data
        return None

    @classmethod
    def get_subpackets(cls, input_data):
        subpackets = []
        length = len(input_data)
        while length > 0:
            subpacket, bytes_used = cls.get_subpacket(input_data)
            if bytes_used > 0:
                subpackets.append(subpacket)
                input_data = input_data[bytes_used:]
                length -= bytes_used
            else: # Parsing stuck?
                break
        return subpackets

    @classmethod
    def get_subpacket(cls, input_data):
        """ http://tools.ietf.org/html/rfc4880#section-5.2.3.1 """
        length = ord(input_data[0:1])
        length_of_length = 1
        # if length < 192: one octet length, no further processing
        if length > 191 and length < 255: # Two octet length
            length_of_length = 2
            length = ((length - 192) << 8) + ord(input_data[1:2]) + 192
        if length == 255: # Five octet length
            length_of_length = 5
            length = unpack('!L', input_data[1:5])[0]
        input_data = input_data[length_of_length:] # Chop off length header
        tag = ord(input_data[0:1])

        # The high bit only flags the subpacket as critical
        klass = cls.subpacket_types.get(tag & 0x7F, SignaturePacket.Subpacket)

        packet = klass()
        packet.tag = tag
        packet.input = PushbackGenerator(_gen_one(input_data[1:length]))
        packet.length = length - 1
        packet.read()
        packet.input = None
        packet.length = None

        return (packet, length_of_length + length)

    class Subpacket(Packet):
        def __init__(self, data = None):
            super(SignaturePacket.Subpacket, self).__init__()
            for tag in SignaturePacket.subpacket_types:
                if SignaturePacket.subpacket_types[tag] == self.__class__:
                    self.tag = tag
                    break
            if data is not None:
                self.data = data

        def header_and_body(self):
            body = self.body() or b'' # Get body first, we'll need its length
            size = pack('!B', 255) + pack('!L', len(body) + 1) # Use 5-octet lengths + 1 for tag as first packet body octet
            tag = pack('!B', self.tag)
            return {'header': size + tag, 'body': body}

    class SignatureCreationTimePacket(Subpacket):
        """ http://tools.ietf.org/html/rfc4880#section-5.2.3.4 """
        def __init__(self, time = None):
            super(SignaturePacket.SignatureCreationTimePacket, self).__init__()
            self.data = time

        def read(self):
            self.data = self.read_timestamp()

        def body(self):
            return pack('!L', int(self.data))

    class IssuerPacket(Subpacket):
        """ http://tools.ietf.org/html/rfc4880#section-5.2.3.5
            data is the key id in upper case hex
        """
        def __init__(self, keyid = None):
            super(SignaturePacket.IssuerPacket, self).__init__()
            self.data = keyid

        def read(self):
            self.data = self.read_bytes(8).hex().upper()

        def body(self):
            return bytes.fromhex(self.data)

    class KeyFlagsPacket(Subpacket):
        """ http://tools.ietf.org/html/rfc4880#section-5.2.3.21 """
        CERTIFY = 0x01
        SIGN = 0x02
        ENCRYPT_COMMUNICATIONS = 0x04
        ENCRYPT_STORAGE = 0x08
        AUTHENTICATE = 0x20

        def __init__(self, flags = None):
            super(SignaturePacket.KeyFlagsPacket, self).__init__()
            self.flags = list(flags or [])

        def read(self):
            self.flags = list(bytearray(self.read_bytes(self.length)))

        def body(self):
            return bytes(bytearray(self.flags))

    hash_algorithms = {
        1: 'MD5',
        2: 'SHA1',
        3: 'RIPEMD160',
        8: 'SHA256',
        9: 'SHA384',
        10: 'SHA512',
        11: 'SHA224'
    }

    subpacket_types = {
        2: SignatureCreationTimePacket,
        16: IssuerPacket,
        27: KeyFlagsPacket
    }

class EmbeddedSignaturePacket(SignaturePacket.Subpacket, SignaturePacket):
    pass

SignaturePacket.subpacket_types[32] = SignaturePacket.EmbeddedSignaturePacket = EmbeddedSignaturePacket

class PublicKeyPacket(Packet):
    """ OpenPGP Public-Key packet (tag 6).
        http://tools.ietf.org/html/rfc4880#section-5.5.1.1
        http://tools.ietf.org/html/rfc4880#section-5.5.2
        http://tools.ietf.org/html/rfc4880#section-11.1
        http://tools.ietf.org/html/rfc4880#section-12
    """
    def __init__(self, keydata = None, version = 4, algorithm = 1, timestamp = None):
        super(PublicKeyPacket, self).__init__()
        self._fingerprint = None
        self.version = version
        self.key_algorithm = algorithm
        self.timestamp = int(time() if timestamp is None else timestamp)
        self.opaque = None
        if isinstance(keydata, tuple) or isinstance(keydata, list):
            self.key = {}
            for i in range(0, min(len(keydata), len(self.key_fields[self.key_algorithm]))):
                self.key[self.key_fields[self.key_algorithm][i]] = keydata[i]
        else:
            self.key = keydata

    def key_algorithm_name(self):
        return self.__class__.algorithms.get(self.key_algorithm, 'UNKNOWN')

    def is_rsa(self):
        return self.key_algorithm_name() == 'RSA'

    def read(self):
        """ http://tools.ietf.org/html/rfc4880#section-5.5.2 """
        self.version = ord(self.read_byte())
        if self.version == 3:
            self.timestamp = self.read_timestamp()
            self.v3_days_of_validity = self.read_unpacked(2, '!H')
            self.key_algorithm = ord(self.read_byte())
            self.read_key_material()
        elif self.version == 4:
            self.timestamp = self.read_timestamp()
            self.key_algorithm = ord(self.read_byte())
            self.read_key_material()
        else:
            raise OnionPGPException("Unsupported key version: %d" % self.version)

    def read_key_material(self):
        self.key = {}
        self.opaque = None
        if self.key_algorithm not in self.key_fields:
            self.opaque = self.read_bytes(self.length) # Nothing we can take apart
            return
        for field in self.key_fields[self.key_algorithm]:
            if field in self.sized_fields:
                self.key[field] = self.read_bytes(ord(self.read_byte()))
            else:
                self.key[field] = self.read_mpi()

    def field_bytes(self, field):
        value = self.key[field]
        if field in self.sized_fields:
            return pack('!B', len(value)) + value
        return pack('!H', bitlength(value)) + value

    def key_material(self):
        if self.opaque is not None:
            return self.opaque
        return b''.join(self.field_bytes(f) for f in self.key_fields[self.key_algorithm])

    def fingerprint_material(self):
        if self.version == 2 or self.version == 3:
            material = []
            for i in self.key_fields[self.key_algorithm]:
                material += [pack('!H', bitlength(self.key[i]))]
                material += [self.key[i]]
            return material
        elif self.version == 4:
            material = self.key_material()
            return [pack('!B', 0x99), pack('!H', 6 + len(material)), pack('!B', self.version),
                    pack('!L', self.timestamp), pack('!B', self.key_algorithm), material]

    def fingerprint(self):
        """ http://tools.ietf.org/html/rfc4880#section-12.2
            http://tools.ietf.org/html/rfc4880#section-3.3
        """
        if self._fingerprint:
            return self._fingerprint
        if self.version == 2 or self.version == 3:
            self._fingerprint = hashlib.md5(b''.join(self.fingerprint_material())).hexdigest().upper()
        elif self.version == 4:
            self._fingerprint = hashlib.sha1(b''.join(self.fingerprint_material())).hexdigest().upper()
        return self._fingerprint

    def key_id(self):
        """ The 64-bit key id as an int
            http://tools.ietf.org/html/rfc4880#section-12.2
        """
        if self.version == 2 or self.version == 3:
            return int.from_bytes(self.key['n'][-8:], byteorder='big')
        return int(self.fingerprint()[-16:], 16)

    def keyid_hex(self):
        return '%016X' % self.key_id()

    def bits(self):
        """ Modulus (or prime) size in bits, 0 when unknown """
        for field in ('n', 'p'):
            if self.key and field in self.key and field not in self.sized_fields:
                return bitlength(self.key[field])
        return 0

    def body(self):
        if self.version == 3:
            return b''.join([
                pack('!B', self.version), pack('!L', self.timestamp),
                pack('!H', self.v3_days_of_validity), pack('!B', self.key_algorithm)
            ] + self.fingerprint_material())
        elif self.version == 4:
            return b''.join(self.fingerprint_material()[2:])

    sized_fields = ('oid', 'kdf')

    key_fields = {
        1: ['n', 'e'],           # RSA
        2: ['n', 'e'],           # RSA encrypt only
        3: ['n', 'e'],           # RSA sign only
       16: ['p', 'g', 'y'],      # ELG-E
       17: ['p', 'q', 'g', 'y'], # DSA
       18: ['oid', 'q', 'kdf'],  # ECDH
       19: ['oid', 'q'],         # ECDSA
       22: ['oid', 'q'],         # EdDSA
    }

    algorithms = {
        1: 'RSA',
        2: 'RSA',
        3: 'RSA',
       16: 'ELGAMAL',
       17: 'DSA',
       18: 'ECDH',
       19: 'ECDSA',
       21: 'DH',
       22: 'EDDSA'
    }

class PublicSubkeyPacket(PublicKeyPacket):
    """ OpenPGP Public-Subkey packet (tag 14).
        http://tools.ietf.org/html/rfc4880#section-5.5.1.2
    """
    pass

class SecretKeyPacket(PublicKeyPacket):
    """ OpenPGP Secret-Key packet (tag 5).
        http://tools.ietf.org/html/rfc4880#section-5.5.1.3
        http://tools.ietf.org/html/rfc4880#section-5.5.3
        http://tools.ietf.org/html/rfc4880#section-11.2
    """
    def __init__(self, keydata = None, version = 4, algorithm = 1, timestamp = None):
        super(SecretKeyPacket, self).__init__(keydata, version, algorithm, timestamp)
        self.s2k_usage = 0
        self.symmetric_algorithm = 0
        self.s2k = None
        self.encrypted_data = None
        if isinstance(keydata, tuple) or isinstance(keydata, list):
            public_len = len(self.key_fields[self.key_algorithm])
            for i in range(public_len, len(keydata)):
                self.key[self.secret_key_fields[self.key_algorithm][i - public_len]] = keydata[i]

    def read(self):
        super(SecretKeyPacket, self).read() # All the fields from PublicKey
        self.symmetric_algorithm = 0
        self.s2k = None
        self.encrypted_data = None
        if self.opaque is not None:
            return # Public and secret parts are indistinguishable
        self.s2k_usage = ord(self.read_byte())
        if self.s2k_usage == 255 or self.s2k_usage == 254:
            self.symmetric_algorithm = ord(self.read_byte())
            self.s2k, s2k_bytes = S2K.parse(self.input)
            self.length -= s2k_bytes
        elif self.s2k_usage > 0:
            self.symmetric_algorithm = self.s2k_usage
        if self.s2k_usage > 0:
            # Rest of input is IV, MPIs and checksum (encrypted), or a stub
            self.encrypted_data = self.read_bytes(self.length)
        else:
            material = self.read_bytes(self.length - 2)
            chk = self.read_unpacked(2, '!H')
            if chk != checksum(material):
                raise OnionPGPException("Checksum verification failed when parsing SecretKeyPacket")
            self.key_from_bytes(material)

    def key_from_bytes(self, material):
        fields = self.secret_key_fields[self.key_algorithm]
        mpis, rest = split_mpis(material, len(fields))
        for field, mpi in zip(fields, mpis):
            self.key[field] = mpi
        return rest

    def is_stub(self):
        """ GnuPG exports without the secret part (gnu-dummy S2K) """
        return self.s2k is not None and self.s2k.type == S2K.GNU_EXTENSION

    def is_encrypted(self):
        return self.s2k_usage > 0 and not self.is_stub()

    def has_secret(self):
        fields = self.secret_key_fields.get(self.key_algorithm, [])
        return bool(fields) and all(self.key.get(f) for f in fields)

    def secret_material(self):
        return b''.join(pack('!H', bitlength(self.key[f])) + self.key[f]
                        for f in self.secret_key_fields[self.key_algorithm])

    def body(self):
        b = super(SecretKeyPacket, self).body()
        if self.opaque is not None:
            return b
        b += pack('!B', self.s2k_usage)
        if self.s2k_usage == 255 or self.s2k_usage == 254:
            b += pack('!B', self.symmetric_algorithm)
            b += self.s2k.to_bytes()
        if self.s2k_usage > 0:
            b += self.encrypted_data
        else:
            secret_material = self.secret_material()
            b += secret_material + pack('!H', checksum(secret_material)) # 2-octet checksum

        return b

    secret_key_fields = {
        1: ['d', 'p', 'q', 'u'], # RSA
        2: ['d', 'p', 'q', 'u'], # RSA encrypt only
        3: ['d', 'p', 'q', 'u'], # RSA sign only
       16: ['x'],                # ELG-E
       17: ['x'],                # DSA
       18: ['d'],                # ECDH
       19: ['d'],                # ECDSA
       22: ['d'],                # EdDSA
    }

class SecretSubkeyPacket(SecretKeyPacket):
    """ OpenPGP Secret-Subkey packet (tag 7).
        http://tools.ietf.org/html/rfc4880#section-5.5.1.4
    """
    pass

class TrustPacket(Packet):
    """ OpenPGP Trust packet (tag 12).
        http://tools.ietf.org/html/rfc4880#section-5.10
    """
    pass # Data is implementation-specific

class UserIDPacket(Packet):
    """ OpenPGP User ID packet (tag 13).
        http://tools.ietf.org/html/rfc4880#section-5.11
        http://tools.ietf.org/html/rfc2822
    """
    def __init__(self, name = '', comment = None, email = None):
        super(UserIDPacket, self).__init__()
        self.name = self.comment = self.email = None
        self.text = ''
        if (not comment) and (not email):
            self.set_text(name)
        else:
            self.name = name
            self.comment = comment
            self.email = email
            self.text = self.__str__()

    def read(self):
        self.set_text(self.read_bytes(self.length).decode('utf-8', 'replace'))

    def set_text(self, text):
        self.text = text
        # User IDs of the form: "name (comment) <email>"
        parts = re.findall(r'^([^\(]+)\(([^\)]+)\)\s+<([^>]+)>$', text)
        if len(parts) > 0:
            self.name = parts[0][0].strip()
            self.comment = parts[0][1].strip()
            self.email = parts[0][2].strip()
            return
        # User IDs of the form: "name <email>"
        parts = re.findall(r'^([^<]+)\s+<([^>]+)>$', text)
        if len(parts) > 0:
            self.name = parts[0][0].strip()
            self.email = parts[0][1].strip()
            return
        # User IDs of the form: "<email>"
        parts = re.findall(r'^<([^>]+)>$', text)
        if len(parts) > 0:
            self.email = parts[0].strip()
        elif text:
            self.name = text.strip()

    def __str__(self):
        if self.text:
            return self.text
        text = []
        if self.name:
            text.append(self.name)
        if self.comment:
            text.append('(' + self.comment + ')')
        if self.email:
            text.append('<' + self.email + '>')
        return ' '.join(text)

    def body(self):
        return self.__str__().encode('utf-8')

class UserAttributePacket(Packet):
    """ OpenPGP User Attribute packet (tag 17).
        http://tools.ietf.org/html/rfc4880#section-5.12
    """
    pass # Photo IDs are carried along untouched

Packet.tags = {
     2: SignaturePacket, # Signature Packet
     5: SecretKeyPacket, # Secret-Key Packet
     6: PublicKeyPacket, # Public-Key Packet
     7: SecretSubkeyPacket, # Secret-Subkey Packet
    12: TrustPacket, # Trust Packet
    13: UserIDPacket, # User ID Packet
    14: PublicSubkeyPacket, # Public-Subkey Packet
    17: UserAttributePacket, # User Attribute Packet
}
