""" Transferable keys grouped into entities
    http://tools.ietf.org/html/rfc4880#section-11.1
    http://tools.ietf.org/html/rfc4880#section-11.2
"""
import logging
import OnionPGP

logger = logging.getLogger(__name__)

def public_part(packet, klass):
    """ Strip the secret half off a key packet, giving a klass packet with the
        same fingerprint
    """
    public = klass()
    public.version = packet.version
    public.timestamp = packet.timestamp
    public.key_algorithm = packet.key_algorithm
    public.opaque = packet.opaque
    if packet.version == 3:
        public.v3_days_of_validity = packet.v3_days_of_validity
    fields = packet.key_fields.get(packet.key_algorithm, [])
    public.key = dict((f, packet.key[f]) for f in fields if f in packet.key)
    return public

class Identity(object):
    """ A user id (or user attribute) with its certifications """
    def __init__(self, user_id, signatures = None):
        self.user_id = user_id
        self.signatures = list(signatures or [])

    @property
    def name(self):
        if isinstance(self.user_id, OnionPGP.UserIDPacket):
            return str(self.user_id)
        return ''

    def __repr__(self):
        return "<Identity %r>" % self.name

class Subkey(object):
    def __init__(self, public_key, private_key = None, signatures = None):
        self.public_key = public_key
        self.private_key = private_key
        self.signatures = list(signatures or [])

    @property
    def signature(self):
        """ The first subkey binding signature, if any """
        for sig in self.signatures:
            if sig.signature_type == OnionPGP.SignaturePacket.SUBKEY_BINDING:
                return sig
        return None

    def key_id(self):
        return self.public_key.key_id()

    def __repr__(self):
        return "<Subkey %s %s/%d>" % (self.public_key.keyid_hex(), self.public_key.key_algorithm_name(), self.public_key.bits())

class Entity(object):
    """ A primary key with its direct signatures, identities and subkeys """
    def __init__(self, primary_key, signatures = None, identities = None, subkeys = None):
        self.primary_key = primary_key
        self.signatures = list(signatures or [])
        self.identities = list(identities or [])
        self.subkeys = list(subkeys or [])

    def key_id(self):
        return self.primary_key.key_id()

    def is_secret(self):
        return isinstance(self.primary_key, OnionPGP.SecretKeyPacket)

    def to_message(self, secret = True):
        """ Packets in transferable key order
            http://tools.ietf.org/html/rfc4880#section-11.1
        """
        primary = self.primary_key
        if not secret and isinstance(primary, OnionPGP.SecretKeyPacket):
            primary = public_part(primary, OnionPGP.PublicKeyPacket)
        packets = [primary] + self.signatures
        for identity in self.identities:
            packets.append(identity.user_id)
            packets += identity.signatures
        for subkey in self.subkeys:
            if secret and subkey.private_key is not None:
                packets.append(subkey.private_key)
            else:
                packets.append(subkey.public_key)
            packets += subkey.signatures
        return OnionPGP.Message(packets)

    def __repr__(self):
        return "<Entity %s %r>" % (self.primary_key.keyid_hex(), [i.name for i in self.identities])

def entities_from_packets(packets):
    entities = []
    entity = identity = subkey = None
    for packet in packets:
        if packet.tag in (5, 6): # Primary key
            entity = Entity(packet)
            identity = subkey = None
            entities.append(entity)
            logger.debug("Primary key %s", packet.keyid_hex())
            continue
        if entity is None:
            raise OnionPGP.OnionPGPException("Keyring does not start with a primary key (found packet tag %d)" % packet.tag)
        if packet.tag in (7, 14): # Subkey
            if packet.tag == 7:
                subkey = Subkey(public_part(packet, OnionPGP.PublicSubkeyPacket), packet)
            else:
                subkey = Subkey(packet)
            identity = None
            entity.subkeys.append(subkey)
            logger.debug("  subkey %s", packet.keyid_hex())
        elif packet.tag in (13, 17): # User ID, User Attribute
            identity = Identity(packet)
            subkey = None
            entity.identities.append(identity)
        elif isinstance(packet, OnionPGP.SignaturePacket):
            if subkey is not None:
                subkey.signatures.append(packet)
            elif identity is not None:
                identity.signatures.append(packet)
            else:
                entity.signatures.append(packet)
        else:
            logger.debug("Skipping packet tag %d", packet.tag) # Trust packets and the like
    return entities

def parse_keyring(data):
    """ Entities from a binary keyring or ASCII-armored key blocks """
    if isinstance(data, str):
        data = data.encode('utf-8')
    if not data:
        return []
    if not ord(data[0:1]) & 0x80: # Binary packets always have the high bit set
        blocks = OnionPGP.unarmor(data)
        if not blocks:
            raise OnionPGP.OnionPGPException("No armored key block found")
        data = b''.join(block for headers, block in blocks)
    return entities_from_packets(OnionPGP.Message.parse(data))

def read_keyring(path):
    with open(path, 'rb') as f:
        entities = parse_keyring(f.read())
    logger.debug("Read %d entities from %s", len(entities), path)
    return entities

def write_keyring(path, entities, armor = True, secret = True):
    data = b''.join(e.to_message(secret).to_bytes() for e in entities)
    if armor:
        if secret and any(e.is_secret() for e in entities):
            marker = 'PRIVATE KEY BLOCK'
        else:
            marker = 'PUBLIC KEY BLOCK'
        data = OnionPGP.enarmor(data, marker).encode('ascii')
    with open(path, 'wb') as f:
        f.write(data)
    logger.info("Wrote %d entities to %s", len(entities), path)
