""" Key specifiers as given on the command line: 0x0123ABCD (short key id),
    0x0123456789ABCDEF (long key id) or any other text, matched against
    user ids.
"""
import collections
import logging
import re
import OnionPGP

logger = logging.getLogger(__name__)

class ShortKeyId(collections.namedtuple('ShortKeyId', 'value')):
    """ Legacy 32-bit key id. Only the low 32 bits of a key id are compared,
        so colliding short ids all match.
    """
    def key_matches(self, key_id):
        return key_id & 0xFFFFFFFF == self.value

    def __str__(self):
        return '0x%08X' % self.value

class LongKeyId(collections.namedtuple('LongKeyId', 'value')):
    def key_matches(self, key_id):
        return key_id == self.value

    def __str__(self):
        return '0x%016X' % self.value

class NameSubstring(collections.namedtuple('NameSubstring', 'text')):
    def key_matches(self, key_id):
        return False

    def __str__(self):
        return self.text

def classify(text):
    if not text:
        raise OnionPGP.InvalidIdentifierLength("Empty key specifier")
    if text[:2] not in ('0x', '0X'):
        return NameSubstring(text)
    if not re.match(r'^[0-9a-fA-F]+$', text[2:]):
        raise OnionPGP.ParseError("Key id %r is not hexadecimal" % text)
    if len(text) == 10:
        return ShortKeyId(int(text[2:], 16))
    if len(text) == 18:
        return LongKeyId(int(text[2:], 16))
    raise OnionPGP.InvalidIdentifierLength("Key id %r must have 8 or 16 hex digits" % text)

def key_matches(spec, key_id):
    return spec.key_matches(key_id)

def matches(spec, entity):
    if isinstance(spec, NameSubstring):
        return any(spec.text in identity.name for identity in entity.identities)
    if spec.key_matches(entity.key_id()):
        return True
    return any(spec.key_matches(subkey.key_id()) for subkey in entity.subkeys)

def find_all(entities, spec):
    """ Entities matching spec, in keyring order """
    found = [entity for entity in entities if matches(spec, entity)]
    logger.debug("%s matches %d of %d entities", spec, len(found), len(entities))
    return found

def find_one(entities, spec):
    found = find_all(entities, spec)
    if not found:
        raise OnionPGP.NoMatch("No key matches %s" % spec)
    if len(found) > 1:
        raise OnionPGP.AmbiguousMatch("%d keys match %s" % (len(found), spec), found)
    return found[0]
