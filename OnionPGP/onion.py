""" Tor v2 hidden service names
    https://gitweb.torproject.org/torspec.git/tree/rend-spec-v2.txt (section 1.5)

    The onion label is the base32 encoding of the first 80 bits of the SHA-1
    hash of the DER encoded RSAPublicKey. Tor only ever uses 1024-bit keys.
"""
import base64
import hashlib
import logging
import os
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
import OnionPGP
from OnionPGP import keyspec
from OnionPGP.cryptography import Wrapper

logger = logging.getLogger(__name__)

KEY_SIZE = 1024
FILENAME = 'hostname'

def _public_key(key):
    if isinstance(key, RSAPrivateKey):
        return key.public_key()
    if isinstance(key, RSAPublicKey):
        return key
    if isinstance(key, OnionPGP.PublicKeyPacket):
        if not key.is_rsa():
            raise OnionPGP.AddressError("Key %s is %s, not RSA" % (key.keyid_hex(), key.key_algorithm_name()))
        try:
            return Wrapper.convert_public_key(key)
        except (KeyError, ValueError) as e:
            raise OnionPGP.AddressError("Key %s is not a usable RSA key: %s" % (key.keyid_hex(), e))
    raise OnionPGP.AddressError("Cannot derive an onion address from %s" % type(key).__name__)

def derive(public_key, strict=True):
    """ The 16 character onion label for an RSA key (key object or packet) """
    key = _public_key(public_key)
    if key.key_size != KEY_SIZE:
        if strict:
            raise OnionPGP.AddressError("Onion addresses need a %d-bit key, not %d-bit" % (KEY_SIZE, key.key_size))
        logger.warning("%d-bit key gives an onion address Tor will not use", key.key_size)
    der = key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.PKCS1)
    return base64.b32encode(hashlib.sha1(der).digest()[:10]).decode('ascii').lower()

def hostname(public_key):
    return derive(public_key) + '.onion'

def write_hostname(directory, onion):
    if not onion.endswith('.onion'):
        onion += '.onion'
    path = os.path.join(directory, FILENAME)
    with open(path, 'w') as f:
        f.write(onion + '\n')
    logger.info("Wrote %s", path)
    return path

def suitable_subkeys(entity):
    return [s for s in entity.subkeys if s.public_key.is_rsa() and s.public_key.bits() == KEY_SIZE]

def select_subkey(entity, spec):
    """ The one 1024-bit RSA subkey of entity to use for a hidden service.
        With several, spec has to name one of them by key id.
    """
    suitable = suitable_subkeys(entity)
    for subkey in suitable:
        logger.info("Suitable subkey 0x%s", subkey.public_key.keyid_hex())
    if not suitable:
        raise OnionPGP.NoSuitableSubkey("Key 0x%s has no %d-bit RSA subkey" % (entity.primary_key.keyid_hex(), KEY_SIZE))
    if len(suitable) == 1:
        return suitable[0]

    chosen = [s for s in suitable if keyspec.key_matches(spec, s.key_id())]
    if len(chosen) == 1:
        return chosen[0]
    candidates = chosen or suitable
    raise OnionPGP.AmbiguousMatch("%d suitable subkeys, select one by its key id" % len(candidates), candidates)
