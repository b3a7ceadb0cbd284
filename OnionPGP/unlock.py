""" Unlocking the passphrase protected secret keys of an entity

    A passphrase source is any callable returning the next passphrase as
    bytes, or None when there was no input. It raises EOFError once no
    passphrase can ever come.
"""
import collections
import getpass
import logging
import OnionPGP
from OnionPGP.cryptography import Wrapper

logger = logging.getLogger(__name__)

UnlockResult = collections.namedtuple('UnlockResult', ['attempts', 'subkeys'])

def is_locked(entity):
    keys = [entity.primary_key] + [s.private_key for s in entity.subkeys]
    return any(isinstance(k, OnionPGP.SecretKeyPacket) and k.is_encrypted() for k in keys)

def _next_passphrase(source):
    while True:
        passphrase = source()
        if passphrase is not None:
            return passphrase
        logger.debug("No passphrase entered")

def unlock(entity, source):
    """ Decrypt the primary key of entity, asking source until a passphrase
        fits, then every locked subkey with that same passphrase.
        The entity is only changed once everything decrypted.
    """
    primary = entity.primary_key
    if not isinstance(primary, OnionPGP.SecretKeyPacket) or primary.is_stub():
        raise OnionPGP.NoPrivateKeyData("No secret key data for 0x%s" % primary.keyid_hex())

    attempts = 0
    passphrase = None
    decrypted = primary
    while decrypted.is_encrypted():
        passphrase = _next_passphrase(source)
        attempts += 1
        result = Wrapper(primary).decrypt_secret_key(passphrase)
        if result is None:
            logger.warning("Wrong passphrase for key 0x%s", primary.keyid_hex())
        else:
            decrypted = result
    if attempts:
        logger.info("Unlocked key 0x%s after %d attempt(s)", primary.keyid_hex(), attempts)

    locked = [s for s in entity.subkeys if s.private_key is not None and s.private_key.is_encrypted()]
    if locked and passphrase is None:
        passphrase = _next_passphrase(source)
        attempts += 1
    unlocked = []
    for subkey in locked:
        result = Wrapper(subkey.private_key).decrypt_secret_key(passphrase)
        if result is None:
            raise OnionPGP.SubkeyUnlockFailed("Subkey 0x%s does not unlock with the passphrase of 0x%s" % (subkey.public_key.keyid_hex(), primary.keyid_hex()))
        unlocked.append((subkey, result))

    if not decrypted.has_secret():
        raise OnionPGP.NoPrivateKeyData("No secret key data for 0x%s" % primary.keyid_hex())

    entity.primary_key = decrypted
    for subkey, result in unlocked:
        subkey.private_key = result
    return UnlockResult(attempts, [subkey for subkey, result in unlocked])

def prompt_source(prompt = 'Passphrase to unlock key: '):
    """ Ask on the terminal; an empty answer counts as no input """
    def source():
        passphrase = getpass.getpass(prompt)
        return passphrase and passphrase.encode('utf-8') or None
    return source

def stream_source(stream):
    """ One passphrase per line of stream (text or binary) """
    def source():
        line = stream.readline()
        if not line:
            raise EOFError("No more passphrases")
        if hasattr(line, 'encode'):
            line = line.encode('utf-8')
        return line.rstrip(b'\r\n') or None
    return source

class Remembering(object):
    """ Wraps a source, keeping the last passphrase it handed out """
    def __init__(self, source):
        self.source = source
        self.passphrase = None

    def __call__(self):
        passphrase = self.source()
        if passphrase is not None:
            self.passphrase = passphrase
        return passphrase
