""" Adding an existing RSA key pair to an entity as a signed subkey
    http://tools.ietf.org/html/rfc4880#section-5.2.1 (0x18: Subkey Binding Signature)
"""
import logging
import time
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
import OnionPGP
from OnionPGP.cryptography import Wrapper
from OnionPGP.keyring import Subkey

logger = logging.getLogger(__name__)

def bind(entity, subject, created_at = None):
    primary = entity.primary_key
    if not isinstance(primary, OnionPGP.SecretKeyPacket) or not primary.is_rsa() or not primary.has_secret():
        raise OnionPGP.SigningError("Primary key 0x%s is not an unlocked RSA secret key" % primary.keyid_hex())
    if not isinstance(subject, RSAPrivateKey):
        raise OnionPGP.SigningError("Only RSA private keys can become subkeys")
    if created_at is None:
        created_at = time.time()
    created_at = int(created_at)

    try:
        public = Wrapper.key_packet(subject, created_at, OnionPGP.PublicSubkeyPacket)
        signature = Wrapper(primary).sign_subkey_binding(public, 'SHA256', created_at)
        private = Wrapper.key_packet(subject, created_at, OnionPGP.SecretSubkeyPacket)
    except (ValueError, TypeError, OnionPGP.OnionPGPException) as e:
        raise OnionPGP.SigningError("Signing subkey failed: %s" % e)

    entity.subkeys.append(Subkey(public, private, [signature]))
    logger.info("Bound subkey 0x%s to key 0x%s", public.keyid_hex(), primary.keyid_hex())
    return entity

def verify_binding(entity, subkey):
    signature = subkey.signature
    if signature is None:
        return False
    return Wrapper(entity.primary_key).verify_subkey_binding(subkey.public_key, signature)
