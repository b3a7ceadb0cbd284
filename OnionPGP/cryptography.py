from struct import unpack
import Crypto.Random
import Crypto.Util.number
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES, CAST5, Blowfish
from cryptography.hazmat.primitives.asymmetric import rsa, padding
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
import OnionPGP
import copy, hashlib, logging, time

__all__ = ['Wrapper']

logger = logging.getLogger(__name__)

class Wrapper:
    """ A wrapper for using the packet classes from OnionPGP with cryptography """

    hash_classes = {
        'MD5':       hashes.MD5,
        'SHA1':      hashes.SHA1,
        'SHA224':    hashes.SHA224,
        'SHA256':    hashes.SHA256,
        'SHA384':    hashes.SHA384,
        'SHA512':    hashes.SHA512
    }

    def __init__(self, packet):
        self._key = self._parse_packet(packet)

    def key(self):
        return self._key

    def public_key(self):
        """ Get RSAPublicKey for the public key """
        return self.convert_public_key(self._key)

    def private_key(self):
        """ Get RSAPrivateKey for the secret key """
        return self.convert_private_key(self._key)

    def verifier(self, h, m, s):
        """ Check one RSA signature s over the bytes m with this key """
        try:
            key = self.public_key()
        except OnionPGP.OnionPGPException:
            return False
        if not isinstance(key, RSAPublicKey) or s.key_algorithm_name() != 'RSA' or not s.data:
            return False
        # MPIs drop leading zeros, the signature must span the modulus
        signature = s.data[0].rjust((key.key_size + 7) // 8, b'\0')
        try:
            key.verify(signature, m, padding.PKCS1v15(), h)
        except (InvalidSignature, UnsupportedAlgorithm):
            return False
        return True

    def verify_subkey_binding(self, subkey, signature):
        """ Check a subkey binding signature (0x18) made by the wrapped primary key
            http://tools.ietf.org/html/rfc4880#section-5.2.4
        """
        primary = self.key()
        if signature.signature_type != OnionPGP.SignaturePacket.SUBKEY_BINDING or signature.version != 4:
            return False
        h = self.hash_classes.get(signature.hash_algorithms.get(signature.hash_algorithm))
        if h is None:
            return False
        m = b''.join(primary.fingerprint_material()) + b''.join(subkey.fingerprint_material())
        return self.verifier(h(), m + signature.trailer, signature)

    def sign_subkey_binding(self, subkey, hash='SHA256', timestamp=None):
        """ Make a subkey binding signature for subkey with the wrapped primary key.
            The signature creation time and issuer go in the hashed area.
        """
        primary = self.key()
        key = self.private_key()
        if timestamp is None:
            timestamp = time.time()

        m = b''.join(primary.fingerprint_material()) + b''.join(subkey.fingerprint_material())
        sig = OnionPGP.SignaturePacket(m, 'RSA', hash.upper(), OnionPGP.SignaturePacket.SUBKEY_BINDING)
        sig.hashed_subpackets.append(OnionPGP.SignaturePacket.SignatureCreationTimePacket(int(timestamp)))
        sig.hashed_subpackets.append(OnionPGP.SignaturePacket.IssuerPacket(primary.keyid_hex()))

        def doRSA(h, m):
            return [key.sign(m, padding.PKCS1v15(), h())]

        sig.sign_data({'RSA': {
                hash.upper(): lambda m: doRSA(self.hash_classes[hash.upper()], m)
            }})

        return sig

    def decrypt_secret_key(self, passphrase):
        """ Returns a decrypted copy of the secret key packet, or None
            when the passphrase does not match
        """
        if hasattr(passphrase, 'encode'):
            passphrase = passphrase.encode('utf-8')

        packet = copy.copy(self.key()) # Do not mutate original
        packet.key = dict(packet.key)

        cipher, key_bytes, key_block_bytes = self.get_cipher(packet.symmetric_algorithm)
        if not cipher:
            raise OnionPGP.UnlockFailed("Unsupported cipher: %d" % packet.symmetric_algorithm)
        if packet.s2k is None:
            # Legacy usage octet: the key is the MD5 of the passphrase
            s2k = OnionPGP.S2K(b'', 1, 0, 0)
        else:
            s2k = packet.s2k
        cipher = cipher(s2k.make_key(passphrase, key_bytes))
        cipher = cipher(packet.encrypted_data[:key_block_bytes]).decryptor()
        material = cipher.update(packet.encrypted_data[key_block_bytes:]) + cipher.finalize()

        if packet.s2k_usage == 254:
            chk = material[-20:]
            material = material[:-20]
            if chk != hashlib.sha1(material).digest():
                logger.debug("SHA-1 check failed for key %s", packet.keyid_hex())
                return None
        else:
            chk = unpack('!H', material[-2:])[0]
            material = material[:-2]
            if chk != OnionPGP.checksum(material):
                logger.debug("Checksum failed for key %s", packet.keyid_hex())
                return None

        try:
            packet.key_from_bytes(material)
        except OnionPGP.OnionPGPException:
            return None # Garbage that happened to pass the 2-octet checksum

        packet.s2k_usage = 0
        packet.symmetric_algorithm = 0
        packet.s2k = None
        packet.encrypted_data = None
        return packet

    def encrypt_secret_key(self, passphrase, s2k=None, symmetric_algorithm=7):
        """ Returns a copy of the decrypted secret key packet protected with
            passphrase: usage 254 (SHA-1 check), iterated and salted S2K
        """
        if hasattr(passphrase, 'encode'):
            passphrase = passphrase.encode('utf-8')

        packet = copy.copy(self.key())
        packet.key = dict(packet.key)
        if s2k is None:
            s2k = OnionPGP.S2K(Crypto.Random.get_random_bytes(8), 2, 65536, 3)

        cipher, key_bytes, key_block_bytes = self.get_cipher(symmetric_algorithm)
        if not cipher:
            raise OnionPGP.OnionPGPException("Unsupported cipher: %d" % symmetric_algorithm)
        iv = Crypto.Random.get_random_bytes(key_block_bytes)
        material = packet.secret_material()
        material += hashlib.sha1(material).digest()
        cipher = cipher(s2k.make_key(passphrase, key_bytes))(iv).encryptor()

        packet.s2k_usage = 254
        packet.symmetric_algorithm = symmetric_algorithm
        packet.s2k = s2k
        packet.encrypted_data = iv + cipher.update(material) + cipher.finalize()
        return packet

    @classmethod
    def _parse_packet(cls, packet):
        if isinstance(packet, (OnionPGP.PublicKeyPacket, RSAPublicKey, RSAPrivateKey)):
            return packet
        raise OnionPGP.OnionPGPException("Cannot wrap %s" % type(packet).__name__)

    @classmethod
    def get_cipher(cls, algo):
        def cipher(m, ks, bs):
            return (lambda k: lambda iv:
                    Cipher(m(k), modes.CFB(iv or b'\0'*bs)),
                ks, bs)

        if algo == 2:
            return cipher(TripleDES, 24, 8)
        elif algo == 3:
            return cipher(CAST5, 16, 8)
        elif algo == 4:
            return cipher(Blowfish, 16, 8)
        elif algo == 7:
            return cipher(algorithms.AES, 16, 16)
        elif algo == 8:
            return cipher(algorithms.AES, 24, 16)
        elif algo == 9:
            return cipher(algorithms.AES, 32, 16)

        return (None,None,None) # Not supported

    @classmethod
    def convert_key(cls, packet, private=False):
        if isinstance(packet, RSAPrivateKey) or isinstance(packet, RSAPublicKey):
            if (not private) and isinstance(packet, RSAPrivateKey):
                return packet.public_key()
            else:
                return packet

        packet = cls._parse_packet(packet)

        if packet.key_algorithm_name() != 'RSA':
            raise OnionPGP.OnionPGPException("Only RSA keys are supported, not %s" % packet.key_algorithm_name())

        public = rsa.RSAPublicNumbers(cls._bytes_to_long(packet.key['e']), cls._bytes_to_long(packet.key['n']))
        if private:
            # OpenPGP keeps p < q and u = p^-1 mod q, which is iqmp once p and q swap
            d = cls._bytes_to_long(packet.key['d'])
            p = cls._bytes_to_long(packet.key['q'])
            q = cls._bytes_to_long(packet.key['p'])
            dmp1 = rsa.rsa_crt_dmp1(d, p)
            dmq1 = rsa.rsa_crt_dmq1(d, q)
            u = cls._bytes_to_long(packet.key['u'])
            return rsa.RSAPrivateNumbers(p, q, d, dmp1, dmq1, u, public).private_key()
        else:
            return public.public_key()

    @classmethod
    def convert_public_key(cls, packet):
        return cls.convert_key(packet, False)

    @classmethod
    def convert_private_key(cls, packet):
        return cls.convert_key(packet, True)

    @classmethod
    def key_packet(cls, key, timestamp=None, klass=None):
        """ Build an RSA key packet (v4) from a cryptography key.
            Private keys give a SecretKeyPacket unless klass says otherwise.
        """
        if isinstance(key, RSAPrivateKey):
            private = key.private_numbers()
            public = private.public_numbers
        elif isinstance(key, RSAPublicKey):
            private = None
            public = key.public_numbers()
        else:
            raise OnionPGP.OnionPGPException("Only RSA keys can be converted to packets")
        if klass is None:
            klass = private and OnionPGP.SecretKeyPacket or OnionPGP.PublicKeyPacket

        keydata = [Crypto.Util.number.long_to_bytes(public.n), Crypto.Util.number.long_to_bytes(public.e)]
        if private and issubclass(klass, OnionPGP.SecretKeyPacket):
            p, q = sorted([private.p, private.q])
            keydata += [
                Crypto.Util.number.long_to_bytes(private.d),
                Crypto.Util.number.long_to_bytes(p),
                Crypto.Util.number.long_to_bytes(q),
                Crypto.Util.number.long_to_bytes(Crypto.Util.number.inverse(p, q))
            ]
        return klass(keydata, 4, 1, timestamp)

    @classmethod
    def _bytes_to_long(cls, b):
        return Crypto.Util.number.bytes_to_long(b)
