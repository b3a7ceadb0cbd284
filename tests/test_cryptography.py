import os.path
import pytest
import Crypto.PublicKey.RSA
import Crypto.Util.number
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives import hashes
import OnionPGP
from OnionPGP.cryptography import Wrapper

def secretKeys():
    with open(os.path.dirname(__file__) + '/data/secring.gpg', 'rb') as f:
        return OnionPGP.Message.parse(f.read()).force()

class TestDecryptSecretKey:
    def test_right_passphrase(self):
        key = secretKeys()[0]
        decrypted = Wrapper(key).decrypt_secret_key('hello')
        assert decrypted.has_secret()
        assert decrypted.s2k_usage == 0
        assert decrypted.encrypted_data is None
        assert decrypted.fingerprint() == key.fingerprint()
        assert key.is_encrypted() # Original untouched
        assert not key.has_secret()

    def test_wrong_passphrase(self):
        key = secretKeys()[0]
        assert Wrapper(key).decrypt_secret_key(b'goodbye') is None

    def test_subkey(self):
        subkey = secretKeys()[3]
        assert isinstance(subkey, OnionPGP.SecretSubkeyPacket)
        decrypted = Wrapper(subkey).decrypt_secret_key(b'hello')
        private_key = Wrapper.convert_private_key(decrypted)
        assert private_key.key_size == 1024
        assert private_key.public_key().public_numbers() == Wrapper.convert_public_key(subkey).public_numbers()

    def test_serialize_decrypted(self):
        decrypted = Wrapper(secretKeys()[0]).decrypt_secret_key('hello')
        reparsed = OnionPGP.Message.parse(decrypted.to_bytes())[0]
        assert reparsed.has_secret()
        assert reparsed.key == decrypted.key

class TestEncryptSecretKey:
    def test_protect_again(self):
        decrypted = Wrapper(secretKeys()[0]).decrypt_secret_key('hello')
        protected = Wrapper(decrypted).encrypt_secret_key('other')
        assert protected.is_encrypted()
        assert protected.s2k_usage == 254
        assert protected.symmetric_algorithm == 7
        assert protected.s2k.type == 3
        assert decrypted.has_secret() # Original untouched
        reparsed = OnionPGP.Message.parse(protected.to_bytes())[0]
        assert Wrapper(reparsed).decrypt_secret_key('hello') is None
        assert Wrapper(reparsed).decrypt_secret_key('other').key == decrypted.key

    def test_aes256(self):
        decrypted = Wrapper(secretKeys()[0]).decrypt_secret_key('hello')
        s2k = OnionPGP.S2K(b'saltsalt', 8, 65536, 3)
        protected = Wrapper(decrypted).encrypt_secret_key('other', s2k, 9)
        assert Wrapper(protected).decrypt_secret_key('other').key == decrypted.key

class TestConvertKey:
    def test_pycryptodome_key(self):
        k = Crypto.PublicKey.RSA.generate(1024)
        p, q = sorted([k.p, k.q])
        nkey = OnionPGP.SecretKeyPacket((
            Crypto.Util.number.long_to_bytes(k.n),
            Crypto.Util.number.long_to_bytes(k.e),
            Crypto.Util.number.long_to_bytes(k.d),
            Crypto.Util.number.long_to_bytes(p),
            Crypto.Util.number.long_to_bytes(q),
            Crypto.Util.number.long_to_bytes(Crypto.Util.number.inverse(p, q))
        ))
        private_key = Wrapper(nkey).private_key()
        assert private_key.private_numbers().d == k.d
        signature = private_key.sign(b'hidden', padding.PKCS1v15(), hashes.SHA256())
        Wrapper(nkey).public_key().verify(signature, b'hidden', padding.PKCS1v15(), hashes.SHA256())

    def test_key_packet(self):
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=1024)
        packet = Wrapper.key_packet(private_key, 1412121600)
        assert isinstance(packet, OnionPGP.SecretKeyPacket)
        assert packet.timestamp == 1412121600
        assert packet.bits() == 1024
        assert Crypto.Util.number.bytes_to_long(packet.key['p']) < Crypto.Util.number.bytes_to_long(packet.key['q'])
        converted = Wrapper.convert_private_key(packet).private_numbers()
        original = private_key.private_numbers()
        assert converted.d == original.d
        assert set([converted.p, converted.q]) == set([original.p, original.q])
        assert converted.public_numbers == original.public_numbers

    def test_public_key_packet(self):
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=1024)
        packet = Wrapper.key_packet(private_key, 0, OnionPGP.PublicSubkeyPacket)
        assert isinstance(packet, OnionPGP.PublicSubkeyPacket)
        assert sorted(packet.key) == ['e', 'n']
        assert Wrapper.convert_public_key(packet).public_numbers() == private_key.public_key().public_numbers()

class TestSubkeyBinding:
    def test_gnupg_bindings(self):
        packets = secretKeys()
        primary = packets[0]
        assert Wrapper(primary).verify_subkey_binding(packets[3], packets[4])
        assert Wrapper(primary).verify_subkey_binding(packets[5], packets[6])

    def test_wrong_subkey(self):
        packets = secretKeys()
        assert not Wrapper(packets[0]).verify_subkey_binding(packets[5], packets[4])

    def test_sign_and_verify(self):
        primary = Wrapper(secretKeys()[0]).decrypt_secret_key('hello')
        subkey = Wrapper.key_packet(rsa.generate_private_key(public_exponent=65537, key_size=1024), 1412121600, OnionPGP.PublicSubkeyPacket)
        sig = Wrapper(primary).sign_subkey_binding(subkey, 'SHA256', 1412121601)
        assert sig.signature_type == 0x18
        assert sig.hash_algorithm_name() == 'SHA256'
        assert sig.creation_time() == 1412121601
        assert sig.issuer() == '36B9197BAB74801E'
        reparsed = OnionPGP.Message.parse(sig.to_bytes())[0]
        assert Wrapper(primary).verify_subkey_binding(subkey, reparsed)

class TestWrapper:
    def test_hash_classes(self):
        for name, h in Wrapper.hash_classes.items():
            assert h().name.upper() == name
        for name in Wrapper.hash_classes:
            assert name in OnionPGP.SignaturePacket.hash_algorithms.values()

    def test_wraps_keys_only(self):
        with pytest.raises(OnionPGP.OnionPGPException):
            Wrapper(b'\x99\x00\x01\x04')
        with pytest.raises(OnionPGP.OnionPGPException):
            Wrapper(OnionPGP.UserIDPacket('Nobody'))
