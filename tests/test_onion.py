import logging
import os.path
import re
import pytest
import OnionPGP
from OnionPGP import keyring, keyspec, onion, pem

def dataPath(filename):
    return os.path.dirname(__file__) + '/data/' + filename

def hiddenServiceKey():
    return pem.read_private_key(dataPath('hidden_service/private_key'))

class TestDerive:
    def test_private_key(self):
        assert onion.derive(hiddenServiceKey()) == 'ucpfbxbwjzesk4g5'

    def test_public_key(self):
        assert onion.derive(hiddenServiceKey().public_key()) == 'ucpfbxbwjzesk4g5'

    def test_hostname_file_vector(self):
        with open(dataPath('hidden_service/hostname')) as f:
            assert onion.hostname(hiddenServiceKey()) + '\n' == f.read()

    def test_key_packet(self):
        carol = keyring.read_keyring(dataPath('pubring.gpg'))[2]
        subkey = [s for s in carol.subkeys if s.public_key.keyid_hex() == 'E0BB5A34929E27AD'][0]
        assert onion.derive(subkey.public_key) == '3o7mpmd5r5cjzhey'

    def test_strict_key_size(self):
        alice = keyring.read_keyring(dataPath('pubring.gpg'))[0]
        with pytest.raises(OnionPGP.AddressError):
            onion.derive(alice.primary_key)

    def test_lenient_key_size(self, caplog):
        alice = keyring.read_keyring(dataPath('pubring.gpg'))[0]
        with caplog.at_level(logging.WARNING, logger='OnionPGP'):
            label = onion.derive(alice.primary_key, strict=False)
        assert re.match(r'^[a-z2-7]{16}$', label)
        assert '2048-bit key' in caplog.text

    def test_not_rsa(self):
        dsa = OnionPGP.PublicKeyPacket([b'\x01', b'\x01', b'\x01', b'\x01'], algorithm=17, timestamp=0)
        with pytest.raises(OnionPGP.AddressError):
            onion.derive(dsa)
        with pytest.raises(OnionPGP.AddressError):
            onion.derive('ucpfbxbwjzesk4g5')

class TestWriteHostname:
    def test_label(self, tmp_path):
        path = onion.write_hostname(str(tmp_path), 'ucpfbxbwjzesk4g5')
        with open(path) as f:
            assert f.read() == 'ucpfbxbwjzesk4g5.onion\n'

    def test_hostname(self, tmp_path):
        onion.write_hostname(str(tmp_path), 'ucpfbxbwjzesk4g5.onion')
        assert (tmp_path / 'hostname').read_text() == 'ucpfbxbwjzesk4g5.onion\n'

class TestSelectSubkey:
    def entities(self):
        return keyring.read_keyring(dataPath('secring.gpg'))

    def test_single_candidate(self):
        alice = self.entities()[0]
        subkey = onion.select_subkey(alice, keyspec.classify('Alice'))
        assert subkey.public_key.keyid_hex() == '2EE5C6EE5CC75A72'

    def test_no_candidate(self):
        bob = self.entities()[1]
        with pytest.raises(OnionPGP.NoSuitableSubkey):
            onion.select_subkey(bob, keyspec.classify('Bob'))

    def test_by_key_id(self):
        carol = self.entities()[2]
        subkey = onion.select_subkey(carol, keyspec.classify('0xE0BB5A34929E27AD'))
        assert subkey.public_key.keyid_hex() == 'E0BB5A34929E27AD'
        subkey = onion.select_subkey(carol, keyspec.classify('0xC5A8F52A'))
        assert subkey.public_key.keyid_hex() == '23FFCFEEC5A8F52A'

    def test_ambiguous(self):
        carol = self.entities()[2]
        with pytest.raises(OnionPGP.AmbiguousMatch) as e:
            onion.select_subkey(carol, keyspec.classify('Carol'))
        assert [s.public_key.keyid_hex() for s in e.value.candidates] == ['23FFCFEEC5A8F52A', 'E0BB5A34929E27AD']

    def test_primary_key_id_is_ambiguous(self):
        carol = self.entities()[2]
        with pytest.raises(OnionPGP.AmbiguousMatch):
            onion.select_subkey(carol, keyspec.classify('0x6E401D7F'))
