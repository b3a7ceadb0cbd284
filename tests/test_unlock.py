import io
import logging
import os.path
import pytest
import OnionPGP
from OnionPGP import keyring, unlock
from OnionPGP.cryptography import Wrapper

def dataPath(filename):
    return os.path.dirname(__file__) + '/data/' + filename

def alice():
    return keyring.read_keyring(dataPath('alice-sec.asc'))[0]

def listSource(passphrases):
    passphrases = list(passphrases)
    def source():
        if not passphrases:
            raise EOFError("No more passphrases")
        return passphrases.pop(0)
    return source

class TestUnlock:
    def test_correct_passphrase(self):
        entity = alice()
        assert unlock.is_locked(entity)
        result = unlock.unlock(entity, listSource([b'hello']))
        assert result.attempts == 1
        assert result.subkeys == entity.subkeys
        assert not unlock.is_locked(entity)
        assert entity.primary_key.has_secret()
        assert all(s.private_key.has_secret() for s in entity.subkeys)

    def test_wrong_then_correct(self, caplog):
        entity = alice()
        with caplog.at_level(logging.WARNING, logger='OnionPGP'):
            result = unlock.unlock(entity, listSource([b'wrong', None, b'hello']))
        assert result.attempts == 2
        assert 'Wrong passphrase for key 0x36B9197BAB74801E' in caplog.text
        assert not unlock.is_locked(entity)

    def test_input_closed(self):
        entity = alice()
        with pytest.raises(EOFError):
            unlock.unlock(entity, listSource([b'wrong']))
        assert unlock.is_locked(entity)
        assert not entity.primary_key.has_secret()

    def test_stub_primary(self):
        entity = keyring.read_keyring(dataPath('alice-stub.gpg'))[0]
        with pytest.raises(OnionPGP.NoPrivateKeyData):
            unlock.unlock(entity, listSource([b'hello']))

    def test_public_only(self):
        entity = keyring.read_keyring(dataPath('pubring.gpg'))[0]
        with pytest.raises(OnionPGP.NoPrivateKeyData):
            unlock.unlock(entity, listSource([b'hello']))

    def test_subkey_with_other_passphrase(self):
        entity = alice()
        subkey = entity.subkeys[1]
        decrypted = Wrapper(subkey.private_key).decrypt_secret_key(b'hello')
        subkey.private_key = Wrapper(decrypted).encrypt_secret_key(b'other')
        primary = entity.primary_key
        with pytest.raises(OnionPGP.SubkeyUnlockFailed):
            unlock.unlock(entity, listSource([b'hello', b'other']))
        assert entity.primary_key is primary
        assert entity.subkeys[0].private_key.is_encrypted()

    def test_unprotected_primary(self):
        entity = alice()
        entity.primary_key = Wrapper(entity.primary_key).decrypt_secret_key(b'hello')
        result = unlock.unlock(entity, listSource([None, b'hello']))
        assert result.attempts == 1
        assert len(result.subkeys) == 2
        assert not unlock.is_locked(entity)

    def test_nothing_locked(self):
        entity = alice()
        unlock.unlock(entity, listSource([b'hello']))
        result = unlock.unlock(entity, listSource([]))
        assert result.attempts == 0
        assert result.subkeys == []

class TestSources:
    def test_stream_source(self):
        source = unlock.stream_source(io.StringIO('\nhello\r\n'))
        assert source() is None
        assert source() == b'hello'
        with pytest.raises(EOFError):
            source()

    def test_binary_stream(self):
        source = unlock.stream_source(io.BytesIO(b'hello\n'))
        assert source() == b'hello'

    def test_prompt_source(self, monkeypatch):
        answers = ['', 'hello']
        monkeypatch.setattr(unlock.getpass, 'getpass', lambda prompt: answers.pop(0))
        source = unlock.prompt_source()
        assert source() is None
        assert source() == b'hello'

    def test_remembering(self):
        source = unlock.Remembering(listSource([b'wrong', None, b'hello']))
        entity = alice()
        unlock.unlock(entity, source)
        assert source.passphrase == b'hello'
