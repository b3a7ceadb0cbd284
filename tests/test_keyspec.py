import os.path
import pytest
import OnionPGP
from OnionPGP import keyring, keyspec

def secretEntities():
    return keyring.read_keyring(os.path.dirname(__file__) + '/data/secring.gpg')

class FakeKey(object):
    def __init__(self, key_id):
        self._key_id = key_id

    def key_id(self):
        return self._key_id

class TestClassify:
    def test_short_key_id(self):
        assert keyspec.classify('0xABCDEF01') == keyspec.ShortKeyId(0xABCDEF01)

    def test_long_key_id(self):
        assert keyspec.classify('0x0123456789ABCDEF') == keyspec.LongKeyId(0x0123456789ABCDEF)

    def test_upper_case_prefix(self):
        assert keyspec.classify('0Xabcdef01') == keyspec.ShortKeyId(0xABCDEF01)

    def test_name(self):
        assert keyspec.classify('alice') == keyspec.NameSubstring('alice')

    def test_hex_without_prefix_is_a_name(self):
        assert keyspec.classify('1234ABCD') == keyspec.NameSubstring('1234ABCD')

    def test_empty(self):
        with pytest.raises(OnionPGP.InvalidIdentifierLength):
            keyspec.classify('')

    def test_wrong_length(self):
        with pytest.raises(OnionPGP.InvalidIdentifierLength):
            keyspec.classify('0xABC')
        with pytest.raises(OnionPGP.InvalidIdentifierLength):
            keyspec.classify('0x0123456789')

    def test_not_hex(self):
        with pytest.raises(OnionPGP.ParseError) as e:
            keyspec.classify('0xGHIJKLMN')
        assert not isinstance(e.value, OnionPGP.InvalidIdentifierLength)

    def test_bare_prefix(self):
        with pytest.raises(OnionPGP.ParseError):
            keyspec.classify('0x')

    def test_str(self):
        assert str(keyspec.classify('0xabcdef01')) == '0xABCDEF01'
        assert str(keyspec.classify('Carol')) == 'Carol'

class TestMatches:
    def test_primary_key_id(self):
        entities = secretEntities()
        found = keyspec.find_all(entities, keyspec.classify('0x6E401D7F'))
        assert found == [entities[2]]

    def test_subkey_key_id(self):
        entities = secretEntities()
        found = keyspec.find_all(entities, keyspec.classify('0x513E98D981F06816'))
        assert found == [entities[1]]
        assert keyspec.find_all(entities, keyspec.classify('0x81F06816')) == [entities[1]]

    def test_name_substring(self):
        entities = secretEntities()
        assert keyspec.find_all(entities, keyspec.classify('hidden service')) == [entities[0]]
        assert keyspec.find_all(entities, keyspec.classify('ALICE')) == []

    def test_order_and_idempotence(self):
        entities = secretEntities()
        spec = keyspec.classify('example.org')
        found = keyspec.find_all(entities, spec)
        assert found == entities
        assert keyspec.find_all(found, spec) == found

    def test_short_id_collision(self):
        first = keyring.Entity(FakeKey(0x000000011234ABCD))
        second = keyring.Entity(FakeKey(0x00000002AAAAAAAA), subkeys=[keyring.Subkey(FakeKey(0x000000031234ABCD))])
        third = keyring.Entity(FakeKey(0x000000041234ABCE))
        found = keyspec.find_all([first, second, third], keyspec.classify('0x1234ABCD'))
        assert found == [first, second]
        assert keyspec.find_all([first, second, third], keyspec.classify('0x000000011234ABCD')) == [first]

    def test_key_matches(self):
        assert keyspec.key_matches(keyspec.ShortKeyId(0x1234ABCD), 0xFFFFFFFF1234ABCD)
        assert not keyspec.key_matches(keyspec.LongKeyId(0x1234ABCD), 0xFFFFFFFF1234ABCD)
        assert not keyspec.key_matches(keyspec.NameSubstring('1234ABCD'), 0x1234ABCD)

class TestFindOne:
    def test_one(self):
        entities = secretEntities()
        assert keyspec.find_one(entities, keyspec.classify('Bob')) is entities[1]

    def test_none(self):
        with pytest.raises(OnionPGP.NoMatch):
            keyspec.find_one(secretEntities(), keyspec.classify('Zed'))

    def test_ambiguous(self):
        entities = secretEntities()
        with pytest.raises(OnionPGP.AmbiguousMatch) as e:
            keyspec.find_one(entities, keyspec.classify('example.org'))
        assert e.value.candidates == entities
