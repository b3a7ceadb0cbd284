import sys
import OnionPGP.keyring
import OnionPGP.onion

for entity in OnionPGP.keyring.read_keyring(sys.argv[1] if len(sys.argv) > 1 else 'pubring.gpg'):
    print(entity.primary_key.fingerprint())
    for identity in entity.identities:
        print("  " + identity.name)

    # Only 1024-bit RSA subkeys can back a v2 hidden service
    for subkey in OnionPGP.onion.suitable_subkeys(entity):
        print("  " + subkey.public_key.keyid_hex() + " " + OnionPGP.onion.hostname(subkey.public_key))
