import OnionPGP.binder
import OnionPGP.keyring

entity = OnionPGP.keyring.read_keyring('key')[0]

print("Verifying subkey bindings of " + entity.primary_key.fingerprint())
print("A subkey without a valid binding does not belong to the key")

for subkey in entity.subkeys:
    if OnionPGP.binder.verify_binding(entity, subkey):
        print("Key claims subkey: " + subkey.public_key.fingerprint())
    else:
        print("Unbound subkey: " + subkey.public_key.fingerprint())
