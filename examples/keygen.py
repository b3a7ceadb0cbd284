import getpass
import sys
from cryptography.hazmat.primitives.asymmetric import rsa
import OnionPGP.binder
import OnionPGP.keyring
import OnionPGP.pem
import OnionPGP.unlock

key = rsa.generate_private_key(public_exponent=65537, key_size=1024)
sys.stderr.write(OnionPGP.pem.encode(key))

entity = OnionPGP.keyring.read_keyring('key.asc')[0]
OnionPGP.unlock.unlock(entity, lambda: getpass.getpass().encode('utf-8') or None)
OnionPGP.binder.bind(entity, key)

sys.stdout.write(OnionPGP.enarmor(entity.to_message().to_bytes(), 'PRIVATE KEY BLOCK'))
