""" gpg2hs: Tor hidden service files from an RSA subkey in a GnuPG keyring
    hs2gpg: a Tor hidden service key as a new subkey of an OpenPGP key
"""
import argparse
import contextlib
import logging
import os
import sys
import OnionPGP
from OnionPGP import binder, keyring, keyspec, onion, pem, unlock
from OnionPGP.cryptography import Wrapper

logger = logging.getLogger(__name__)

BANNER = "OnionPGP: OpenPGP keys for Tor hidden services"

class UsageError(Exception):
    pass

class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        raise UsageError(message)

def _info(*objs):
    print(*objs, file=sys.stderr)

class _StderrHandler(logging.StreamHandler):
    """ Writes to whatever sys.stderr is at the time of the record """
    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value):
        pass

def _setup_logging(args):
    log = logging.getLogger('OnionPGP')
    if args.verbose:
        log.setLevel(logging.DEBUG)
    elif args.quiet:
        log.setLevel(logging.ERROR)
    else:
        log.setLevel(logging.INFO)

    if not any(isinstance(h, _StderrHandler) for h in log.handlers):
        handler = _StderrHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        log.addHandler(handler)
    logger.info(BANNER)

@contextlib.contextmanager
def _step(name):
    """ Tag any error escaping the block with the step that failed """
    logger.debug("Step: %s", name)
    try:
        yield
    except (OnionPGP.OnionPGPException, EnvironmentError, EOFError) as e:
        if not hasattr(e, 'step'):
            e.step = name
        raise

def _gnupg_home():
    return os.environ.get('GNUPGHOME') or os.path.join('~', '.gnupg')

def _add_logging_arguments(parser):
    parser.add_argument(
        "--verbose", action='store_true',
        help="log debugging details to stderr",
    )
    parser.add_argument(
        "-q", "--quiet", action='store_true',
        help="only log errors to stderr",
    )

def _print_entity(entity):
    print("   KeyId: 0x%s" % entity.primary_key.keyid_hex())
    for identity in entity.identities:
        if identity.name:
            print("   UID: %s" % identity.name)

def gpg2hs_main(args, passphrase_source=None):
    parser = _ArgumentParser(prog='gpg2hs', description="Tor hidden service files from an OpenPGP RSA subkey")
    parser.add_argument(
        "-k", metavar="KEYID", dest='keyid', required=True,
        help="key to be converted/verified (either 0x0123ABCD, 0x0123456789ABCDEF or part of a user id)",
    )
    mode_group = parser.add_mutually_exclusive_group(required=True)
    mode_group.add_argument(
        "-v", dest='verify', action='store_true',
        help="[verify] onion address from public key",
    )
    mode_group.add_argument(
        "-c", dest='create', action='store_true',
        help="[create] hidden service files",
    )
    parser.add_argument(
        "-s", metavar="SECRING", dest='secring',
        default=os.path.join(_gnupg_home(), 'secring.gpg'),
        help="keyring with secret keys (create only)",
    )
    parser.add_argument(
        "-p", metavar="PUBRING", dest='pubring',
        default=os.path.join(_gnupg_home(), 'pubring.gpg'),
        help="keyring with public keys (verify only)",
    )
    parser.add_argument(
        "-t", metavar="TARGET", dest='target', default='.',
        help="target directory for output (create only)",
    )
    _add_logging_arguments(parser)
    args = parser.parse_args(args)
    _setup_logging(args)

    with _step("parsing the key identifier"):
        spec = keyspec.classify(args.keyid)

    if args.verify:
        with _step("reading the public keyring"):
            entities = keyring.read_keyring(os.path.expanduser(args.pubring))
        found = keyspec.find_all(entities, spec)
        if not found:
            with _step("matching keys"):
                raise OnionPGP.NoMatch("No key matches %s" % spec)
        for i, entity in enumerate(found):
            print("Key #%d:" % (i + 1))
            _print_entity(entity)
            for subkey in onion.suitable_subkeys(entity):
                print("   ==> Onion address is '%s.onion'" % onion.derive(subkey.public_key))
        return found

    with _step("reading the secret keyring"):
        entities = keyring.read_keyring(os.path.expanduser(args.secring))
    with _step("matching keys"):
        entity = keyspec.find_one(entities, spec)
    print("Key found:")
    _print_entity(entity)

    with _step("selecting the subkey"):
        subkey = onion.select_subkey(entity, spec)
    print("Using subkey 0x%s" % subkey.public_key.keyid_hex())

    with _step("unlocking the key"):
        unlock.unlock(entity, passphrase_source or unlock.prompt_source())
        if subkey.private_key is None or not subkey.private_key.has_secret():
            raise OnionPGP.NoPrivateKeyData("No secret key data for subkey 0x%s" % subkey.public_key.keyid_hex())

    with _step("converting the subkey"):
        private_key = Wrapper.convert_private_key(subkey.private_key)
        address = onion.derive(private_key)

    target = os.path.expanduser(args.target)
    with _step("writing the hidden service files"):
        onion.write_hostname(target, address)
        pem.write_private_key(target, private_key)

    print()
    print("Onion address: %s.onion" % address)
    return address

def _protect(entity, passphrase):
    """ Protect every unlocked secret key of entity with passphrase again """
    if isinstance(entity.primary_key, OnionPGP.SecretKeyPacket) and entity.primary_key.has_secret():
        entity.primary_key = Wrapper(entity.primary_key).encrypt_secret_key(passphrase)
    for subkey in entity.subkeys:
        if subkey.private_key is not None and subkey.private_key.has_secret():
            subkey.private_key = Wrapper(subkey.private_key).encrypt_secret_key(passphrase)

def hs2gpg_main(args, passphrase_source=None):
    parser = _ArgumentParser(prog='hs2gpg', description="Add a Tor hidden service key to an OpenPGP key as a subkey")
    parser.add_argument(
        "-i", metavar="KEYFILE", dest='keyfile', default='private_key',
        help="hidden service private key",
    )
    parser.add_argument(
        "-o", metavar="GPGKEY", dest='gpgkey', default='key.asc',
        help="ASCII-armored secret key to add the subkey to (rewritten in place)",
    )
    parser.add_argument(
        "--no-protect", dest='protect', action='store_false',
        help="write the secret keys without passphrase protection",
    )
    _add_logging_arguments(parser)
    args = parser.parse_args(args)
    _setup_logging(args)

    with _step("reading the hidden service key"):
        private_key = pem.read_private_key(os.path.expanduser(args.keyfile))
    address = onion.derive(private_key, strict=False)
    logger.info("Hidden service key for %s.onion", address)

    path = os.path.expanduser(args.gpgkey)
    with _step("reading the OpenPGP key"):
        entities = keyring.read_keyring(path)
        if not entities:
            raise OnionPGP.NoMatch("No key in %s" % path)
        if len(entities) > 1:
            raise OnionPGP.AmbiguousMatch("%d keys in %s, expected one" % (len(entities), path), entities)
    entity = entities[0]

    source = unlock.Remembering(passphrase_source or unlock.prompt_source())
    with _step("unlocking the key"):
        unlock.unlock(entity, source)

    with _step("binding the subkey"):
        binder.bind(entity, private_key)

    if args.protect and source.passphrase is not None:
        with _step("protecting the secret keys"):
            _protect(entity, source.passphrase)

    with _step("writing the OpenPGP key"):
        keyring.write_keyring(path, [entity], armor=True, secret=True)
    print("Added subkey 0x%s (%s.onion) to key 0x%s" % (
        entity.subkeys[-1].public_key.keyid_hex(), address, entity.primary_key.keyid_hex()))
    return entity

EXIT_CODES = [
    (UsageError, 1),
    (OnionPGP.ParseError, 1),
    ((OnionPGP.NoMatch, OnionPGP.AmbiguousMatch, OnionPGP.NoSuitableSubkey), 2),
    ((OnionPGP.UnlockFailed, EOFError), 3),
    ((OnionPGP.FormatError, OnionPGP.AddressError), 4),
    (OnionPGP.SigningError, 5),
    (EnvironmentError, 6),
    (OnionPGP.OnionPGPException, 4), # Unreadable keyrings
]

def run(main, args=None, prog=None):
    """ Run main, turning its errors into a message and an exit code """
    prog = prog or os.path.basename(sys.argv[0])
    try:
        main(sys.argv[1:] if args is None else args)
    except Exception as e:
        for kinds, code in EXIT_CODES:
            if isinstance(e, kinds):
                break
        else:
            raise
        step = getattr(e, 'step', None)
        if step:
            _info("%s: %s failed: %s" % (prog, step, e))
        else:
            _info("%s: %s" % (prog, e))
        for candidate in getattr(e, 'candidates', []):
            _info("   candidate: %r" % (candidate,))
        return code
    return 0

def gpg2hs(args=None):
    sys.exit(run(gpg2hs_main, args, 'gpg2hs'))

def hs2gpg(args=None):
    sys.exit(run(hs2gpg_main, args, 'hs2gpg'))
