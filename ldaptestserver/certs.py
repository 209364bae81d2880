"""Self-signed TLS material for the ldaps listener."""
import os
import datetime
import ipaddress
import logging

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ldaptestserver._constants import (
    CERT_FILENAME,
    DEFAULT_CERT_KEY_SIZE,
    DEFAULT_CERT_VALIDITY_DAYS,
    KEY_FILENAME,
)
from ldaptestserver.exceptions import ResourceError

log = logging.getLogger(__name__)

LOOPBACK_NAMES = ('localhost', '127.0.0.1', '::1')


def _general_name(name):
    try:
        return x509.IPAddress(ipaddress.ip_address(name))
    except ValueError:
        return x509.DNSName(name)


def generate_cert(hostnames=(), validity_days=DEFAULT_CERT_VALIDITY_DAYS):
    """Return (cert_pem, key_pem) for a fresh self-signed certificate.

        The subject alternative names cover hostnames plus the loopback
        identities. Both values are str.
    """
    names = []
    for name in list(hostnames) + list(LOOPBACK_NAMES):
        if name and name not in names:
            names.append(name)

    try:
        pkey = rsa.generate_private_key(
            public_exponent=65537, key_size=DEFAULT_CERT_KEY_SIZE)
        subject = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, names[0]),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, 'ldaptestserver'),
        ])
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(pkey.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(hours=1))
            .not_valid_after(now + datetime.timedelta(days=validity_days))
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
                critical=False,
            )
            .add_extension(
                x509.SubjectAlternativeName([_general_name(n) for n in names]),
                critical=False,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(pkey.public_key()),
                critical=False,
            )
            .sign(pkey, hashes.SHA256())
        )
    except (ValueError, TypeError) as e:
        raise ResourceError("cannot generate certificate: %s" % e)

    cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode('ascii')
    key_pem = pkey.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode('ascii')
    log.debug("generated self-signed certificate for %s" % ', '.join(names))
    return cert_pem, key_pem


def write_cert(workspace, cert_pem, key_pem):
    """Write the pair to the fixed file names of the workspace.

        Returns (cert_file, key_file).
    """
    cert_file = workspace.join(CERT_FILENAME)
    key_file = workspace.join(KEY_FILENAME)
    try:
        with open(cert_file, 'w') as f:
            f.write(cert_pem)
        fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w') as f:
            f.write(key_pem)
    except OSError as e:
        raise ResourceError("cannot write certificate files: %s" % e)
    return cert_file, key_file
