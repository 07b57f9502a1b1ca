import datetime
import ipaddress
import logging
import os
import ssl

from typing import Iterable

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from models import TrustMaterial
from exc import CertificateError

LOG = logging.getLogger(__name__)

KEY_SIZE = 2048
VALIDITY = datetime.timedelta(days=365 * 10)


def _private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _key_usage(cert_sign: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=True,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=cert_sign,
        crl_sign=False,
        encipher_only=False,
        decipher_only=False,
    )


def _subject_alt_names(host, alternate_ips, alternate_dns):
    names = []
    try:
        names.append(x509.IPAddress(ipaddress.ip_address(host)))
    except ValueError:
        names.append(x509.DNSName(host))

    names.extend(x509.IPAddress(ipaddress.ip_address(ip)) for ip in alternate_ips)
    names.extend(x509.DNSName(name) for name in alternate_dns)
    return names


def _pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


def generate_self_signed_cert_key(
    host: str,
    alternate_ips: Iterable[str] = (),
    alternate_dns: Iterable[str] = (),
) -> TrustMaterial:
    """Create a throwaway CA and a server certificate for `host` signed by it.

    `host` may be an IP address or a DNS name. Additional subject alternative
    names can be passed in `alternate_ips` and `alternate_dns`.

    Nothing is written to disk. The returned `cert` contains the server
    certificate followed by the CA certificate.
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    timestamp = int(now.timestamp())

    try:
        ca_key = _private_key()
        ca_cert = (
            x509.CertificateBuilder()
            .subject_name(_name(f"{host}-ca@{timestamp}"))
            .issuer_name(_name(f"{host}-ca@{timestamp}"))
            .public_key(ca_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + VALIDITY)
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(_key_usage(cert_sign=True), critical=True)
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key()),
                critical=False,
            )
            .sign(ca_key, hashes.SHA256())
        )

        key = _private_key()
        cert = (
            x509.CertificateBuilder()
            .subject_name(_name(f"{host}@{timestamp}"))
            .issuer_name(ca_cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + VALIDITY)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(_key_usage(cert_sign=False), critical=True)
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
            )
            .add_extension(
                x509.SubjectAlternativeName(
                    _subject_alt_names(host, alternate_ips, alternate_dns)
                ),
                critical=False,
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
                critical=False,
            )
            .sign(ca_key, hashes.SHA256())
        )

        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    except (ValueError, TypeError) as err:
        LOG.error("failed to generate certificates for %s: %s", host, err)
        raise CertificateError(f"failed to generate certificates for {host}: {err}")

    LOG.info("generated self-signed certificate for %s", host)
    return TrustMaterial(
        ca_cert=_pem(ca_cert),
        cert=_pem(cert) + _pem(ca_cert),
        key=key_pem,
    )


def server_ssl_context(
    material: TrustMaterial, client_ca: str | None = None
) -> ssl.SSLContext:
    """Build the listener's SSL context from in-memory trust material.

    If `client_ca` is given, clients presenting a certificate must present one
    signed by it.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)

    # load_cert_chain only accepts paths, so the PEMs go into anonymous
    # memory-backed files reachable through /proc.
    fds = []
    try:
        paths = []
        for name, data in (("tls.crt", material.cert), ("tls.key", material.key)):
            fd = os.memfd_create(name)
            fds.append(fd)
            os.write(fd, data)
            paths.append(f"/proc/self/fd/{fd}")

        context.load_cert_chain(*paths)
    except (ssl.SSLError, OSError) as err:
        raise CertificateError(f"unable to load server certificate: {err}")
    finally:
        for fd in fds:
            os.close(fd)

    if client_ca:
        context.verify_mode = ssl.CERT_OPTIONAL
        try:
            context.load_verify_locations(cadata=client_ca)
        except ssl.SSLError as err:
            raise CertificateError(f"unable to load client CA: {err}")

    return context
