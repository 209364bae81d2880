"""Utilities for ldaptestserver.

    Lookups of the OpenLDAP binaries and directories, port allocation,
    DN helpers.
"""
import os
import socket
import secrets
import shutil
import string
import logging
from pathlib import Path
from urllib.parse import quote

import ldap
import ldap.dn

from ldaptestserver._constants import DEFAULT_PROBE_TIMEOUT, SBIN_DIRS
from ldaptestserver.exceptions import ConfigError, ResourceError

log = logging.getLogger(__name__)

#
# Various searchs to be used with search_s
#   eg conn.search_s(*searchs['NAMINGCONTEXTS'])
#
searchs = {
    'NAMINGCONTEXTS': ('', ldap.SCOPE_BASE, '(objectclass=*)', ['namingContexts']),
}

#
# DN utilities
#


def is_a_dn(dn):
    """Returns True if the given string is a non empty DN, False otherwise."""
    return bool(dn) and dn.find("=") > 0 and ldap.dn.is_dn(dn)


#
# functions using sockets
#
def _sockaddr(host, port):
    try:
        family, socktype, proto, _, addr = socket.getaddrinfo(
            host, port, 0, socket.SOCK_STREAM)[0]
    except socket.gaierror as e:
        raise ResourceError("cannot resolve %r: %s" % (host, e))
    return family, socktype, proto, addr


def getfreeport(host):
    """Return a TCP port that is free on host right now.

        Nothing is held after returning, so another process may grab the
        port before slapd binds it: callers must be ready to retry.
    """
    family, socktype, proto, addr = _sockaddr(host, 0)
    try:
        with socket.socket(family, socktype, proto) as sock:
            sock.bind(addr)
            port = sock.getsockname()[1]
    except OSError as e:
        raise ResourceError("cannot allocate a port on %s: %s" % (host, e))
    log.debug("allocated port %s:%d" % (host, port))
    return port


def is_tcp_port_open(host, port, timeout=DEFAULT_PROBE_TIMEOUT):
    """True if something accepts connections on host:port."""
    try:
        family, socktype, proto, addr = _sockaddr(host, port)
    except ResourceError:
        return False
    try:
        with socket.create_connection(addr[:2], timeout=timeout):
            return True
    except OSError:
        return False


#
# filesystem lookups
#
def find_binary(name, envvar=None):
    """Return the path of an OpenLDAP binary.

        Looks in envvar first, then PATH, then the usual sbin/libexec
        directories. Raises ConfigError if nothing is found.
    """
    if envvar and os.environ.get(envvar):
        path = os.environ[envvar]
        if not os.access(path, os.X_OK):
            raise ConfigError("%s=%s is not executable" % (envvar, path))
        return path
    searchpath = os.pathsep.join([os.environ.get('PATH', '')] + list(SBIN_DIRS))
    path = shutil.which(name, path=searchpath)
    if not path:
        raise ConfigError("no %s binary found. Is openldap installed?" % name)
    return path


def find_dir(candidates, envvar=None):
    """Return the first existing directory, or None."""
    if envvar and os.environ.get(envvar):
        return Path(os.environ[envvar])
    for dirname in candidates:
        if os.path.isdir(dirname):
            return Path(dirname)
    return None


def list_ldif_files(dirname):
    """Sorted list of the *.ldif files of dirname."""
    dirpath = Path(dirname)
    if not dirpath.is_dir():
        raise ConfigError("directory %s does not exist" % dirpath)
    ret = []
    for path in dirpath.iterdir():
        if path.suffix == '.ldif' and path.is_file():
            ret.append(path)
        else:
            log.warning("Ignoring file %s" % path)
    return sorted(ret)


def file_url(path):
    """file:// URL for path, as used by slapd include directives."""
    return "file://" + quote(str(Path(path).absolute()))


def random_password(length):
    alphabet = string.ascii_letters + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(length))
