"""Throwaway OpenLDAP servers for test suites.

    You will access this from:

        from ldaptestserver import LdapServerBuilder

        with LdapServerBuilder("dc=planetexpress,dc=com").add(1, LDIF).run() as server:
            conn = server.connect()
            conn.search_s(server.base_dn, ldap.SCOPE_SUBTREE, '(objectclass=person)')

    Every server has its own temporary directory, its own ports and its own
    slapd process; stop() (or leaving the with block) kills the process and
    removes the directory.
"""
import shutil
import weakref
import logging

import ldap

from ldaptestserver._constants import STATE_RUNNING
from ldaptestserver.exceptions import (
    Error,
    InvalidArgumentError,
    StateError,
    ResourceError,
    ConfigError,
    LoadError,
    StartupError,
    StartupFailedError,
    StartupTimeoutError,
    MutationError,
)

__version__ = '0.3.0'

log = logging.getLogger(__name__)


class Server(object):
    """A running slapd and the workspace it lives in.

        add/modify/delete and their *_file variants are the methods of the
        Mutator, run as the root DN unless binddn/bindpw are given.
    """
    proxied_methods = 'add modify delete add_file modify_file delete_file'.split()

    def __init__(self, workspace, supervisor, mutator, base_dn, root_dn, root_pw,
                 ssl_cert_pem=None, cert_file=None):
        self.workspace = workspace
        self.supervisor = supervisor
        self.mutator = mutator
        self.base_dn = base_dn
        self.root_dn = root_dn
        self.root_pw = root_pw
        self.ssl_cert_pem = ssl_cert_pem
        self.cert_file = cert_file
        supervisor.mark_running()
        # a server nobody stops is disposed of when it is garbage collected
        # or at interpreter exit, whichever comes first
        self._finalizer = weakref.finalize(self, _dispose, supervisor, workspace)

    def __getattr__(self, name):
        if name in Server.proxied_methods:
            method = getattr(self.mutator, name)

            def proxy(*args, **kwargs):
                method(*args, **kwargs)
                return self
            proxy.__doc__ = method.__doc__
            return proxy
        raise AttributeError(name)

    def __repr__(self):
        return "<Server %s %s>" % (self.endpoint, self.state)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.stop()

    @property
    def endpoint(self):
        return self.supervisor.endpoint

    @property
    def host(self):
        return self.endpoint.host

    @property
    def port(self):
        return self.endpoint.port

    @property
    def ssl_port(self):
        return self.endpoint.ssl_port

    @property
    def url(self):
        return self.endpoint.url

    @property
    def ssl_url(self):
        return self.endpoint.ssl_url

    @property
    def urls(self):
        return self.endpoint.urls

    @property
    def credentials(self):
        """(root_dn, root_pw), as for simple_bind_s()."""
        return self.root_dn, self.root_pw

    @property
    def server_dir(self):
        return self.workspace.path

    @property
    def state(self):
        return self.supervisor.state

    @property
    def pid(self):
        return self.supervisor.pid

    def connect(self, tls=False, binddn=None, bindpw=None):
        """Return a python-ldap connection bound as the root DN.

            @param tls - connect to the ldaps:// listener, trusting only
                         the certificate of this server
        """
        if self.state != STATE_RUNNING:
            raise StateError("server is %s" % self.state)
        url = self.ssl_url if tls else self.url
        if url is None:
            raise StateError("server has no %s listener" % ('ldaps' if tls else 'ldap'))
        conn = ldap.initialize(url)
        conn.set_option(ldap.OPT_PROTOCOL_VERSION, ldap.VERSION3)
        if tls:
            conn.set_option(ldap.OPT_X_TLS_CACERTFILE, str(self.cert_file))
            conn.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)
            conn.set_option(ldap.OPT_X_TLS_NEWCTX, 0)
        if binddn is None:
            binddn, bindpw = self.credentials
        conn.simple_bind_s(binddn, bindpw)
        return conn

    def clone_to_dir(self, dest):
        """Copy the server files (config, database, certificates) to dest.

            dest must not exist. The copy of a running database may be
            inconsistent if writes are in progress.
        """
        if self.workspace.destroyed:
            raise StateError("server directory %s is gone" % self.workspace)
        try:
            shutil.copytree(str(self.workspace.path), str(dest))
        except OSError as e:
            raise ResourceError("cannot copy %s to %s: %s" % (self.workspace, dest, e))
        log.debug("copied %s to %s" % (self.workspace, dest))
        return dest

    def stop(self):
        """Stop slapd and remove the server directory.

            Can be called any number of times, from any thread. Never raises.
        """
        if not self._finalizer():
            return False
        log.info("stopped server %s" % self.endpoint)
        return True


def _dispose(supervisor, workspace):
    try:
        supervisor.stop()
    finally:
        workspace.destroy()
    return True


from ldaptestserver.builder import LdapServerBuilder  # noqa: E402
