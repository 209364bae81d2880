"""Provision a slapd instance step by step.

    LdapServerBuilder collects what the instance needs, then run() does

        workspace -> ports -> certificate -> cn=config rendering
            -> slapadd of every layer -> slapd start -> Server

    and hands back a running Server. Whatever run() acquired before a
    failure is released before the error propagates.

    The LDIF registered with add*() methods belongs to a layer (a slapd
    database number, 0 being cn=config) and is loaded offline with slapadd
    before slapd starts. Layers are loaded in ascending order, payloads of
    the same layer in registration order.
"""
import logging
from collections import defaultdict

from ldaptestserver import utils
from ldaptestserver import certs
from ldaptestserver import template
from ldaptestserver._constants import (
    CONFIG_DIRNAME,
    DB_DIRNAME,
    DEFAULT_HOST,
    DEFAULT_LOAD_TIMEOUT,
    DEFAULT_MUTATION_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_ROOTDN_RDN,
    DEFAULT_ROOTPW_LENGTH,
    DEFAULT_SLAPD_DEBUG,
    DEFAULT_START_ATTEMPTS,
    DEFAULT_STARTUP_TIMEOUT,
    DEFAULT_STOP_TIMEOUT,
    ENV_LDAPMODIFY,
    ENV_SLAPADD,
    ENV_SLAPD,
    INIT_LDIF_FILENAME,
    CONFIG_LAYER,
    DATA_LAYER,
)
from ldaptestserver.exceptions import (
    ConfigError,
    InvalidArgumentError,
    StateError,
)
from ldaptestserver.loader import LdifPayload, OfflineLoader
from ldaptestserver.mutator import Mutator
from ldaptestserver.supervisor import Endpoint, Supervisor
from ldaptestserver.workspace import Workspace

log = logging.getLogger(__name__)

# kinds of registered LDIF
(TEXT, FILE, TEMPLATE, TEMPLATE_FILE, SYSTEM_FILE) = (
    'text', 'file', 'template', 'template_file', 'system_file')


def _check_layer(layer):
    if isinstance(layer, bool) or not isinstance(layer, int) or layer < 0:
        raise InvalidArgumentError("bad layer %r: must be an integer >= 0" % (layer,))
    return layer


def _check_port(port):
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise InvalidArgumentError("bad port %r" % (port,))
    return port


def _check_positive(name, value):
    if value is None or value <= 0:
        raise InvalidArgumentError("%s must be > 0, got %r" % (name, value))
    return value


class LdapServerBuilder(object):
    """Configure then run() an ephemeral slapd.

        LdapServerBuilder(base_dn) starts from the built-in cn=config
        (core, cosine, inetorgperson and nis schemas plus an mdb database
        for base_dn). LdapServerBuilder.empty() starts from nothing: the
        caller registers the whole layer 0.

        Every setter returns the builder, eg.

            server = (LdapServerBuilder("dc=example,dc=com")
                      .add(1, BASE_LDIF)
                      .run())
    """

    def __init__(self, base_dn, root_dn=None, root_pw=None, init_ldif=template.INIT_LDIF):
        if not utils.is_a_dn(base_dn):
            raise InvalidArgumentError("invalid base DN %r" % (base_dn,))
        self._base_dn = base_dn
        self._root_dn = None
        self._root_pw = None
        self.root_dn(root_dn or "%s,%s" % (DEFAULT_ROOTDN_RDN, base_dn))
        self.root_pw(root_pw or utils.random_password(DEFAULT_ROOTPW_LENGTH))

        self._bind_addr = DEFAULT_HOST
        self._port = None
        self._ssl_port = None
        self._ssl = True
        self._ssl_cert_key = None
        self._system_schema_dir = None

        self._startup_timeout = DEFAULT_STARTUP_TIMEOUT
        self._poll_interval = DEFAULT_POLL_INTERVAL
        self._start_attempts = DEFAULT_START_ATTEMPTS
        self._stop_timeout = DEFAULT_STOP_TIMEOUT
        self._load_timeout = DEFAULT_LOAD_TIMEOUT
        self._mutation_timeout = DEFAULT_MUTATION_TIMEOUT
        self._debug_level = DEFAULT_SLAPD_DEBUG

        # [(layer, kind, value)] in registration order
        self._includes = []
        self._consumed = False
        if init_ldif:
            self.add_template(CONFIG_LAYER, init_ldif)

    @classmethod
    def empty(cls, base_dn, root_dn, root_pw):
        """A builder with no LDIF at all, not even cn=config."""
        return cls(base_dn, root_dn, root_pw, init_ldif=None)

    def __repr__(self):
        return "<LdapServerBuilder %s, %d payload(s)>" % (self._base_dn, len(self._includes))

    #
    # credentials and listeners
    #
    def root_dn(self, root_dn):
        if not utils.is_a_dn(root_dn):
            raise InvalidArgumentError("invalid root DN %r" % (root_dn,))
        self._root_dn = root_dn
        return self

    def root_pw(self, root_pw):
        if not root_pw:
            raise InvalidArgumentError("root password must not be empty")
        self._root_pw = root_pw
        return self

    def bind_addr(self, host):
        if not host:
            raise InvalidArgumentError("bind address must not be empty")
        self._bind_addr = host
        return self

    def port(self, port):
        self._port = _check_port(port)
        return self

    def ssl_port(self, port):
        self._ssl_port = _check_port(port)
        self._ssl = True
        return self

    def disable_ssl(self):
        """Listen on ldap:// only."""
        self._ssl = False
        self._ssl_port = None
        return self

    def ssl_certificates(self, cert_pem, key_pem):
        """Use this PEM pair instead of generating a self-signed one."""
        if not cert_pem or not key_pem:
            raise InvalidArgumentError("certificate and key must not be empty")
        self._ssl_cert_key = (cert_pem, key_pem)
        return self

    #
    # LDIF
    #
    def _include(self, layer, kind, value):
        self._includes.append((_check_layer(layer), kind, value))
        return self

    def add(self, layer, text):
        """Load text as is."""
        return self._include(layer, TEXT, text)

    def add_file(self, layer, path):
        """Load the file as is."""
        return self._include(layer, FILE, path)

    def add_template(self, layer, text):
        """Load text after replacing its @NAME@ placeholders."""
        return self._include(layer, TEMPLATE, text)

    def add_template_file(self, layer, path):
        return self._include(layer, TEMPLATE_FILE, path)

    def add_system_file(self, layer, name):
        """Load a file of the slapd schema directory, eg. 'collective.ldif'."""
        return self._include(layer, SYSTEM_FILE, name)

    def schema_dir(self, dirname):
        """Add every *.ldif file of dirname to cn=config."""
        for path in utils.list_ldif_files(dirname):
            self.add_file(CONFIG_LAYER, path)
        return self

    def data_dir(self, dirname):
        """Add every *.ldif file of dirname to the first database."""
        for path in utils.list_ldif_files(dirname):
            self.add_file(DATA_LAYER, path)
        return self

    def system_schema_dir(self, dirname):
        """Where @SCHEMADIR@ and add_system_file() point to."""
        self._system_schema_dir = dirname
        return self

    #
    # timing
    #
    def startup_timeout(self, seconds):
        self._startup_timeout = _check_positive('startup_timeout', seconds)
        return self

    def poll_interval(self, seconds):
        self._poll_interval = _check_positive('poll_interval', seconds)
        return self

    def start_attempts(self, attempts):
        self._start_attempts = int(_check_positive('start_attempts', attempts))
        return self

    def stop_timeout(self, seconds):
        self._stop_timeout = _check_positive('stop_timeout', seconds)
        return self

    def load_timeout(self, seconds):
        self._load_timeout = _check_positive('load_timeout', seconds)
        return self

    def mutation_timeout(self, seconds):
        self._mutation_timeout = _check_positive('mutation_timeout', seconds)
        return self

    def debug_level(self, level):
        """slapd -d value; the output ends up in slapd.log."""
        self._debug_level = int(level)
        return self

    #
    # run
    #
    def _endpoint(self):
        """Pick the listener ports. Returns (endpoint, names of allocated ports)."""
        host = self._bind_addr
        allocated = []
        port = self._port
        if port is None:
            port = utils.getfreeport(host)
            allocated.append('port')
        ssl_port = None
        if self._ssl:
            ssl_port = self._ssl_port
            if ssl_port is None:
                ssl_port = utils.getfreeport(host)
                # the first port is released, the OS may hand it out again
                while ssl_port == port:
                    ssl_port = utils.getfreeport(host)
                allocated.append('ssl_port')
        endpoint = Endpoint(host, port, ssl_port)
        log.debug("listening on %s" % endpoint)
        return endpoint, allocated

    def _payloads(self, subs, schema_dir):
        """Resolve the registrations into LdifPayloads, in registration order."""
        seqs = defaultdict(int)
        payloads = []
        for layer, kind, value in self._includes:
            if kind == TEXT:
                content, source = value, '<text>'
            elif kind == TEMPLATE:
                content, source = template.render(value, subs), '<template>'
            elif kind == FILE:
                content, source = _read(value), str(value)
            elif kind == TEMPLATE_FILE:
                content, source = template.render(_read(value), subs), str(value)
            else:
                path = schema_dir / value
                content, source = _read(path), str(path)
            payloads.append(LdifPayload(layer, seqs[layer], content, source))
            seqs[layer] += 1
        return payloads

    def run(self):
        """Provision and start the instance. Returns a running Server.

            A builder can be run only once.

            @raise ResourceError, ConfigError, LoadError, StartupError
        """
        if self._consumed:
            raise StateError("this builder has already been run")
        self._consumed = True

        # look everything up before touching the filesystem
        slapd = utils.find_binary('slapd', ENV_SLAPD)
        slapadd = utils.find_binary('slapadd', ENV_SLAPADD)
        ldapmodify = utils.find_binary('ldapmodify', ENV_LDAPMODIFY)
        schema_dir = template.find_schema_dir(self._system_schema_dir)
        module_dir = template.find_module_dir()

        workspace = Workspace.create()
        supervisor = None
        try:
            endpoint, allocated = self._endpoint()

            if self._ssl_cert_key:
                cert_pem, key_pem = self._ssl_cert_key
            else:
                cert_pem, key_pem = certs.generate_cert([self._bind_addr])
            cert_file, key_file = certs.write_cert(workspace, cert_pem, key_pem)

            subs = template.substitutions(
                workspace, self._base_dn, self._root_dn, self._root_pw,
                schema_dir, cert_file, key_file, module_dir)
            payloads = self._payloads(subs, schema_dir)
            # keep the rendered cn=config around for post mortem
            template.write(workspace, INIT_LDIF_FILENAME, '\n'.join(
                p.content for p in payloads if p.layer == CONFIG_LAYER))

            config_dir = workspace.makedir(CONFIG_DIRNAME)
            workspace.makedir(DB_DIRNAME)
            OfflineLoader(slapadd, config_dir, workspace, self._load_timeout).load(payloads)

            command = [slapd, '-F', str(config_dir), '-d', str(self._debug_level)]
            supervisor = Supervisor(command, endpoint, workspace,
                                    timeout=self._startup_timeout,
                                    poll_interval=self._poll_interval,
                                    attempts=self._start_attempts,
                                    stop_timeout=self._stop_timeout,
                                    allocated=allocated)
            supervisor.start()
            mutator = Mutator(ldapmodify, supervisor, self._root_dn, self._root_pw,
                              cert_file=cert_file, timeout=self._mutation_timeout)
            server = Server(workspace, supervisor, mutator, self._base_dn,
                            self._root_dn, self._root_pw, cert_pem, cert_file)
        except BaseException:
            if supervisor is not None:
                supervisor.stop()
            workspace.destroy()
            raise
        log.info("started slapd pid %s on %s in %s" % (supervisor.pid, endpoint, workspace))
        return server


def _read(path):
    try:
        with open(path) as f:
            return f.read()
    except OSError as e:
        raise ConfigError("cannot read LDIF file %s: %s" % (path, e))


from ldaptestserver import Server  # noqa: E402
