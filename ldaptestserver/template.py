"""Render the slapd configuration of an instance.

    Templates are LDIF text with @NAME@ placeholders. The built-in
    INIT_LDIF is the cn=config database (layer 0) of every instance made
    with LdapServerBuilder(base_dn); callers can register their own
    templates for any layer.
"""
import os
import re
import logging
from pathlib import Path

from ldaptestserver import utils
from ldaptestserver._constants import (
    ARGS_FILENAME,
    DB_DIRNAME,
    PID_FILENAME,
    POSSIBLE_MODULE_DIRS,
    POSSIBLE_SCHEMA_DIRS,
    SYSTEM_SCHEMAS,
    ENV_MODULE_DIR,
    ENV_SCHEMA_DIR,
)
from ldaptestserver.exceptions import ConfigError, ResourceError

log = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r'@([A-Z][A-Z_]*)@')

INIT_LDIF = """dn: cn=config
objectClass: olcGlobal
cn: config
olcPidFile: @WORKDIR@/""" + PID_FILENAME + """
olcArgsFile: @WORKDIR@/""" + ARGS_FILENAME + """
olcTLSCertificateFile: @CERTFILE@
olcTLSCertificateKeyFile: @KEYFILE@

@MODULES@dn: cn=schema,cn=config
objectClass: olcSchemaConfig
cn: schema

""" + "".join("include: @SCHEMADIR@/%s.ldif\n" % name for name in SYSTEM_SCHEMAS) + """
dn: olcDatabase={-1}frontend,cn=config
objectClass: olcDatabaseConfig
objectClass: olcFrontendConfig
olcDatabase: {-1}frontend
olcRequires: authc
olcSizeLimit: 500

dn: olcDatabase={0}config,cn=config
objectClass: olcDatabaseConfig
olcDatabase: {0}config
olcAccess: {0}to * by * none

dn: olcDatabase={1}mdb,cn=config
objectClass: olcDatabaseConfig
objectClass: olcMdbConfig
olcDatabase: {1}mdb
olcDbDirectory: @DBDIR@
olcSuffix: @BASEDN@
olcRootDN: @ROOTDN@
olcRootPW: @ROOTPW@
olcDbIndex: objectClass eq
olcDbMaxSize: 104857600
"""

MODULE_LDIF = """dn: cn=module{0},cn=config
objectClass: olcModuleList
cn: module{0}
olcModulePath: %s
olcModuleLoad: back_mdb

"""


def find_schema_dir(dirname=None):
    """The slapd schema directory, dirname if given.

        @raise ConfigError if none of the usual places exists
    """
    if dirname is not None:
        return Path(dirname)
    schema_dir = utils.find_dir(POSSIBLE_SCHEMA_DIRS, ENV_SCHEMA_DIR)
    if schema_dir is None:
        raise ConfigError("no slapd schema directory found in %s. Is openldap installed?" %
                          ", ".join(POSSIBLE_SCHEMA_DIRS))
    log.debug("using slapd schemas from %s" % schema_dir)
    return schema_dir


def find_module_dir():
    """Directory holding back_mdb when slapd is built with dynamic backends.

        None means the backend is compiled in.
    """
    candidates = [d for d in POSSIBLE_MODULE_DIRS if _has_mdb(d)]
    moddir = utils.find_dir(candidates, ENV_MODULE_DIR)
    if moddir:
        log.debug("using slapd modules from %s" % moddir)
    return moddir


def _has_mdb(dirname):
    return any(os.path.exists(os.path.join(dirname, 'back_mdb' + ext))
               for ext in ('.la', '.so'))


def substitutions(workspace, base_dn, root_dn, root_pw, schema_dir,
                  cert_file, key_file, module_dir=None):
    """Build the placeholder map of an instance.

        @raise ConfigError if schema_dir does not exist
    """
    if schema_dir is None or not schema_dir.is_dir():
        raise ConfigError("schema directory %s does not exist" % schema_dir)
    modules = ''
    if module_dir:
        modules = MODULE_LDIF % module_dir
    return {
        'SCHEMADIR': utils.file_url(schema_dir),
        'WORKDIR': str(workspace.path),
        'DBDIR': str(workspace.join(DB_DIRNAME)),
        'BASEDN': base_dn,
        'ROOTDN': root_dn,
        'ROOTPW': root_pw,
        'CERTFILE': str(cert_file),
        'KEYFILE': str(key_file),
        'MODULES': modules,
    }


def render(text, subs):
    """Replace every @NAME@ of text with subs[NAME].

        @raise ConfigError if a placeholder has no substitution
    """
    missing = set()

    def replace(match):
        name = match.group(1)
        if name not in subs:
            missing.add(name)
            return match.group(0)
        return subs[name]

    rendered = PLACEHOLDER_RE.sub(replace, text)
    if missing:
        raise ConfigError("no substitution for placeholder(s): %s" % ', '.join(
            '@%s@' % name for name in sorted(missing)))
    return rendered


def write(workspace, name, text):
    """Write the rendered text in the workspace and return its path."""
    path = workspace.join(name)
    try:
        with open(path, 'w') as f:
            f.write(text)
    except OSError as e:
        raise ResourceError("cannot write %s: %s" % (path, e))
    return path
