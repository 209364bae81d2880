DEFAULT_HOST = "127.0.0.1"
DEFAULT_ROOTDN_RDN = "cn=admin"
DEFAULT_ROOTPW_LENGTH = 16
DEFAULT_CERT_VALIDITY_DAYS = 30
DEFAULT_CERT_KEY_SIZE = 2048
DEFAULT_WORKSPACE_PREFIX = "ldaptestserver-"

# Layers: 0 is cn=config (schema), 1 is the first data database
CONFIG_LAYER = 0
DATA_LAYER = 1

#
# Timing (in seconds)
#
DEFAULT_STARTUP_TIMEOUT = 60
DEFAULT_POLL_INTERVAL = 0.05
DEFAULT_START_ATTEMPTS = 3
DEFAULT_STOP_TIMEOUT = 10
DEFAULT_LOAD_TIMEOUT = 60
DEFAULT_MUTATION_TIMEOUT = 30
DEFAULT_PROBE_TIMEOUT = 1
# slapd -d "none": stay in the foreground, print only the messages that are
# always logged (bind failures, startup errors)
DEFAULT_SLAPD_DEBUG = 32768

#
# Files inside a workspace
#
CONFIG_DIRNAME = "config"
DB_DIRNAME = "db"
CERT_FILENAME = "cert.pem"
KEY_FILENAME = "key.pem"
INIT_LDIF_FILENAME = "init.ldif"
SLAPD_LOG_FILENAME = "slapd.log"
PID_FILENAME = "slapd.pid"
ARGS_FILENAME = "slapd.args"

#
# Where to look for the OpenLDAP pieces
#
POSSIBLE_SCHEMA_DIRS = (
    "/etc/ldap/schema",
    "/usr/local/etc/openldap/schema",
    "/etc/openldap/schema",
)
POSSIBLE_MODULE_DIRS = (
    "/usr/lib/ldap",
    "/usr/lib64/openldap",
    "/usr/lib/openldap",
    "/usr/libexec/openldap",
    "/usr/local/libexec/openldap",
)
SBIN_DIRS = (
    "/usr/sbin",
    "/usr/local/sbin",
    "/usr/local/libexec",
    "/opt/local/libexec",
)
SYSTEM_SCHEMAS = ("core", "cosine", "inetorgperson", "nis")

# environment variables overriding the lookups above
ENV_SLAPD = "SLAPDEXEC"
ENV_SLAPADD = "SLAPADDEXEC"
ENV_LDAPMODIFY = "LDAPMODIFYEXEC"
ENV_SCHEMA_DIR = "SLAPDSCHEMADIR"
ENV_MODULE_DIR = "SLAPDMODULEDIR"

#
# Process supervisor states
#
(STATE_UNSTARTED,
 STATE_STARTING,
 STATE_READY,
 STATE_RUNNING,
 STATE_STOPPING,
 STATE_STOPPED,
 STATE_FAILED) = ('unstarted', 'starting', 'ready', 'running',
                  'stopping', 'stopped', 'failed')

#
# LDAP result codes, as returned by the exit status of the ldap client tools
#
RESULT_CODES = {
    0: 'success',
    1: 'operationsError',
    2: 'protocolError',
    3: 'timeLimitExceeded',
    4: 'sizeLimitExceeded',
    7: 'authMethodNotSupported',
    8: 'strongerAuthRequired',
    10: 'referral',
    11: 'adminLimitExceeded',
    12: 'unavailableCriticalExtension',
    13: 'confidentialityRequired',
    16: 'noSuchAttribute',
    17: 'undefinedAttributeType',
    18: 'inappropriateMatching',
    19: 'constraintViolation',
    20: 'attributeOrValueExists',
    21: 'invalidAttributeSyntax',
    32: 'noSuchObject',
    33: 'aliasProblem',
    34: 'invalidDNSyntax',
    36: 'aliasDereferencingProblem',
    48: 'inappropriateAuthentication',
    49: 'invalidCredentials',
    50: 'insufficientAccessRights',
    51: 'busy',
    52: 'unavailable',
    53: 'unwillingToPerform',
    54: 'loopDetect',
    64: 'namingViolation',
    65: 'objectClassViolation',
    66: 'notAllowedOnNonLeaf',
    67: 'notAllowedOnRDN',
    68: 'entryAlreadyExists',
    69: 'objectClassModsProhibited',
    71: 'affectsMultipleDSAs',
    80: 'other',
    # client side
    81: 'serverDown',
    82: 'localError',
    84: 'decodingError',
    85: 'timeout',
    89: 'paramError',
    91: 'connectError',
    255: 'serverDown',  # -1, the client could not reach the server
}
