"""Errors raised while provisioning and driving a test server.

    Error
    +-- InvalidArgumentError
    +-- StateError
    +-- ResourceError       workspace, port, certificate allocation
    +-- ConfigError         template, missing directories or binaries
    +-- LoadError           offline slapadd of a layer
    +-- StartupError
    |   +-- StartupFailedError
    |   +-- StartupTimeoutError
    +-- MutationError       ldapmodify against the running server
"""
from ldaptestserver._constants import RESULT_CODES


class Error(Exception):
    def __init__(self, message=''):
        Exception.__init__(self, message)
        self.message = message

    def __str__(self):
        return self.message

    def __repr__(self):
        return "%s(%r)" % (self.__class__.__name__, self.message)


class InvalidArgumentError(Error):
    pass


class StateError(Error):
    pass


class ResourceError(Error):
    pass


class ConfigError(Error):
    pass


class LoadError(Error):
    """A payload of a layer could not be loaded with slapadd.

        layer         - the database number
        payload_index - position of the payload inside the layer
        cause         - slapadd output, or the underlying error
    """

    def __init__(self, layer, payload_index, cause):
        Error.__init__(self, "cannot load payload %d of layer %d: %s" % (
            payload_index, layer, cause))
        self.layer = layer
        self.payload_index = payload_index
        self.cause = cause


class StartupError(Error):
    """The server process did not become ready.

        output holds what slapd wrote on stdout/stderr so far.
    """

    def __init__(self, message, output=''):
        if output:
            message = "%s\n--- slapd output ---\n%s" % (message, output)
        Error.__init__(self, message)
        self.output = output


class StartupFailedError(StartupError):
    def __init__(self, returncode, output='', bind_failure=False):
        StartupError.__init__(
            self, "slapd exited with status %s before accepting connections" % returncode,
            output)
        self.returncode = returncode
        self.bind_failure = bind_failure


class StartupTimeoutError(StartupError):
    def __init__(self, timeout, output=''):
        StartupError.__init__(
            self, "slapd did not accept connections within %ss" % timeout, output)
        self.timeout = timeout


class MutationError(Error):
    """An add/modify/delete was refused by the server.

        operation - 'add', 'modify' or 'delete'
        code      - LDAP result code (the ldap client exit status)
        name      - symbolic name of code, eg. 'noSuchObject'
    """

    def __init__(self, operation, code, output=''):
        self.operation = operation
        self.code = code
        self.name = RESULT_CODES.get(code, 'unknown')
        self.output = output
        msg = "%s failed with result %s (%s)" % (operation, code, self.name)
        if output:
            msg = "%s: %s" % (msg, output.strip())
        Error.__init__(self, msg)
