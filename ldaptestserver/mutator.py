"""Changes to a running instance with the ldapmodify client.

    Each call runs its own ldapmodify process with the LDIF on stdin, so
    calls from several threads do not share any state. The exit status of
    ldapmodify is the LDAP result code of the failing operation.
"""
import io
import os
import re
import logging
import subprocess

import ldif

from ldaptestserver._constants import DEFAULT_MUTATION_TIMEOUT
from ldaptestserver.exceptions import MutationError, StateError

log = logging.getLogger(__name__)

CHANGETYPE_RE = re.compile(r'^changetype\s*:', re.I | re.M)

# result codes used when ldapmodify gives no answer at all
TIMEOUT_CODE = 85
LOCAL_ERROR_CODE = 82
PARAM_ERROR_CODE = 89


def delete_records(text):
    """Turn entries into 'changetype: delete' records.

        Text that already holds change records is returned unchanged.
        @raise MutationError if text is not LDIF
    """
    if CHANGETYPE_RE.search(text):
        return text
    parser = ldif.LDIFRecordList(io.StringIO(text))
    try:
        parser.parse()
    except ValueError as e:
        raise MutationError('delete', PARAM_ERROR_CODE, "cannot read entries: %s" % e)
    return ''.join("dn: %s\nchangetype: delete\n\n" % dn
                   for dn, _ in parser.all_records)


class Mutator(object):
    """Run add/modify/delete against the server watched by supervisor.

        @param ldapmodify - path of the ldapmodify binary
        @param supervisor - the Supervisor of the instance; calls are
                            refused unless it is running
        @param cert_file  - CA file used when only ldaps is available
    """

    def __init__(self, ldapmodify, supervisor, root_dn, root_pw,
                 cert_file=None, timeout=DEFAULT_MUTATION_TIMEOUT):
        self.ldapmodify = ldapmodify
        self.supervisor = supervisor
        self.root_dn = root_dn
        self.root_pw = root_pw
        self.cert_file = cert_file
        self.timeout = timeout

    def add(self, text, binddn=None, bindpw=None):
        """Add the entries of text."""
        return self._run('add', ['-a'], text, binddn, bindpw)

    def modify(self, text, binddn=None, bindpw=None):
        """Apply the change records of text."""
        return self._run('modify', [], text, binddn, bindpw)

    def delete(self, text, binddn=None, bindpw=None):
        """Delete the entries named by text.

            text is either 'changetype: delete' records or plain entries,
            in which case only their DNs matter.
        """
        return self._run('delete', [], delete_records(text), binddn, bindpw)

    def add_file(self, path, binddn=None, bindpw=None):
        return self._run('add', ['-a', '-f', str(path)], None, binddn, bindpw)

    def modify_file(self, path, binddn=None, bindpw=None):
        return self._run('modify', ['-f', str(path)], None, binddn, bindpw)

    def delete_file(self, path, binddn=None, bindpw=None):
        with open(path) as f:
            return self.delete(f.read(), binddn, bindpw)

    def _url(self):
        endpoint = self.supervisor.endpoint
        return endpoint.url or endpoint.ssl_url

    def _env(self):
        env = dict(os.environ)
        if self.cert_file:
            env['LDAPTLS_CACERT'] = str(self.cert_file)
        return env

    def _run(self, operation, args, text, binddn, bindpw):
        if not self.supervisor.running:
            raise StateError("cannot %s: server is %s" % (operation, self.supervisor.state))
        if binddn is None:
            binddn, bindpw = self.root_dn, self.root_pw
        cmd = [self.ldapmodify, '-x', '-D', binddn, '-w', bindpw or '',
               '-H', self._url()] + args
        log.debug("%s as %s on %s" % (operation, binddn, self._url()))
        if text is None:
            # the LDIF comes from -f
            stdin = {'stdin': subprocess.DEVNULL}
        else:
            stdin = {'input': text}
        try:
            proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                                  universal_newlines=True, env=self._env(),
                                  timeout=self.timeout, **stdin)
        except subprocess.TimeoutExpired:
            raise MutationError(operation, TIMEOUT_CODE,
                                "ldapmodify did not finish within %ss" % self.timeout)
        except OSError as e:
            raise MutationError(operation, LOCAL_ERROR_CODE,
                                "cannot run %s: %s" % (self.ldapmodify, e))
        if proc.returncode != 0:
            raise MutationError(operation, proc.returncode, proc.stdout)
        return proc.stdout
