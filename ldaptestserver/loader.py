"""Offline load of LDIF into the databases of a stopped instance.

    slapadd writes straight into the database files, so it must never run
    while a slapd process is attached to the same workspace.
"""
import logging
import subprocess
from collections import namedtuple
from itertools import groupby
from operator import attrgetter

from ldaptestserver._constants import DEFAULT_LOAD_TIMEOUT
from ldaptestserver.exceptions import LoadError

log = logging.getLogger(__name__)

# layer   - database number (0 is cn=config)
# seq     - registration order inside the layer
# content - LDIF text, already rendered
# source  - where the text came from, for diagnostics
LdifPayload = namedtuple('LdifPayload', 'layer seq content source')


def by_layer(payloads):
    """Group payloads by layer, layers ascending, each in registration order."""
    ordered = sorted(payloads, key=attrgetter('layer', 'seq'))
    return [(layer, list(group))
            for layer, group in groupby(ordered, key=attrgetter('layer'))]


class OfflineLoader(object):

    def __init__(self, slapadd, config_dir, workspace, timeout=DEFAULT_LOAD_TIMEOUT):
        self.slapadd = slapadd
        self.config_dir = config_dir
        self.workspace = workspace
        self.timeout = timeout

    def load(self, payloads):
        """Load every payload, layer after layer."""
        for layer, group in by_layer(payloads):
            self.load_layer(layer, group)

    def load_layer(self, layer, payloads):
        """slapadd each payload of layer, stopping at the first failure.

            @raise LoadError(layer, payload_index, cause)
        """
        if self.workspace.attached:
            raise LoadError(layer, 0, "a server is running on %s" % self.workspace)
        for payload in sorted(payloads, key=attrgetter('seq')):
            if payload.layer != layer:
                raise LoadError(layer, payload.seq,
                                "payload belongs to layer %d" % payload.layer)
            self._slapadd(layer, payload)

    def _slapadd(self, layer, payload):
        cmd = [self.slapadd, '-F', str(self.config_dir), '-n', str(layer)]
        log.debug("slapadd dbnum: %d payload: %d from %s" % (layer, payload.seq, payload.source))
        try:
            proc = subprocess.run(cmd, input=payload.content,
                                  stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                                  universal_newlines=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            raise LoadError(layer, payload.seq,
                            "slapadd did not finish within %ss" % self.timeout)
        except OSError as e:
            raise LoadError(layer, payload.seq, "cannot run %s: %s" % (self.slapadd, e))
        if proc.returncode != 0:
            raise LoadError(layer, payload.seq, "slapadd exited with %d on %s: %s" % (
                proc.returncode, payload.source, proc.stdout.strip()))
        return proc.stdout
