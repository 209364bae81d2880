"""Spawn slapd, wait until it listens, stop it.

    A Supervisor walks through

        unstarted -> starting -> ready -> running -> stopping -> stopped
                        |
                        +-> failed

    and refuses any other transition. Every wait is bounded: readiness by
    `timeout`, shutdown by `stop_timeout` after which slapd is killed.
"""
import re
import time
import logging
import subprocess
import threading

from ldaptestserver import utils
from ldaptestserver._constants import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_START_ATTEMPTS,
    DEFAULT_STARTUP_TIMEOUT,
    DEFAULT_STOP_TIMEOUT,
    SLAPD_LOG_FILENAME,
    STATE_FAILED,
    STATE_READY,
    STATE_RUNNING,
    STATE_STARTING,
    STATE_STOPPED,
    STATE_STOPPING,
    STATE_UNSTARTED,
)
from ldaptestserver.exceptions import (
    StartupFailedError,
    StartupTimeoutError,
    StateError,
)

log = logging.getLogger(__name__)

TRANSITIONS = {
    STATE_UNSTARTED: (STATE_STARTING,),
    STATE_STARTING: (STATE_READY, STATE_FAILED),
    STATE_READY: (STATE_RUNNING,),
    STATE_RUNNING: (STATE_STOPPING,),
    STATE_STOPPING: (STATE_STOPPED,),
    STATE_STOPPED: (),
    STATE_FAILED: (),
}

# what slapd prints when a listener cannot be bound
BIND_FAILURE_RE = re.compile(r'bind\(-?\d+\) failed|address already in use', re.I)

MAX_OUTPUT = 64 * 1024


class Endpoint(object):
    """Where an instance listens. port and ssl_port may be None, not both."""

    def __init__(self, host, port=None, ssl_port=None):
        self.host = host
        self.port = port
        self.ssl_port = ssl_port

    def _hostport(self, port):
        if ':' in self.host:
            return "[%s]:%d" % (self.host, port)
        return "%s:%d" % (self.host, port)

    @property
    def url(self):
        if self.port is None:
            return None
        return "ldap://" + self._hostport(self.port)

    @property
    def ssl_url(self):
        if self.ssl_port is None:
            return None
        return "ldaps://" + self._hostport(self.ssl_port)

    @property
    def urls(self):
        return [u for u in (self.url, self.ssl_url) if u]

    @property
    def ports(self):
        return [p for p in (self.port, self.ssl_port) if p is not None]

    @property
    def probe_host(self):
        """Address to connect to, wildcard binds are probed on loopback."""
        if self.host in ('', '0.0.0.0'):
            return '127.0.0.1'
        if self.host == '::':
            return '::1'
        return self.host

    def __str__(self):
        return ' '.join(self.urls)

    def __repr__(self):
        return "Endpoint(%r, port=%r, ssl_port=%r)" % (self.host, self.port, self.ssl_port)


class Supervisor(object):
    """Owns the slapd process of one workspace.

        @param command   - argv of slapd without the -h option
        @param endpoint  - Endpoint to listen on
        @param workspace - the Workspace slapd runs in
        @param allocate  - callable(host) -> port, used to pick new ports
                           after a bind failure; only the names listed in
                           `allocated` ('port', 'ssl_port') are re-picked
    """

    def __init__(self, command, endpoint, workspace,
                 timeout=DEFAULT_STARTUP_TIMEOUT,
                 poll_interval=DEFAULT_POLL_INTERVAL,
                 attempts=DEFAULT_START_ATTEMPTS,
                 stop_timeout=DEFAULT_STOP_TIMEOUT,
                 allocate=utils.getfreeport,
                 allocated=()):
        if not endpoint.ports:
            raise StateError("no port to listen on")
        self.command = list(command)
        self.endpoint = endpoint
        self.workspace = workspace
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.attempts = max(1, attempts)
        self.stop_timeout = stop_timeout
        self.allocate = allocate
        self.allocated = tuple(allocated)
        self.log_file = workspace.join(SLAPD_LOG_FILENAME)
        self.process = None
        self.forced = False
        self.state = STATE_UNSTARTED
        self._lock = threading.Lock()

    def __repr__(self):
        return "<Supervisor %s %s>" % (self.endpoint, self.state)

    @property
    def pid(self):
        return self.process and self.process.pid

    @property
    def running(self):
        return self.state == STATE_RUNNING

    def _transition(self, state):
        if state not in TRANSITIONS[self.state]:
            raise StateError("cannot go from %s to %s" % (self.state, state))
        log.debug("%s: %s -> %s" % (self.endpoint, self.state, state))
        self.state = state

    def output(self):
        """What slapd wrote so far (tail only)."""
        try:
            with open(self.log_file, 'r', errors='replace') as f:
                return f.read()[-MAX_OUTPUT:]
        except OSError:
            return ''

    def start(self):
        """Spawn slapd and block until every port accepts connections.

            Ends in the ready state. On any failure the process is killed,
            the state is failed and the error is raised.

            @raise StartupFailedError, StartupTimeoutError
        """
        self._transition(STATE_STARTING)
        try:
            self.workspace.attach()
        except StateError:
            self._transition(STATE_FAILED)
            raise
        try:
            for attempt in range(1, self.attempts + 1):
                try:
                    self._spawn()
                    self._wait_ready()
                    break
                except StartupFailedError as e:
                    if not (e.bind_failure and self.allocated and attempt < self.attempts):
                        raise
                    log.warning("slapd could not bind %s (attempt %d/%d), picking new ports" % (
                        self.endpoint, attempt, self.attempts))
                    self._reallocate()
        except BaseException:
            self._kill()
            self.workspace.detach()
            self._transition(STATE_FAILED)
            raise
        self._transition(STATE_READY)

    def mark_running(self):
        self._transition(STATE_RUNNING)

    def _reallocate(self):
        for name in self.allocated:
            setattr(self.endpoint, name, self.allocate(self.endpoint.host))

    def _spawn(self):
        cmd = self.command + ['-h', str(self.endpoint)]
        log.debug("starting slapd: %s" % ' '.join(cmd))
        try:
            with open(self.log_file, 'wb') as logfp:
                self.process = subprocess.Popen(
                    cmd, stdin=subprocess.DEVNULL, stdout=logfp,
                    stderr=subprocess.STDOUT, cwd=str(self.workspace.path))
        except OSError as e:
            self.process = None
            raise StartupFailedError(None, "cannot run %s: %s" % (cmd[0], e))

    def _wait_ready(self):
        deadline = time.monotonic() + self.timeout
        host = self.endpoint.probe_host
        probe_timeout = min(DEFAULT_PROBE_TIMEOUT, max(self.poll_interval, 0.01))
        while True:
            self._check_alive()
            if all(utils.is_tcp_port_open(host, port, probe_timeout)
                   for port in self.endpoint.ports):
                # the listener may be someone else's if slapd is dying
                self._check_alive()
                log.debug("slapd pid %s is listening on %s" % (self.process.pid, self.endpoint))
                return
            if time.monotonic() >= deadline:
                self._kill()
                raise StartupTimeoutError(self.timeout, self.output())
            time.sleep(self.poll_interval)

    def _check_alive(self):
        rc = self.process.poll()
        if rc is not None:
            output = self.output()
            raise StartupFailedError(rc, output,
                                     bind_failure=bool(BIND_FAILURE_RE.search(output)))

    def _kill(self):
        proc = self.process
        if proc is None or proc.poll() is not None:
            return
        try:
            proc.kill()
            proc.wait(timeout=self.stop_timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            log.warning("cannot kill slapd pid %s: %s" % (proc.pid, e))

    def stop(self, grace=None):
        """Terminate slapd: SIGTERM, wait grace (stop_timeout by default),
            then SIGKILL.

            Safe to call many times, only the first call of a running
            supervisor does anything. Never raises.
            Returns True if this call stopped the server.
        """
        with self._lock:
            if self.state not in (STATE_READY, STATE_RUNNING):
                return False
            if self.state == STATE_READY:
                self._transition(STATE_RUNNING)
            self._transition(STATE_STOPPING)

        if grace is None:
            grace = self.stop_timeout
        proc = self.process
        try:
            proc.terminate()
            try:
                proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                log.warning("slapd pid %s did not stop within %ss, killing it" % (proc.pid, grace))
                self.forced = True
                proc.kill()
                proc.wait(timeout=self.stop_timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            log.warning("error stopping slapd pid %s: %s" % (proc.pid, e))
        else:
            log.debug("stopped slapd pid %s (%s) exit status %s" % (
                proc.pid, 'killed' if self.forced else 'terminated', proc.returncode))
        finally:
            self.workspace.detach()
            self._transition(STATE_STOPPED)
        return True
