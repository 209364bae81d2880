import socket
import time

import pytest

from ldaptestserver import utils
from ldaptestserver.supervisor import Endpoint, Supervisor
from ldaptestserver.workspace import Workspace
from ldaptestserver.exceptions import (
    StartupFailedError,
    StartupTimeoutError,
    StateError,
)
from config import fake_slapd

HOST = '127.0.0.1'


def make_supervisor(tmp_path, mode='listen', endpoint=None, **kwargs):
    ws = Workspace.create(dir=str(tmp_path))
    if endpoint is None:
        endpoint = Endpoint(HOST, utils.getfreeport(HOST), utils.getfreeport(HOST))
    kwargs.setdefault('timeout', 10)
    kwargs.setdefault('stop_timeout', 5)
    return Supervisor(fake_slapd(mode), endpoint, ws, **kwargs)


def endpoint_test():
    test = [
        (Endpoint('127.0.0.1', 389, 636), ['ldap://127.0.0.1:389', 'ldaps://127.0.0.1:636']),
        (Endpoint('localhost', 389), ['ldap://localhost:389']),
        (Endpoint('::1', ssl_port=636), ['ldaps://[::1]:636']),
    ]
    for k, v in test:
        assert k.urls == v, "Mismatch %r vs %r" % (k.urls, v)
    assert str(Endpoint('127.0.0.1', 389, 636)) == 'ldap://127.0.0.1:389 ldaps://127.0.0.1:636'
    assert Endpoint('0.0.0.0', 389).probe_host == '127.0.0.1'


def no_port_test(tmp_path):
    with pytest.raises(StateError):
        make_supervisor(tmp_path, endpoint=Endpoint(HOST))


def start_stop_test(tmp_path):
    sup = make_supervisor(tmp_path)
    assert sup.state == 'unstarted'
    sup.start()
    assert sup.state == 'ready'
    assert sup.workspace.attached
    for port in sup.endpoint.ports:
        assert utils.is_tcp_port_open(HOST, port)
    sup.mark_running()
    assert sup.running

    assert sup.stop()
    assert sup.state == 'stopped'
    assert not sup.forced
    assert sup.process.poll() is not None
    assert not sup.workspace.attached
    assert 'fakeslapd listen starting' in sup.output()


def stop_idempotent_test(tmp_path):
    sup = make_supervisor(tmp_path)
    sup.start()
    sup.mark_running()
    assert sup.stop()
    assert not sup.stop()
    assert sup.state == 'stopped'


def stop_unstarted_test(tmp_path):
    sup = make_supervisor(tmp_path)
    assert not sup.stop()
    assert sup.state == 'unstarted'


def stop_forced_test(tmp_path):
    sup = make_supervisor(tmp_path, mode='stubborn', stop_timeout=0.5)
    sup.start()
    sup.mark_running()
    assert sup.stop()
    assert sup.forced
    assert sup.process.poll() is not None
    assert sup.state == 'stopped'


def start_early_exit_test(tmp_path):
    sup = make_supervisor(tmp_path, mode='exit')
    with pytest.raises(StartupFailedError) as excinfo:
        sup.start()
    assert excinfo.value.returncode == 3
    assert not excinfo.value.bind_failure
    assert 'config error' in excinfo.value.output
    assert sup.state == 'failed'
    assert not sup.workspace.attached


def start_timeout_test(tmp_path):
    sup = make_supervisor(tmp_path, mode='sleep', timeout=0.5)
    start = time.monotonic()
    with pytest.raises(StartupTimeoutError) as excinfo:
        sup.start()
    assert time.monotonic() - start < 5
    assert excinfo.value.timeout == 0.5
    assert sup.state == 'failed'
    # no orphan left behind
    assert sup.process.poll() is not None


def start_bind_retry_test(tmp_path):
    with socket.socket() as blocker:
        # bound but not listening: connections are refused, binds fail
        blocker.bind((HOST, 0))
        busy = blocker.getsockname()[1]
        endpoint = Endpoint(HOST, busy)
        sup = make_supervisor(tmp_path, endpoint=endpoint, allocated=['port'])
        sup.start()
        assert sup.state == 'ready'
        assert endpoint.port != busy
        assert utils.is_tcp_port_open(HOST, endpoint.port)
        sup.mark_running()
        sup.stop()


def start_bind_failure_explicit_port_test(tmp_path):
    with socket.socket() as blocker:
        blocker.bind((HOST, 0))
        busy = blocker.getsockname()[1]
        sup = make_supervisor(tmp_path, endpoint=Endpoint(HOST, busy))
        with pytest.raises(StartupFailedError) as excinfo:
            sup.start()
        assert excinfo.value.bind_failure
        assert sup.endpoint.port == busy


def start_bind_retry_bounded_test(tmp_path):
    with socket.socket() as blocker:
        blocker.bind((HOST, 0))
        busy = blocker.getsockname()[1]
        picked = []

        def allocate(host):
            picked.append(busy)
            return busy

        sup = make_supervisor(tmp_path, endpoint=Endpoint(HOST, busy),
                              allocate=allocate, allocated=['port'], attempts=3)
        with pytest.raises(StartupFailedError):
            sup.start()
        assert len(picked) == 2, "Mismatch %r" % picked
        assert sup.state == 'failed'


def illegal_transitions_test(tmp_path):
    sup = make_supervisor(tmp_path)
    with pytest.raises(StateError):
        sup.mark_running()
    sup.start()
    with pytest.raises(StateError):
        sup.start()
    sup.mark_running()
    sup.stop()
    with pytest.raises(StateError):
        sup.mark_running()


def start_attached_workspace_test(tmp_path):
    sup = make_supervisor(tmp_path)
    sup.workspace.attach()
    with pytest.raises(StateError):
        sup.start()
    assert sup.state == 'failed'
    assert sup.process is None
