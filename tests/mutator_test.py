import json

import pytest

from ldaptestserver.mutator import Mutator, delete_records
from ldaptestserver.supervisor import Endpoint
from ldaptestserver.exceptions import MutationError, StateError
from config import BASEDN, FRY_LDIF, LEELA_LDIF, MockSupervisor, write_script

# dumps argv, stdin and LDAPTLS_CACERT; "result: N" in the input is the exit status
FAKE_LDAPMODIFY = """import os, re, sys, json
args = sys.argv[1:]
data = sys.stdin.read()
if '-f' in args:
    data = open(args[args.index('-f') + 1]).read()
with open(%r, 'w') as f:
    json.dump({'args': args, 'input': data,
               'cacert': os.environ.get('LDAPTLS_CACERT')}, f)
m = re.search(r'^result: (\\d+)', data, re.M)
if m:
    print('ldap_add: some diagnostic')
    sys.exit(int(m.group(1)))
"""

ROOTDN = 'cn=admin,' + BASEDN


def make_mutator(tmp_path, endpoint=None, **kwargs):
    record = tmp_path / 'call.json'
    ldapmodify = write_script(tmp_path, 'ldapmodify', FAKE_LDAPMODIFY % str(record))
    sup = MockSupervisor(endpoint or Endpoint('127.0.0.1', 3389, 3636))
    return Mutator(ldapmodify, sup, ROOTDN, 'secret', **kwargs), record


def last_call(record):
    with open(str(record)) as f:
        return json.load(f)


def add_test(tmp_path):
    mutator, record = make_mutator(tmp_path)
    mutator.add(FRY_LDIF)
    call = last_call(record)
    expected = ['-x', '-D', ROOTDN, '-w', 'secret', '-H', 'ldap://127.0.0.1:3389', '-a']
    assert call['args'] == expected, "Mismatch %r vs %r" % (call['args'], expected)
    assert call['input'] == FRY_LDIF


def modify_as_other_user_test(tmp_path):
    mutator, record = make_mutator(tmp_path)
    userdn = 'cn=Philip J. Fry,ou=people,' + BASEDN
    ldif = "dn: %s\nchangetype: modify\nreplace: sn\nsn: Fry\n" % userdn
    mutator.modify(ldif, binddn=userdn, bindpw='pizza')
    call = last_call(record)
    assert call['args'][:5] == ['-x', '-D', userdn, '-w', 'pizza']
    assert '-a' not in call['args']
    assert call['input'] == ldif


def add_file_test(tmp_path):
    mutator, record = make_mutator(tmp_path)
    path = tmp_path / 'leela.ldif'
    path.write_text(LEELA_LDIF)
    mutator.add_file(path)
    call = last_call(record)
    assert call['args'][-3:] == ['-a', '-f', str(path)]
    assert call['input'] == LEELA_LDIF


def delete_test(tmp_path):
    mutator, record = make_mutator(tmp_path)
    mutator.delete(FRY_LDIF + '\n' + LEELA_LDIF)
    call = last_call(record)
    expected = ("dn: cn=Philip J. Fry,ou=people,dc=planetexpress,dc=com\nchangetype: delete\n\n"
                "dn: cn=Turanga Leela,ou=people,dc=planetexpress,dc=com\nchangetype: delete\n\n")
    assert call['input'] == expected, "Mismatch %r vs %r" % (call['input'], expected)


def delete_file_test(tmp_path):
    mutator, record = make_mutator(tmp_path)
    path = tmp_path / 'fry.ldif'
    path.write_text(FRY_LDIF)
    mutator.delete_file(path)
    assert 'changetype: delete' in last_call(record)['input']


def delete_records_test():
    text = "dn: cn=x,%s\nchangetype: delete\n" % BASEDN
    assert delete_records(text) == text


def result_code_test(tmp_path):
    test = [
        (68, 'entryAlreadyExists'),
        (32, 'noSuchObject'),
        (49, 'invalidCredentials'),
        (19, 'constraintViolation'),
        (123, 'unknown'),
    ]
    mutator, _ = make_mutator(tmp_path)
    for code, name in test:
        with pytest.raises(MutationError) as excinfo:
            mutator.add(FRY_LDIF + 'result: %d\n' % code)
        e = excinfo.value
        assert (e.operation, e.code, e.name) == ('add', code, name), \
            "Mismatch %r vs %r" % ((e.operation, e.code, e.name), ('add', code, name))
        assert 'some diagnostic' in e.output


def ssl_only_test(tmp_path):
    mutator, record = make_mutator(tmp_path, endpoint=Endpoint('127.0.0.1', ssl_port=3636),
                                   cert_file=tmp_path / 'cert.pem')
    mutator.add(FRY_LDIF)
    call = last_call(record)
    assert 'ldaps://127.0.0.1:3636' in call['args']
    assert call['cacert'] == str(tmp_path / 'cert.pem')


def not_running_test(tmp_path):
    mutator, record = make_mutator(tmp_path)
    for state in ('ready', 'stopping', 'stopped', 'failed'):
        mutator.supervisor.state = state
        with pytest.raises(StateError):
            mutator.add(FRY_LDIF)
    assert not record.exists()


def timeout_test(tmp_path):
    ldapmodify = write_script(tmp_path, 'slowldapmodify', 'import time\ntime.sleep(30)\n')
    mutator = Mutator(ldapmodify, MockSupervisor(Endpoint('127.0.0.1', 3389)),
                      ROOTDN, 'secret', timeout=0.5)
    with pytest.raises(MutationError) as excinfo:
        mutator.modify(FRY_LDIF)
    assert excinfo.value.name == 'timeout'


def missing_binary_test(tmp_path):
    mutator = Mutator(str(tmp_path / 'nope'), MockSupervisor(Endpoint('127.0.0.1', 3389)),
                      ROOTDN, 'secret')
    with pytest.raises(MutationError):
        mutator.add(FRY_LDIF)


def delete_not_ldif_test(tmp_path):
    mutator, record = make_mutator(tmp_path)
    with pytest.raises(MutationError) as excinfo:
        mutator.delete('cn=x,' + BASEDN)
    e = excinfo.value
    assert (e.operation, e.code, e.name) == ('delete', 89, 'paramError')
    assert not record.exists()
