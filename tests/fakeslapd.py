"""Stand-in for slapd in supervisor tests.

    fakeslapd.py MODE [slapd options] -h "ldap://host:port ldaps://host:port"

    MODE is one of
        listen   - listen on every url until SIGTERM
        stubborn - listen on every url and ignore SIGTERM
        sleep    - never listen
        exit     - exit at once with status 3
"""
import sys
import time
import signal
import socket
from urllib.parse import urlsplit


def listeners(urls):
    socks = []
    for url in urls.split():
        parts = urlsplit(url)
        try:
            sock = socket.socket(socket.AF_INET6 if ':' in parts.hostname else socket.AF_INET)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((parts.hostname, parts.port))
            sock.listen(5)
        except OSError as e:
            # what slapd says in this case
            sys.stderr.write("daemon: bind(%d) failed errno=%d (%s)\n" % (
                len(socks), e.errno or 0, e.strerror))
            sys.stderr.flush()
            sys.exit(1)
        socks.append(sock)
    return socks


def main(argv):
    mode = argv[1]
    urls = argv[argv.index('-h') + 1]
    sys.stderr.write("fakeslapd %s starting on %s\n" % (mode, urls))
    sys.stderr.flush()
    if mode == 'exit':
        sys.stderr.write("config error\n")
        sys.exit(3)
    if mode == 'stubborn':
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
    if mode in ('listen', 'stubborn'):
        socks = listeners(urls)
        sys.stderr.write("slapd starting\n")
        sys.stderr.flush()
    while True:
        time.sleep(0.1)


if __name__ == '__main__':
    main(sys.argv)
