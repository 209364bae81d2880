"""The private directory of one server instance.

    Everything an instance needs (cn=config, database files, certificates,
    slapd output) lives under Workspace.path, so instances never share
    anything but the port namespace.
"""
import os
import shutil
import logging
import tempfile
import threading
from datetime import datetime
from pathlib import Path

from ldaptestserver._constants import DEFAULT_WORKSPACE_PREFIX
from ldaptestserver.exceptions import ResourceError, StateError

log = logging.getLogger(__name__)


class Workspace(object):

    def __init__(self, path):
        self.path = Path(path)
        self.created_at = datetime.now()
        self.attached = False
        self.destroyed = False
        self._lock = threading.Lock()

    @classmethod
    def create(cls, prefix=DEFAULT_WORKSPACE_PREFIX, dir=None):
        """Allocate a fresh, uniquely named directory.

            @raise ResourceError if the filesystem refuses
        """
        try:
            path = tempfile.mkdtemp(prefix=prefix, dir=dir)
        except OSError as e:
            raise ResourceError("cannot create workspace: %s" % e)
        log.debug("created workspace %s" % path)
        return cls(path)

    def __str__(self):
        return str(self.path)

    def __repr__(self):
        return "Workspace(%r)" % str(self.path)

    def join(self, *parts):
        return self.path.joinpath(*parts)

    def makedir(self, name):
        path = self.join(name)
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise ResourceError("cannot create %s: %s" % (path, e))
        return path

    def attach(self):
        """Mark the workspace as used by a live server process."""
        with self._lock:
            if self.destroyed:
                raise StateError("workspace %s is destroyed" % self.path)
            if self.attached:
                raise StateError("workspace %s already has a server attached" % self.path)
            self.attached = True

    def detach(self):
        with self._lock:
            self.attached = False

    def destroy(self):
        """Remove the directory tree. Never raises; runs once."""
        with self._lock:
            if self.destroyed:
                return False
            self.destroyed = True

        try:
            shutil.rmtree(self.path)
        except OSError as e:
            log.warning("cannot remove workspace %s: %s" % (self.path, e))
        else:
            log.debug("removed workspace %s" % self.path)
        return True
