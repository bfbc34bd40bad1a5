"""
Secret staging: copy an operator-managed secrets file into a private,
per-user runtime directory.

The operator's file may live anywhere and carry any permissions; the service
user might not even be able to read it. The staged copy lives at
``<runtime_dir>/<user>/wsgi-secrets``, owned by the user, mode 0400, inside a
0700 directory owned by the same user. Updates are written to a temporary file
in that directory and renamed over the target, so a reader always sees either
the complete old or the complete new content. ``prepare`` and ``commit`` split
the write from the rename so a batch can write every copy before replacing any.
"""

from __future__ import annotations

import grp
import hashlib
import logging
import os
import pwd
import stat
import tempfile
from pathlib import Path
from typing import Callable, Optional, Tuple

from wsgiward.errors import StagingError
from .models import SECRET_MODE, PreparedSecret, StagedSecret

logger = logging.getLogger(__name__)

SECRETS_FILE_NAME = "wsgi-secrets"
USER_DIR_MODE = 0o700

OwnerLookup = Callable[[str], Tuple[int, int]]


def lookup_system_owner(user: str) -> Tuple[int, int]:
    """Resolve uid/gid of a user and its same-named group from the host."""
    try:
        uid = pwd.getpwnam(user).pw_uid
    except KeyError:
        raise KeyError(f"no such user: {user}")
    try:
        gid = grp.getgrnam(user).gr_gid
    except KeyError:
        gid = pwd.getpwnam(user).pw_gid
    return uid, gid


def checksum_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class SecretStager:
    """Stages secrets files below one runtime directory."""

    def __init__(self, runtime_dir: str = "/run", owner_lookup: Optional[OwnerLookup] = None,
                 file_name: str = SECRETS_FILE_NAME):
        self.runtime_dir = Path(runtime_dir)
        self.owner_lookup = owner_lookup or lookup_system_owner
        self.file_name = file_name

    def user_dir(self, user: str) -> Path:
        return self.runtime_dir / user

    def location(self, user: str) -> Path:
        return self.user_dir(user) / self.file_name

    def stage(self, user: str, source: str) -> StagedSecret:
        """
        Stage ``source`` for ``user``. Idempotent for unchanged content.

        Args:
            user: Service user that will own the staged copy
            source: Operator-managed secrets file; never modified

        Returns:
            StagedSecret describing the staged copy

        Raises:
            StagingError: If the source is unreadable or the target tree is
                not exclusively controlled by this system
        """
        return self.commit(self.prepare(user, source))

    def prepare(self, user: str, source: str) -> PreparedSecret:
        """
        First half of ``stage``: write the new content next to the target
        without replacing it. Follow with ``commit`` or ``discard``.

        Raises:
            StagingError: As ``stage``; nothing is left behind
        """
        target = self.location(user)
        uid, gid = self._owner(user, target)

        try:
            with open(source, "rb") as f:
                data = f.read()
        except OSError as e:
            raise StagingError(user, source, f"source is unreadable: {e.strerror or e}") from e
        checksum = checksum_bytes(data)

        self._check_runtime_dir(user)
        user_dir = self._ensure_user_dir(user, uid, gid)

        if self._is_current(user, target, uid, gid, checksum):
            logger.debug(f"Secrets for {user} unchanged at {target}")
            secret = StagedSecret(user=user, location=str(target), source_checksum=checksum, changed=False)
            return PreparedSecret(secret=secret, user_dir=user_dir)

        tmp = self._write_temp(user, user_dir, target, data, uid, gid)
        secret = StagedSecret(user=user, location=str(target), source_checksum=checksum, changed=True)
        return PreparedSecret(secret=secret, user_dir=user_dir, tmp=tmp)

    def commit(self, prepared: PreparedSecret) -> StagedSecret:
        """Atomically move a prepared copy over the target."""
        secret = prepared.secret
        if prepared.tmp is None:
            return secret
        try:
            os.replace(prepared.tmp, secret.location)
        except OSError as e:
            self.discard(prepared)
            raise StagingError(secret.user, secret.location,
                               f"cannot replace staged copy: {e.strerror or e}") from e
        prepared.tmp = None
        self._sync_dir(prepared.user_dir)
        logger.info(f"Staged secrets for {secret.user} at {secret.location} "
                    f"(sha256 {secret.source_checksum[:12]})")
        return secret

    def discard(self, prepared: PreparedSecret) -> None:
        """Drop a prepared copy; the target keeps its current content."""
        if prepared.tmp is not None and os.path.lexists(prepared.tmp):
            os.unlink(prepared.tmp)
        prepared.tmp = None

    def destroy(self, user: str) -> bool:
        """
        Remove the staged copy of ``user`` and, when empty, its directory.

        Returns:
            True if a staged file was removed

        Raises:
            StagingError: If the directory is not a real directory or cannot
                be cleaned up
        """
        user_dir = self.user_dir(user)
        target = self.location(user)
        if not os.path.lexists(user_dir):
            return False
        st = os.lstat(user_dir)
        if stat.S_ISLNK(st.st_mode) or not stat.S_ISDIR(st.st_mode):
            raise StagingError(user, str(user_dir), "refusing to clean up: not a real directory")

        removed = False
        try:
            if os.path.lexists(target):
                os.unlink(target)
                removed = True
            if not any(user_dir.iterdir()):
                user_dir.rmdir()
        except OSError as e:
            raise StagingError(user, str(user_dir), f"cannot clean up: {e.strerror or e}") from e
        logger.info(f"Destroyed staged secrets for {user}")
        return removed

    def _owner(self, user: str, target: Path) -> Tuple[int, int]:
        try:
            return self.owner_lookup(user)
        except KeyError as e:
            raise StagingError(user, str(target), str(e.args[0]) if e.args else "unknown user") from e

    def _check_runtime_dir(self, user: str) -> None:
        try:
            st = os.lstat(self.runtime_dir)
        except FileNotFoundError:
            raise StagingError(user, str(self.runtime_dir), "runtime directory does not exist")
        if stat.S_ISLNK(st.st_mode):
            raise StagingError(user, str(self.runtime_dir), "runtime directory is a symlink")
        if not stat.S_ISDIR(st.st_mode):
            raise StagingError(user, str(self.runtime_dir), "runtime directory is not a directory")

    def _ensure_user_dir(self, user: str, uid: int, gid: int) -> Path:
        user_dir = self.user_dir(user)
        try:
            st = os.lstat(user_dir)
        except FileNotFoundError:
            try:
                os.mkdir(user_dir, USER_DIR_MODE)
                os.chmod(user_dir, USER_DIR_MODE)
                os.chown(user_dir, uid, gid)
            except OSError as e:
                raise StagingError(user, str(user_dir), f"cannot create directory: {e.strerror or e}") from e
            return user_dir

        if stat.S_ISLNK(st.st_mode):
            raise StagingError(user, str(user_dir), "directory is a symlink")
        if not stat.S_ISDIR(st.st_mode):
            raise StagingError(user, str(user_dir), "not a directory")
        if st.st_uid != uid:
            raise StagingError(user, str(user_dir), f"owned by uid {st.st_uid}, expected {uid}")
        if st.st_mode & 0o077:
            raise StagingError(user, str(user_dir), f"accessible by others (mode {oct(stat.S_IMODE(st.st_mode))})")
        return user_dir

    def _is_current(self, user: str, target: Path, uid: int, gid: int, checksum: str) -> bool:
        try:
            st = os.lstat(target)
        except FileNotFoundError:
            return False
        if not stat.S_ISREG(st.st_mode):
            raise StagingError(user, str(target), "existing target is not a regular file")
        if (st.st_uid, st.st_gid) != (uid, gid) or stat.S_IMODE(st.st_mode) != SECRET_MODE:
            return False
        with open(target, "rb") as f:
            return checksum_bytes(f.read()) == checksum

    def _write_temp(self, user: str, user_dir: Path, target: Path, data: bytes, uid: int, gid: int) -> str:
        fd, tmp = tempfile.mkstemp(prefix=f".{self.file_name}.", dir=user_dir)
        try:
            try:
                self._write(fd, data)
                os.fchmod(fd, SECRET_MODE)
                os.fchown(fd, uid, gid)
                os.fsync(fd)
            finally:
                os.close(fd)
        except OSError as e:
            if os.path.lexists(tmp):
                os.unlink(tmp)
            raise StagingError(user, str(target), f"cannot write staged copy: {e.strerror or e}") from e
        return tmp

    def _write(self, fd: int, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = os.write(fd, view)
            view = view[written:]

    @staticmethod
    def _sync_dir(path: Path) -> None:
        dir_fd = os.open(path, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
