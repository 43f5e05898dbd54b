"""
Snapshot persistence: S3 object as the primary tier, a local JSON file as the
fallback and backup copy, and an optional git push of that local file.

Each tier implements ``load() -> dict | None`` (None when nothing is stored yet)
and ``save(dict)``, raising PersistenceFailure on I/O errors.
"""

import json
import logging
import os
import subprocess
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import PersistenceFailure
from .models import snapshot_from_json, snapshot_to_json

log = logging.getLogger(__name__)

_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


# --- S3 State Management ---
class S3SnapshotStore:
    def __init__(self, bucket, key, client=None):
        if client is None:
            client = boto3.client("s3")
        self.bucket = bucket
        self.key = key
        self.client = client

    def __repr__(self):
        return f"s3://{self.bucket}/{self.key}"

    def load(self):
        log.debug("Loading state from %r", self)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self.key)
            return json.loads(response["Body"].read().decode("utf-8"))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_KEY_CODES:
                log.info("State object %r not found", self)
                return None
            raise PersistenceFailure(f"error loading state from {self!r}: {e}") from e
        except (BotoCoreError, ValueError) as e:
            raise PersistenceFailure(f"error loading state from {self!r}: {e}") from e

    def save(self, data):
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=self.key,
                Body=json.dumps(data, indent=2),
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as e:
            raise PersistenceFailure(f"error saving state to {self!r}: {e}") from e
        log.debug("State saved to %r", self)


# --- Local file ---
class LocalFileSnapshotStore:
    def __init__(self, path):
        self.path = Path(path)

    def __repr__(self):
        return str(self.path)

    def load(self):
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceFailure(f"error loading local state {self.path}: {e}") from e

    def save(self, data):
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".state-", suffix=".json", dir=str(directory))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, sort_keys=True)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceFailure(f"error saving local state {self.path}: {e}") from e


# --- Two-tier strategy ---
class TieredSnapshotStore:
    """
    Reads from the first tier that has data; writes to every tier.

    load(): primary first. A primary error, a missing object or a snapshot that
    does not decode falls through to the fallback. Nothing usable anywhere
    yields an empty snapshot.

    save(): writes the primary, then the fallback as a backup copy. Succeeds if
    at least one tier accepted the write, otherwise raises PersistenceFailure.
    """

    def __init__(self, primary=None, fallback=None):
        self.tiers = [tier for tier in (primary, fallback) if tier is not None]
        if not self.tiers:
            raise ValueError("at least one snapshot store tier is required")

    def load(self):
        for tier in self.tiers:
            try:
                data = tier.load()
            except PersistenceFailure as e:
                log.warning("Snapshot load from %r failed: %s", tier, e)
                continue
            if data is None:
                continue
            try:
                snapshot = snapshot_from_json(data)
            except (AttributeError, TypeError, ValueError) as e:
                log.warning("Snapshot from %r is malformed; ignoring it: %s", tier, e)
                continue
            log.info("Snapshot loaded from %r (%d course(s))", tier, len(snapshot))
            return snapshot
        log.info("No stored snapshot found; starting from empty")
        return {}

    def save(self, snapshot):
        data = snapshot_to_json(snapshot)
        errors = []
        for tier in self.tiers:
            try:
                tier.save(data)
            except PersistenceFailure as e:
                log.warning("Snapshot save to %r failed: %s", tier, e)
                errors.append(e)
        if len(errors) == len(self.tiers):
            raise PersistenceFailure("; ".join(str(e) for e in errors))
        log.info("Snapshot saved (%d course(s))", len(snapshot))


def build_store(settings, s3_client=None):
    primary = None
    if settings.s3_bucket_name:
        primary = S3SnapshotStore(settings.s3_bucket_name, settings.state_file_key, client=s3_client)
    else:
        log.warning("S3_BUCKET_NAME not set; using local file %s only", settings.local_state_file)
    return TieredSnapshotStore(primary, LocalFileSnapshotStore(settings.local_state_file))


# --- Git backup of the local tier ---
COMMITTER_NAME = "Attendance Watcher"
COMMITTER_EMAIL = "attendance-watcher@users.noreply.github.com"


class GitSync:
    def __init__(self, state_file, ssh_key=None, repository=None, branch="main", home=None, run=None):
        self.state_file = str(state_file)
        self.ssh_key = ssh_key
        self.repository = repository
        self.branch = branch
        self.home = Path(home) if home else Path.home()
        self._run = run or self._run_git

    @staticmethod
    def _run_git(args):
        result = subprocess.run(args, check=True, capture_output=True, text=True, timeout=60)
        return result.stdout

    def setup_ssh(self):
        """Writes the deploy key and host config. Returns False when no key is configured."""
        if not self.ssh_key:
            log.info("GIT_SSH_KEY not set; skipping git push")
            return False
        ssh_dir = self.home / ".ssh"
        ssh_dir.mkdir(parents=True, exist_ok=True)
        key_path = ssh_dir / "id_rsa"
        key = self.ssh_key if self.ssh_key.endswith("\n") else self.ssh_key + "\n"
        key_path.write_text(key)
        os.chmod(key_path, 0o600)
        (ssh_dir / "config").write_text("Host github.com\n  StrictHostKeyChecking no\n")
        return True

    def sync(self):
        """Commits and pushes the state file if it changed. Returns True when a push happened."""
        if not self.setup_ssh():
            return False

        self._run(["git", "config", "--global", "user.name", COMMITTER_NAME])
        self._run(["git", "config", "--global", "user.email", COMMITTER_EMAIL])
        if self.repository:
            self._run(["git", "remote", "set-url", "origin", f"git@github.com:{self.repository}.git"])

        self._run(["git", "add", self.state_file])
        status = self._run(["git", "status", "--porcelain"])
        if Path(self.state_file).name not in status:
            log.info("No state changes to commit")
            return False

        stamp = datetime.now(timezone.utc).isoformat()
        self._run(["git", "commit", "-m", f"Update attendance state on {stamp}"])
        self._run(["git", "push", "origin", f"HEAD:{self.branch}"])
        log.info("State file pushed to %s (%s)", self.repository or "origin", self.branch)
        return True


def build_git_sync(settings):
    if not settings.git_sync:
        return None
    return GitSync(
        settings.local_state_file,
        ssh_key=settings.git_ssh_key,
        repository=settings.github_repository,
        branch=settings.git_branch,
    )
