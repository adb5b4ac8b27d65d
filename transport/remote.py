"""
SSH node backend.

Drives a remote machine over a paramiko session: commands run through
exec_command, files move over SFTP. paramiko is blocking, so every call is
pushed onto a worker thread to keep the event loop free for the other
nodes of the run.
"""

import asyncio
import io
import logging
import os
import posixpath
import shlex
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple

import paramiko

from coordinator.config import ArtifactSpec
from core.errors import (
    BuildError,
    NodeConnectionError,
    RemoteCommandError,
    TransferError,
)
from transport.base import MINIMAL_PATH, NodeBackend
from worker.sentinel import SENTINEL_NAME


logger = logging.getLogger(__name__)

# Uploaded once per node; prints every regular file matching its arguments
GLOB_HELPER = """import glob
import os
import sys

for pattern in sys.argv[1:]:
    for path in sorted(glob.glob(pattern, recursive=True)):
        if os.path.isfile(path):
            print(os.path.abspath(path))
"""

_KEY_CLASSES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)


def load_private_key(key_text: str) -> paramiko.PKey:
    """
    Parse PEM/OpenSSH private key text.

    Raises:
        NodeConnectionError: If no supported key type accepts the text
    """
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(key_text))
        except paramiko.SSHException:
            continue
    raise NodeConnectionError("Unsupported or invalid private key")


class RemoteBackend(NodeBackend):
    """Backend for nodes reached over SSH."""

    def __init__(self, node, context, client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient):
        """
        Initialize SSH backend.

        Args:
            node: Node driven by this backend
            context: Run-wide backend settings
            client_factory: Creates the SSH client (replaceable in tests)
        """
        super().__init__(node, context)
        self._client_factory = client_factory
        self._client: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None
        self._helper_path: Optional[str] = None

    # Connection

    def _open_session(self) -> Tuple[paramiko.SSHClient, paramiko.SFTPClient]:
        config = self.node.config
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        kwargs = {
            'hostname': config.host,
            'port': config.port,
            'username': config.username,
            'timeout': 30,
        }
        if config.password:
            kwargs['password'] = config.password
        if config.private_key:
            if "PRIVATE KEY" in config.private_key:
                kwargs['pkey'] = load_private_key(config.private_key)
            else:
                kwargs['key_filename'] = os.path.expanduser(config.private_key)

        try:
            client.connect(**kwargs)
            transport = client.get_transport()
            if transport is not None:
                transport.set_keepalive(config.keepalive_interval)
            sftp = client.open_sftp()
        except Exception:
            client.close()
            raise

        return client, sftp

    async def connect(self):
        try:
            self._client, self._sftp = await asyncio.to_thread(self._open_session)
        except NodeConnectionError:
            raise
        except (paramiko.SSHException, OSError) as e:
            raise NodeConnectionError(f"Could not connect to {self.node.config.label}: {e}")
        logger.debug(f"[{self.node_id}] Connected to {self.node.config.label}")

    # Command execution

    def _shell_command(self, command: List[str], env: Optional[Dict[str, str]] = None) -> str:
        exports = {'PATH': MINIMAL_PATH}
        exports.update(env or {})
        export_line = " ".join(f"{key}={shlex.quote(value)}" for key, value in exports.items())
        return (
            f"export {export_line} && "
            f"cd {shlex.quote(self.node.working_dir)} && "
            f"{shlex.join(command)}"
        )

    def _exec(self, command_line: str) -> Tuple[int, str, str]:
        _, stdout, stderr = self._client.exec_command(command_line)

        # stderr is drained alongside stdout; a full stderr window stalls the remote command
        with ThreadPoolExecutor(max_workers=1) as pool:
            pending_err = pool.submit(stderr.read)
            out = stdout.read().decode('utf-8', errors='replace')
            err = pending_err.result().decode('utf-8', errors='replace')
        returncode = stdout.channel.recv_exit_status()
        return returncode, out, err

    async def _run(self, command_line: str) -> Tuple[int, str, str]:
        logger.debug(f"[{self.node_id}] $ {command_line}")
        return await asyncio.to_thread(self._exec, command_line)

    # Lifecycle

    async def send_package(self, archive_path: str):
        temp_dir = self.node.config.temp_dir
        remote_archive = posixpath.join(temp_dir, f"fleetbuild-{self.node_id}-{uuid.uuid4().hex}.zip")
        working_dir = shlex.quote(self.node.working_dir)

        try:
            await asyncio.to_thread(self._sftp.put, archive_path, remote_archive)
            returncode, _, stderr = await self._run(
                f"export PATH={MINIMAL_PATH} && mkdir -p {working_dir} && "
                f"python3 -m zipfile -e {shlex.quote(remote_archive)} {working_dir}"
            )
        except (paramiko.SSHException, OSError) as e:
            raise TransferError(f"Failed to transfer project to {self.node.config.label}: {e}")
        finally:
            await self._remove_remote(remote_archive)

        if returncode != 0:
            raise TransferError(
                f"Failed to unpack project on {self.node.config.label} "
                f"(exit code {returncode}): {stderr.strip()}"
            )

    async def install_dependencies(self):
        command = self.context.install_command
        try:
            returncode, stdout, stderr = await self._run(self._shell_command(command))
        except (paramiko.SSHException, OSError) as e:
            raise NodeConnectionError(f"Lost connection to {self.node.config.label}: {e}")
        logger.debug(f"[{self.node_id}] install output:\n{stdout}")

        if returncode != 0:
            raise RemoteCommandError(
                f"Install command {' '.join(command)} failed on {self.node.config.label}",
                returncode,
                stderr
            )

    def _install_build_config(self, staged: str):
        working_dir = self.node.working_dir
        current = posixpath.join(working_dir, self.context.build_config_name)
        original = posixpath.join(working_dir, self.context.original_config_name)

        returncode, _, stderr = self._exec(
            f"if [ -f {shlex.quote(current)} ]; then "
            f"mv -f {shlex.quote(current)} {shlex.quote(original)}; fi"
        )
        if returncode != 0:
            raise BuildError(f"Could not preserve build configuration on {self.node_id}: {stderr.strip()}")

        self._sftp.put(staged, current)
        with self._sftp.open(posixpath.join(working_dir, SENTINEL_NAME), 'w') as f:
            f.write(self.sentinel().render())

    async def run_build_range(self, first: int, last: int):
        staged = None
        try:
            staged = self.stage_build_config(first, last)
            await asyncio.to_thread(self._install_build_config, staged)

            returncode, stdout, stderr = await self._run(
                self._shell_command(self.context.build_command, env=self.context.build_env())
            )
            logger.debug(f"[{self.node_id}] build output:\n{stdout}")

            if returncode != 0:
                raise BuildError(
                    f"Build of units [{first}, {last}] failed on {self.node.config.label} "
                    f"(exit code {returncode})",
                    returncode=returncode,
                    stderr=stderr
                )
        except (paramiko.SSHException, OSError) as e:
            raise BuildError(f"Build on {self.node.config.label} aborted: {e}")
        finally:
            self.remove_staged(staged)

    async def _ensure_helper(self) -> str:
        if self._helper_path is None:
            path = posixpath.join(
                self.node.config.temp_dir,
                f"fleetbuild-glob-{self.node_id}-{uuid.uuid4().hex[:8]}.py"
            )
            await asyncio.to_thread(self._sftp.putfo, io.BytesIO(GLOB_HELPER.encode('utf-8')), path)
            self._helper_path = path
        return self._helper_path

    async def _list_matches(self, pattern: str) -> List[str]:
        helper = await self._ensure_helper()
        returncode, stdout, stderr = await self._run(
            self._shell_command(["python3", helper, pattern])
        )
        if returncode != 0:
            raise RemoteCommandError(
                f"Listing artifacts '{pattern}' failed on {self.node.config.label}",
                returncode,
                stderr
            )
        return [line.strip() for line in stdout.splitlines() if line.strip()]

    async def retrieve_artifacts(self, artifacts: List[ArtifactSpec]) -> List[str]:
        copied = []
        try:
            for artifact in artifacts:
                matches = await self._list_matches(artifact.remote)
                os.makedirs(artifact.local, exist_ok=True)

                # One download at a time per node
                for remote_path in matches:
                    destination = os.path.join(artifact.local, posixpath.basename(remote_path))
                    await asyncio.to_thread(self._sftp.get, remote_path, destination)
                    copied.append(destination)

                logger.debug(f"[{self.node_id}] {artifact.remote}: {len(matches)} file(s)")
        except (paramiko.SSHException, OSError) as e:
            raise TransferError(f"Failed to retrieve artifacts from {self.node.config.label}: {e}")
        return copied

    async def _remove_remote(self, path: str):
        try:
            await asyncio.to_thread(self._sftp.remove, path)
        except (paramiko.SSHException, OSError) as e:
            logger.debug(f"[{self.node_id}] Could not remove remote {path}: {e}")

    def _close_session(self):
        if self._sftp is not None:
            self._sftp.close()
        if self._client is not None:
            self._client.close()

    async def _close(self):
        if self._client is None:
            return

        if self._helper_path is not None and self._sftp is not None:
            await self._remove_remote(self._helper_path)

        try:
            await asyncio.to_thread(self._close_session)
        except Exception as e:
            logger.warning(f"[{self.node_id}] Error closing SSH session: {e}")
        finally:
            self._sftp = None
            self._client = None
            self._helper_path = None

        logger.debug(f"[{self.node_id}] Disconnected from {self.node.config.label}")
