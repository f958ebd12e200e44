"""Guest operations: commands and file transfer inside a VM's guest OS.

Everything goes through the management API rather than a network
connection to the guest. File transfers are two-step: the API issues a
single-use transfer URL, then the file content is sent (PUT) or fetched
(GET) over plain HTTP(S). Ticket and transfer are retried together
because a ticket cannot be reused.

Security:
- Guest passwords are only passed to the management API, never logged
- TLS verification of transfer URLs is configurable (ESXi hosts usually
  present self-signed certificates, so it defaults to off)
"""

import io
import logging
import posixpath
from pathlib import Path
from typing import Any, BinaryIO
from urllib.parse import urlsplit, urlunsplit

import requests
import urllib3

from labvsphere.config_manager import GuestOperationsSettings, get_config
from labvsphere.errors import GuestFileTransferError, PreconditionError
from labvsphere.models import GuestCredentials, MachineRecord, instance_uuid_of
from labvsphere.retry_config import RetryConfig, get_retry_config
from labvsphere.retry_handler import retry
from labvsphere.vsphere.connection_pool import ManagementConnectionPool, get_connection_pool

logger = logging.getLogger(__name__)

HostFile = bytes | str | Path | BinaryIO


class NamedBytesIO(io.BytesIO):
    """In-memory file with a name, as returned by ``download_file``."""

    def __init__(self, name: str, content: bytes = b""):
        super().__init__(content)
        self.name = name


class GuestOperationsClient:
    """Run commands and transfer files inside a VM's guest OS."""

    def __init__(
        self,
        record: MachineRecord,
        pool: ManagementConnectionPool | None = None,
        settings: GuestOperationsSettings | None = None,
        retry_config: RetryConfig | None = None,
    ):
        self.record = record
        self.pool = pool or get_connection_pool()
        self.settings = settings or get_config().guest_operations
        self.retry_config = retry_config or get_retry_config()

        if not self.settings.verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def execute_command(
        self,
        user: str | None,
        password: str | None,
        command: str | None,
        args: str | None = None,
        working_dir: str | None = None,
        run_async: bool = False,
    ) -> int:
        """Start a program in the guest.

        Only asynchronous execution is supported: the call returns once the
        program is started.

        Returns:
            Guest process id

        Raises:
            PreconditionError: If instance id, user, password or command is missing
            NotImplementedError: If synchronous execution is requested
        """
        self._validate(user=user, password=password, command=command)
        if not run_async:
            raise NotImplementedError("Synchronous guest command execution is not implemented")

        instance_uuid = instance_uuid_of(self.record)
        credentials = GuestCredentials(user, password)
        logger.info(f"Starting {command} in guest of {instance_uuid} as {user}")

        with self.pool.connection() as conn:
            return self._retry(
                lambda: conn.start_guest_program(
                    instance_uuid, credentials, command, args=args, working_dir=working_dir
                )
            )

    def list_processes(
        self, user: str | None, password: str | None, pids: list[int] | None = None
    ) -> list[dict[str, Any]]:
        """Processes running in the guest (optionally only the given pids)."""
        self._validate(user=user, password=password)
        instance_uuid = instance_uuid_of(self.record)
        credentials = GuestCredentials(user, password)

        with self.pool.connection() as conn:
            return self._retry(
                lambda: conn.list_guest_processes(instance_uuid, credentials, pids=pids)
            )

    def upload_file(
        self,
        user: str | None,
        password: str | None,
        guest_file_path: str | None,
        host_file: HostFile | None,
        overwrite: bool = False,
    ) -> None:
        """Copy a host file into the guest.

        Args:
            user: Guest user
            password: Guest password
            guest_file_path: Absolute destination path in the guest
            host_file: File content, a path, or a binary file object
            overwrite: Replace an existing guest file

        Raises:
            PreconditionError: Listing every missing field
            GuestFileTransferError: If the transfer endpoint rejects the upload
        """
        self._validate(
            user=user, password=password, guest_file_path=guest_file_path, host_file=host_file
        )
        content = _read_host_file(host_file)
        instance_uuid = instance_uuid_of(self.record)
        credentials = GuestCredentials(user, password)

        with self.pool.connection() as conn:

            def transfer() -> None:
                ticket = conn.initiate_file_transfer_to_guest(
                    instance_uuid,
                    credentials,
                    guest_file_path,
                    file_size=len(content),
                    overwrite=overwrite,
                )
                url = self._transfer_url(ticket.url)
                response = requests.put(
                    url,
                    data=content,
                    headers={
                        "Content-Type": "application/octet-stream",
                        "Content-Length": str(len(content)),
                    },
                    verify=self.settings.verify_ssl,
                    timeout=self.settings.timeout,
                )
                _raise_for_transfer_status(
                    response, f"Error sending via {_redact(url)} with a size {len(content)}"
                )

            logger.info(f"Uploading {len(content)} bytes to {guest_file_path} on {instance_uuid}")
            self._retry(transfer)

    def download_file(
        self, user: str | None, password: str | None, guest_file_path: str | None
    ) -> NamedBytesIO:
        """Fetch a guest file into memory.

        Returns:
            File content named after the guest file

        Raises:
            PreconditionError: Listing every missing field
            GuestFileTransferError: If the transfer endpoint answers with non-2xx
        """
        self._validate(user=user, password=password, guest_file_path=guest_file_path)
        instance_uuid = instance_uuid_of(self.record)
        credentials = GuestCredentials(user, password)

        with self.pool.connection() as conn:

            def transfer() -> NamedBytesIO:
                ticket = conn.initiate_file_transfer_from_guest(
                    instance_uuid, credentials, guest_file_path
                )
                url = self._transfer_url(ticket.url)
                response = requests.get(
                    url, verify=self.settings.verify_ssl, timeout=self.settings.timeout
                )
                _raise_for_transfer_status(response, f"Error retrieving via {_redact(url)}")
                return NamedBytesIO(_guest_basename(guest_file_path), response.content)

            logger.info(f"Downloading {guest_file_path} from {instance_uuid}")
            return self._retry(transfer)

    def _retry(self, body):
        return retry(
            body,
            max_attempts=self.retry_config.guest_operation_attempts,
            delay=self.retry_config.delay,
        )

    def _transfer_url(self, url: str) -> str:
        """Apply the configured scheme to a ticket URL."""
        if not self.settings.use_ssl:
            return url
        parts = urlsplit(url)
        return urlunsplit(parts._replace(scheme="https"))

    def _validate(self, **fields: Any) -> None:
        """Collect every missing input into one PreconditionError."""
        violations = []
        if not instance_uuid_of(self.record):
            violations.append("Virtual machine data not present")
        for name, value in fields.items():
            if value is None or value == "":
                violations.append(f"{name} must be specified")
        if violations:
            raise PreconditionError(violations)


def _read_host_file(host_file: HostFile) -> bytes:
    if isinstance(host_file, bytes):
        return host_file
    if isinstance(host_file, (str, Path)):
        return Path(host_file).read_bytes()
    return host_file.read()


def _guest_basename(guest_file_path: str) -> str:
    # Guest paths may be Windows paths
    return posixpath.basename(guest_file_path.replace("\\", "/")) or "tempfile"


def _redact(url: str) -> str:
    """Transfer URLs carry the ticket in the query string."""
    parts = urlsplit(url)
    return urlunsplit(parts._replace(query=""))


def _raise_for_transfer_status(response: requests.Response, message: str) -> None:
    if 200 <= response.status_code < 300:
        return
    raise GuestFileTransferError(message, response.status_code, response.text)


__all__ = ["GuestOperationsClient", "NamedBytesIO"]
