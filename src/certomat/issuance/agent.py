"""certbot wrapper: the external issuance agent.

The agent is a separate process that owns all ACME state for CSR
issuance (account key, working and log directories).  This module only
knows how to start it, stream its output into our logs, bound its run
time, and find the files it leaves behind.

Invocation for one CSR::

    certbot certonly --standalone \\
        --http-01-address <hostname> --http-01-port 80 \\
        --csr <staged.csr> \\
        --cert-path <out>/0000_cert.pem --chain-path <out>/0000_chain.pem \\
        --fullchain-path <out>/0001_fullchain.pem \\
        --config-dir ./config --work-dir ./work --logs-dir ./logs \\
        --non-interactive --preferred-challenges http \\
        -d <name> [--test-cert]

Callers must hold the process-wide
:class:`~certomat.issuance.serialization.SerializationToken` around
:meth:`CertbotAgent.obtain`, :meth:`CertbotAgent.read_result` and
:meth:`CertbotAgent.clear_results`.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from pathlib import Path
from typing import IO, TYPE_CHECKING

from certomat.errors import IssuanceFailed, ResultReadError, StartupFatal

if TYPE_CHECKING:
    from certomat.config.settings import AgentSettings

log = logging.getLogger(__name__)
agent_log = logging.getLogger("certomat.agent")

# certbot's own default names for --csr output in the current directory.
RESULT_FILE_NAMES: dict[str, str] = {
    "cert": "0000_cert.pem",
    "chain": "0000_chain.pem",
    "fullchain": "0001_fullchain.pem",
}

_PUMP_JOIN_SECONDS = 5


class CertbotAgent:
    """Runs certbot as a subprocess on behalf of the issuance orchestrator.

    Parameters
    ----------
    settings:
        The ``agent`` configuration section.

    """

    def __init__(self, settings: AgentSettings) -> None:
        self._settings = settings
        self._path: str | None = None

    @property
    def settings(self) -> AgentSettings:
        return self._settings

    # -- startup ------------------------------------------------------------

    def startup_check(self) -> None:
        """Locate the certbot binary and register an account if needed.

        Registration runs only when ``config_dir`` does not exist yet,
        i.e. on the very first start.

        Raises
        ------
        StartupFatal
            If certbot is not on ``PATH`` or registration fails.

        """
        path = shutil.which(self._settings.executable)
        if path is None:
            msg = f"Cannot find {self._settings.executable}: not found on PATH"
            raise StartupFatal(msg)
        self._path = path
        log.info("Using issuance agent %s", path)

        try:
            Path(self._settings.output_dir).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Failed to create agent output directory '{self._settings.output_dir}': {exc}"
            raise StartupFatal(msg) from exc

        if Path(self._settings.config_dir).is_dir():
            log.info(
                "Agent config directory %s exists; skipping registration",
                self._settings.config_dir,
            )
            return

        log.info(
            "Registering %s account for %s",
            "production" if self._settings.prod else "staging",
            self._settings.email,
        )
        try:
            returncode = self._run(self.registration_command())
        except IssuanceFailed as exc:
            msg = f"could not initialize certbot: {exc.detail}"
            raise StartupFatal(msg) from exc
        if returncode != 0:
            msg = f"could not initialize certbot: exit status {returncode}"
            raise StartupFatal(msg)

    # -- commands -----------------------------------------------------------

    def _executable(self) -> str:
        if self._path is not None:
            return self._path
        path = shutil.which(self._settings.executable)
        if path is None:
            msg = f"Cannot find {self._settings.executable}: not found on PATH"
            raise IssuanceFailed(msg)
        return path

    def _state_dir_args(self) -> list[str]:
        s = self._settings
        return [
            "--config-dir",
            s.config_dir,
            "--work-dir",
            s.work_dir,
            "--logs-dir",
            s.logs_dir,
        ]

    def registration_command(self) -> list[str]:
        """Build the one-time ``certbot register`` command line."""
        args = [
            self._executable(),
            "register",
            "--agree-tos",
            "--email",
            self._settings.email,
            *self._state_dir_args(),
            "--non-interactive",
        ]
        if not self._settings.prod:
            args.append("--test-cert")
        return args

    def issuance_command(self, name: str, csr_path: str | Path) -> list[str]:
        """Build the ``certbot certonly`` command line for one CSR.

        ``-d`` is omitted when *name* is empty; certbot then falls back
        to the names in the CSR and rejects it if it cannot parse it.
        """
        s = self._settings
        results = self.result_paths()
        args = [
            self._executable(),
            "certonly",
            "--standalone",
            "--http-01-address",
            s.http01_address,
            "--http-01-port",
            str(s.http01_port),
            "--csr",
            str(csr_path),
            "--cert-path",
            str(results["cert"]),
            "--chain-path",
            str(results["chain"]),
            "--fullchain-path",
            str(results["fullchain"]),
            *self._state_dir_args(),
            "--non-interactive",
            "--preferred-challenges",
            s.preferred_challenges,
        ]
        if name:
            args.extend(["-d", name])
        if not s.prod:
            args.append("--test-cert")
        return args

    # -- issuance -----------------------------------------------------------

    def obtain(self, name: str, csr_path: str | Path) -> None:
        """Run certbot for one CSR and wait for it to finish.

        Raises
        ------
        IssuanceFailed
            If certbot cannot be started, exits non-zero, or exceeds
            ``timeout_seconds`` (in which case it is killed).

        """
        self.clear_results()
        returncode = self._run(self.issuance_command(name, csr_path))
        if returncode != 0:
            msg = f"certbot result code: exit status {returncode}"
            raise IssuanceFailed(msg)

    def result_paths(self) -> dict[str, Path]:
        """Return the output file locations keyed by ``cert``/``chain``/``fullchain``."""
        out = Path(self._settings.output_dir)
        return {kind: out / fname for kind, fname in RESULT_FILE_NAMES.items()}

    def read_result(self) -> bytes:
        """Read the configured result file left by a successful run.

        Raises
        ------
        ResultReadError
            If the file is missing or unreadable.

        """
        path = self.result_paths()[self._settings.result_file]
        try:
            return path.read_bytes()
        except OSError as exc:
            msg = f"cannot read cert: {exc}"
            raise ResultReadError(msg) from exc

    def clear_results(self) -> None:
        """Best-effort removal of result files; failures are only logged."""
        for path in self.result_paths().values():
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                log.warning("Could not remove agent result %s: %s", path, exc)

    # -- subprocess plumbing ------------------------------------------------

    def _run(self, args: list[str]) -> int:
        """Start *args*, stream its output to the log, return its exit status."""
        timeout = self._settings.timeout_seconds
        log.info("Running %s", " ".join(args))
        try:
            proc = subprocess.Popen(  # noqa: S603
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            msg = f"cannot start {args[0]}: {exc}"
            raise IssuanceFailed(msg) from exc

        pump = threading.Thread(
            target=_pump_output,
            args=(proc.stdout,),
            name="certbot-output",
            daemon=True,
        )
        pump.start()
        try:
            returncode = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            log.error("certbot exceeded %ss; killing pid %d", timeout, proc.pid)
            proc.kill()
            proc.wait()
            msg = f"certbot timed out after {timeout}s"
            raise IssuanceFailed(msg) from exc
        finally:
            pump.join(_PUMP_JOIN_SECONDS)
        log.info("certbot exited with status %d", returncode)
        return returncode


def _pump_output(stream: IO[str] | None) -> None:
    """Copy each line of the child's output to the ``certomat.agent`` log."""
    if stream is None:
        return
    with stream:
        for line in stream:
            agent_log.info("%s", line.rstrip())
