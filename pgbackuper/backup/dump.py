"""
pg_dump invocation.
"""

import logging
import os
import subprocess
from typing import List, Optional


logger = logging.getLogger(__name__)


class DumpError(Exception):
    """Raised when pg_dump fails or cannot be started."""
    pass


class PgDumpRunner:
    """
    Produces custom-format dumps by running pg_dump.

    Authentication is done through a password file passed via PGPASSFILE;
    pg_dump output is written to a per-dump log file.
    """

    def __init__(self, binary: str = 'pg_dump', timeout: Optional[float] = None):
        """
        Args:
            binary: pg_dump executable name or path
            timeout: Seconds before the dump is killed (None waits forever)
        """
        self.binary = binary
        self.timeout = timeout

    def build_command(self, database: str, user: str, host: str, port: int, output_path: str) -> List[str]:
        return [
            self.binary,
            '-U', user,
            '-h', host,
            '-p', str(port),
            '-F', 'c',
            '-b',
            '-v',
            '-f', output_path,
            database,
        ]

    def dump(self, database: str, user: str, host: str, port: int, output_path: str,
             pgpass_path: Optional[str] = None, log_path: Optional[str] = None):
        """
        Dump one database to output_path.

        Args:
            database: Database name
            user: Database user
            host: Database host
            port: Database port
            output_path: Where pg_dump writes the archive
            pgpass_path: Password file exported as PGPASSFILE
            log_path: File receiving pg_dump stdout/stderr (inherited if None)

        Raises:
            DumpError: If pg_dump is missing, times out or exits non-zero
        """
        command = self.build_command(database, user, host, port, output_path)
        env = os.environ.copy()
        if pgpass_path:
            env['PGPASSFILE'] = pgpass_path

        logger.debug(f"Running: {' '.join(command)}")

        log_file = None
        if log_path:
            try:
                os.makedirs(os.path.dirname(log_path) or '.', exist_ok=True)
                log_file = open(log_path, 'w')
            except OSError as e:
                logger.warning(f"Cannot write pg_dump log {log_path}, output goes to console: {e}")
                log_file = None

        try:
            completed = subprocess.run(
                command,
                env=env,
                stdout=log_file,
                stderr=subprocess.STDOUT if log_file else None,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise DumpError(f"pg_dump executable not found: {self.binary}") from e
        except subprocess.TimeoutExpired as e:
            raise DumpError(f"pg_dump of {database} timed out after {self.timeout}s") from e
        except OSError as e:
            raise DumpError(f"Failed to start pg_dump for {database}: {e}") from e
        finally:
            if log_file is not None:
                log_file.close()

        if completed.returncode != 0:
            hint = f" (see {log_path})" if log_path else ''
            raise DumpError(f"pg_dump of {database} exited with status {completed.returncode}{hint}")
