import inspect
import logging
import os
from typing import Optional
from urllib.parse import parse_qs, urlparse

from google.cloud.firestore_v1 import AsyncClient

from .errors import ConfigurationError
from .session import AsyncSession

logger = logging.getLogger(__name__)

URL_SCHEME = "firestore"
DEFAULT_URL_ENV = "DATABASE_URL"


class FirestoreDB:
    """
    Connection handle wrapping a Firestore
    :class:`google.cloud.firestore_v1.AsyncClient`.

    The same object can connect to:

    * **A local Firestore emulator**, for development and CI.
    * **The real Firestore backend**, the default when no emulator host is set.
    * **A mocked client**, for unit tests that must not touch the network.

    Instances are built explicitly (directly, from a connection string with
    :meth:`from_url`, or from the environment with :meth:`from_env`) and handed
    to whatever needs them. Sessions opened with :meth:`start_session` belong
    to the caller that opened them and must not be shared.
    """

    def __init__(
        self,
        project_id: str,
        database: Optional[str] = None,
        credentials=None,
        emulator_host: Optional[str] = None,
    ):
        """
        Parameters
        ----------
        project_id :
            Google Cloud project identifier (e.g. ``"my-gcp-project"``).
        database :
            Optional Firestore **database ID** (defaults to the default database).
        credentials :
            Explicit credentials object; if *None*, the Google SDK default
            credentials chain is used.
        emulator_host :
            Host and port of a running **Firestore emulator** such as
            ``"localhost:8080"``. When provided, the client points to the
            emulator instead of the production service.
        """
        self.project_id = project_id
        self.database = database
        self.credentials = credentials
        self._emulator_host = emulator_host

        self.client: AsyncClient = self._init_client()

    # ------------------------------------------------------------------ #
    # Construction from configuration                                    #
    # ------------------------------------------------------------------ #

    @classmethod
    def from_url(cls, url: str, credentials=None) -> "FirestoreDB":
        """
        Build a handle from a connection string.

        Format: ``firestore://<project>[/<database>][?emulator=<host:port>]``,
        e.g. ``firestore://demo-project?emulator=localhost:8080``.
        """
        parsed = urlparse(url)
        if parsed.scheme != URL_SCHEME:
            raise ConfigurationError(
                f"Unsupported connection string scheme '{parsed.scheme}', expected '{URL_SCHEME}://'."
            )
        if not parsed.netloc:
            raise ConfigurationError("Connection string has no project id.")

        database = parsed.path.strip("/") or None
        options = parse_qs(parsed.query)
        emulator_host = options.get("emulator", [None])[0]

        return cls(
            project_id=parsed.netloc,
            database=database,
            credentials=credentials,
            emulator_host=emulator_host,
        )

    @classmethod
    def from_env(cls, var: str = DEFAULT_URL_ENV, credentials=None) -> "FirestoreDB":
        """Build a handle from the connection string held in ``var``."""
        url = os.environ.get(var, "").strip()
        if not url:
            raise ConfigurationError(f"Environment variable {var} is not set.")
        return cls.from_url(url, credentials=credentials)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _init_client(self) -> AsyncClient:
        """
        Instantiate and return an :class:`AsyncClient`.

        With an emulator host the ``FIRESTORE_EMULATOR_HOST`` environment
        variable is exported so the Google client libraries route all traffic
        to it; otherwise any previous value is removed so the real backend is
        used.
        """
        if self._emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = self._emulator_host
            logger.info(f"Using Firestore emulator on {self._emulator_host}")
        else:
            os.environ.pop("FIRESTORE_EMULATOR_HOST", None)
        return AsyncClient(
            project=self.project_id,
            database=self.database,
            credentials=self.credentials,
        )

    # ------------------------------------------------------------------ #
    # Sessions                                                           #
    # ------------------------------------------------------------------ #

    def start_session(self) -> AsyncSession:
        """Open a new session bound to this handle."""
        return AsyncSession(self)

    async def close(self) -> None:
        """Release the underlying client's channels."""
        close = getattr(self.client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result
        logger.debug(f"Closed Firestore client for project {self.project_id}")

    # ------------------------------------------------------------------ #
    # Test and development helpers                                       #
    # ------------------------------------------------------------------ #

    def use_emulator(self, host: str = "localhost:8080"):
        """Switch to a **local emulator** and recreate the client."""
        self._emulator_host = host
        self.client = self._init_client()
        logger.info(f"Emulator enabled on {host}")

    def clear_emulator(self):
        """Disable the emulator and reconnect to the production endpoint."""
        self._emulator_host = None
        self.client = self._init_client()
        logger.info("Emulator disabled, using real Firestore.")

    def mock_firestore_for_tests(self):
        """Replace the underlying client with a :class:`unittest.mock.MagicMock`."""
        from unittest.mock import MagicMock

        self.client = MagicMock()
        logger.info("Firestore client replaced with MagicMock for unit tests.")
