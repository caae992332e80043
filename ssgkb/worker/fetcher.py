"""Local source fetcher for the SSG static content tree.

The snapshot is a directory (optionally a git checkout) laid out as:

    <root>/guides/ssg-<product>-guide-<short_id>.html
    <root>/tables/table-<product>-<type>.html
    <root>/manifests/manifest-<product>.json
    <root>/datastreams/ssg-<product>-ds.xml
"""

import asyncio
import fnmatch
from pathlib import Path

from loguru import logger

from ssgkb.config import settings
from ssgkb.errors import FetchFailedError, InvalidFormatError, ListFailedError, NotFoundError

GUIDE_GLOB = "ssg-*-guide-*.html"
TABLE_GLOB = "table-*.html"
MANIFEST_GLOB = "manifest-*.json"
DATASTREAM_GLOB = "ssg-*-ds.xml"


class SourceFetcher:
    """Materialises and enumerates the SSG content tree on local disk.

    Args:
        root: Snapshot root directory. Defaults to settings.source_path.
        repo_url: Git URL to clone when the root is missing. Defaults to
            settings.source_repo_url; empty means "use the tree as-is".
    """

    def __init__(
        self,
        root: str | Path | None = None,
        repo_url: str | None = None,
        guides_dir: str | None = None,
        tables_dir: str | None = None,
        manifests_dir: str | None = None,
        datastreams_dir: str | None = None,
    ) -> None:
        self.root = Path(root if root is not None else settings.source_path)
        self.repo_url = settings.source_repo_url if repo_url is None else repo_url
        # Checked in order by get_file_path; the data-stream glob is the most specific.
        self._dirs: dict[str, str] = {
            DATASTREAM_GLOB: datastreams_dir or settings.datastreams_dir,
            GUIDE_GLOB: guides_dir or settings.guides_dir,
            TABLE_GLOB: tables_dir or settings.tables_dir,
            MANIFEST_GLOB: manifests_dir or settings.manifests_dir,
        }

    async def _git(self, *args: str, cwd: Path | None = None) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=str(cwd) if cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise FetchFailedError(f"cannot run git: {e}") from e
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip() or f"exit status {proc.returncode}"
            raise FetchFailedError(f"git {args[0]} failed: {message}", details={"args": list(args)})
        return stdout.decode(errors="replace")

    async def pull(self) -> None:
        """Refresh the snapshot.

        A git checkout is fast-forwarded; a missing root is cloned when a
        repository URL is configured; a plain directory is used unchanged.

        Raises:
            FetchFailedError: If git fails or the root is missing without a URL.
        """
        if (self.root / ".git").exists():
            logger.info("Pulling SSG content in {}", self.root)
            await self._git("pull", "--ff-only", cwd=self.root)
        elif not self.root.exists():
            if not self.repo_url:
                raise FetchFailedError(
                    f"source tree {self.root} does not exist and no repository is configured",
                    details={"root": str(self.root)},
                )
            logger.info("Cloning {} into {}", self.repo_url, self.root)
            self.root.parent.mkdir(parents=True, exist_ok=True)
            await self._git("clone", "--depth", "1", self.repo_url, str(self.root))
        elif not self.root.is_dir():
            raise FetchFailedError(f"source root {self.root} is not a directory")
        else:
            logger.debug("Using SSG content tree {} as-is", self.root)

    def _list(self, pattern: str) -> list[str]:
        directory = self.root / self._dirs[pattern]
        if not directory.is_dir():
            raise ListFailedError(f"cannot list {directory}: not a directory", details={"dir": str(directory)})
        try:
            names = sorted(p.name for p in directory.iterdir() if p.is_file() and fnmatch.fnmatch(p.name, pattern))
        except OSError as e:
            raise ListFailedError(f"cannot list {directory}: {e}", details={"dir": str(directory)}) from e
        logger.debug("Listed {} file(s) matching {} in {}", len(names), pattern, directory)
        return names

    def list_guides(self) -> list[str]:
        return self._list(GUIDE_GLOB)

    def list_tables(self) -> list[str]:
        return self._list(TABLE_GLOB)

    def list_manifests(self) -> list[str]:
        return self._list(MANIFEST_GLOB)

    def list_data_streams(self) -> list[str]:
        return self._list(DATASTREAM_GLOB)

    def get_file_path(self, filename: str) -> str:
        """Resolve a listed file name to its absolute path.

        Raises:
            InvalidFormatError: If the name is not a bare file name of a known kind.
            NotFoundError: If the file does not exist.
        """
        if not filename or Path(filename).name != filename:
            raise InvalidFormatError(f"not a bare file name: {filename!r}")
        for pattern, subdir in self._dirs.items():
            if fnmatch.fnmatch(filename, pattern):
                path = (self.root / subdir / filename).resolve()
                if not path.is_file():
                    raise NotFoundError(f"file not found: {filename}", details={"path": str(path)})
                return str(path)
        raise InvalidFormatError(f"unrecognised SSG file name: {filename}")
