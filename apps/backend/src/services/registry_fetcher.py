"""
Remote registry fetcher.

Downloads the registry archive, discovers per-registry data files and
parses them into RegistryDocument models. Network I/O only; nothing here
touches the database.
"""
import asyncio
import io
import logging
import zipfile
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from constants import REGISTRY_DATA_FILE, REGISTRY_INDEX_FILE, REGISTRY_NAME_PREFIX
from src.core.config import get_settings
from src.core.errors import DiscoveryError, RegistryFetchError


logger = logging.getLogger(__name__)


class RepoInfo(BaseModel):
    owner: Optional[str] = None
    repo: Optional[str] = None
    stars: Optional[int] = 0
    language: Optional[str] = None
    last_commit: Optional[str] = None
    archived: bool = False


class RegistryItem(BaseModel):
    # Optional here so one bad item does not reject the whole document;
    # the normalizer skips items without a title.
    title: Optional[str] = None
    description: Optional[str] = None
    repo_info: Optional[RepoInfo] = None
    children: List["RegistryItem"] = Field(default_factory=list)


class RegistrySection(BaseModel):
    title: str
    description: Optional[str] = ""
    items: List[RegistryItem] = Field(default_factory=list)


class RegistryDocumentMetadata(BaseModel):
    title: str
    source_repository: str
    source_repository_description: Optional[str] = ""
    last_updated: str = ""


class RegistryDocument(BaseModel):
    metadata: RegistryDocumentMetadata
    items: List[RegistrySection]


def extract_registry_name(identifier: str) -> str:
    """
    "v1nvn/enhansome-go" -> "go", "enhansome-mcp-servers" -> "mcp-servers".
    Names without either prefix pass through unchanged. Applying it to
    its own output returns the same name.
    """
    parts = identifier.split("/")
    repo = parts[1] if len(parts) > 1 else identifier
    while repo.startswith(REGISTRY_NAME_PREFIX):
        repo = repo[len(REGISTRY_NAME_PREFIX):]
    return repo


def _find_repos_prefix(names: List[str]) -> Optional[str]:
    """
    Archive root folder varies with the ref ("enhansome-registry-main/",
    "enhansome-registry-<sha>/"); locate it from the first index file.
    """
    index_suffix = f"/{REGISTRY_INDEX_FILE}"
    for path in names:
        if not path.endswith(index_suffix):
            continue
        if path.startswith("repos/"):
            return ""
        marker = path.find("/repos/")
        if marker != -1:
            return path[: marker + 1]
    return None


def list_registries_in_archive(content: bytes) -> List[str]:
    try:
        archive = zipfile.ZipFile(io.BytesIO(content))
    except zipfile.BadZipFile as e:
        raise DiscoveryError(f"Registry archive is not a valid zip: {e}") from e

    with archive:
        names = archive.namelist()

    prefix = _find_repos_prefix(names)
    if prefix is None:
        raise DiscoveryError("Could not find repos/ directory in archive")

    repos_root = f"{prefix}repos/"
    registries: List[str] = []
    seen = set()
    for path in names:
        if not path.startswith(repos_root) or path.endswith("/"):
            continue
        if not path.endswith(f"/{REGISTRY_INDEX_FILE}"):
            continue

        parts = path[len(repos_root):].split("/")
        if len(parts) < 3:
            continue

        identifier = f"{parts[0]}/{parts[1]}"
        if identifier not in seen:
            seen.add(identifier)
            registries.append(identifier)

    return registries


class RegistryFetcher:
    """
    Usage:
        fetcher = RegistryFetcher(client)
        documents = await fetcher.fetch_registry_files()
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        archive_url: str | None = None,
        raw_base_url: str | None = None,
        concurrency: int | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        self.client = client
        self.archive_url = archive_url or settings.registry_archive_url
        self.raw_base_url = (raw_base_url or settings.registry_raw_base_url).rstrip("/")
        self.concurrency = max(1, concurrency or settings.fetch_concurrency)
        self.timeout = timeout or settings.fetch_timeout_seconds

    def registry_data_url(self, identifier: str) -> str:
        return f"{self.raw_base_url}/repos/{identifier}/{REGISTRY_DATA_FILE}"

    async def discover_registries(self, archive_url: str | None = None) -> List[str]:
        """Returns unique "owner/repo" identifiers; raises DiscoveryError."""
        url = archive_url or self.archive_url
        logger.info(f"Discovering registries from {url}")

        try:
            response = await self.client.get(url, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Failed to fetch archive: {e}") from e

        if response.status_code != 200:
            raise DiscoveryError(f"Failed to fetch archive: {response.status_code}")

        registries = list_registries_in_archive(response.content)
        logger.info(f"Discovered {len(registries)} registries")
        return registries

    async def fetch_registry(self, identifier: str) -> RegistryDocument:
        url = self.registry_data_url(identifier)
        try:
            response = await self.client.get(url, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise RegistryFetchError(identifier, f"request failed: {e}") from e

        if response.status_code != 200:
            raise RegistryFetchError(
                identifier, f"{response.status_code} ({REGISTRY_DATA_FILE} not found)"
            )

        try:
            return RegistryDocument.model_validate_json(response.content)
        except ValidationError as e:
            raise RegistryFetchError(
                identifier, f"invalid data structure ({e.error_count()} errors)"
            ) from e

    async def fetch_registry_files(
        self, archive_url: str | None = None
    ) -> dict[str, RegistryDocument]:
        """
        Maps normalized registry name -> parsed document.
        Registries that cannot be fetched or parsed are skipped; discovery
        failures propagate.
        """
        registries = await self.discover_registries(archive_url)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _fetch(identifier: str) -> tuple[str, RegistryDocument | None]:
            async with semaphore:
                try:
                    return identifier, await self.fetch_registry(identifier)
                except RegistryFetchError as e:
                    logger.warning(f"Skipped {e.identifier}: {e.reason}")
                    return identifier, None

        results = await asyncio.gather(*(_fetch(r) for r in registries))

        files: dict[str, RegistryDocument] = {}
        for identifier, document in results:
            if document is None:
                continue
            name = extract_registry_name(identifier)
            files[name] = document
            logger.info(f"Fetched {name}")

        return files
