"""Post-completion file organization."""

from collections.abc import Sequence
from pathlib import PurePath

import regex
from loguru import logger
from RTN import ParsedData, parse

from harvest.media.request import MediaRequest
from harvest.media.state import ContentType
from harvest.services.downloaders.aggregator import DownloadAggregator
from harvest.services.organizer.shared import (
    FileOrganizer,
    OrganizationContext,
    OrganizationResult,
)
from harvest.services.scrapers.strategies import get_strategy
from harvest.utils import sanitize_filename

SKIPPED_EXTENSIONS = {
    ".nfo",
    ".txt",
    ".srt",
    ".sub",
    ".idx",
    ".ass",
    ".ssa",
    ".vtt",
    ".sfv",
    ".md5",
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".url",
    ".torrent",
    ".aria2",
    ".meta",
}

SKIPPED_NAME_PATTERN = regex.compile(
    r"(^\[METADATA\])|(\bsample\b)|(\btrailer\b)|(^[a-f0-9]{40}$)", regex.IGNORECASE
)


def is_organizable(path: str) -> bool:
    """False for metadata, sample, subtitle and info files."""
    file = PurePath(path)
    if file.suffix.lower() in SKIPPED_EXTENSIONS:
        return False
    return not SKIPPED_NAME_PATTERN.search(file.stem)


def extract_hints(file_name: str) -> dict[str, str | int | None]:
    """Quality, format, edition and episode hints parsed from a file name."""
    try:
        parsed: ParsedData = parse(file_name)
    except Exception as e:
        logger.debug(f"Could not parse {file_name}: {e}")
        return {}

    resolution = parsed.resolution if parsed.resolution != "unknown" else None
    return {
        "quality": resolution,
        "format": parsed.quality,
        "edition": parsed.edition,
        "season": parsed.seasons[0] if parsed.seasons else None,
        "episode": parsed.episodes[0] if parsed.episodes else None,
    }


class DownloadOrganizer:
    """Hands every content file of a finished download to the file organizer."""

    def __init__(self, aggregator: DownloadAggregator, organizer: FileOrganizer):
        self.aggregator = aggregator
        self.organizer = organizer

    def build_context(
        self,
        request: MediaRequest,
        path: str,
        size: int | None,
        season: int | None = None,
        episode: int | None = None,
    ) -> OrganizationContext:
        hints = extract_hints(PurePath(path).name)
        if request.content_type == ContentType.TV_SHOW:
            season = season if season is not None else request.season
            season = season if season is not None else hints.get("season")
            episode = episode if episode is not None else request.episode
            episode = episode if episode is not None else hints.get("episode")

        return OrganizationContext(
            content_type=request.content_type,
            title=sanitize_filename(request.title),
            year=request.year,
            season=season,
            episode=episode,
            platform=request.platform,
            quality=hints.get("quality"),
            format=hints.get("format"),
            edition=hints.get("edition"),
            original_path=path,
            file_name=sanitize_filename(PurePath(path).name),
            file_size=size,
            destination_root=str(get_strategy(request.content_type).destination()),
        )

    async def organize(
        self,
        request: MediaRequest,
        gid: str,
        known_children: Sequence[str] = (),
        season: int | None = None,
        episode: int | None = None,
    ) -> list[OrganizationResult]:
        """
        Organize the files of one finished download.

        A file that fails to organize is logged and reported; the remaining
        files are still processed.
        """
        progress = await self.aggregator.get_progress(gid, known_children)
        sizes = {f.path: f.length for f in progress.files if f.path}
        paths = [p for p in sizes if is_organizable(p)]

        if not paths:
            logger.log("ORGANIZE", f"No organizable files found for {request.log_string}")
            return []

        results: list[OrganizationResult] = []
        for path in paths:
            context = self.build_context(request, path, sizes[path], season, episode)
            try:
                result = await self.organizer.organize_file(context, request.id)
            except Exception as e:
                logger.error(f"Failed to organize {path} for {request.log_string}: {e}")
                result = OrganizationResult.failed(path, str(e))

            if result.success:
                logger.log("ORGANIZE", f"Organized {path} -> {result.organized_path}")
            else:
                logger.warning(f"Could not organize {path}: {result.error}")
            results.append(result)

        return results
