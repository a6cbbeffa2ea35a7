from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, NamedTuple, Optional, Tuple, Union

REQUIRED_EPISODE_FIELDS = ("title", "published_at", "url")

ItemFailureKind = Literal["missing_fields", "invalid_date", "malformed_xml"]
EpisodeStatus = Literal["committed", "skipped", "failed"]


@dataclass(frozen=True)
class Episode:
    """A single feed entry with everything needed to download it.

    ``raw_xml`` holds the item as re-serialized by the parser, for diagnostics
    only; it is not the exact markup found in the feed.
    """

    url: str
    title: str
    published_at: datetime
    raw_xml: str = field(default="", repr=False, compare=False)


@dataclass(frozen=True)
class ItemFailure:
    """Why one ``<item>`` could not become an Episode."""

    kind: ItemFailureKind
    message: str
    fragment: str = field(default="", repr=False)
    missing: Tuple[str, ...] = ()
    title: Optional[str] = None
    offset: Optional[int] = None


ItemParseResult = Union[Episode, ItemFailure]


class FilenamePair(NamedTuple):
    """In-progress and final file names for one episode."""

    temp_name: str
    final_name: str


@dataclass
class EpisodeBuilder:
    """Collects episode fields while an item is scanned.

    Fields start unset and are filled in document order; ``build`` only
    succeeds once all required fields have been seen.
    """

    raw_xml: str = ""
    title: Optional[str] = None
    published_at: Optional[datetime] = None
    url: Optional[str] = None

    def missing_fields(self) -> List[str]:
        return [name for name in REQUIRED_EPISODE_FIELDS if not getattr(self, name)]

    def build(self) -> ItemParseResult:
        missing = self.missing_fields()
        if missing:
            return ItemFailure(
                kind="missing_fields",
                message=f"Missing episode properties: {', '.join(missing)}",
                fragment=self.raw_xml,
                missing=tuple(missing),
                title=self.title,
            )
        assert self.title and self.url and self.published_at  # narrowed by missing_fields
        return Episode(
            url=self.url,
            title=self.title,
            published_at=self.published_at,
            raw_xml=self.raw_xml,
        )


@dataclass
class EpisodeResult:
    """Outcome of downloading and committing a single episode."""

    episode: Episode
    status: EpisodeStatus
    path: Optional[str] = None
    error: Optional[str] = None
    bytes_written: int = 0

    @property
    def failed(self) -> bool:
        return self.status == "failed"
