"""
YouTube URL Parser Utility

Validates submitted URLs and extracts video identifiers:
- youtube.com/watch?v=ID (also with v= later in the query)
- youtu.be/ID
- youtube.com/embed/ID, /v/ID, /shorts/ID, /live/ID

The video id doubles as the job identity so that repeated submissions of the
same video land on the same job.
"""

import logging
import re
import uuid
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from core.error_handling import InvalidInput

logger = logging.getLogger(__name__)


class URLType(Enum):
    """Types of YouTube URLs"""
    VIDEO = "video"          # youtube.com/watch?v=XXX, youtu.be/XXX
    SHORTS = "shorts"        # youtube.com/shorts/XXX
    LIVE = "live"            # youtube.com/live/XXX
    OTHER = "other"          # recognized host, no extractable video id
    INVALID = "invalid"      # Not a YouTube URL


class YouTubeURLParser:
    """
    Parses YouTube URLs and extracts video ids.

    Video ids are matched leniently (any run of id characters) since the
    hosting site has used shorter ids for test and legacy content.
    """

    YOUTUBE_DOMAINS = (
        'youtube.com',
        'youtu.be',
        'youtube-nocookie.com',
    )

    PATH_PATTERNS = [
        (r'^/(?:embed|v)/([a-zA-Z0-9_-]+)', URLType.VIDEO),
        (r'^/shorts/([a-zA-Z0-9_-]+)', URLType.SHORTS),
        (r'^/live/([a-zA-Z0-9_-]+)', URLType.LIVE),
    ]

    VIDEO_ID_REGEX = re.compile(r'^[a-zA-Z0-9_-]{1,64}$')

    def __init__(self):
        """Initialize the URL parser"""
        self.path_regex = [(re.compile(pattern), url_type) for pattern, url_type in self.PATH_PATTERNS]

    def _normalize(self, url: str) -> str:
        url = url.strip()
        if not url.startswith(('http://', 'https://')):
            url = 'https://' + url
        return url

    def is_youtube_url(self, url: str) -> bool:
        """
        Check if a URL points at a recognized YouTube host.

        Args:
            url: URL to check

        Returns:
            True if it's a YouTube URL, False otherwise
        """
        if not url or not url.strip():
            return False
        try:
            parsed = urlparse(self._normalize(url))
        except ValueError:
            return False
        domain = (parsed.hostname or '').lower()
        return any(domain == d or domain.endswith(f'.{d}') for d in self.YOUTUBE_DOMAINS)

    def parse(self, url: str) -> Tuple[URLType, Optional[str], Dict[str, Any]]:
        """
        Parse a YouTube URL and return its type and video id.

        Returns:
            Tuple of (URLType, video_id or None, metadata)
        """
        if not self.is_youtube_url(url):
            return URLType.INVALID, None, {'original_url': url}

        normalized = self._normalize(url)
        parsed = urlparse(normalized)
        domain = (parsed.hostname or '').lower()
        metadata = {'original_url': normalized}

        if domain == 'youtu.be' or domain.endswith('.youtu.be'):
            candidate = parsed.path.lstrip('/').split('/')[0]
            if self.VIDEO_ID_REGEX.match(candidate):
                return URLType.VIDEO, candidate, metadata
            return URLType.OTHER, None, metadata

        if parsed.path.rstrip('/') == '/watch':
            # Covers both watch?v=ID and watch?feature=x&v=ID
            candidate = (parse_qs(parsed.query).get('v') or [''])[0]
            if self.VIDEO_ID_REGEX.match(candidate):
                return URLType.VIDEO, candidate, metadata

        for regex, url_type in self.path_regex:
            match = regex.match(parsed.path)
            if match:
                return url_type, match.group(1), metadata

        return URLType.OTHER, None, metadata

    def extract_video_id(self, url: str) -> Optional[str]:
        """Extract the video id from a URL, or None."""
        _, video_id, _ = self.parse(url)
        return video_id

    def get_video_url(self, video_id: str) -> str:
        """Construct a standard video URL from a video ID."""
        return f"https://www.youtube.com/watch?v={video_id}"


# Convenience functions
_parser = YouTubeURLParser()


def parse_youtube_url(url: str) -> Tuple[URLType, Optional[str], Dict[str, Any]]:
    """Parse a YouTube URL and return its type and video id."""
    return _parser.parse(url)


def get_video_id(url: str) -> Optional[str]:
    """Extract video ID from a YouTube URL."""
    return _parser.extract_video_id(url)


def is_youtube_url(url: str) -> bool:
    """Check if a URL is a YouTube URL."""
    return _parser.is_youtube_url(url)


def validate_submission_url(url: Optional[str]) -> str:
    """Return the stripped URL or raise InvalidInput."""
    if not url or not url.strip():
        raise InvalidInput("URL is required")
    if not _parser.is_youtube_url(url):
        raise InvalidInput("Invalid YouTube URL")
    return url.strip()


def derive_job_id(url: str) -> str:
    """
    Content-addressed job identity: the video id when one can be extracted,
    otherwise a random id (such submissions never deduplicate).
    """
    video_id = _parser.extract_video_id(url)
    if video_id:
        return video_id
    job_id = uuid.uuid4().hex
    logger.info(f"No video id in {url}, using random job id {job_id}")
    return job_id
