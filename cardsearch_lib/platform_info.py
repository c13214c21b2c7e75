"""
Platform Info - One-time platform capability detection.

Components that behave differently per operating system (encoding detection,
filesystem roots, exclude patterns) receive a PlatformProfile instead of
probing sys.platform themselves, so tests can hand them any platform.

Usage:
    from cardsearch_lib.platform_info import current_profile, PlatformProfile

    profile = current_profile()
    windows = PlatformProfile.for_platform('windows')
"""

import locale
import sys
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

WINDOWS = 'windows'
MACOS = 'macos'
LINUX = 'linux'

# Encodings tried after UTF-8 fails, by platform
PLATFORM_ENCODINGS = {
    WINDOWS: ('gbk', 'gb2312', 'big5'),
    MACOS: ('mac-roman',),
    LINUX: (),
}

# Encoding used for the last-resort lossy decode
SYSTEM_DEFAULT_ENCODINGS = {
    WINDOWS: 'gbk',
    MACOS: 'utf-8',
    LINUX: 'utf-8',
}


def _platform_name(platform: str) -> str:
    if platform.startswith('win'):
        return WINDOWS
    if platform == 'darwin':
        return MACOS
    return LINUX


@dataclass(frozen=True)
class PlatformProfile:
    """Capabilities of the platform the indexer runs on."""
    name: str
    system_encoding: str
    encoding_candidates: tuple[str, ...] = ()
    home: Path = field(default_factory=Path.home)

    @property
    def is_windows(self) -> bool:
        return self.name == WINDOWS

    @property
    def is_macos(self) -> bool:
        return self.name == MACOS

    @classmethod
    def for_platform(cls, name: str, home: Path | None = None) -> 'PlatformProfile':
        """
        Build the profile for a named platform.

        Args:
            name: 'windows', 'macos' or 'linux' (sys.platform values also accepted)
            home: Home directory override

        Returns:
            PlatformProfile with that platform's encoding candidates
        """
        if name not in PLATFORM_ENCODINGS:
            name = _platform_name(name)
        system_encoding = SYSTEM_DEFAULT_ENCODINGS[name]
        candidates = list(PLATFORM_ENCODINGS[name])
        if system_encoding not in candidates:
            candidates.append(system_encoding)
        return cls(
            name=name,
            system_encoding=system_encoding,
            encoding_candidates=tuple(candidates),
            home=home or Path.home(),
        )

    def with_encodings(self, candidates: list[str]) -> 'PlatformProfile':
        """Return a copy with a different encoding candidate order."""
        return PlatformProfile(
            name=self.name,
            system_encoding=self.system_encoding,
            encoding_candidates=tuple(candidates),
            home=self.home,
        )


@lru_cache(maxsize=1)
def current_profile() -> PlatformProfile:
    """Detect the running platform once and cache the profile."""
    name = _platform_name(sys.platform)
    profile = PlatformProfile.for_platform(name)
    preferred = locale.getpreferredencoding(False).lower()
    if name == LINUX and preferred and preferred not in ('utf-8', 'utf8', 'ansi_x3.4-1968'):
        profile = profile.with_encodings(list(profile.encoding_candidates) + [preferred])
    return profile
