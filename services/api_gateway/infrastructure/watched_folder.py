"""Watched-folder scan trigger; the directory-polling job is not wired yet."""


class NullWatchedFolderScanner:
    """Scanner that never finds new files."""

    def scan(self) -> list[str]:
        return []
