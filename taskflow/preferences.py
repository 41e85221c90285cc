from dataclasses import asdict, dataclass, fields, replace

from .local_cache import LocalCache

THEMES = ("light", "dark", "system")
TIMELINE_MODES = ("calendar", "gantt")


@dataclass
class Preferences:
    theme: str = "system"
    timeline_mode: str = "calendar"
    sidebar_open: bool = True


class PreferenceStore:
    """Preferences persisted in the local cache under one key."""

    KEY = "preferences"

    def __init__(self, cache: LocalCache):
        self.cache = cache
        self.preferences = self._load()

    def _load(self) -> Preferences:
        stored = self.cache.get(self.KEY)
        if not isinstance(stored, dict):
            stored = {}
        known = {f.name for f in fields(Preferences)}
        prefs = Preferences(**{k: v for k, v in stored.items() if k in known})
        if prefs.theme not in THEMES:
            prefs.theme = "system"
        if prefs.timeline_mode not in TIMELINE_MODES:
            prefs.timeline_mode = "calendar"
        return prefs

    def update(self, **changes) -> Preferences:
        unknown = set(changes) - {f.name for f in fields(Preferences)}
        if unknown:
            raise AttributeError(f"Unknown preference: {', '.join(sorted(unknown))}")
        candidate = replace(self.preferences, **changes)
        if candidate.theme not in THEMES:
            raise ValueError(f"Unknown theme: {candidate.theme}")
        if candidate.timeline_mode not in TIMELINE_MODES:
            raise ValueError(f"Unknown timeline mode: {candidate.timeline_mode}")
        self.preferences = candidate
        self.cache.set(self.KEY, asdict(self.preferences))
        return self.preferences

    def toggle_sidebar(self) -> bool:
        return self.update(sidebar_open=not self.preferences.sidebar_open).sidebar_open
