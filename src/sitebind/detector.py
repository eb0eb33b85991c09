"""
Framework detection for the working directory.

A command is bound as a site when the directory holds the config file of a
known web framework. Each rule names a marker file, optionally with several
extensions, and optionally a pattern the file contents must match.
"""

import asyncio
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Pattern

CONFIG_EXTENSIONS = (".js", ".cjs", ".mjs", ".ts")


@dataclass(frozen=True)
class SiteRule:
    file: str
    multi_extension: bool = False
    match: Optional[Pattern[str]] = None
    extensions: tuple[str, ...] = field(default=CONFIG_EXTENSIONS)

    def candidates(self) -> list[str]:
        if self.multi_extension:
            return [f"{self.file}{ext}" for ext in self.extensions]
        return [self.file]


SITE_RULES: tuple[SiteRule, ...] = (
    SiteRule("next.config", multi_extension=True),
    SiteRule("astro.config", multi_extension=True),
    SiteRule("remix.config", multi_extension=True),
    SiteRule("svelte.config", multi_extension=True),
    SiteRule("gatsby-config", multi_extension=True),
    SiteRule("angular.json"),
    SiteRule("ember-cli-build.js"),
    SiteRule(
        "vite.config",
        multi_extension=True,
        match=re.compile(r"solid-start|plugin-vue|plugin-react|@preact/preset-vite"),
    ),
    SiteRule("package.json", match=re.compile(r"react-scripts")),  # Create React App
    SiteRule("index.html"),  # plain HTML
)


def _probe(path: Path, match: Optional[Pattern[str]]) -> bool:
    try:
        if not path.is_file():
            return False
        if match is None:
            return True
        return match.search(path.read_text(errors="replace")) is not None
    except OSError:
        return False


async def is_running_in_site(cwd: Path, rules: tuple[SiteRule, ...] = SITE_RULES) -> bool:
    """Return True if ``cwd`` matches any site rule."""
    probes = [
        asyncio.to_thread(_probe, Path(cwd) / name, rule.match)
        for rule in rules
        for name in rule.candidates()
    ]
    results = await asyncio.gather(*probes)
    return any(results)
