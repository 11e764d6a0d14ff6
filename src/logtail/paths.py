"""Where logtail reads from and writes to.

The tailed file or directory belongs to the application writing it and is
only ever read.  Everything logtail itself writes goes below ``data_root``::

  state/       run lock, alive / ready probe files
  output/      <channel>.jsonl for the jsonl sink
  warehouse/   records.duckdb for the duckdb sink
"""

from dataclasses import dataclass
from pathlib import Path

from logtail.config import Settings


@dataclass(frozen=True)
class ProjectPaths:
    """Concrete locations for one configuration; build via ``from_settings``."""

    source: Path | None
    data_root: Path
    state_dir: Path
    output_dir: Path
    warehouse_dir: Path

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProjectPaths":
        root = settings.paths.data_root
        return cls(
            source=settings.source.location,
            data_root=root,
            state_dir=root / "state",
            output_dir=root / "output",
            warehouse_dir=root / "warehouse",
        )

    def ensure_output_dirs(self) -> None:
        """mkdir -p every managed directory; the source is left alone."""
        for managed in (self.state_dir, self.output_dir, self.warehouse_dir):
            managed.mkdir(parents=True, exist_ok=True)
