"""
Read and write Neovim configuration files under the configuration root.
"""

import logging
import shutil
import time
from pathlib import Path
from typing import Optional

from .errors import InvalidArgumentError, NotFoundError
from .process import advisory

logger = logging.getLogger(__name__)

CONFIG_FILES = {
    "init": "init.lua",
    "plugins": "lua/plugins/init.lua",
    "mappings": "lua/mappings.lua",
    "options": "lua/options.lua",
}


def placeholder(relative_path: str) -> str:
    return f"-- File not found: {relative_path}"


class NvimConfig:
    """Logical config files (init, plugins, mappings, options) and raw paths."""

    def __init__(self, config_dir: Path):
        self.config_dir = Path(config_dir)

    def path_for(self, config_type: str) -> Path:
        if config_type not in CONFIG_FILES:
            raise InvalidArgumentError(
                f"Invalid config type: {config_type}. Use: {list(CONFIG_FILES)}"
            )
        return self.config_dir / CONFIG_FILES[config_type]

    def read_logical(self, config_type: str) -> str:
        """Content of a logical file, or a placeholder if it is missing."""
        path = self.path_for(config_type)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return placeholder(CONFIG_FILES[config_type])

    def get(self, config_type: str = "all", file_path: Optional[str] = None) -> dict:
        """Return config content keyed by logical name (or by file_path)."""
        if file_path:
            path = Path(file_path).expanduser()
            try:
                return {file_path: path.read_text(encoding="utf-8")}
            except FileNotFoundError:
                raise NotFoundError(f"File not found: {file_path}")

        if config_type == "all":
            return {name: self.read_logical(name) for name in CONFIG_FILES}
        return {config_type: self.read_logical(config_type)}

    def set(
        self,
        config_type: Optional[str],
        content: str,
        file_path: Optional[str] = None,
        backup: bool = True,
    ) -> Path:
        """Replace a config file with content and return its path.

        With backup=True the current content is first copied to
        `<file>.backup.<millis>`; a failed backup does not stop the write.
        """
        if file_path:
            target = Path(file_path).expanduser()
        else:
            target = self.path_for(config_type or "init")

        if backup:
            with advisory(f"backup of {target}"):
                self.backup(target)

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        logger.info(f"Wrote config {target}")
        return target

    def backup(self, target: Path) -> Path:
        backup_path = target.with_name(f"{target.name}.backup.{int(time.time() * 1000)}")
        shutil.copyfile(target, backup_path)
        return backup_path
