"""
Enregistrement des fichiers téléchargés (ZIP, PDF)
"""

import asyncio
import re
from pathlib import Path
from typing import Optional
from urllib.parse import unquote

from dashboard.config import DOWNLOAD_DIR

FILENAME_STAR_RE = re.compile(r"filename\*\s*=\s*(?:[\w-]+'[\w-]*')?([^;]+)", re.IGNORECASE)
FILENAME_RE = re.compile(r'filename\s*=\s*"?([^";]+)"?', re.IGNORECASE)


def filename_from_disposition(header: Optional[str]) -> Optional[str]:
    """Nom de fichier d'un header Content-Disposition (filename* prioritaire)"""
    if not header:
        return None
    match = FILENAME_STAR_RE.search(header)
    if match:
        name = unquote(match.group(1).strip().strip('"'))
    else:
        match = FILENAME_RE.search(header)
        name = match.group(1).strip() if match else ""
    name = Path(name.replace("\\", "/")).name
    return name or None


async def save_download(filename: str, content: bytes, directory: Path = DOWNLOAD_DIR) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / Path(filename).name
    await asyncio.to_thread(path.write_bytes, content)
    return path
