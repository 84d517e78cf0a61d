# photoarchiver/utils/media_types.py
# Extension classes, content types and files we never archive.
# Extensions are lowercase with a leading dot.

from __future__ import annotations

PHOTO_EXT = {".jpg", ".jpeg", ".jfif", ".heif", ".heic"}
RAW_EXT = {".cr2", ".nef", ".dng", ".gpr"}
QUICKTIME_EXT = {".mp4", ".mov"}
JPEG_EXT = {".jpg", ".jpeg"}

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".mp4": "video/mp4",
    ".nef": "image/nef",
    ".dng": "image/dng",
    ".cr2": "image/x-canon-cr2",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mpg": "video/mpeg",
    ".wav": "audio/wav",
}
DEFAULT_MIME_TYPE = "application/octet-stream"

IGNORED_FILE_NAMES = {
    "thumbs.db",         # Windows Explorer
    "desktop.ini",       # Windows Explorer
    "zbthumbnail.info",  # Canon PowerShot
    ".ds_store",         # macOS Finder
}
IGNORED_EXTENSIONS = {".thumb", ".thm", ".tmp"}
IGNORED_PREFIXES = ("._",)  # AppleDouble resource forks


def content_type_for(ext: str) -> str:
    return MIME_TYPES.get(ext.lower(), DEFAULT_MIME_TYPE)


def is_ignored(name: str, ext: str) -> bool:
    return (
        name.lower() in IGNORED_FILE_NAMES
        or ext.lower() in IGNORED_EXTENSIONS
        or name.startswith(IGNORED_PREFIXES)
    )
