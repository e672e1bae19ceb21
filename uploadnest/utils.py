import math
import os
import re
import uuid

FALLBACK_FILENAME = "untitled"
MAX_BASENAME_LENGTH = 64

_INVALID_CHARS = re.compile(r'[\\/:*?"<>|]')
_WHITESPACE = re.compile(r"\s+")
_UNDERSCORES = re.compile(r"_{2,}")

_SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB", "PB"]

def sanitize_filename(filename: str) -> str:
    if not filename:
        return FALLBACK_FILENAME

    sanitized = _INVALID_CHARS.sub("_", filename)
    sanitized = _WHITESPACE.sub("_", sanitized)
    sanitized = _UNDERSCORES.sub("_", sanitized)
    sanitized = sanitized.strip("_")

    return sanitized or FALLBACK_FILENAME

def split_extension(filename: str):
    """Returns (basename, ext) where ext keeps its leading dot, e.g. ("report", ".pdf")."""
    name = os.path.basename(filename.replace("\\", "/"))
    base, ext = os.path.splitext(name)
    return base, ext

def build_storage_key(owner_id, original_name: str) -> str:
    base, ext = split_extension(original_name)
    clean_name = sanitize_filename(base)[:MAX_BASENAME_LENGTH]
    return f"users/{owner_id}/{uuid.uuid4()}-{clean_name}{ext}"

def format_bytes(num_bytes: int, decimals: int = 2) -> str:
    if num_bytes == 0:
        return "0 Bytes"

    sign = "-" if num_bytes < 0 else ""
    num_bytes = abs(num_bytes)
    index = 0
    while num_bytes >= 1024 ** (index + 1) and index < len(_SIZE_UNITS) - 1:
        index += 1
    value = round(num_bytes / math.pow(1024, index), max(decimals, 0))
    if value == int(value):
        value = int(value)
    return f"{sign}{value} {_SIZE_UNITS[index]}"
