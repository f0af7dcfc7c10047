"""Lightweight PostgreSQL dump sniffing.

Only looks for pg_dump signatures and header comments; the SQL itself is
never parsed or executed.
"""
import re

import aiofiles

CUSTOM_FORMAT_MAGIC = b"PGDMP"

_SIGNATURES = (
    "PostgreSQL database dump",
    "-- PostgreSQL",
    "SET statement_timeout",
    "CREATE TABLE",
    "INSERT INTO",
)
_CREATE_TABLE_RE = re.compile(r'^CREATE TABLE (?:IF NOT EXISTS )?"?([^"\s(]+)')


async def _read_magic(path: str) -> bytes:
    async with aiofiles.open(path, "rb") as f:
        return await f.read(len(CUSTOM_FORMAT_MAGIC))


async def is_pg_dump(path: str) -> bool:
    """True if the file carries any plain-text or custom-format dump signature."""
    if await _read_magic(path) == CUSTOM_FORMAT_MAGIC:
        return True
    async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
        async for line in f:
            if any(sig in line for sig in _SIGNATURES):
                return True
    return False


async def read_dump_metadata(path: str) -> dict:
    """Extract server version, dump date and table names from a plain-text dump."""
    metadata = {"is_valid": False, "version": None, "dump_date": None, "tables": []}

    if await _read_magic(path) == CUSTOM_FORMAT_MAGIC:
        # Custom-format archives need pg_restore to list contents
        metadata["is_valid"] = True
        return metadata

    async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
        async for line in f:
            if "PostgreSQL database dump" in line:
                metadata["is_valid"] = True
            if metadata["version"] is None and "Dumped from database version" in line:
                metadata["version"] = line.split("version", 1)[1].strip() or None
            if metadata["dump_date"] is None and "Dumped on" in line:
                metadata["dump_date"] = line.split("Dumped on", 1)[1].strip() or None
            match = _CREATE_TABLE_RE.match(line)
            if match:
                metadata["tables"].append(match.group(1))
    return metadata


def human_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    i = 0
    while num_bytes >= 1024 ** (i + 1) and i < len(units) - 1:
        i += 1
    value = round(num_bytes / 1024 ** i, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {units[i]}"
