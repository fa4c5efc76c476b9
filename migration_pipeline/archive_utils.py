# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import io
import logging
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import List

from migration_pipeline.text_utils import normalize_path

logger = logging.getLogger(__name__)

# General purpose bit 0 marks encrypted members, bit 11 UTF-8 names.
ZIP_FLAG_ENCRYPTED = 0x1
ZIP_FLAG_UTF8 = 0x800

MIB = 1024 * 1024


@dataclass
class ExtractionLimits:
    """Bounds applied while unpacking untrusted, possibly nested archives."""

    max_depth: int = 5
    max_entries: int = 5000
    max_entry_bytes: int = 50 * MIB
    max_total_bytes: int = 500 * MIB


@dataclass
class ArchiveEntry:
    path: str
    data: bytes

    @property
    def lower_path(self) -> str:
        return self.path.lower()


@dataclass
class _ExtractionState:
    limits: ExtractionLimits
    failures: List[str]
    entries: List[ArchiveEntry] = field(default_factory=list)
    total_bytes: int = 0
    member_count: int = 0


def _member_name(info: zipfile.ZipInfo) -> str:
    """
    Recovers UTF-8 member names from archives that did not set the UTF-8 flag.

    zipfile decodes such names as cp437; Korean Windows and macOS exports
    usually wrote UTF-8 bytes anyway.
    """
    name = info.filename
    if info.flag_bits & ZIP_FLAG_UTF8:
        return name
    try:
        return name.encode("cp437").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return name


def extract_entries(
    source_name: str,
    data: bytes,
    failures: List[str],
    limits: ExtractionLimits | None = None,
) -> List[ArchiveEntry]:
    """
    Flattens a ZIP archive, unpacking nested `.zip` members recursively.

    Each entry path is prefixed with the path of the archive it came from, so
    `export.zip/Page/a.md` identifies `Page/a.md` inside `export.zip`.
    Problems are appended to `failures` instead of raised; an unreadable
    archive contributes no entries.

    Args:
        source_name (str): Path used as prefix for members of this archive.
        data (bytes): The archive bytes.
        failures (List[str]): Collector for human readable failure messages.
        limits (ExtractionLimits): Depth and size bounds.

    Returns:
        List[ArchiveEntry]: Non-directory, non-archive members in archive order.
    """
    state = _ExtractionState(limits=limits or ExtractionLimits(), failures=failures)
    _extract_into(state, source_name, data, depth=0)
    return state.entries


def _extract_into(state: _ExtractionState, source_name: str, data: bytes, depth: int) -> None:
    limits = state.limits
    if depth > limits.max_depth:
        state.failures.append(
            f"ZIP nesting too deep({source_name}): more than {limits.max_depth} levels"
        )
        return

    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                full_path = f"{source_name}/{normalize_path(_member_name(info))}"

                state.member_count += 1
                if state.member_count > limits.max_entries:
                    state.failures.append(
                        f"ZIP entry limit exceeded({source_name}): more than {limits.max_entries} entries"
                    )
                    return
                if info.flag_bits & ZIP_FLAG_ENCRYPTED:
                    state.failures.append(f"Encrypted ZIP entry skipped({full_path})")
                    continue
                if info.file_size > limits.max_entry_bytes:
                    state.failures.append(
                        f"ZIP entry too large({full_path}): {info.file_size} bytes"
                    )
                    continue
                if state.total_bytes + info.file_size > limits.max_total_bytes:
                    state.failures.append(
                        f"ZIP total size limit exceeded({source_name}): "
                        f"more than {limits.max_total_bytes} bytes"
                    )
                    return

                try:
                    member_bytes = read_member(archive, info, limits.max_entry_bytes)
                except (zipfile.BadZipFile, zlib.error, EOFError, OSError, ValueError) as e:
                    logger.warning("Failed to read %s: %s", full_path, e)
                    state.failures.append(f"ZIP entry read failed({full_path}): {e}")
                    continue
                state.total_bytes += len(member_bytes)

                if full_path.lower().endswith(".zip"):
                    _extract_into(state, full_path, member_bytes, depth + 1)
                else:
                    state.entries.append(ArchiveEntry(path=full_path, data=member_bytes))
    except (
        zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, RuntimeError, OSError, ValueError
    ) as e:
        logger.warning("Failed to unpack %s: %s", source_name, e)
        state.failures.append(f"ZIP extraction failed({source_name}): {e}")


def read_member(archive: zipfile.ZipFile, info: zipfile.ZipInfo, max_bytes: int) -> bytes:
    # Declared sizes can lie; stop reading once the bound is crossed.
    with archive.open(info) as member:
        payload = member.read(max_bytes + 1)
    if len(payload) > max_bytes:
        raise ValueError(f"entry {info.filename} expands beyond {max_bytes} bytes")
    return payload
