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

from dataclasses import dataclass, field
from enum import StrEnum
from typing import List, Optional


class ItemStatus(StrEnum):
    TODO = "todo"
    DOING = "doing"
    DONE = "done"


class TemplateType(StrEnum):
    FREE = "free"
    WORKLOG = "worklog"
    MEETING = "meeting"

    @classmethod
    def normalize(cls, value: Optional[str]) -> "TemplateType":
        """Maps blank or unknown template names to FREE."""
        if not value or not value.strip():
            return cls.FREE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.FREE


class UserRole(StrEnum):
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass
class MigrationReport:
    """Summary returned by a migration import.

    A non-empty `failures` list next to a non-zero `persisted_items` is a
    normal partial-success outcome.
    """

    detected_patterns: List[str] = field(default_factory=list)
    persisted_items: int = 0
    persisted_files: int = 0
    failures: List[str] = field(default_factory=list)
    manual_fix_hints: List[str] = field(default_factory=list)


@dataclass
class BackupImportReport:
    imported_items: int = 0
    imported_files: int = 0
    errors: List[str] = field(default_factory=list)
