"""
Canonical insert records produced by the entity normalizer.

These are the only shapes the persistence gateway accepts. Optional
attributes use None for absence, never the empty string.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional


class ModuleDifficulty(Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class MachineDifficulty(Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"
    INSANE = "Insane"


class MachineOS(Enum):
    WINDOWS = "Windows"
    LINUX = "Linux"
    ANDROID = "Android"
    SOLARIS = "Solaris"
    OPENBSD = "OpenBSD"
    FREEBSD = "FreeBSD"
    OTHER = "Other"


class UnitType(Enum):
    ARTICLE = "Article"
    INTERACTIVE = "Interactive"


class TagCategory(Enum):
    VULNERABILITY = "Vulnerability"
    LANGUAGE = "Language"
    AREA_OF_INTEREST = "Area of Interest"


@dataclass(frozen=True)
class ModuleRecord:
    id: int
    name: str
    description: Optional[str]
    difficulty: ModuleDifficulty
    url: Optional[str]
    image: Optional[str] = None


@dataclass(frozen=True)
class UnitRecord:
    id: int
    module_id: int
    sequence_order: int
    name: str
    type: UnitType


@dataclass(frozen=True)
class MachineRecord:
    id: int
    name: str
    synopsis: Optional[str]
    difficulty: MachineDifficulty
    os: MachineOS
    url: str
    image: Optional[str] = None


@dataclass(frozen=True)
class ExamRecord:
    id: int
    name: str
    logo: Optional[str] = None


@dataclass(frozen=True)
class VulnerabilityRecord:
    id: int
    name: str


@dataclass(frozen=True)
class RelatedMachine:
    """Machine reference carried by a module payload."""
    id: int
    name: str
    os: Optional[str] = None
    difficulty: Optional[str] = None
    logo: Optional[str] = None


@dataclass(frozen=True)
class MachineTags:
    """A machine's tag list split by category."""
    vulnerabilities: List[VulnerabilityRecord] = field(default_factory=list)
    languages: FrozenSet[str] = frozenset()
    areas_of_interest: FrozenSet[str] = frozenset()

    @property
    def vulnerability_ids(self) -> List[int]:
        return [v.id for v in self.vulnerabilities]


@dataclass(frozen=True)
class NormalizedModule:
    """Everything a single module payload yields, validated as a whole."""
    module: ModuleRecord
    units: List[UnitRecord]
    related_machines: List[RelatedMachine]
