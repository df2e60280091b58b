"""
Entity normalizer: remote payload shapes to canonical insert records.

Every function here is pure. A payload either yields exactly one record
(or record set) or raises NormalizationError; nothing is returned partially.

Unit ordering rule: sections are stably sorted by their integer ``page``
value (ties keep payload order) and renumbered densely starting at
UNIT_SEQUENCE_BASE.
"""
import logging
import re
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from .records import (
    ExamRecord,
    MachineDifficulty,
    MachineOS,
    MachineRecord,
    MachineTags,
    ModuleDifficulty,
    ModuleRecord,
    NormalizedModule,
    RelatedMachine,
    TagCategory,
    UnitRecord,
    UnitType,
    VulnerabilityRecord,
)

logger = logging.getLogger(__name__)

UNIT_SEQUENCE_BASE = 1
INTERACTIVE_UNIT_TYPE = "interactive"
DEFAULT_MACHINE_URL_BASE = "https://app.hackthebox.com/machines"
_INTEGER = re.compile(r"-?[0-9]+")

E = TypeVar("E", bound=Enum)


class NormalizationError(ValueError):
    """A payload that cannot be mapped to a canonical record."""

    def __init__(self, entity: str, entity_id: Any, reason: str):
        self.entity = entity
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity} {entity_id}: {reason}")


def _coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _INTEGER.fullmatch(value.strip()):
        return int(value.strip())
    return None


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _required_id(payload: Dict[str, Any], entity: str, key: str = "id") -> int:
    entity_id = _coerce_int(payload.get(key))
    if entity_id is None:
        raise NormalizationError(entity, payload.get(key), f"missing or non-integer {key}")
    return entity_id


def _required_text(payload: Dict[str, Any], entity: str, entity_id: Any, key: str) -> str:
    text = _optional_text(payload.get(key))
    if text is None:
        raise NormalizationError(entity, entity_id, f"missing {key}")
    return text


def _label(value: Any) -> Optional[str]:
    """Accept either a plain label or a {title, value} object."""
    if isinstance(value, dict):
        value = value.get("title") or value.get("text") or value.get("value")
    return _optional_text(value)


def _match_enum(enum_cls: Type[E], label: Optional[str]) -> Optional[E]:
    if label is None:
        return None
    wanted = label.strip().lower()
    for member in enum_cls:
        if member.value.lower() == wanted:
            return member
    return None


def _require_dict(payload: Any, entity: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise NormalizationError(entity, None, f"expected object, got {type(payload).__name__}")
    return payload


def normalize_module_record(payload: Dict[str, Any]) -> ModuleRecord:
    payload = _require_dict(payload, "module")
    module_id = _required_id(payload, "module")
    name = _required_text(payload, "module", module_id, "name")

    label = _label(payload.get("difficulty"))
    difficulty = _match_enum(ModuleDifficulty, label)
    if difficulty is None:
        raise NormalizationError("module", module_id, f"unrecognized difficulty {label!r}")

    url = payload.get("url")
    if isinstance(url, dict):
        url = url.get("absolute")

    return ModuleRecord(
        id=module_id,
        name=name,
        description=_optional_text(payload.get("description")),
        difficulty=difficulty,
        url=_optional_text(url),
        image=_optional_text(payload.get("avatar")) or _optional_text(payload.get("logo")),
    )


def normalize_units(module_id: int, sections: Any) -> List[UnitRecord]:
    """
    Map a module's sections to dense, ordered units.

    Args:
        module_id: Owning module id
        sections: Remote section list (None means no units)

    Returns:
        Units with sequence_order UNIT_SEQUENCE_BASE..n
    """
    if sections is None:
        return []
    if not isinstance(sections, list):
        raise NormalizationError("module", module_id, "sections is not a list")

    keyed = []
    for position, section in enumerate(sections):
        if not isinstance(section, dict):
            raise NormalizationError("module", module_id, f"section #{position} is not an object")
        unit_id = _coerce_int(section.get("id"))
        page = _coerce_int(section.get("page"))
        if unit_id is None or page is None:
            raise NormalizationError(
                "module", module_id, f"section #{position} missing integer id or page"
            )
        keyed.append((page, position, unit_id, section))

    keyed.sort(key=lambda item: (item[0], item[1]))

    units = []
    seen_ids = set()
    for offset, (_, _, unit_id, section) in enumerate(keyed):
        if unit_id in seen_ids:
            raise NormalizationError("module", module_id, f"duplicate unit id {unit_id}")
        seen_ids.add(unit_id)
        units.append(UnitRecord(
            id=unit_id,
            module_id=module_id,
            sequence_order=UNIT_SEQUENCE_BASE + offset,
            name=_optional_text(section.get("title")) or _optional_text(section.get("name")) or f"Unit {unit_id}",
            type=UnitType.INTERACTIVE if section.get("type") == INTERACTIVE_UNIT_TYPE else UnitType.ARTICLE,
        ))
    return units


def normalize_related_machines(payload: Dict[str, Any]) -> List[RelatedMachine]:
    module_id = payload.get("id")
    related = payload.get("related") or {}
    if not isinstance(related, dict):
        raise NormalizationError("module", module_id, "related is not an object")

    machines = related.get("machines") or []
    if not isinstance(machines, list):
        raise NormalizationError("module", module_id, "related.machines is not a list")

    result: List[RelatedMachine] = []
    seen = set()
    for entry in machines:
        if not isinstance(entry, dict):
            raise NormalizationError("module", module_id, "related machine is not an object")
        machine_id = _coerce_int(entry.get("id"))
        name = _optional_text(entry.get("name"))
        if machine_id is None or name is None:
            raise NormalizationError("module", module_id, "related machine missing id or name")
        if machine_id in seen:
            continue
        seen.add(machine_id)
        result.append(RelatedMachine(
            id=machine_id,
            name=name,
            os=_label(entry.get("os")),
            difficulty=_label(entry.get("difficultyText")) or _label(entry.get("difficulty")),
            logo=_optional_text(entry.get("logo")) or _optional_text(entry.get("avatar")),
        ))
    return result


def normalize_module(payload: Dict[str, Any]) -> NormalizedModule:
    """Validate a module payload with its units and related machines as one unit."""
    module = normalize_module_record(payload)
    units = normalize_units(module.id, payload.get("sections"))
    related = normalize_related_machines(payload)
    return NormalizedModule(module=module, units=units, related_machines=related)


def normalize_machine(
    detail: Dict[str, Any],
    related: Optional[RelatedMachine] = None,
    url_base: str = DEFAULT_MACHINE_URL_BASE,
) -> MachineRecord:
    """
    Build a machine record from the labs profile, filling gaps from the
    module's related-machine entry.
    """
    detail = _require_dict(detail, "machine")
    machine_id = _coerce_int(detail.get("id"))
    if machine_id is None and related is not None:
        machine_id = related.id
    if machine_id is None:
        raise NormalizationError("machine", detail.get("id"), "missing or non-integer id")

    name = _optional_text(detail.get("name")) or (related.name if related else None)
    if name is None:
        raise NormalizationError("machine", machine_id, "missing name")

    difficulty_label = (
        _label(detail.get("difficultyText"))
        or _label(detail.get("difficulty"))
        or (related.difficulty if related else None)
    )
    difficulty = _match_enum(MachineDifficulty, difficulty_label)
    if difficulty is None:
        raise NormalizationError("machine", machine_id, f"unrecognized difficulty {difficulty_label!r}")

    os_label = _label(detail.get("os")) or (related.os if related else None)
    machine_os = _match_enum(MachineOS, os_label) or MachineOS.OTHER

    image = (
        _optional_text(detail.get("avatar"))
        or _optional_text(detail.get("logo"))
        or (related.logo if related else None)
    )

    return MachineRecord(
        id=machine_id,
        name=name,
        synopsis=_optional_text(detail.get("synopsis")),
        difficulty=difficulty,
        os=machine_os,
        url=f"{url_base.rstrip('/')}/{name}",
        image=image,
    )


def normalize_exam(payload: Dict[str, Any]) -> ExamRecord:
    payload = _require_dict(payload, "exam")
    exam_id = _required_id(payload, "exam")
    return ExamRecord(
        id=exam_id,
        name=_required_text(payload, "exam", exam_id, "name"),
        logo=_optional_text(payload.get("logo")),
    )


def normalize_vulnerability(payload: Dict[str, Any]) -> VulnerabilityRecord:
    payload = _require_dict(payload, "vulnerability")
    vuln_id = _required_id(payload, "vulnerability")
    return VulnerabilityRecord(
        id=vuln_id,
        name=_required_text(payload, "vulnerability", vuln_id, "name"),
    )


def normalize_exam_module_ids(exam_id: int, modules: Iterable[Any]) -> List[int]:
    ids: List[int] = []
    for entry in modules:
        raw = entry.get("id") if isinstance(entry, dict) else entry
        module_id = _coerce_int(raw)
        if module_id is None:
            raise NormalizationError("exam", exam_id, f"related module without integer id: {raw!r}")
        if module_id not in ids:
            ids.append(module_id)
    return ids


def partition_tags(machine_id: int, tags: Any) -> MachineTags:
    """
    Split a machine's flat tag list by category.

    Vulnerability tags become records; languages and areas of interest are
    kept as plain label sets. Unknown categories are ignored.
    """
    if not isinstance(tags, list):
        raise NormalizationError("machine", machine_id, "tag list is not a list")

    vulnerabilities: Dict[int, VulnerabilityRecord] = {}
    languages = set()
    areas = set()

    for tag in tags:
        if not isinstance(tag, dict):
            raise NormalizationError("machine", machine_id, "tag is not an object")
        category = _match_enum(TagCategory, _optional_text(tag.get("category")))
        if category is TagCategory.VULNERABILITY:
            record = normalize_vulnerability(tag)
            vulnerabilities[record.id] = record
        elif category is TagCategory.LANGUAGE:
            name = _required_text(tag, "tag", tag.get("id"), "name")
            languages.add(name)
        elif category is TagCategory.AREA_OF_INTEREST:
            name = _required_text(tag, "tag", tag.get("id"), "name")
            areas.add(name)
        else:
            logger.debug("Ignoring tag %r with unknown category %r", tag.get("name"), tag.get("category"))

    return MachineTags(
        vulnerabilities=list(vulnerabilities.values()),
        languages=frozenset(languages),
        areas_of_interest=frozenset(areas),
    )
