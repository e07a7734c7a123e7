from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Mapping, Optional, Sequence

TIME_EPSILON = 0.001


class ValidationError(ValueError):
    def __init__(self, message: str, index: Optional[int] = None, fragment_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.index = index
        self.fragment_id = fragment_id


class NonContiguousError(ValidationError):
    pass


class UnsortedError(ValidationError):
    pass


class DuplicateIdError(ValidationError):
    pass


class InvalidTimeError(ValidationError):
    pass


class IndexOutOfRange(IndexError):
    pass


@dataclass(frozen=True)
class Fragment:
    id: str
    begin_sec: float
    end_sec: float
    audio_ref: str

    @property
    def duration(self) -> float:
        return max(0.0, self.end_sec - self.begin_sec)

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "begin": self.begin_sec,
            "end": self.end_sec,
            "file": self.audio_ref,
        }


def _same_time(a: float, b: float) -> bool:
    return abs(a - b) <= TIME_EPSILON


def _coerce_time(value: object, field_name: str, index: int, fragment_id: str) -> float:
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise InvalidTimeError(
            f"Fragment {index} ({fragment_id!r}) has a non-numeric {field_name}: {value!r}",
            index=index,
            fragment_id=fragment_id,
        ) from None
    if math.isnan(parsed) or math.isinf(parsed):
        raise InvalidTimeError(
            f"Fragment {index} ({fragment_id!r}) has a non-finite {field_name}",
            index=index,
            fragment_id=fragment_id,
        )
    return parsed


def fragment_from_record(record: Mapping[str, object], index: int = 0) -> Fragment:
    fragment_id = str(record.get("id") or "").strip()
    if not fragment_id:
        raise ValidationError(f"Fragment {index} has no id", index=index)
    begin = _coerce_time(record.get("begin"), "begin", index, fragment_id)
    end = _coerce_time(record.get("end"), "end", index, fragment_id)
    audio_ref = str(record.get("file") or record.get("audio") or "")
    return Fragment(id=fragment_id, begin_sec=begin, end_sec=end, audio_ref=audio_ref)


def validate(fragments: Iterable[Fragment]) -> "FragmentTimeline":
    """Check ordering, contiguity and id uniqueness and build a timeline.

    Contiguity is enforced between consecutive fragments that share an
    audio file. When the file changes, the next fragment must start at 0
    because every file is expected to be covered from its beginning.
    """
    items = list(fragments)
    seen: dict[str, int] = {}
    for idx, frag in enumerate(items):
        if frag.begin_sec < 0:
            raise InvalidTimeError(
                f"Fragment {idx} ({frag.id!r}) begins before 0: {frag.begin_sec}",
                index=idx,
                fragment_id=frag.id,
            )
        if frag.end_sec < frag.begin_sec - TIME_EPSILON:
            raise InvalidTimeError(
                f"Fragment {idx} ({frag.id!r}) ends before it begins: "
                f"{frag.begin_sec} > {frag.end_sec}",
                index=idx,
                fragment_id=frag.id,
            )
        if frag.id in seen:
            raise DuplicateIdError(
                f"Fragment id {frag.id!r} at index {idx} duplicates index {seen[frag.id]}",
                index=idx,
                fragment_id=frag.id,
            )
        seen[frag.id] = idx

    if items and not _same_time(items[0].begin_sec, 0.0):
        raise NonContiguousError(
            f"First fragment ({items[0].id!r}) must begin at 0, got {items[0].begin_sec}",
            index=0,
            fragment_id=items[0].id,
        )

    for idx in range(len(items) - 1):
        current = items[idx]
        nxt = items[idx + 1]
        if current.audio_ref != nxt.audio_ref:
            if not _same_time(nxt.begin_sec, 0.0):
                raise NonContiguousError(
                    f"Fragment {idx + 1} ({nxt.id!r}) starts {nxt.audio_ref!r} "
                    f"at {nxt.begin_sec} instead of 0",
                    index=idx + 1,
                    fragment_id=nxt.id,
                )
            continue
        if nxt.begin_sec < current.begin_sec - TIME_EPSILON:
            raise UnsortedError(
                f"Fragment {idx + 1} ({nxt.id!r}) begins at {nxt.begin_sec}, "
                f"before fragment {idx} ({current.id!r}) at {current.begin_sec}",
                index=idx + 1,
                fragment_id=nxt.id,
            )
        if not _same_time(nxt.begin_sec, current.end_sec):
            raise NonContiguousError(
                f"Fragment {idx + 1} ({nxt.id!r}) begins at {nxt.begin_sec} "
                f"but fragment {idx} ({current.id!r}) ends at {current.end_sec}",
                index=idx + 1,
                fragment_id=nxt.id,
            )

    return FragmentTimeline(items, _validated=True)


class FragmentTimeline:
    def __init__(self, fragments: Sequence[Fragment], *, _validated: bool = False) -> None:
        if not _validated:
            checked = validate(fragments)
            fragments = checked._fragments
        self._fragments: tuple[Fragment, ...] = tuple(fragments)
        self._index: dict[str, int] = {frag.id: idx for idx, frag in enumerate(self._fragments)}

    validate = staticmethod(validate)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, object]]) -> "FragmentTimeline":
        fragments = []
        for idx, record in enumerate(records):
            if not isinstance(record, Mapping):
                raise ValidationError(f"Fragment {idx} is not an object", index=idx)
            fragments.append(fragment_from_record(record, idx))
        return validate(fragments)

    def __len__(self) -> int:
        return len(self._fragments)

    def __iter__(self) -> Iterator[Fragment]:
        return iter(self._fragments)

    def __repr__(self) -> str:
        return f"FragmentTimeline({len(self._fragments)} fragments)"

    def length(self) -> int:
        return len(self._fragments)

    def get(self, index: int) -> Fragment:
        if not 0 <= index < len(self._fragments):
            raise IndexOutOfRange(
                f"Fragment index {index} out of range [0, {len(self._fragments)})"
            )
        return self._fragments[index]

    def index_of_id(self, fragment_id: Optional[str]) -> int:
        if fragment_id is None:
            return -1
        return self._index.get(fragment_id, -1)

    def contains_index(self, index: int) -> bool:
        return 0 <= index < len(self._fragments)

    @property
    def ids(self) -> List[str]:
        return [frag.id for frag in self._fragments]

    def audio_refs(self) -> List[str]:
        refs: List[str] = []
        for frag in self._fragments:
            if frag.audio_ref not in refs:
                refs.append(frag.audio_ref)
        return refs

    def last_fragment_for(self, audio_ref: str) -> Optional[Fragment]:
        found = None
        for frag in self._fragments:
            if frag.audio_ref == audio_ref:
                found = frag
        return found

    def check_coverage(self, durations: Mapping[str, float]) -> List[str]:
        # Durations are only known once audio has loaded, so mismatches are
        # reported rather than raised.
        warnings: List[str] = []
        for audio_ref, duration in durations.items():
            last = self.last_fragment_for(audio_ref)
            if last is None:
                warnings.append(f"{audio_ref}: no fragments reference this file")
                continue
            if not _same_time(last.end_sec, float(duration)):
                warnings.append(
                    f"{audio_ref}: last fragment {last.id!r} ends at {last.end_sec}, "
                    f"audio lasts {float(duration)}"
                )
        return warnings

    def to_records(self) -> List[dict]:
        return [frag.to_record() for frag in self._fragments]
