"""Versioned snapshot of the variation and add-ons chosen for an order line.

Snapshots are written once when an order is placed and stored as JSON. Each
selection is tagged with ``kind`` so historical orders stay decodable when the
catalog grows new option types. :func:`decode_snapshot` also upgrades the
legacy unversioned ``selected_variation`` / ``selected_add_ons`` documents.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError

SNAPSHOT_VERSION = 1


class VariationSelection(BaseModel):
    """A single chosen size/variant with its price."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["variation"] = "variation"
    id: str | None = None
    name: str
    price: Decimal = Decimal("0")


class AddOnSelection(BaseModel):
    """An extra added on top of the base item."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["add_on"] = "add_on"
    id: str | None = None
    name: str
    price: Decimal = Decimal("0")
    quantity: int = Field(default=1, gt=0)


Selection = Annotated[
    Union[VariationSelection, AddOnSelection], Field(discriminator="kind")
]


class SelectionSnapshot(BaseModel):
    """Immutable record of the options selected for one order line."""

    model_config = ConfigDict(frozen=True)

    version: Literal[1] = SNAPSHOT_VERSION
    selections: List[Selection] = []

    @property
    def variation(self) -> VariationSelection | None:
        for sel in self.selections:
            if isinstance(sel, VariationSelection):
                return sel
        return None

    @property
    def add_ons(self) -> list[AddOnSelection]:
        return [s for s in self.selections if isinstance(s, AddOnSelection)]

    def to_json(self) -> dict[str, Any]:
        """Return the JSON document stored in ``order_items``."""

        return self.model_dump(mode="json")


def _upgrade_legacy(raw: dict[str, Any]) -> dict[str, Any]:
    selections: list[dict[str, Any]] = []
    variation = raw.get("selected_variation")
    if variation:
        selections.append({"kind": "variation", **variation})
    for add_on in raw.get("selected_add_ons") or []:
        selections.append({"kind": "add_on", **add_on})
    return {"version": SNAPSHOT_VERSION, "selections": selections}


def decode_snapshot(raw: Any) -> SelectionSnapshot:
    """Return a :class:`SelectionSnapshot` for a stored JSON document.

    ``None`` yields an empty snapshot. Documents without a ``version`` key are
    treated as the legacy shape. Unknown versions raise
    :class:`~orderdesk.app.errors.ValidationError`.
    """

    if raw is None:
        return SelectionSnapshot()
    if isinstance(raw, SelectionSnapshot):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError("selection snapshot must be an object")
    if "version" not in raw:
        raw = _upgrade_legacy(raw)
    if raw.get("version") != SNAPSHOT_VERSION:
        raise ValidationError(
            f"unsupported selection snapshot version {raw.get('version')!r}"
        )
    try:
        return SelectionSnapshot.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError("invalid selection snapshot") from exc
